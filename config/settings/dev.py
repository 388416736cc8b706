"""Development settings for the rental core.

This module extends the base settings with development specific
configuration: debug on, all hosts allowed and payment gateways in
sandbox mode. Do not use these settings in production!
"""

from .base import *  # noqa: F401,F403

# Enable debug mode for development
DEBUG = True

# Allow all hosts in development
ALLOWED_HOSTS = ['*']

# Never hit real gateways from a laptop
PAYMENT_GATEWAY_SANDBOX = True

# Run Celery tasks inline unless a broker is configured
CELERY_TASK_ALWAYS_EAGER = get_bool_env('CELERY_TASK_ALWAYS_EAGER', 'true')  # noqa: F405
CELERY_TASK_EAGER_PROPAGATES = True
