"""Test settings: in-memory SQLite, eager Celery, sandboxed gateways."""

from .base import *  # noqa: F401,F403

DEBUG = False

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = 'memory://'
CELERY_RESULT_BACKEND = 'cache+memory://'

PAYMENT_GATEWAY_SANDBOX = True
PAYMENT_GATEWAY_TIMEOUT = 2.0

STRIPE_API_KEY = ''
PAYPAL_CLIENT_ID = ''
PAYPAL_SECRET = ''

# Let pytest's caplog see application records
for _name in ('apps', 'shared'):
    LOGGING['loggers'][_name]['propagate'] = True  # noqa: F405
