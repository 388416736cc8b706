"""Base settings for all environments.

This configuration file defines the common settings used in every
environment: the domain apps, the database, structured logging, Celery and
the rental core's pricing and payment settings. Environment-specific
overrides live in `dev.py`, `prod.py` and `test.py`.
"""

import os
from pathlib import Path

import structlog
from django.core.exceptions import ImproperlyConfigured
from dotenv import load_dotenv

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent.parent

load_dotenv(BASE_DIR / '.env')


def get_env(var_name: str, default=None, required: bool = False):
    value = os.environ.get(var_name, default)
    if required and value in (None, ''):
        raise ImproperlyConfigured(f"Missing required environment variable: {var_name}")
    return value


def get_bool_env(var_name: str, default: str = 'false') -> bool:
    return str(get_env(var_name, default)).lower() in ('1', 'true', 'yes')


# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = get_env('DJANGO_SECRET_KEY', 'replace-me-in-production')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = False

ALLOWED_HOSTS: list[str] = get_env('DJANGO_ALLOWED_HOSTS', 'localhost').split(',')

# Application definition

INSTALLED_APPS = [
    # Domain apps
    'apps.bookings',
    'apps.finances',
]

# Database

DATABASES = {
    'default': {
        'ENGINE': get_env('DB_ENGINE', 'django.db.backends.sqlite3'),
        'NAME': get_env('DB_NAME', BASE_DIR / 'db.sqlite3'),
        'USER': get_env('DB_USER', ''),
        'PASSWORD': get_env('DB_PASSWORD', ''),
        'HOST': get_env('DB_HOST', ''),
        'PORT': get_env('DB_PORT', ''),
        'ATOMIC_REQUESTS': False,
    }
}

# Internationalization

LANGUAGE_CODE = 'en-us'

TIME_ZONE = 'UTC'

USE_I18N = True

USE_TZ = True

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Celery configuration (Broker and Result backend handled in environment)
CELERY_BROKER_URL = get_env('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = get_env('CELERY_RESULT_BACKEND', 'redis://localhost:6379/0')
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_ACCEPT_CONTENT = ['json']

# ============================================================================
# RENTAL CORE
# ============================================================================

# Pricing (fractions, not percentages)
RENTAL_TAX_RATE = get_env('RENTAL_TAX_RATE', '0.10')
RENTAL_COMMISSION_RATE = get_env('RENTAL_COMMISSION_RATE', '0.03')
PAYMENT_COMMISSION_RATE = get_env('PAYMENT_COMMISSION_RATE', '0.03')

# Cancellation is refused once the start is closer than this
RENTAL_CANCELLATION_DEADLINE_HOURS = int(get_env('RENTAL_CANCELLATION_DEADLINE_HOURS', '24'))

# Collaborator adapters (dotted paths)
RENTAL_VEHICLE_DIRECTORY = get_env('RENTAL_VEHICLE_DIRECTORY', 'apps.fleet.memory.InMemoryVehicleDirectory')
RENTAL_DRIVER_DIRECTORY = get_env('RENTAL_DRIVER_DIRECTORY', 'apps.fleet.memory.InMemoryDriverDirectory')

# Payment gateways, tried in this order before falling back to bank transfer
PAYMENT_GATEWAY_CHAIN = get_env('PAYMENT_GATEWAY_CHAIN', 'stripe,paypal')
PAYMENT_GATEWAY_TIMEOUT = float(get_env('PAYMENT_GATEWAY_TIMEOUT', '10'))
PAYMENT_GATEWAY_SANDBOX = get_bool_env('PAYMENT_GATEWAY_SANDBOX')

STRIPE_API_KEY = get_env('STRIPE_API_KEY', '')
STRIPE_API_BASE_URL = get_env('STRIPE_API_BASE_URL', 'https://api.stripe.com')

PAYPAL_CLIENT_ID = get_env('PAYPAL_CLIENT_ID', '')
PAYPAL_SECRET = get_env('PAYPAL_SECRET', '')
PAYPAL_API_BASE_URL = get_env('PAYPAL_API_BASE_URL', 'https://api-m.paypal.com')

BANK_TRANSFER_ACCOUNT_NAME = get_env('BANK_TRANSFER_ACCOUNT_NAME', '')
BANK_TRANSFER_IBAN = get_env('BANK_TRANSFER_IBAN', '')
BANK_TRANSFER_BANK_NAME = get_env('BANK_TRANSFER_BANK_NAME', '')

# ============================================================================
# LOGGING
# ============================================================================

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

LOG_LEVEL = get_env('LOG_LEVEL', 'INFO')

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "json": {
            "()": "structlog.stdlib.ProcessorFormatter",
            "processor": structlog.processors.JSONRenderer(),
        }
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "level": LOG_LEVEL,
        }
    },
    "root": {"handlers": ["console"], "level": "WARNING"},
    "loggers": {
        "django": {"handlers": ["console"], "level": "INFO", "propagate": False},
        "apps": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "shared": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}
