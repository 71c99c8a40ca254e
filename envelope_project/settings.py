"""
Django settings for the envelope ledger.

Values come from the environment with development defaults.
"""
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'dev-only-envelope-ledger-key')
DEBUG = os.environ.get('DJANGO_DEBUG', 'true').lower() in ('1', 'true', 'yes')
ALLOWED_HOSTS = [h for h in os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1,testserver').split(',') if h]

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',
    'rest_framework',
    'envelopes.ledger',
    'ledger_api',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'envelope_project.urls'
WSGI_APPLICATION = 'envelope_project.wsgi.application'

DATABASES = {
    'default': {
        'ENGINE': os.environ.get('DB_ENGINE', 'django.db.backends.sqlite3'),
        'NAME': os.environ.get('DB_NAME', str(BASE_DIR / 'db.sqlite3')),
        'USER': os.environ.get('DB_USER', ''),
        'PASSWORD': os.environ.get('DB_PASSWORD', ''),
        'HOST': os.environ.get('DB_HOST', ''),
        'PORT': os.environ.get('DB_PORT', ''),
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LANGUAGE_CODE = 'en-us'
TIME_ZONE = os.environ.get('TIME_ZONE', 'UTC')
USE_I18N = True
USE_TZ = True

REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [],
    'DEFAULT_PERMISSION_CLASSES': ['rest_framework.permissions.AllowAny'],
    'UNAUTHENTICATED_USER': None,
    'EXCEPTION_HANDLER': 'ledger_api.exceptions.ledger_exception_handler',
}

ENVELOPE_LEDGER = {
    'OVERDRAFT_POLICY': os.environ.get('LEDGER_OVERDRAFT_POLICY', 'allow'),
    'ALLOW_FUTURE_DATES': False,
    'MAX_DESCRIPTION_LENGTH': 500,
    'RESTORE_REQUIRES_DELETING_ACTOR': True,
    'LOCK_RETRY_ATTEMPTS': 3,
    'LOCK_RETRY_BACKOFF': 0.05,
}

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {
            'format': '{asctime} {levelname} {name}: {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
        },
    },
    'loggers': {
        'envelopes': {
            'handlers': ['console'],
            'level': os.environ.get('LEDGER_LOG_LEVEL', 'INFO'),
        },
        'ledger_api': {
            'handlers': ['console'],
            'level': os.environ.get('LEDGER_LOG_LEVEL', 'INFO'),
        },
    },
}
