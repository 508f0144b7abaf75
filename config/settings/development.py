import os

from .base import *  # noqa: F401, F403

DEBUG = True

ALLOWED_HOSTS = ['*']

ENVIRONMENT = os.environ.get('DJANGO_ENV', 'development')

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.postgresql',
        'NAME': os.environ.get('DB_NAME', 'csplab'),
        'USER': os.environ.get('DB_USER', 'csplab'),
        'PASSWORD': os.environ.get('DB_PASSWORD', 'csplab'),
        'HOST': os.environ.get('DB_HOST', 'localhost'),
        'PORT': os.environ.get('DB_PORT', '5432'),
    }
}

# Use SQLite as fallback for development without PostgreSQL
if os.environ.get('USE_SQLITE', 'false').lower() == 'true':
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'db.sqlite3',
        }
    }

LOGGING['loggers']['apps']['level'] = os.environ.get('APP_LOG_LEVEL', 'DEBUG')  # noqa: F405
