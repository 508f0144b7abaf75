from .base import *  # noqa: F401, F403

SECRET_KEY = 'test-secret-key'

ALLOWED_HOSTS = ['testserver', 'example.com', 'localhost']

ENVIRONMENT = 'production'
CSP_MODE = 'Secure'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

# Serve straight from the finders so tests need no collectstatic run.
WHITENOISE_USE_FINDERS = True
WHITENOISE_AUTOREFRESH = False
STATIC_ROOT = None

LOGGING['loggers']['apps']['level'] = 'CRITICAL'  # noqa: F405
