from django.apps import AppConfig


class CspConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.csp'
    verbose_name = 'Content Security Policy'
    label = 'csp'

    def ready(self):
        from . import checks  # noqa: F401
