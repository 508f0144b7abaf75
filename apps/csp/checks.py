from django.conf import settings
from django.core.checks import Error, Tags, Warning, register

from .policy import Environment, PolicyMode

CSP_MIDDLEWARE = 'apps.csp.middleware.ContentSecurityPolicyMiddleware'
WHITENOISE_MIDDLEWARE = 'whitenoise.middleware.WhiteNoiseMiddleware'


@register(Tags.security)
def check_csp_mode(app_configs, **kwargs):
    errors = []
    mode = getattr(settings, 'CSP_MODE', None)
    if mode is not None and not PolicyMode.is_recognized(mode):
        errors.append(Warning(
            f'CSP_MODE={mode!r} is not recognized.',
            hint="Use 'Secure' or 'Insecure'. Requests fall back to Secure.",
            id='csp.W001',
        ))
    environment = Environment.parse(getattr(settings, 'ENVIRONMENT', None))
    if PolicyMode.parse(mode) is PolicyMode.INSECURE and environment is Environment.PRODUCTION:
        errors.append(Warning(
            'The Insecure CSP mode is enabled in production.',
            hint="It allows 'unsafe-inline', 'unsafe-eval' and any WebSocket host.",
            id='csp.W002',
        ))
    return errors


@register(Tags.security)
def check_middleware_order(app_configs, **kwargs):
    middleware = list(getattr(settings, 'MIDDLEWARE', []))
    if CSP_MIDDLEWARE not in middleware:
        return []
    if WHITENOISE_MIDDLEWARE not in middleware or (
        middleware.index(WHITENOISE_MIDDLEWARE) > middleware.index(CSP_MIDDLEWARE)
    ):
        return [Error(
            'ContentSecurityPolicyMiddleware must come after WhiteNoiseMiddleware.',
            hint='Static files are expected to be answered before the CSP middleware runs.',
            id='csp.E001',
        )]
    return []
