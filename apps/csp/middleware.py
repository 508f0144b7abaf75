import logging

from django.conf import settings
from django.core.exceptions import DisallowedHost
from django.core.handlers.exception import response_for_exception

from .nonce import generate_nonce
from .policy import Environment, PolicyMode, build_policy

logger = logging.getLogger(__name__)

DEFAULT_SESSION_NONCE_KEY = 'csp_nonce'


class ContentSecurityPolicyMiddleware:
    """
    Adds a Content-Security-Policy header and the auxiliary security headers
    to every response that reaches it.

    - A fresh nonce is generated per request and exposed as
      ``request.csp_nonce`` before the view runs, so templates can stamp it
      on their <script> tags. The header carries the same value.
    - ``settings.CSP_MODE`` ('Secure' / 'Insecure') is re-read on every
      request. Anything missing or unrecognized means Secure.
    - ``settings.ENVIRONMENT`` is read once, when the middleware is built.
    - HTML responses also copy the nonce into the session so a WebSocket
      connection opened by that page can keep using it.

    Must be listed after WhiteNoiseMiddleware: static files are answered
    there and never receive these headers.
    """

    SECURITY_HEADERS = {
        'X-Content-Type-Options': 'nosniff',
        'X-Frame-Options': 'DENY',
        'Referrer-Policy': 'strict-origin-when-cross-origin',
        'Permissions-Policy': 'camera=(), microphone=(), geolocation=()',
    }

    def __init__(self, get_response):
        self.get_response = get_response
        self.environment = Environment.parse(getattr(settings, 'ENVIRONMENT', None))

    def __call__(self, request):
        nonce = generate_nonce()
        request.csp_nonce = nonce
        try:
            host = request.get_host()
        except DisallowedHost as exc:
            # No trustworthy host to scope connect-src to; answer 400 without
            # running the view, with the auxiliary headers only.
            response = response_for_exception(request, exc)
            self.add_security_headers(response)
            return response
        policy = build_policy(self.get_mode(), self.environment, host, nonce)

        response = self.get_response(request)

        response['Content-Security-Policy'] = policy
        self.add_security_headers(response)

        if response.get('Content-Type', '').startswith('text/html'):
            self.store_session_nonce(request, nonce)
        return response

    def add_security_headers(self, response):
        for header, value in self.SECURITY_HEADERS.items():
            response[header] = value

    def get_mode(self):
        try:
            value = getattr(settings, 'CSP_MODE', None)
        except Exception:
            logger.exception('Could not read CSP_MODE, using Secure')
            return PolicyMode.SECURE
        return PolicyMode.parse(value)

    def store_session_nonce(self, request, nonce):
        session = getattr(request, 'session', None)
        key = getattr(settings, 'CSP_SESSION_NONCE_KEY', DEFAULT_SESSION_NONCE_KEY)
        if session is None or not key:
            return
        session[key] = nonce
