from unittest.mock import patch

from django.conf import settings
from django.http import HttpResponse
from django.test import RequestFactory, TestCase, override_settings

from .middleware import ContentSecurityPolicyMiddleware
from .policy import PolicyMode, extract_nonce, parse_policy

AUXILIARY_HEADERS = {
    'X-Content-Type-Options': 'nosniff',
    'X-Frame-Options': 'DENY',
    'Referrer-Policy': 'strict-origin-when-cross-origin',
}


class CspResponseMixin:
    def get_policy(self, path='/', **extra):
        response = self.client.get(path, **extra)
        self.assertIn('Content-Security-Policy', response)
        return response, parse_policy(response['Content-Security-Policy'])

    def get_nonce(self):
        _, directives = self.get_policy()
        return extract_nonce(directives['script-src'])


@override_settings(CSP_MODE='Secure', ENVIRONMENT='production')
class SecureHeaderTest(CspResponseMixin, TestCase):
    def test_script_src_contains_nonce(self):
        _, directives = self.get_policy()
        self.assertIn("'nonce-", directives['script-src'])

    def test_script_src_has_no_unsafe_sources(self):
        _, directives = self.get_policy()
        self.assertNotIn("'unsafe-inline'", directives['script-src'])
        self.assertNotIn("'unsafe-eval'", directives['script-src'])

    def test_script_src_is_nonce_only(self):
        _, directives = self.get_policy()
        nonce = extract_nonce(directives['script-src'])
        self.assertEqual(directives['script-src'], f"'self' 'nonce-{nonce}'")

    def test_style_src_keeps_unsafe_inline(self):
        _, directives = self.get_policy()
        self.assertEqual(directives['style-src'], "'self' 'unsafe-inline'")

    def test_connect_src_scoped_to_request_host(self):
        _, directives = self.get_policy(HTTP_HOST='example.com:5001')
        self.assertEqual(
            directives['connect-src'],
            "'self' wss://example.com:5001 ws://example.com:5001",
        )
        sources = directives['connect-src'].split()
        self.assertNotIn('wss:', sources)
        self.assertNotIn('ws:', sources)

    def test_fixed_directives(self):
        _, directives = self.get_policy()
        self.assertEqual(directives['default-src'], "'self'")
        self.assertEqual(directives['img-src'], "'self' data:")
        self.assertEqual(directives['font-src'], "'self'")
        self.assertEqual(directives['frame-ancestors'], "'none'")
        self.assertEqual(directives['base-uri'], "'self'")
        self.assertEqual(directives['form-action'], "'self'")


@override_settings(CSP_MODE='Insecure', ENVIRONMENT='production')
class InsecureHeaderTest(CspResponseMixin, TestCase):
    def test_script_src_allows_inline_and_eval(self):
        _, directives = self.get_policy()
        self.assertIn("'unsafe-inline'", directives['script-src'])
        self.assertIn("'unsafe-eval'", directives['script-src'])

    def test_no_nonce_anywhere(self):
        response = self.client.get('/')
        self.assertNotIn("'nonce-", response['Content-Security-Policy'])

    def test_connect_src_uses_bare_schemes(self):
        _, directives = self.get_policy(HTTP_HOST='example.com:5001')
        self.assertEqual(directives['connect-src'], "'self' wss: ws:")

    def test_mode_is_case_insensitive(self):
        with self.settings(CSP_MODE='INSECURE'):
            _, directives = self.get_policy()
        self.assertIn("'unsafe-eval'", directives['script-src'])


@override_settings(ENVIRONMENT='production')
class DefaultModeTest(CspResponseMixin, TestCase):
    """A missing or garbled CSP_MODE must never weaken the policy."""

    def assert_secure(self, directives):
        self.assertIn("'nonce-", directives['script-src'])
        self.assertNotIn("'unsafe-inline'", directives['script-src'])
        self.assertNotIn("'unsafe-eval'", directives['script-src'])

    @override_settings()
    def test_missing_mode_defaults_to_secure(self):
        del settings.CSP_MODE
        _, directives = self.get_policy()
        self.assert_secure(directives)

    @override_settings(CSP_MODE='disabled')
    def test_unrecognized_mode_defaults_to_secure(self):
        _, directives = self.get_policy()
        self.assert_secure(directives)

    @override_settings(CSP_MODE=None)
    def test_none_mode_defaults_to_secure(self):
        _, directives = self.get_policy()
        self.assert_secure(directives)

    def test_settings_read_failure_defaults_to_secure(self):
        class BrokenSettings:
            def __getattr__(self, name):
                raise RuntimeError('configuration store offline')

        middleware = ContentSecurityPolicyMiddleware(lambda request: HttpResponse())
        with patch('apps.csp.middleware.settings', BrokenSettings()):
            self.assertIs(middleware.get_mode(), PolicyMode.SECURE)

    def test_mode_is_reread_per_request(self):
        with self.settings(CSP_MODE='Insecure'):
            _, insecure = self.get_policy()
        with self.settings(CSP_MODE='Secure'):
            _, secure = self.get_policy()
        self.assertIn("'unsafe-eval'", insecure['script-src'])
        self.assertNotIn("'unsafe-eval'", secure['script-src'])


@override_settings(CSP_MODE='Secure', ENVIRONMENT='development')
class DevelopmentModeTest(CspResponseMixin, TestCase):
    def test_script_src_has_nonce_and_unsafe_inline(self):
        _, directives = self.get_policy()
        self.assertIn("'nonce-", directives['script-src'])
        self.assertIn("'unsafe-inline'", directives['script-src'])
        self.assertNotIn("'unsafe-eval'", directives['script-src'])

    def test_style_src_has_no_nonce(self):
        _, directives = self.get_policy()
        self.assertIsNone(extract_nonce(directives['style-src']))

    @override_settings(ENVIRONMENT='production')
    def test_production_has_nonce_only(self):
        _, directives = self.get_policy()
        self.assertNotIn("'unsafe-inline'", directives['script-src'])


@override_settings(CSP_MODE='Secure', ENVIRONMENT='production')
class NonceRotationTest(CspResponseMixin, TestCase):
    def test_two_requests_produce_different_nonces(self):
        self.assertNotEqual(self.get_nonce(), self.get_nonce())

    def test_ten_requests_all_unique(self):
        nonces = {self.get_nonce() for _ in range(10)}
        self.assertEqual(len(nonces), 10)


@override_settings(CSP_MODE='Secure', ENVIRONMENT='production')
class NoncePropagationTest(CspResponseMixin, TestCase):
    def test_header_nonce_matches_request_nonce(self):
        response, directives = self.get_policy()
        self.assertEqual(extract_nonce(directives['script-src']), response.wsgi_request.csp_nonce)

    def test_header_nonce_matches_template_context(self):
        response, directives = self.get_policy()
        nonce = extract_nonce(directives['script-src'])
        self.assertEqual(response.context['csp_nonce'], nonce)
        self.assertContains(response, f'nonce="{nonce}"')

    def test_nonce_copied_to_session_for_html(self):
        response, directives = self.get_policy()
        nonce = extract_nonce(directives['script-src'])
        self.assertEqual(self.client.session['csp_nonce'], nonce)

    def test_session_copy_follows_latest_page(self):
        self.client.get('/')
        latest = self.get_nonce()
        self.assertEqual(self.client.session['csp_nonce'], latest)

    def test_nonce_not_copied_for_json(self):
        response = self.client.get('/health/')
        self.assertEqual(response.status_code, 200)
        self.assertNotIn('csp_nonce', self.client.session)

    @override_settings(CSP_SESSION_NONCE_KEY=None)
    def test_session_copy_can_be_disabled(self):
        self.client.get('/')
        self.assertNotIn('csp_nonce', self.client.session)

    def test_middleware_without_session(self):
        request = RequestFactory().get('/')
        middleware = ContentSecurityPolicyMiddleware(
            lambda req: HttpResponse(f'<script nonce="{req.csp_nonce}"></script>'),
        )
        response = middleware(request)
        nonce = extract_nonce(parse_policy(response['Content-Security-Policy'])['script-src'])
        self.assertEqual(nonce, request.csp_nonce)
        self.assertContains(response, f'nonce="{nonce}"')


class SecurityHeaderTest(TestCase):
    def assert_auxiliary_headers(self, response):
        for name, value in AUXILIARY_HEADERS.items():
            self.assertEqual(response[name], value)
        permissions = response['Permissions-Policy']
        self.assertIn('camera=()', permissions)
        self.assertIn('microphone=()', permissions)
        self.assertIn('geolocation=()', permissions)

    @override_settings(CSP_MODE='Secure')
    def test_headers_in_secure_mode(self):
        self.assert_auxiliary_headers(self.client.get('/'))

    @override_settings(CSP_MODE='Insecure')
    def test_headers_in_insecure_mode(self):
        self.assert_auxiliary_headers(self.client.get('/'))

    def test_headers_on_json_response(self):
        response = self.client.get('/health/')
        self.assert_auxiliary_headers(response)
        self.assertIn('Content-Security-Policy', response)

    def test_headers_on_not_found(self):
        response = self.client.get('/does-not-exist/')
        self.assertEqual(response.status_code, 404)
        self.assert_auxiliary_headers(response)
        self.assertIn('Content-Security-Policy', response)

    def test_headers_on_disallowed_host(self):
        with self.assertLogs('django.security.DisallowedHost', 'ERROR') as logs:
            response = self.client.get('/', HTTP_HOST='evil.invalid')
        self.assertEqual(response.status_code, 400)
        self.assert_auxiliary_headers(response)
        self.assertNotIn('Content-Security-Policy', response)
        self.assertIn('evil.invalid', logs.output[0])
        self.assertNotIn('csp_nonce', self.client.session)


class StaticFileHeaderTest(TestCase):
    """WhiteNoise answers static paths before the CSP middleware runs."""

    def assert_bare(self, path):
        response = self.client.get(path)
        self.assertEqual(response.status_code, 200)
        self.assertNotIn('Content-Security-Policy', response)
        for name in list(AUXILIARY_HEADERS) + ['Permissions-Policy']:
            self.assertNotIn(name, response)
        response.close()

    @override_settings(CSP_MODE='Secure')
    def test_stylesheet_secure_mode(self):
        self.assert_bare('/static/css/app.css')

    @override_settings(CSP_MODE='Insecure')
    def test_stylesheet_insecure_mode(self):
        self.assert_bare('/static/css/app.css')

    def test_script_asset(self):
        self.assert_bare('/static/js/csp-demo.js')

    def test_static_request_does_not_touch_session(self):
        response = self.client.get('/static/css/app.css')
        response.close()
        self.assertNotIn('csp_nonce', self.client.session)


class NonceFailureTest(TestCase):
    def test_random_source_failure_returns_server_error(self):
        client = self.client_class(raise_request_exception=False)
        with (
            patch('apps.csp.nonce.secrets.token_bytes', side_effect=OSError('no entropy')),
            self.assertLogs('apps.csp.nonce', 'CRITICAL') as nonce_logs,
            self.assertLogs('django.request', 'ERROR') as request_logs,
        ):
            response = client.get('/')
        self.assertEqual(response.status_code, 500)
        self.assertIn('Secure random source unavailable', nonce_logs.output[0])
        self.assertIn('Internal Server Error: /', request_logs.output[0])
        self.assertNotIn('Content-Security-Policy', response)
        self.assertNotContains(response, 'Content Security Policy Demo', status_code=500)
