from io import StringIO

from django.conf import settings
from django.contrib.sessions.models import Session
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import SimpleTestCase, TestCase, override_settings

from .checks import CSP_MIDDLEWARE, WHITENOISE_MIDDLEWARE, check_csp_mode, check_middleware_order


class CspModeCheckTest(SimpleTestCase):
    def ids(self):
        return [message.id for message in check_csp_mode(None)]

    @override_settings(CSP_MODE='Secure', ENVIRONMENT='production')
    def test_secure_production_is_clean(self):
        self.assertEqual(self.ids(), [])

    @override_settings(CSP_MODE='paranoid', ENVIRONMENT='production')
    def test_unrecognized_mode_warns(self):
        self.assertEqual(self.ids(), ['csp.W001'])

    @override_settings(CSP_MODE='insecure', ENVIRONMENT='production')
    def test_insecure_in_production_warns(self):
        self.assertEqual(self.ids(), ['csp.W002'])

    @override_settings(CSP_MODE='Insecure', ENVIRONMENT='development')
    def test_insecure_in_development_is_allowed(self):
        self.assertEqual(self.ids(), [])


class MiddlewareOrderCheckTest(SimpleTestCase):
    def ids(self):
        return [message.id for message in check_middleware_order(None)]

    def test_project_order_is_valid(self):
        self.assertEqual(self.ids(), [])

    def test_csp_before_whitenoise_is_an_error(self):
        middleware = [m for m in settings.MIDDLEWARE if m != WHITENOISE_MIDDLEWARE]
        middleware.insert(middleware.index(CSP_MIDDLEWARE) + 1, WHITENOISE_MIDDLEWARE)
        with self.settings(MIDDLEWARE=middleware):
            self.assertEqual(self.ids(), ['csp.E001'])

    def test_missing_whitenoise_is_an_error(self):
        middleware = [m for m in settings.MIDDLEWARE if m != WHITENOISE_MIDDLEWARE]
        with self.settings(MIDDLEWARE=middleware):
            self.assertEqual(self.ids(), ['csp.E001'])

    def test_no_csp_middleware_is_not_checked(self):
        middleware = [m for m in settings.MIDDLEWARE if m != CSP_MIDDLEWARE]
        with self.settings(MIDDLEWARE=middleware):
            self.assertEqual(self.ids(), [])


@override_settings(ENVIRONMENT='production')
class AuditCommandTest(TestCase):
    def audit(self, *args):
        out = StringIO()
        call_command('audit_csp', *args, stdout=out)
        return out.getvalue()

    def test_secure_audit_passes(self):
        output = self.audit('--mode', 'Secure', '--static-path', '/static/css/app.css')
        self.assertIn('in Secure mode', output)
        self.assertIn('[PASS] connect-src is scoped to the request host', output)
        self.assertIn('[PASS] nonce rotates between requests', output)
        self.assertIn('[PASS] static asset has no Content-Security-Policy', output)
        self.assertNotIn('[FAIL]', output)

    def test_insecure_audit_passes(self):
        output = self.audit('--mode', 'Insecure')
        self.assertIn("[PASS] script-src has 'unsafe-eval'", output)
        self.assertIn('[PASS] no nonce anywhere in the policy', output)
        self.assertNotIn('[FAIL]', output)

    @override_settings(CSP_MODE='insecure')
    def test_defaults_to_configured_mode(self):
        self.assertIn('in Insecure mode', self.audit())

    def test_explicit_host(self):
        output = self.audit('--host', 'example.com:5001')
        self.assertIn('on example.com:5001', output)
        self.assertNotIn('[FAIL]', output)

    def test_audit_leaves_no_sessions(self):
        self.audit('--mode', 'Secure', '--static-path', '/static/css/app.css')
        self.assertEqual(Session.objects.count(), 0)

    def test_failed_audit_leaves_no_sessions(self):
        with self.assertRaises(CommandError):
            self.audit('--mode', 'Secure', '--static-path', '/static/css/missing.css')
        self.assertEqual(Session.objects.count(), 0)

    def test_missing_middleware_fails(self):
        middleware = [m for m in settings.MIDDLEWARE if m != CSP_MIDDLEWARE]
        with self.settings(MIDDLEWARE=middleware):
            with self.assertRaises(CommandError):
                self.audit('--mode', 'Secure')
