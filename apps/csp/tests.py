import base64
from unittest.mock import patch

from django.template import Context, Template
from django.test import RequestFactory, SimpleTestCase

from .nonce import NonceHolder, NonceUnavailable, generate_nonce
from .policy import (
    DIRECTIVE_ORDER,
    Environment,
    PolicyMode,
    build_directives,
    build_policy,
    extract_nonce,
    parse_policy,
)

NONCE = 'q83vEjRWeJASNFZ4kBI0VniQEjRWeJASNFZ4kBI0Vng='


class PolicyModeParseTest(SimpleTestCase):
    def test_recognized_values_any_case(self):
        self.assertIs(PolicyMode.parse('Secure'), PolicyMode.SECURE)
        self.assertIs(PolicyMode.parse('SECURE'), PolicyMode.SECURE)
        self.assertIs(PolicyMode.parse('Insecure'), PolicyMode.INSECURE)
        self.assertIs(PolicyMode.parse('insecure'), PolicyMode.INSECURE)
        self.assertIs(PolicyMode.parse(' INSECURE '), PolicyMode.INSECURE)

    def test_missing_value_is_secure(self):
        self.assertIs(PolicyMode.parse(None), PolicyMode.SECURE)
        self.assertIs(PolicyMode.parse(''), PolicyMode.SECURE)

    def test_unrecognized_value_fails_closed(self):
        self.assertIs(PolicyMode.parse('off'), PolicyMode.SECURE)
        self.assertIs(PolicyMode.parse('Insecure!'), PolicyMode.SECURE)
        self.assertIs(PolicyMode.parse(0), PolicyMode.SECURE)
        self.assertIs(PolicyMode.parse(['Insecure']), PolicyMode.SECURE)

    def test_is_recognized(self):
        self.assertTrue(PolicyMode.is_recognized('insecure'))
        self.assertTrue(PolicyMode.is_recognized(PolicyMode.SECURE))
        self.assertFalse(PolicyMode.is_recognized('strict'))
        self.assertFalse(PolicyMode.is_recognized(None))


class EnvironmentParseTest(SimpleTestCase):
    def test_development(self):
        self.assertIs(Environment.parse('development'), Environment.DEVELOPMENT)
        self.assertIs(Environment.parse('Development'), Environment.DEVELOPMENT)
        self.assertIs(Environment.parse('dev'), Environment.DEVELOPMENT)

    def test_everything_else_is_production(self):
        self.assertIs(Environment.parse('production'), Environment.PRODUCTION)
        self.assertIs(Environment.parse('staging'), Environment.PRODUCTION)
        self.assertIs(Environment.parse(None), Environment.PRODUCTION)


class BuildPolicyTest(SimpleTestCase):
    """The header string is a compatibility contract; compare it verbatim."""

    def test_secure_production(self):
        policy = build_policy(PolicyMode.SECURE, Environment.PRODUCTION, 'example.com:5001', NONCE)
        self.assertEqual(policy, (
            "default-src 'self'; "
            f"script-src 'self' 'nonce-{NONCE}'; "
            "style-src 'self' 'unsafe-inline'; "
            "img-src 'self' data:; "
            "font-src 'self'; "
            "connect-src 'self' wss://example.com:5001 ws://example.com:5001; "
            "frame-ancestors 'none'; "
            "base-uri 'self'; "
            "form-action 'self'"
        ))

    def test_secure_development_adds_unsafe_inline(self):
        directives = build_directives(PolicyMode.SECURE, Environment.DEVELOPMENT, 'localhost', NONCE)
        self.assertEqual(directives['script-src'], f"'self' 'unsafe-inline' 'nonce-{NONCE}'")
        self.assertEqual(directives['connect-src'], "'self' wss://localhost ws://localhost")

    def test_insecure(self):
        policy = build_policy(PolicyMode.INSECURE, Environment.PRODUCTION, 'example.com', NONCE)
        self.assertEqual(policy, (
            "default-src 'self'; "
            "script-src 'self' 'unsafe-inline' 'unsafe-eval'; "
            "style-src 'self' 'unsafe-inline'; "
            "img-src 'self' data:; "
            "font-src 'self'; "
            "connect-src 'self' wss: ws:; "
            "frame-ancestors 'none'; "
            "base-uri 'self'; "
            "form-action 'self'"
        ))

    def test_insecure_ignores_environment(self):
        self.assertEqual(
            build_policy(PolicyMode.INSECURE, Environment.DEVELOPMENT, 'a.test', NONCE),
            build_policy(PolicyMode.INSECURE, Environment.PRODUCTION, 'a.test', NONCE),
        )

    def test_directive_order(self):
        for mode in PolicyMode:
            for environment in Environment:
                directives = build_directives(mode, environment, 'example.com', NONCE)
                self.assertEqual(tuple(directives), DIRECTIVE_ORDER)

    def test_style_src_never_carries_nonce(self):
        for environment in Environment:
            directives = build_directives(PolicyMode.SECURE, environment, 'example.com', NONCE)
            self.assertEqual(directives['style-src'], "'self' 'unsafe-inline'")


class ParsePolicyTest(SimpleTestCase):
    def test_parse_round_trips_builder_output(self):
        directives = build_directives(PolicyMode.SECURE, Environment.PRODUCTION, 'example.com', NONCE)
        self.assertEqual(parse_policy(build_policy(
            PolicyMode.SECURE, Environment.PRODUCTION, 'example.com', NONCE,
        )), directives)

    def test_parse_tolerates_whitespace_and_case(self):
        parsed = parse_policy("  Default-Src 'self' ;script-src 'none';; ")
        self.assertEqual(parsed, {'default-src': "'self'", 'script-src': "'none'"})

    def test_first_duplicate_wins(self):
        parsed = parse_policy("script-src 'self'; script-src 'unsafe-inline'")
        self.assertEqual(parsed['script-src'], "'self'")

    def test_empty_header(self):
        self.assertEqual(parse_policy(''), {})
        self.assertEqual(parse_policy(None), {})

    def test_extract_nonce(self):
        self.assertEqual(extract_nonce(f"'self' 'nonce-{NONCE}'"), NONCE)
        self.assertEqual(extract_nonce("'self' 'nonce-abc' 'nonce-def'"), 'abc')
        self.assertIsNone(extract_nonce("'self' 'unsafe-inline'"))
        self.assertIsNone(extract_nonce("'self' 'nonce-unterminated"))
        self.assertIsNone(extract_nonce(None))


class GenerateNonceTest(SimpleTestCase):
    def test_nonce_is_32_bytes_base64(self):
        nonce = generate_nonce()
        self.assertEqual(len(nonce), 44)
        self.assertEqual(len(base64.b64decode(nonce, validate=True)), 32)

    def test_nonces_are_unique(self):
        nonces = {generate_nonce() for _ in range(10)}
        self.assertEqual(len(nonces), 10)

    def test_random_source_failure_is_fatal(self):
        with patch('apps.csp.nonce.secrets.token_bytes', side_effect=OSError('no entropy')):
            with self.assertLogs('apps.csp.nonce', 'CRITICAL') as logs:
                with self.assertRaises(NonceUnavailable) as ctx:
                    generate_nonce()
        self.assertIsInstance(ctx.exception.__cause__, OSError)
        self.assertIn('cannot generate CSP nonce', logs.output[0])

    def test_not_implemented_source_is_fatal(self):
        with patch('apps.csp.nonce.secrets.token_bytes', side_effect=NotImplementedError):
            with self.assertLogs('apps.csp.nonce', 'CRITICAL'):
                with self.assertRaises(NonceUnavailable):
                    generate_nonce()


class NonceHolderTest(SimpleTestCase):
    def test_empty_until_written(self):
        holder = NonceHolder()
        self.assertFalse(holder.is_set)
        self.assertEqual(holder.nonce, '')

    def test_write_once(self):
        holder = NonceHolder()
        holder.set('abc')
        self.assertTrue(holder.is_set)
        self.assertEqual(holder.nonce, 'abc')
        self.assertEqual(str(holder), 'abc')
        with self.assertRaises(RuntimeError):
            holder.set('def')
        self.assertEqual(holder.nonce, 'abc')

    def test_missing_value_still_counts_as_written(self):
        holder = NonceHolder()
        holder.set(None)
        self.assertTrue(holder.is_set)
        self.assertEqual(holder.nonce, '')


class NonceTemplateTagTest(SimpleTestCase):
    def setUp(self):
        self.template = Template('{% load csp_tags %}<script{% nonce_attr %}></script>')

    def test_renders_request_nonce(self):
        request = RequestFactory().get('/')
        request.csp_nonce = 'abc+/='
        html = self.template.render(Context({'request': request}))
        self.assertEqual(html, '<script nonce="abc+/="></script>')

    def test_falls_back_to_context_nonce(self):
        html = self.template.render(Context({'csp_nonce': 'xyz'}))
        self.assertEqual(html, '<script nonce="xyz"></script>')

    def test_no_nonce_renders_nothing(self):
        self.assertEqual(self.template.render(Context({})), '<script></script>')

    def test_nonce_is_escaped(self):
        html = self.template.render(Context({'csp_nonce': '"><x'}))
        self.assertEqual(html, '<script nonce="&quot;&gt;&lt;x"></script>')
