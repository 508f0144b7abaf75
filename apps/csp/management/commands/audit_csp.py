from importlib import import_module

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.test import Client, override_settings

from apps.csp.middleware import ContentSecurityPolicyMiddleware
from apps.csp.policy import Environment, PolicyMode, extract_nonce, parse_policy


class Command(BaseCommand):
    help = (
        'Request pages in-process and check the CSP and security headers they carry. '
        'Pages run through the full middleware stack, so the session they create is '
        'deleted again once the audit finishes.'
    )

    def add_arguments(self, parser):
        parser.add_argument(
            '--mode', choices=[mode.value for mode in PolicyMode], default=None,
            help='CSP mode to audit (default: the configured CSP_MODE)',
        )
        parser.add_argument(
            '--host', default=None,
            help='Host header to send (default: first non-wildcard ALLOWED_HOSTS entry)',
        )
        parser.add_argument('--path', default='/', help='Page to audit (default: /)')
        parser.add_argument(
            '--static-path', default=None,
            help='Static asset that must come back without security headers',
        )

    def handle(self, *args, **options):
        mode = PolicyMode.parse(options['mode'] or getattr(settings, 'CSP_MODE', None))
        host = options['host'] or self.default_host()
        self.passed = 0
        self.failed = 0

        self.stdout.write(f'Auditing {options["path"]} on {host} in {mode.value} mode')
        with override_settings(CSP_MODE=mode.value):
            client = Client(raise_request_exception=False, HTTP_HOST=host)
            try:
                first = client.get(options['path'], secure=True)
                second = client.get(options['path'], secure=True)
                self.audit_page(first, second, mode, host)
                if options['static_path']:
                    self.audit_static(client.get(options['static_path'], secure=True))
            finally:
                self.discard_session(client)

        summary = f'{self.passed} passed, {self.failed} failed'
        if self.failed:
            raise CommandError(summary)
        self.stdout.write(self.style.SUCCESS(summary))

    def default_host(self):
        for host in getattr(settings, 'ALLOWED_HOSTS', []):
            if host and host != '*' and not host.startswith('.'):
                return host
        return 'testserver'

    def discard_session(self, client):
        cookie = client.cookies.get(settings.SESSION_COOKIE_NAME)
        if cookie and cookie.value:
            import_module(settings.SESSION_ENGINE).SessionStore(cookie.value).delete()

    def report(self, ok, label):
        if ok:
            self.passed += 1
            self.stdout.write(f'  [PASS] {label}')
        else:
            self.failed += 1
            self.stdout.write(self.style.ERROR(f'  [FAIL] {label}'))

    def audit_page(self, response, other, mode, host):
        header = response.get('Content-Security-Policy')
        self.report(header is not None, 'Content-Security-Policy header present')
        directives = parse_policy(header or '')
        script_src = directives.get('script-src', '')
        nonce = extract_nonce(script_src)

        if mode is PolicyMode.SECURE:
            self.report(nonce is not None, "script-src carries a 'nonce-...' source")
            self.report("'unsafe-eval'" not in script_src, "script-src has no 'unsafe-eval'")
            environment = Environment.parse(getattr(settings, 'ENVIRONMENT', None))
            if environment is Environment.PRODUCTION:
                self.report("'unsafe-inline'" not in script_src, "script-src has no 'unsafe-inline'")
            self.report(
                directives.get('connect-src') == f"'self' wss://{host} ws://{host}",
                'connect-src is scoped to the request host',
            )
            other_nonce = extract_nonce(parse_policy(other.get('Content-Security-Policy', '')).get('script-src'))
            self.report(nonce != other_nonce, 'nonce rotates between requests')
        else:
            self.report("'unsafe-inline'" in script_src, "script-src has 'unsafe-inline'")
            self.report("'unsafe-eval'" in script_src, "script-src has 'unsafe-eval'")
            self.report("'nonce-" not in (header or ''), 'no nonce anywhere in the policy')

        for name, expected in ContentSecurityPolicyMiddleware.SECURITY_HEADERS.items():
            self.report(response.get(name) == expected, f'{name}: {expected}')

    def audit_static(self, response):
        self.report(response.status_code == 200, f'static asset served (status {response.status_code})')
        self.report('Content-Security-Policy' not in response, 'static asset has no Content-Security-Policy')
        for name in ContentSecurityPolicyMiddleware.SECURITY_HEADERS:
            self.report(name not in response, f'static asset has no {name}')
        if hasattr(response, 'close'):
            response.close()
