from channels.testing import WebsocketCommunicator
from django.test import TestCase, TransactionTestCase, override_settings

from apps.csp.policy import extract_nonce, parse_policy
from apps.csp.testing import with_session

from .consumers import LiveDemoConsumer


class HealthCheckTest(TestCase):
    def test_health_check(self):
        response = self.client.get('/health/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'status': 'ok'})


@override_settings(ENVIRONMENT='production')
class DemoPageTest(TestCase):
    def test_demo_page(self):
        response = self.client.get('/')
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, 'Content Security Policy Demo')

    @override_settings(CSP_MODE='Secure')
    def test_inline_script_carries_header_nonce(self):
        response = self.client.get('/')
        nonce = extract_nonce(parse_policy(response['Content-Security-Policy'])['script-src'])
        self.assertContains(response, f'<script nonce="{nonce}">window.__cspNoncePresent = true;</script>', html=False)
        self.assertContains(response, f'csp-demo.js" nonce="{nonce}"')

    @override_settings(CSP_MODE='Insecure')
    def test_page_reports_mode(self):
        response = self.client.get('/')
        self.assertEqual(response.context['csp_mode'], 'Insecure')
        self.assertFalse(response.context['is_secure'])
        self.assertContains(response, '<strong id="csp-mode">Insecure</strong>', html=False)

    @override_settings(CSP_MODE='bogus')
    def test_page_reports_fallback_mode(self):
        response = self.client.get('/')
        self.assertEqual(response.context['csp_mode'], 'Secure')
        self.assertEqual(response.context['environment'], 'production')


class LiveDemoConsumerTest(TransactionTestCase):
    async def connect(self, session):
        communicator = WebsocketCommunicator(with_session(LiveDemoConsumer.as_asgi(), session), '/ws/live/')
        connected, _ = await communicator.connect()
        self.assertTrue(connected)
        return communicator

    async def test_render_uses_connection_nonce(self):
        communicator = await self.connect({'csp_nonce': 'abc123'})
        await communicator.send_json_to({'action': 'render'})
        response = await communicator.receive_json_from()
        self.assertEqual(response['type'], 'fragment')
        self.assertEqual(response['count'], 0)
        self.assertIn('<script nonce="abc123">', response['html'])
        await communicator.disconnect()

    async def test_increment(self):
        communicator = await self.connect({'csp_nonce': 'abc123'})
        await communicator.send_json_to({'action': 'increment'})
        first = await communicator.receive_json_from()
        await communicator.send_json_to({'action': 'increment'})
        second = await communicator.receive_json_from()
        self.assertEqual(first['count'], 1)
        self.assertEqual(second['count'], 2)
        self.assertIn('Count: 2', second['html'])
        await communicator.disconnect()

    async def test_fragments_keep_original_nonce(self):
        session = {'csp_nonce': 'original'}
        communicator = await self.connect(session)
        session['csp_nonce'] = 'newer-page'
        await communicator.send_json_to({'action': 'increment'})
        response = await communicator.receive_json_from()
        self.assertIn('nonce="original"', response['html'])
        self.assertNotIn('newer-page', response['html'])
        await communicator.disconnect()

    async def test_nonce_action(self):
        communicator = await self.connect({'csp_nonce': 'abc123'})
        await communicator.send_json_to({'action': 'nonce'})
        response = await communicator.receive_json_from()
        self.assertEqual(response, {'type': 'nonce', 'nonce': 'abc123'})
        await communicator.disconnect()

    async def test_invalid_messages_ignored(self):
        communicator = await self.connect({'csp_nonce': 'abc123'})
        await communicator.send_to(text_data='not json')
        await communicator.send_json_to(['render'])
        await communicator.send_json_to({'action': 'unknown'})
        self.assertTrue(await communicator.receive_nothing())
        await communicator.disconnect()

    async def test_fragment_without_nonce(self):
        communicator = await self.connect({})
        await communicator.send_json_to({'action': 'render'})
        response = await communicator.receive_json_from()
        self.assertIn('<script>', response['html'])
        await communicator.disconnect()
