import json

from channels.testing import WebsocketCommunicator
from django.test import TransactionTestCase, override_settings

from .consumers import NonceAwareConsumer
from .testing import with_session


class EchoNonceConsumer(NonceAwareConsumer):
    async def connect(self):
        await self.load_nonce()
        await self.accept()

    async def receive(self, text_data=None, bytes_data=None):
        await self.send(text_data=json.dumps({'nonce': self.nonce}))


class NonceAwareConsumerTest(TransactionTestCase):
    async def ask_nonce(self, communicator):
        await communicator.send_to(text_data='?')
        return (await communicator.receive_json_from())['nonce']

    async def test_nonce_loaded_from_session_on_connect(self):
        session = {'csp_nonce': 'page-nonce'}
        communicator = WebsocketCommunicator(with_session(EchoNonceConsumer.as_asgi(), session), '/ws/echo/')
        connected, _ = await communicator.connect()
        self.assertTrue(connected)
        self.assertEqual(await self.ask_nonce(communicator), 'page-nonce')
        await communicator.disconnect()

    async def test_nonce_stable_for_connection_lifetime(self):
        session = {'csp_nonce': 'first'}
        communicator = WebsocketCommunicator(with_session(EchoNonceConsumer.as_asgi(), session), '/ws/echo/')
        await communicator.connect()
        session['csp_nonce'] = 'rotated-by-another-page'
        self.assertEqual(await self.ask_nonce(communicator), 'first')
        self.assertEqual(await self.ask_nonce(communicator), 'first')
        await communicator.disconnect()

    async def test_each_connection_gets_its_own_holder(self):
        session = {'csp_nonce': 'first'}
        app = with_session(EchoNonceConsumer.as_asgi(), session)
        first = WebsocketCommunicator(app, '/ws/echo/')
        await first.connect()
        session['csp_nonce'] = 'second'
        second = WebsocketCommunicator(app, '/ws/echo/')
        await second.connect()
        self.assertEqual(await self.ask_nonce(first), 'first')
        self.assertEqual(await self.ask_nonce(second), 'second')
        await first.disconnect()
        await second.disconnect()

    async def test_missing_session_gives_empty_nonce(self):
        communicator = WebsocketCommunicator(EchoNonceConsumer.as_asgi(), '/ws/echo/')
        connected, _ = await communicator.connect()
        self.assertTrue(connected)
        self.assertEqual(await self.ask_nonce(communicator), '')
        await communicator.disconnect()

    @override_settings(CSP_SESSION_NONCE_KEY='page_nonce')
    async def test_custom_session_key(self):
        session = {'page_nonce': 'custom', 'csp_nonce': 'default'}
        communicator = WebsocketCommunicator(with_session(EchoNonceConsumer.as_asgi(), session), '/ws/echo/')
        await communicator.connect()
        self.assertEqual(await self.ask_nonce(communicator), 'custom')
        await communicator.disconnect()
