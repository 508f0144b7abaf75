import json
import logging

from django.template.loader import render_to_string

from apps.csp.consumers import NonceAwareConsumer

logger = logging.getLogger(__name__)


class LiveDemoConsumer(NonceAwareConsumer):
    """Interactive counter that pushes server-rendered fragments.

    Every fragment it sends carries the nonce of the page that opened the
    connection, never a newer one.
    """

    async def connect(self):
        self.count = 0
        await self.load_nonce()
        await self.accept()
        logger.info('Live demo WS connected: path=%s', self.scope.get('path'))

    async def disconnect(self, close_code):
        logger.info('Live demo WS disconnected: code=%s', close_code)

    async def receive(self, text_data=None, bytes_data=None):
        try:
            data = json.loads(text_data or '')
        except json.JSONDecodeError:
            return
        if not isinstance(data, dict):
            return
        action = data.get('action')

        if action == 'increment':
            self.count += 1
            await self.send_fragment()
        elif action == 'render':
            await self.send_fragment()
        elif action == 'nonce':
            await self.send(text_data=json.dumps({
                'type': 'nonce',
                'nonce': self.nonce,
            }))

    async def send_fragment(self):
        html = render_to_string('demo/partials/live_fragment.html', {
            'csp_nonce': self.nonce,
            'count': self.count,
        })
        await self.send(text_data=json.dumps({
            'type': 'fragment',
            'count': self.count,
            'html': html,
        }))
