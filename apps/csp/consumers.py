"""Shared base consumer for WebSocket connections that render markup.

A page load copies its CSP nonce into the session. When the page opens a
WebSocket, ``NonceAwareConsumer`` reads that value once during ``connect``
and keeps it for the lifetime of the connection, so fragments pushed later
still carry the nonce the page was served with, even if another tab has
rotated the session value since.
"""

import logging

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncWebsocketConsumer
from django.conf import settings

from .middleware import DEFAULT_SESSION_NONCE_KEY
from .nonce import NonceHolder

logger = logging.getLogger(__name__)


class NonceAwareConsumer(AsyncWebsocketConsumer):
    """Base for consumers that need the page's CSP nonce.

    Subclasses call ``await self.load_nonce()`` from ``connect`` (before
    ``accept``) and then read ``self.nonce``.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.nonce_holder = NonceHolder()

    @property
    def nonce(self):
        return self.nonce_holder.nonce

    async def load_nonce(self):
        nonce = await self.get_session_nonce()
        if not nonce:
            logger.warning('No CSP nonce in session for WebSocket %s', self.scope.get('path'))
        self.nonce_holder.set(nonce)
        return nonce

    @database_sync_to_async
    def get_session_nonce(self):
        session = self.scope.get('session')
        key = getattr(settings, 'CSP_SESSION_NONCE_KEY', DEFAULT_SESSION_NONCE_KEY)
        if session is None or not key:
            return ''
        return session.get(key, '')
