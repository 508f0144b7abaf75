from __future__ import annotations

import base64
import logging
import secrets
import threading

logger = logging.getLogger(__name__)

NONCE_BYTES = 32


class NonceUnavailable(Exception):
    pass


def generate_nonce() -> str:
    """Return a fresh base64 nonce drawn from the OS secure random source.

    There is no fallback generator: if the source is unavailable the request
    must fail rather than be served without a usable policy.
    """
    try:
        raw = secrets.token_bytes(NONCE_BYTES)
    except (OSError, NotImplementedError) as exc:
        logger.critical('Secure random source unavailable, cannot generate CSP nonce')
        raise NonceUnavailable('Secure random source unavailable.') from exc
    return base64.b64encode(raw).decode('ascii')


class NonceHolder:
    """Connection-lifetime copy of the nonce that was current when the
    connection was established.

    Written once, read many times. Reads before the write return ``''``.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._nonce = ''
        self._is_set = False

    def set(self, nonce: str) -> None:
        with self._lock:
            if self._is_set:
                raise RuntimeError('Nonce holder has already been written.')
            self._nonce = nonce or ''
            self._is_set = True

    @property
    def nonce(self) -> str:
        with self._lock:
            return self._nonce

    @property
    def is_set(self) -> bool:
        with self._lock:
            return self._is_set

    def __str__(self):
        return self.nonce
