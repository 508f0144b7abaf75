"""Content-Security-Policy construction.

The builder is a pure function of (mode, environment, host, nonce); the
middleware gathers those inputs per request and only emits the result.

Directive order and quoting are part of the header contract and must not
change between releases:

    default-src; script-src; style-src; img-src; font-src; connect-src;
    frame-ancestors; base-uri; form-action
"""

from __future__ import annotations

import enum
import logging

logger = logging.getLogger(__name__)

DIRECTIVE_ORDER = (
    'default-src',
    'script-src',
    'style-src',
    'img-src',
    'font-src',
    'connect-src',
    'frame-ancestors',
    'base-uri',
    'form-action',
)

NONCE_PREFIX = "'nonce-"

_warned_modes = set()


class PolicyMode(enum.Enum):
    SECURE = 'Secure'
    INSECURE = 'Insecure'

    @classmethod
    def parse(cls, value) -> PolicyMode:
        """Case-insensitive lookup that fails closed to ``SECURE``."""
        if value is None:
            return cls.SECURE
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower()
            for mode in cls:
                if mode.value.lower() == normalized:
                    return mode
        if repr(value) not in _warned_modes:
            _warned_modes.add(repr(value))
            logger.warning('Unrecognized CSP mode %r, falling back to Secure', value)
        return cls.SECURE

    @classmethod
    def is_recognized(cls, value) -> bool:
        if isinstance(value, cls):
            return True
        if not isinstance(value, str):
            return False
        return value.strip().lower() in {mode.value.lower() for mode in cls}


class Environment(enum.Enum):
    DEVELOPMENT = 'development'
    PRODUCTION = 'production'

    @classmethod
    def parse(cls, value) -> Environment:
        """Anything other than an explicit development value is production."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str) and value.strip().lower() in ('development', 'dev'):
            return cls.DEVELOPMENT
        return cls.PRODUCTION


def build_directives(mode: PolicyMode, environment: Environment, host: str, nonce: str) -> dict:
    """Return the ordered directive mapping for one response."""
    if mode is PolicyMode.INSECURE:
        script_src = "'self' 'unsafe-inline' 'unsafe-eval'"
        connect_src = "'self' wss: ws:"
    else:
        if environment is Environment.DEVELOPMENT:
            # Ignored by CSP2+ browsers whenever a nonce is present; only
            # older browsers and hot-reload tooling see it.
            script_src = f"'self' 'unsafe-inline' 'nonce-{nonce}'"
        else:
            script_src = f"'self' 'nonce-{nonce}'"
        connect_src = f"'self' wss://{host} ws://{host}"

    # Element-level style="" attributes cannot carry a nonce.
    style_src = "'self' 'unsafe-inline'"

    return {
        'default-src': "'self'",
        'script-src': script_src,
        'style-src': style_src,
        'img-src': "'self' data:",
        'font-src': "'self'",
        'connect-src': connect_src,
        'frame-ancestors': "'none'",
        'base-uri': "'self'",
        'form-action': "'self'",
    }


def format_policy(directives: dict) -> str:
    return '; '.join(f'{name} {directives[name]}' for name in DIRECTIVE_ORDER)


def build_policy(mode: PolicyMode, environment: Environment, host: str, nonce: str) -> str:
    return format_policy(build_directives(mode, environment, host, nonce))


def parse_policy(header: str) -> dict:
    """Split a policy header into ``{directive: source list}``.

    Directive names are lower-cased; the first occurrence of a repeated
    directive wins, as browsers do.
    """
    directives = {}
    for chunk in (header or '').split(';'):
        chunk = chunk.strip()
        if not chunk:
            continue
        name, _, value = chunk.partition(' ')
        name = name.lower()
        if name not in directives:
            directives[name] = value.strip()
    return directives


def extract_nonce(value: str):
    """Return the nonce inside the first ``'nonce-...'`` token, or ``None``."""
    value = value or ''
    start = value.find(NONCE_PREFIX)
    if start < 0:
        return None
    start += len(NONCE_PREFIX)
    end = value.find("'", start)
    if end < 0:
        return None
    return value[start:end]
