"""
API key, webhook secret and session identifier generation.

Keys are opaque bearer strings: a fixed prefix followed by 24 random bytes
encoded as URL-safe base64 (192 bits of entropy).
"""

import secrets
import time
from typing import NamedTuple, Optional

LIVE_KEY_PREFIX = "mk_live_"
TEST_KEY_PREFIX = "mk_test_"
WEBHOOK_SECRET_PREFIX = "whsec_"
SESSION_ID_PREFIX = "ses_"

KEY_RANDOM_BYTES = 24
SESSION_RANDOM_BYTES = 12

_BASE36_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


class AccountKeys(NamedTuple):
    """A freshly generated live/test key pair."""

    live_key: str
    test_key: str


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_key(prefix: str) -> str:
    """
    Generate a random key with the given prefix.

    Args:
        prefix: Key prefix, e.g. ``"mk_live_"``

    Returns:
        Prefixed key string

    Example:
        >>> generate_key("mk_test_")[:8]
        'mk_test_'
    """
    return f"{prefix}{secrets.token_urlsafe(KEY_RANDOM_BYTES)}"


def generate_account_keys() -> AccountKeys:
    """Generate an independent live/test key pair for an account."""
    return AccountKeys(
        live_key=generate_key(LIVE_KEY_PREFIX),
        test_key=generate_key(TEST_KEY_PREFIX),
    )


def generate_webhook_secret() -> str:
    """Generate a webhook signing secret."""
    return generate_key(WEBHOOK_SECRET_PREFIX)


def generate_session_id(now_ms: Optional[int] = None) -> str:
    """
    Generate a widget session identifier.

    The base36 millisecond timestamp makes ids roughly sortable by creation
    time; the random suffix keeps them unguessable.

    Args:
        now_ms: Current time in milliseconds (defaults to wall clock)
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{SESSION_ID_PREFIX}{_to_base36(now_ms)}{secrets.token_urlsafe(SESSION_RANDOM_BYTES)}"


def is_test_key(api_key: str) -> bool:
    """Check if an API key is a test key."""
    return api_key.startswith(TEST_KEY_PREFIX)


def is_live_key(api_key: str) -> bool:
    """Check if an API key is a live key."""
    return api_key.startswith(LIVE_KEY_PREFIX)


def is_valid_format(api_key: str) -> bool:
    """Validate API key format."""
    return is_test_key(api_key) or is_live_key(api_key)


__all__ = [
    "LIVE_KEY_PREFIX",
    "TEST_KEY_PREFIX",
    "WEBHOOK_SECRET_PREFIX",
    "AccountKeys",
    "generate_key",
    "generate_account_keys",
    "generate_webhook_secret",
    "generate_session_id",
    "is_test_key",
    "is_live_key",
    "is_valid_format",
]
