"""Caller-side helpers for the OAuth ``state`` parameter.

The authorization core passes ``state`` through without checking it.  Apps
that want CSRF protection generate a value before redirecting, keep it in
their session, and compare it with the value echoed to the redirect URI.

Only a truncated prefix of a state value is ever logged.
"""

from __future__ import annotations

import hmac
import logging
import secrets

from smart_auth.errors import InvalidState
from smart_auth.log_utils import mask_sensitive

_LOG = logging.getLogger("smart-auth.state")


def generate_state(nbytes: int = 24) -> str:
    """Return a URL-safe random state value."""
    return secrets.token_urlsafe(nbytes)


def verify_state(expected: str, received: str | None) -> None:
    """Constant-time comparison of the sent and received state.

    Raises
    ------
    InvalidState
        If *received* is missing or differs from *expected*.
    """
    received = received or ""
    if not expected or not hmac.compare_digest(expected.encode(), received.encode()):
        _LOG.warning(
            "State mismatch: expected=%s received=%s",
            mask_sensitive(expected, 4),
            mask_sensitive(received, 4),
        )
        raise InvalidState(expected=expected, received=received)
