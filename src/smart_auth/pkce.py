"""PKCE (Proof Key for Code Exchange) helpers.

RFC 7636 protects public OAuth clients: a high-entropy *code verifier* is
generated at the beginning of the flow and a *code challenge* derived from it
is sent to the authorization endpoint.  The verifier is later presented to the
token endpoint, binding the authorization code to this client.

Only the S256 transformation is implemented; the ``plain`` method is never
offered.  The caller keeps the verifier until the code exchange, it is not
persisted here.

This module intentionally performs **no logging** of verifiers or challenges.
"""

from __future__ import annotations

import base64
import re
import secrets
from dataclasses import dataclass
from typing import Callable, Final

from smart_auth.errors import PkceGenerationFailed
from smart_auth.sha256 import Sha256Engine, get_engine

CHALLENGE_METHOD: Final[str] = "S256"

# 32 random bytes encode to exactly 43 base64url characters.
_VERIFIER_BYTES: Final[int] = 32
_VERIFIER_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9\-._~]{43,128}$")

RandomSource = Callable[[int], bytes]


def base64url_encode(data: bytes) -> str:
    """Base64-URL encode *data* **without** ``=`` padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def code_challenge_s256(verifier: str, *, engine: Sha256Engine | None = None) -> str:
    """Compute the *S256* PKCE code challenge for a given verifier.

    Parameters
    ----------
    verifier:
        The code verifier string (43–128 unreserved characters).
    engine:
        SHA-256 backend; defaults to the platform one.

    Raises
    ------
    PkceGenerationFailed
        If the verifier is not ASCII or violates RFC 7636 §4.1.
    """
    try:
        raw = verifier.encode("ascii")
    except UnicodeEncodeError:
        raise PkceGenerationFailed("code verifier is not ASCII") from None
    if not _VERIFIER_RE.match(verifier):
        raise PkceGenerationFailed("code verifier must be 43-128 unreserved characters")
    digest = (engine or get_engine()).hash(raw)
    return base64url_encode(digest)


@dataclass(frozen=True, slots=True)
class PkceParameters:
    """Verifier/challenge pair created once per authorization attempt."""

    code_verifier: str
    code_challenge: str
    challenge_method: str = CHALLENGE_METHOD


class PkceGenerator:
    """Produce :class:`PkceParameters` from an injected secure random source."""

    def __init__(
        self,
        random_source: RandomSource = secrets.token_bytes,
        engine: Sha256Engine | None = None,
    ) -> None:
        self._random_source = random_source
        self._engine = engine or get_engine()

    def generate(self) -> PkceParameters:
        """Return a fresh verifier and its S256 challenge.

        Raises
        ------
        PkceGenerationFailed
            If the random source misbehaves or the verifier cannot be hashed.
        """
        random_bytes = self._random_source(_VERIFIER_BYTES)
        if len(random_bytes) != _VERIFIER_BYTES:
            raise PkceGenerationFailed(
                f"random source returned {len(random_bytes)} bytes, expected {_VERIFIER_BYTES}"
            )
        verifier = base64url_encode(random_bytes)
        challenge = code_challenge_s256(verifier, engine=self._engine)
        return PkceParameters(code_verifier=verifier, code_challenge=challenge)
