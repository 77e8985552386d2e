"""Exception types raised by the SMART authorization core.

Only lightweight, **data-carrying** exceptions live here so that outer layers
(FHIR REST client, CLI, web handlers) can turn them into HTTP responses or
user-friendly messages.  No two kinds share a cause.
"""

from __future__ import annotations

from typing import Any


class SmartAuthError(RuntimeError):
    """Base class for every error surfaced by :mod:`smart_auth`."""

    code: str = "smart_auth_error"
    prefix: str = "SMART auth error"

    def __init__(self, message: str) -> None:
        super().__init__(f"{self.prefix}: {message}")
        self.detail: str = message

    def to_payload(self) -> dict[str, Any]:
        """Return a JSON-serialisable payload **without secrets**."""
        return {"error": self.code, "message": str(self)}


class InvalidConfiguration(SmartAuthError):
    """Malformed URLs, missing endpoints or unusable settings."""

    code = "invalid_configuration"
    prefix = "Invalid configuration"


class AuthorizationFailed(SmartAuthError):
    """No usable token is available; a new authorization-code flow is required."""

    code = "authorization_failed"
    prefix = "Authorization failed"


class _TokenEndpointError(SmartAuthError):
    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status: int | None = status
        # verbatim response body, kept for diagnostics
        self.body: str | None = body

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if self.status is not None:
            payload["status"] = self.status
        return payload


class TokenRequestFailed(_TokenEndpointError):
    """The token endpoint rejected (or garbled) an authorization-code exchange.

    Also raised when a revocation endpoint answers with an HTTP error.
    """

    code = "token_request_failed"
    prefix = "Token request failed"


class TokenRefreshFailed(_TokenEndpointError):
    """The token endpoint rejected (or garbled) a refresh-token grant."""

    code = "token_refresh_failed"
    prefix = "Token refresh failed"


class InvalidState(SmartAuthError):
    """The ``state`` returned to the redirect URI does not match the one sent."""

    code = "invalid_state"
    prefix = "Invalid state"

    def __init__(self, *, expected: str, received: str) -> None:
        super().__init__(f"expected '{expected}', received '{received}'")
        self.expected: str = expected
        self.received: str = received

    def to_payload(self) -> dict[str, Any]:
        # state values are CSRF secrets
        return {"error": self.code, "message": "state mismatch"}


class MissingWellKnownConfig(SmartAuthError):
    """``.well-known/smart-configuration`` could not be fetched or decoded."""

    code = "missing_well_known_config"
    prefix = "Missing .well-known configuration"


class PkceGenerationFailed(SmartAuthError):
    """A PKCE verifier/challenge pair could not be produced."""

    code = "pkce_generation_failed"
    prefix = "PKCE generation failed"


class ScopeNotGranted(SmartAuthError):
    """The authorization server did not grant every requested scope."""

    code = "scope_not_granted"
    prefix = "Scope not granted"

    def __init__(self, *, requested: str, granted: str) -> None:
        super().__init__(f"requested '{requested}', granted '{granted}'")
        self.requested: str = requested
        self.granted: str = granted

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload.update(requested=self.requested, granted=self.granted)
        return payload


class NetworkError(SmartAuthError):
    """Transport-level failure (connection, TLS, timeout...)."""

    code = "network_error"
    prefix = "Network error"
