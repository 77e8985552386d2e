"""Typed, immutable records used by the SMART authorization core."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Mapping

from smart_auth.clock import Clock, default_clock

DEFAULT_REFRESH_WINDOW: int = 60


def _opt_str(data: Mapping[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"'{key}' must be a string")
    return value


def _opt_str_list(data: Mapping[str, Any], key: str) -> tuple[str, ...] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"'{key}' must be a list of strings")
    return tuple(value)


@dataclass(frozen=True, slots=True)
class RawTokenResponse:
    """Wire-format mirror of a token endpoint JSON body."""

    access_token: str
    token_type: str
    expires_in: int | None = None
    refresh_token: str | None = None
    scope: str | None = None
    patient: str | None = None
    id_token: str | None = None

    @classmethod
    def from_json(cls, data: Any) -> RawTokenResponse:
        """Build from a decoded JSON document.

        Raises
        ------
        ValueError
            If required members are missing or have the wrong type.
        """
        if not isinstance(data, dict):
            raise ValueError("token response is not a JSON object")
        access_token = _opt_str(data, "access_token")
        if not access_token:
            raise ValueError("token response missing access_token")
        token_type = _opt_str(data, "token_type")
        if not token_type:
            raise ValueError("token response missing token_type")

        expires_in = data.get("expires_in")
        if expires_in is not None:
            # some servers send "3600" as a string
            if isinstance(expires_in, bool):
                raise ValueError("'expires_in' must be an integer")
            try:
                expires_in = int(expires_in)
            except (TypeError, ValueError):
                raise ValueError("'expires_in' must be an integer") from None

        return cls(
            access_token=access_token,
            token_type=token_type,
            expires_in=expires_in,
            refresh_token=_opt_str(data, "refresh_token"),
            scope=_opt_str(data, "scope"),
            patient=_opt_str(data, "patient"),
            id_token=_opt_str(data, "id_token"),
        )


@dataclass(frozen=True, slots=True)
class Token:
    """OAuth access token with expiry tracking.

    ``expires_at`` is a UNIX timestamp; ``None`` means the server did not say,
    and the token is then treated as never expiring.  Instances are never
    mutated, a refresh produces a new :class:`Token`.
    """

    access_token: str
    token_type: str = "Bearer"
    expires_at: float | None = None
    refresh_token: str | None = None
    scope: str | None = None
    patient_id: str | None = None
    id_token: str | None = None

    @classmethod
    def from_response(cls, response: RawTokenResponse, *, captured_at: float) -> Token:
        """Convert a wire response captured at *captured_at* into a Token."""
        expires_at = None
        if response.expires_in is not None:
            expires_at = captured_at + response.expires_in
        return cls(
            access_token=response.access_token,
            token_type=response.token_type,
            expires_at=expires_at,
            refresh_token=response.refresh_token,
            scope=response.scope,
            patient_id=response.patient,
            id_token=response.id_token,
        )

    def is_expired(self, *, clock: Clock = default_clock) -> bool:
        """Return *True* once ``now >= expires_at``."""
        if self.expires_at is None:
            return False
        return clock() >= self.expires_at

    def needs_refresh(
        self, within: float = DEFAULT_REFRESH_WINDOW, *, clock: Clock = default_clock
    ) -> bool:
        """Return *True* if the token expires within *within* seconds."""
        if self.expires_at is None:
            return False
        return clock() + within >= self.expires_at

    @property
    def authorization_header(self) -> str:
        """Value for the ``Authorization`` header of FHIR API calls."""
        return f"{self.token_type} {self.access_token}"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Token:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def __repr__(self) -> str:
        # never print secrets
        return (
            f"Token(token_type={self.token_type!r}, expires_at={self.expires_at!r}, "
            f"has_refresh_token={self.refresh_token is not None}, scope={self.scope!r}, "
            f"patient_id={self.patient_id!r})"
        )


@dataclass(frozen=True, slots=True)
class WellKnownConfig:
    """Snapshot of a server's ``.well-known/smart-configuration`` document."""

    authorization_endpoint: str
    token_endpoint: str
    revocation_endpoint: str | None = None
    introspection_endpoint: str | None = None
    userinfo_endpoint: str | None = None
    management_endpoint: str | None = None
    registration_endpoint: str | None = None
    capabilities: tuple[str, ...] | None = None
    scopes_supported: tuple[str, ...] | None = None
    response_types_supported: tuple[str, ...] | None = None
    grant_types_supported: tuple[str, ...] | None = None
    code_challenge_methods_supported: tuple[str, ...] | None = field(default=None)

    @classmethod
    def from_json(cls, data: Any) -> WellKnownConfig:
        """Build from the decoded discovery document.

        Raises
        ------
        ValueError
            If required endpoints are missing or members are mistyped.
        """
        if not isinstance(data, dict):
            raise ValueError("discovery document is not a JSON object")
        authorization_endpoint = _opt_str(data, "authorization_endpoint")
        token_endpoint = _opt_str(data, "token_endpoint")
        if not authorization_endpoint:
            raise ValueError("discovery document missing authorization_endpoint")
        if not token_endpoint:
            raise ValueError("discovery document missing token_endpoint")
        return cls(
            authorization_endpoint=authorization_endpoint,
            token_endpoint=token_endpoint,
            revocation_endpoint=_opt_str(data, "revocation_endpoint"),
            introspection_endpoint=_opt_str(data, "introspection_endpoint"),
            userinfo_endpoint=_opt_str(data, "userinfo_endpoint"),
            management_endpoint=_opt_str(data, "management_endpoint"),
            registration_endpoint=_opt_str(data, "registration_endpoint"),
            capabilities=_opt_str_list(data, "capabilities"),
            scopes_supported=_opt_str_list(data, "scopes_supported"),
            response_types_supported=_opt_str_list(data, "response_types_supported"),
            grant_types_supported=_opt_str_list(data, "grant_types_supported"),
            code_challenge_methods_supported=_opt_str_list(
                data, "code_challenge_methods_supported"
            ),
        )

    def supports_pkce_s256(self) -> bool:
        return "S256" in (self.code_challenge_methods_supported or ())

    def has_capability(self, capability: str) -> bool:
        return capability in (self.capabilities or ())
