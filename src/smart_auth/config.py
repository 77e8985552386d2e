"""Client configuration and environment-driven settings.

Environment variables
---------------------
SMART_CLIENT_ID, SMART_REDIRECT_URI, SMART_SERVER_URL
    Required by :meth:`AuthConfig.from_env`.
SMART_TOKEN_URL, SMART_AUTHORIZE_URL
    Required by :meth:`AuthConfig.from_env` unless the endpoints are filled in
    later from discovery (see :meth:`AuthConfig.with_endpoints`).
SMART_SCOPE
    Space-delimited scopes; defaults to ``openid fhirUser launch/patient
    patient/*.read offline_access``.
SMART_REFRESH_WINDOW
    Seconds before expiry at which a token is refreshed (default ``60``).
SMART_HTTP_TIMEOUT
    Transport timeout in seconds (default ``15``).
SMART_TOKEN_STORAGE_DIR
    Directory used by :class:`~smart_auth.store.DiskTokenStore`.
SMART_SHA256_BACKEND
    ``hashlib`` (default) or ``portable``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Final, Mapping
from urllib.parse import urlsplit

from smart_auth.errors import InvalidConfiguration
from smart_auth.models import DEFAULT_REFRESH_WINDOW, WellKnownConfig
from smart_auth.scopes import ScopeSet

logger = logging.getLogger("smart-auth.config")

DEFAULT_SCOPE: Final[str] = "openid fhirUser launch/patient patient/*.read offline_access"
DEFAULT_HTTP_TIMEOUT: Final[float] = 15.0
DEFAULT_STORAGE_DIR: Final[Path] = Path.home() / ".smart-auth" / "tokens"


def validate_url(value: str, name: str) -> str:
    """Return *value* if it is an absolute http(s) URL, else raise."""
    try:
        parts = urlsplit(value)
    except ValueError as exc:
        raise InvalidConfiguration(f"{name} is not a valid URL: {exc}") from None
    if parts.scheme.lower() not in ("http", "https") or not parts.netloc:
        raise InvalidConfiguration(f"{name} must be an absolute http(s) URL, got '{value}'")
    return value


def _env(environ: Mapping[str, str], key: str, *, required: bool = True) -> str | None:
    value = (environ.get(key) or "").strip()
    if not value:
        if required:
            raise InvalidConfiguration(f"environment variable {key} is not set")
        return None
    return value


@dataclass(frozen=True)
class AuthConfig:
    """Immutable description of one SMART client registration."""

    client_id: str
    redirect_uri: str
    scopes: ScopeSet
    server_url: str
    token_url: str
    authorize_url: str

    def __post_init__(self) -> None:
        if not self.client_id:
            raise InvalidConfiguration("client_id must not be empty")
        if not isinstance(self.scopes, ScopeSet):
            object.__setattr__(self, "scopes", ScopeSet(self.scopes))
        for name in ("server_url", "token_url", "authorize_url"):
            validate_url(getattr(self, name), name)
        # native apps register custom-scheme redirect URIs (myapp://callback)
        if not urlsplit(self.redirect_uri).scheme:
            raise InvalidConfiguration(
                f"redirect_uri must be an absolute URI, got '{self.redirect_uri}'"
            )

    @classmethod
    def from_env(
        cls,
        prefix: str = "SMART_",
        *,
        environ: Mapping[str, str] | None = None,
        well_known: WellKnownConfig | None = None,
    ) -> AuthConfig:
        """Load the configuration from ``{prefix}*`` environment variables.

        When *well_known* is given, the token and authorize URLs default to its
        endpoints and the corresponding variables become optional.
        """
        env = os.environ if environ is None else environ
        need_endpoints = well_known is None
        token_url = _env(env, f"{prefix}TOKEN_URL", required=need_endpoints)
        authorize_url = _env(env, f"{prefix}AUTHORIZE_URL", required=need_endpoints)
        if well_known is not None:
            token_url = token_url or well_known.token_endpoint
            authorize_url = authorize_url or well_known.authorization_endpoint

        scope = _env(env, f"{prefix}SCOPE", required=False) or DEFAULT_SCOPE
        config = cls(
            client_id=_env(env, f"{prefix}CLIENT_ID") or "",
            redirect_uri=_env(env, f"{prefix}REDIRECT_URI") or "",
            scopes=ScopeSet.parse(scope),
            server_url=_env(env, f"{prefix}SERVER_URL") or "",
            token_url=token_url or "",
            authorize_url=authorize_url or "",
        )
        logger.debug(
            "Loaded SMART configuration for server=%s client_id=%s",
            config.server_url,
            config.client_id,
        )
        return config

    def with_endpoints(self, well_known: WellKnownConfig) -> AuthConfig:
        """Return a copy whose endpoints come from a discovery document."""
        return replace(
            self,
            token_url=well_known.token_endpoint,
            authorize_url=well_known.authorization_endpoint,
        )


@dataclass(frozen=True)
class Settings:
    """Runtime tunables that are not part of a client registration."""

    refresh_window: float = DEFAULT_REFRESH_WINDOW
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    storage_dir: Path = field(default_factory=lambda: DEFAULT_STORAGE_DIR)
    sha256_backend: str = "hashlib"

    @classmethod
    def from_env(
        cls, prefix: str = "SMART_", *, environ: Mapping[str, str] | None = None
    ) -> Settings:
        env = os.environ if environ is None else environ
        try:
            refresh_window = float(env.get(f"{prefix}REFRESH_WINDOW", DEFAULT_REFRESH_WINDOW))
            http_timeout = float(env.get(f"{prefix}HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT))
        except ValueError as exc:
            raise InvalidConfiguration(f"numeric setting could not be parsed: {exc}") from None
        if refresh_window < 0 or http_timeout <= 0:
            raise InvalidConfiguration("refresh window must be >= 0 and timeout > 0")
        storage = env.get(f"{prefix}TOKEN_STORAGE_DIR")
        return cls(
            refresh_window=refresh_window,
            http_timeout=http_timeout,
            storage_dir=Path(storage).expanduser() if storage else DEFAULT_STORAGE_DIR,
            sha256_backend=env.get(f"{prefix}SHA256_BACKEND", "hashlib"),
        )
