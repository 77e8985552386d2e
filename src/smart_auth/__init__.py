"""SMART on FHIR authorization core.

This package hosts **transport-agnostic** building blocks for the OAuth 2.0
Authorization Code grant with PKCE, as profiled by SMART App Launch.

Sub-modules
-----------
clock
    Test-friendly time abstraction.
sha256
    Interchangeable SHA-256 backends (platform / portable).
pkce
    Proof-Key for Code Exchange helpers.
scopes
    Scope parsing, serialisation and grant checks.
authorize
    Authorization URL construction.
exchange
    Token endpoint grants.
manager
    Token lifecycle (single-flight refresh, persistence, revocation).
discovery
    ``.well-known/smart-configuration`` client.
revocation
    RFC 7009 revocation.
store
    Token persistence interface and implementations.
transport
    HTTP transport interface and the httpx backend.
state
    Caller-side CSRF ``state`` helpers.
errors
    Exception types.
log_utils
    Structured logging helpers (thin wrapper around :pymod:`logging`).

All public objects are re-exported here for convenience.
"""

from __future__ import annotations

from .authorize import LaunchType, build_authorization_url  # noqa: F401
from .clock import Clock, default_clock  # noqa: F401
from .config import AuthConfig, Settings  # noqa: F401
from .discovery import DiscoveryClient  # noqa: F401
from .errors import (  # noqa: F401
    AuthorizationFailed,
    InvalidConfiguration,
    InvalidState,
    MissingWellKnownConfig,
    NetworkError,
    PkceGenerationFailed,
    ScopeNotGranted,
    SmartAuthError,
    TokenRefreshFailed,
    TokenRequestFailed,
)
from .exchange import TokenExchanger  # noqa: F401
from .log_utils import get_auth_logger  # noqa: F401
from .manager import LifecycleState, TokenLifecycleManager  # noqa: F401
from .models import RawTokenResponse, Token, WellKnownConfig  # noqa: F401
from .pkce import PkceGenerator, PkceParameters, base64url_encode  # noqa: F401
from .revocation import RevocationHandler  # noqa: F401
from .scopes import Scope, ScopeSet, is_clinical_scope  # noqa: F401
from .sha256 import HashlibSha256, PortableSha256, Sha256Engine, get_engine  # noqa: F401
from .state import generate_state, verify_state  # noqa: F401
from .store import DiskTokenStore, InMemoryTokenStore, TokenStore  # noqa: F401
from .transport import HttpResponse, HttpTransport, HttpxTransport  # noqa: F401

__all__ = [
    # authorize
    "LaunchType",
    "build_authorization_url",
    # clock
    "Clock",
    "default_clock",
    # config
    "AuthConfig",
    "Settings",
    # discovery / revocation
    "DiscoveryClient",
    "RevocationHandler",
    # errors
    "SmartAuthError",
    "InvalidConfiguration",
    "AuthorizationFailed",
    "TokenRequestFailed",
    "TokenRefreshFailed",
    "InvalidState",
    "MissingWellKnownConfig",
    "PkceGenerationFailed",
    "ScopeNotGranted",
    "NetworkError",
    # exchange / lifecycle
    "TokenExchanger",
    "TokenLifecycleManager",
    "LifecycleState",
    # models
    "RawTokenResponse",
    "Token",
    "WellKnownConfig",
    # pkce / hashing
    "PkceGenerator",
    "PkceParameters",
    "base64url_encode",
    "Sha256Engine",
    "HashlibSha256",
    "PortableSha256",
    "get_engine",
    # scopes
    "Scope",
    "ScopeSet",
    "is_clinical_scope",
    # state
    "generate_state",
    "verify_state",
    # storage / transport
    "TokenStore",
    "InMemoryTokenStore",
    "DiskTokenStore",
    "HttpTransport",
    "HttpResponse",
    "HttpxTransport",
    # logging helpers
    "get_auth_logger",
]
