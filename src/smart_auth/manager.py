"""TokenLifecycleManager – single owner of the current SMART token.

State machine (evaluated lazily, no timers)::

    NO_TOKEN --code exchange--> VALID
    VALID --now >= expires_at - refresh_window--> NEEDS_REFRESH
    NEEDS_REFRESH --refresh ok--> VALID            (new Token instance)
    NEEDS_REFRESH --no refresh token / refresh failed--> INVALID
    INVALID --code exchange--> VALID
    any --revocation of the current token--> NO_TOKEN

All mutable state is guarded by one :class:`anyio.Lock`.  Callers that arrive
while a refresh is in flight wait for the lock, then find the refreshed token
already in place and return it, so only one token-endpoint request is made.
A failed refresh is shared the same way: waiters find the session INVALID.
"""

from __future__ import annotations

import enum
from dataclasses import replace

import anyio

from smart_auth.authorize import LaunchType, build_authorization_url
from smart_auth.clock import Clock, default_clock
from smart_auth.config import AuthConfig, Settings
from smart_auth.discovery import DiscoveryClient
from smart_auth.errors import AuthorizationFailed, NetworkError, TokenRefreshFailed
from smart_auth.exchange import TokenExchanger
from smart_auth.log_utils import get_auth_logger
from smart_auth.models import DEFAULT_REFRESH_WINDOW, Token, WellKnownConfig
from smart_auth.pkce import PkceGenerator, PkceParameters
from smart_auth.revocation import RevocationHandler
from smart_auth.sha256 import get_engine
from smart_auth.store import DiskTokenStore, InMemoryTokenStore, TokenStore
from smart_auth.transport import HttpTransport, HttpxTransport


class LifecycleState(str, enum.Enum):
    NO_TOKEN = "no_token"
    VALID = "valid"
    NEEDS_REFRESH = "needs_refresh"
    INVALID = "invalid"


class TokenLifecycleManager:
    """Obtain, refresh and revoke tokens for one ``(client_id, server_url)``."""

    def __init__(
        self,
        config: AuthConfig,
        transport: HttpTransport,
        *,
        store: TokenStore | None = None,
        clock: Clock = default_clock,
        refresh_window: float = DEFAULT_REFRESH_WINDOW,
        pkce_generator: PkceGenerator | None = None,
    ) -> None:
        self.config = config
        self.refresh_window = refresh_window
        self._store: TokenStore = store or InMemoryTokenStore()
        self._clock = clock
        self._pkce = pkce_generator or PkceGenerator()
        self._exchanger = TokenExchanger(config.token_url, transport, clock=clock)
        self._discovery = DiscoveryClient(transport)
        self._revocation = RevocationHandler(self._discovery, transport, self._store)
        self._lock = anyio.Lock()
        self._current: Token | None = None
        self._invalid = False
        # bumped whenever a new token is published
        self._generation = 0
        self._log = get_auth_logger(
            base_logger_name="smart-auth.manager",
            server_url=config.server_url,
            client_id=config.client_id,
        )

    @classmethod
    def from_settings(
        cls,
        config: AuthConfig,
        settings: Settings | None = None,
        *,
        transport: HttpTransport | None = None,
        store: TokenStore | None = None,
    ) -> TokenLifecycleManager:
        """Wire production collaborators from :class:`Settings`."""
        settings = settings or Settings.from_env()
        return cls(
            config,
            transport or HttpxTransport(timeout=settings.http_timeout),
            store=store or DiskTokenStore(settings.storage_dir),
            refresh_window=settings.refresh_window,
            pkce_generator=PkceGenerator(engine=get_engine(settings.sha256_backend)),
        )

    # ------------------------------------------------------------------ #
    # Introspection                                                      #
    # ------------------------------------------------------------------ #
    @property
    def current_token(self) -> Token | None:
        return self._current

    @property
    def state(self) -> LifecycleState:
        if self._invalid:
            return LifecycleState.INVALID
        if self._current is None:
            return LifecycleState.NO_TOKEN
        if self._current.needs_refresh(self.refresh_window, clock=self._clock):
            return LifecycleState.NEEDS_REFRESH
        return LifecycleState.VALID

    # ------------------------------------------------------------------ #
    # Authorization request                                              #
    # ------------------------------------------------------------------ #
    def build_authorization_url(
        self,
        launch_type: LaunchType = LaunchType.STANDALONE,
        launch_context: str | None = None,
        state: str | None = None,
        pkce: PkceParameters | None = None,
    ) -> str:
        """Build the authorization URL from the configured registration."""
        return build_authorization_url(
            self.config.authorize_url,
            self.config.client_id,
            self.config.redirect_uri,
            self.config.scopes,
            self.config.server_url,
            launch_type=launch_type,
            launch_context=launch_context,
            state=state,
            pkce=pkce,
        )

    def begin_authorization(
        self,
        launch_type: LaunchType = LaunchType.STANDALONE,
        launch_context: str | None = None,
        state: str | None = None,
    ) -> tuple[str, PkceParameters]:
        """Generate PKCE parameters and the matching authorization URL.

        The caller must keep ``pkce.code_verifier`` until the code exchange.
        """
        pkce = self._pkce.generate()
        url = self.build_authorization_url(launch_type, launch_context, state, pkce)
        return url, pkce

    # ------------------------------------------------------------------ #
    # Token acquisition                                                  #
    # ------------------------------------------------------------------ #
    async def exchange_authorization_code(
        self,
        code: str,
        *,
        state: str | None = None,
        code_verifier: str | None = None,
    ) -> Token:
        """Exchange *code* for a token, persist it and make it current.

        *state* is accepted for the caller's bookkeeping only; it is not
        compared here (use :func:`smart_auth.state.verify_state`).
        """
        async with self._lock:
            token = await self._exchanger.exchange_authorization_code(
                code,
                self.config.redirect_uri,
                self.config.client_id,
                code_verifier,
            )
            await self._store.save(token, self.config.server_url)
            self._current = token
            self._generation += 1
            self._invalid = False
        self._log.info("Stored new token (state supplied=%s)", state is not None)
        return token

    async def refresh_token(self, token: Token) -> Token:
        """Refresh *token* explicitly.

        If *token* has already been superseded by an unexpired current token
        (another caller refreshed first), that token is returned instead of
        issuing a second request.  A failed refresh of the current token
        invalidates the session.

        Raises
        ------
        TokenRefreshFailed
            *token* has no refresh token or the endpoint rejected it.
        NetworkError
            The token endpoint could not be reached.
        """
        async with self._lock:
            current = self._current
            is_current = current is not None and current.access_token == token.access_token
            if (
                current is not None
                and not is_current
                and not current.is_expired(clock=self._clock)
            ):
                return current
            try:
                return await self._refresh_locked(token)
            except (TokenRefreshFailed, NetworkError) as exc:
                if is_current:
                    self._invalidate(f"explicit refresh failed ({type(exc).__name__})")
                raise

    async def get_valid_token(self) -> Token:
        """Return a usable token, refreshing (single-flight) when close to expiry.

        Callers that queued behind an in-flight refresh or exchange receive
        the token it published, even when that token is already inside the
        refresh window.

        Raises
        ------
        AuthorizationFailed
            No token is available, the session was invalidated, or the token
            cannot be refreshed (no refresh token, rejected, or the token
            endpoint was unreachable); a new authorization-code flow is
            required.
        """
        seen = self._generation
        async with self._lock:
            if self._invalid:
                raise AuthorizationFailed("session invalidated; re-authorization required")

            token = self._current
            if (
                token is not None
                and self._generation != seen
                and not token.is_expired(clock=self._clock)
            ):
                return token

            if token is None:
                token = await self._store.load(self.config.server_url)
                if token is None:
                    raise AuthorizationFailed("no valid token available; authorization required")
                self._current = token

            if not token.needs_refresh(self.refresh_window, clock=self._clock):
                return token

            if token.refresh_token is None:
                self._invalidate("token expired and no refresh token was issued")
                raise AuthorizationFailed("token expired and cannot be refreshed")

            try:
                return await self._refresh_locked(token)
            except (TokenRefreshFailed, NetworkError) as exc:
                self._invalidate(f"refresh failed ({type(exc).__name__})")
                raise AuthorizationFailed(f"token refresh failed: {exc.detail}") from exc

    # ------------------------------------------------------------------ #
    # Discovery, revocation, sign-out                                    #
    # ------------------------------------------------------------------ #
    async def discover(self) -> WellKnownConfig:
        return await self._discovery.discover(self.config.server_url)

    async def revoke(self, token: Token | None = None) -> None:
        """Revoke *token* (default: the current one) and clear local state.

        Local state is kept on failure so revocation can be retried.
        """
        if token is None:
            async with self._lock:
                token = self._current
        if token is None:
            raise AuthorizationFailed("no token to revoke")
        await self._revocation.revoke(token, self.config, on_revoked=self._forget)

    async def clear(self) -> None:
        """Drop the current token locally without contacting the server."""
        async with self._lock:
            await self._store.delete(self.config.server_url)
            self._current = None
            self._invalid = False
        self._log.info("Cleared local token state")

    # ---------------- internal helpers --------------------------------- #
    async def _refresh_locked(self, token: Token) -> Token:
        # caller holds self._lock
        if token.refresh_token is None:
            raise TokenRefreshFailed("no refresh token available")

        new_token = await self._exchanger.exchange_refresh_token(
            token.refresh_token, self.config.client_id
        )
        if new_token.refresh_token is None:
            # server kept the old refresh token alive
            new_token = replace(new_token, refresh_token=token.refresh_token)

        await self._store.save(new_token, self.config.server_url)
        self._current = new_token
        self._generation += 1
        self._invalid = False
        return new_token

    def _invalidate(self, reason: str) -> None:
        self._invalid = True
        self._log.warning("Session invalidated: %s", reason)

    async def _forget(self, revoked: Token) -> None:
        async with self._lock:
            if self._current is not None and self._current.access_token == revoked.access_token:
                self._current = None
                self._invalid = False
        self._log.info("Token revoked")
