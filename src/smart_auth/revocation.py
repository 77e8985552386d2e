"""Token revocation (RFC 7009) against the discovered revocation endpoint."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable
from urllib.parse import urlencode

from smart_auth.config import AuthConfig
from smart_auth.discovery import DiscoveryClient
from smart_auth.errors import InvalidConfiguration, NetworkError, TokenRequestFailed
from smart_auth.models import Token
from smart_auth.store import TokenStore
from smart_auth.transport import FORM_CONTENT_TYPE, HttpTransport

_LOG = logging.getLogger("smart-auth.revocation")

RevokedCallback = Callable[[Token], Awaitable[None]]


class RevocationHandler:
    """Revoke an access token and clear local state on success.

    On any failure the store is left untouched so the caller may retry.
    """

    def __init__(
        self,
        discovery: DiscoveryClient,
        transport: HttpTransport,
        store: TokenStore,
    ) -> None:
        self._discovery = discovery
        self._transport = transport
        self._store = store

    async def revoke(
        self,
        token: Token,
        config: AuthConfig,
        *,
        on_revoked: RevokedCallback | None = None,
    ) -> None:
        """Revoke *token* at the server described by *config*.

        *on_revoked* runs after the store entry is deleted; the lifecycle
        manager uses it to drop its in-memory token when it is the same one.

        Raises
        ------
        MissingWellKnownConfig
            Discovery failed.
        InvalidConfiguration
            The server publishes no revocation endpoint.
        TokenRequestFailed
            The endpoint answered with HTTP >= 400.
        NetworkError
            The transport failed.
        """
        well_known = await self._discovery.discover(config.server_url)
        endpoint = well_known.revocation_endpoint
        if not endpoint:
            raise InvalidConfiguration(f"no revocation endpoint published by {config.server_url}")

        body = urlencode({"token": token.access_token, "client_id": config.client_id})
        try:
            resp = await self._transport.send(
                "POST", endpoint, {"Content-Type": FORM_CONTENT_TYPE}, body.encode("ascii")
            )
        except Exception as exc:
            raise NetworkError(f"revocation request to {endpoint} failed: {exc}") from exc

        if resp.status >= 400:
            text = resp.text()
            raise TokenRequestFailed(
                f"revocation failed with HTTP {resp.status}: {text}",
                status=resp.status,
                body=text,
            )

        await self._store.delete(config.server_url)
        if on_revoked is not None:
            await on_revoked(token)
        _LOG.info("Revoked token for server=%s", config.server_url)
