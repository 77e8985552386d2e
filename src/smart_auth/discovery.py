"""SMART configuration discovery (``.well-known/smart-configuration``).

Each call fetches a fresh snapshot; caching is left to the caller.
"""

from __future__ import annotations

import json
import logging
from typing import Final

from smart_auth.errors import MissingWellKnownConfig
from smart_auth.models import WellKnownConfig
from smart_auth.transport import JSON_CONTENT_TYPE, HttpTransport

_LOG = logging.getLogger("smart-auth.discovery")

WELL_KNOWN_PATH: Final[str] = "/.well-known/smart-configuration"


def well_known_url(server_url: str) -> str:
    return f"{server_url.rstrip('/')}{WELL_KNOWN_PATH}"


class DiscoveryClient:
    """Fetch and decode a server's SMART configuration document."""

    def __init__(self, transport: HttpTransport) -> None:
        self._transport = transport

    async def discover(self, server_url: str) -> WellKnownConfig:
        """Return the discovery document published under *server_url*.

        Raises
        ------
        MissingWellKnownConfig
            On transport failure, non-200 status or an undecodable document.
        """
        url = well_known_url(server_url)
        try:
            resp = await self._transport.send("GET", url, {"Accept": JSON_CONTENT_TYPE})
        except Exception as exc:
            raise MissingWellKnownConfig(f"network error fetching {url}: {exc}") from exc

        if resp.status != 200:
            raise MissingWellKnownConfig(f"server returned HTTP {resp.status} for {url}")

        try:
            config = WellKnownConfig.from_json(json.loads(resp.text()))
        except ValueError as exc:
            raise MissingWellKnownConfig(f"failed to decode configuration: {exc}") from exc

        _LOG.debug(
            "Discovered SMART configuration for %s (revocation=%s, pkce_s256=%s)",
            server_url,
            config.revocation_endpoint is not None,
            config.supports_pkce_s256(),
        )
        return config
