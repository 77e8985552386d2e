"""HTTP transport capability used by the token, discovery and revocation calls.

The core only depends on the :class:`HttpTransport` protocol so tests can
substitute scripted fakes.  :class:`HttpxTransport` is the production backend.
Transport implementations raise whatever their library raises; callers wrap
those exceptions into :class:`~smart_auth.errors.NetworkError`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import TracebackType
from typing import Mapping, Protocol, runtime_checkable

import httpx

from smart_auth.config import DEFAULT_HTTP_TIMEOUT

_LOG = logging.getLogger("smart-auth.transport")

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
JSON_CONTENT_TYPE = "application/json"


@dataclass(frozen=True, slots=True)
class HttpResponse:
    """Status, headers and raw body of a completed HTTP exchange."""

    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


@runtime_checkable
class HttpTransport(Protocol):
    """Asynchronous ``perform request`` contract."""

    async def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: bytes | None = None,
    ) -> HttpResponse: ...


class HttpxTransport:
    """:class:`HttpTransport` backed by :class:`httpx.AsyncClient`.

    Timeouts are enforced here and surface as ``httpx.TimeoutException``.
    A client passed by the caller is never closed by this transport.
    """

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: bytes | None = None,
    ) -> HttpResponse:
        resp = await self._client.request(method, url, headers=dict(headers), content=body)
        _LOG.debug("%s %s -> %s", method, url, resp.status_code)
        return HttpResponse(status=resp.status_code, headers=dict(resp.headers), body=resp.content)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> HttpxTransport:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
