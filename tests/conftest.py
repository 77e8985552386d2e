"""Shared pytest configuration and fakes."""

from __future__ import annotations

import json
from typing import Any, Callable, Mapping

import pytest

from smart_auth.transport import HttpResponse


def pytest_configure(config):
    """Add integration markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as requiring integration with real services"
    )
    config.addinivalue_line("markers", "ci_safe: integration test that stubs all external calls")


def pytest_addoption(parser):
    """Add integration option to pytest."""
    parser.addoption(
        "--integration",
        action="store_true",
        default=False,
        help="run integration tests",
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless explicitly requested.

    Tests marked with 'ci_safe' are always run because they stub all external
    calls and are safe for CI.
    """
    if not config.getoption("--integration", default=False):
        skip_integration = pytest.mark.skip(reason="Need --integration option to run")
        for item in items:
            if "integration" in item.keywords and "ci_safe" not in item.keywords:
                item.add_marker(skip_integration)


# --------------------------------------------------------------------------- #
# Scripted HTTP transport                                                     #
# --------------------------------------------------------------------------- #
Handler = Callable[[str, str, Mapping[str, str], "bytes | None"], Any]


class ScriptedTransport:
    """In-memory :class:`~smart_auth.transport.HttpTransport`.

    Responses are registered per ``(method, url)``; each may be an
    :class:`HttpResponse`, an exception instance to raise, or an async
    callable producing either.  Every request is recorded in ``calls``.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Any] = {}
        self.calls: list[dict[str, Any]] = []

    def add(self, method: str, url: str, response: Any) -> None:
        self.routes[(method.upper(), url)] = response

    def add_json(self, method: str, url: str, payload: Any, status: int = 200) -> None:
        self.add(
            method,
            url,
            HttpResponse(
                status=status,
                headers={"content-type": "application/json"},
                body=json.dumps(payload).encode(),
            ),
        )

    def requests_to(self, url: str) -> list[dict[str, Any]]:
        return [c for c in self.calls if c["url"] == url]

    async def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: bytes | None = None,
    ) -> HttpResponse:
        self.calls.append({"method": method, "url": url, "headers": dict(headers), "body": body})
        try:
            route = self.routes[(method.upper(), url)]
        except KeyError:
            return HttpResponse(status=404, body=b"not found")
        if callable(route):
            route = await route(method, url, headers, body)
        if isinstance(route, BaseException):
            raise route
        return route


@pytest.fixture()
def transport() -> ScriptedTransport:
    return ScriptedTransport()


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()
