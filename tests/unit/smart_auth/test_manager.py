"""Unit tests for TokenLifecycleManager token resolution & refresh logic.

Coverage:
* AuthorizationFailed raised when no credentials exist
* Code exchange persists through the TokenStore before returning
* Near-expiry token triggers refresh and persistence
* Invalid session after an impossible, rejected or unreachable refresh
* Single-flight refresh – one HTTP call even with concurrent callers
* Revocation only clears the in-memory token it revoked
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

import anyio
import httpx
import pytest

from smart_auth.config import AuthConfig, Settings
from smart_auth.errors import (
    AuthorizationFailed,
    NetworkError,
    TokenRefreshFailed,
    TokenRequestFailed,
)
from smart_auth.manager import LifecycleState, TokenLifecycleManager
from smart_auth.models import Token
from smart_auth.pkce import code_challenge_s256
from smart_auth.scopes import ScopeSet
from smart_auth.store import DiskTokenStore, InMemoryTokenStore
from smart_auth.transport import HttpResponse

SERVER_URL = "https://fhir.example.org/r4"
TOKEN_URL = "https://auth.example.org/token"
WELL_KNOWN = f"{SERVER_URL}/.well-known/smart-configuration"
REVOKE_URL = "https://auth.example.org/revoke"

CONFIG = AuthConfig(
    client_id="my-app",
    redirect_uri="myapp://callback",
    scopes=ScopeSet.parse("launch/patient patient/*.read openid offline_access"),
    server_url=SERVER_URL,
    token_url=TOKEN_URL,
    authorize_url="https://auth.example.org/authorize",
)


class RecordingStore(InMemoryTokenStore):
    """InMemoryTokenStore that records saves and can be told to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.saved: list[Token] = []
        self.fail_with: Exception | None = None

    async def save(self, token: Token, server_url: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.saved.append(token)
        await super().save(token, server_url)


@pytest.fixture()
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture()
def manager(transport, store, clock) -> TokenLifecycleManager:
    return TokenLifecycleManager(CONFIG, transport, store=store, clock=clock)


def _token_body(access: str, expires_in: int | None = 3600, refresh: str | None = "rt") -> dict:
    body: dict = {"access_token": access, "token_type": "Bearer"}
    if expires_in is not None:
        body["expires_in"] = expires_in
    if refresh is not None:
        body["refresh_token"] = refresh
    return body


# --------------------------------------------------------------------------- #
# No credentials                                                              #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_no_token_raises_authorization_failed(manager) -> None:
    assert manager.state is LifecycleState.NO_TOKEN
    with pytest.raises(AuthorizationFailed):
        await manager.get_valid_token()
    assert manager.state is LifecycleState.NO_TOKEN


# --------------------------------------------------------------------------- #
# Code exchange                                                               #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_exchange_persists_and_becomes_current(manager, transport, store, clock) -> None:
    transport.add_json("POST", TOKEN_URL, {"access_token": "tok1", "token_type": "Bearer", "expires_in": 3600})

    token = await manager.exchange_authorization_code("code", state="xyz", code_verifier="v" * 43)

    assert token.access_token == "tok1"
    assert token.expires_at == pytest.approx(clock.now + 3600)
    assert store.saved == [token]
    assert manager.current_token is token
    assert manager.state is LifecycleState.VALID
    assert await manager.get_valid_token() is token
    # the valid token is served without contacting the token endpoint again
    assert len(transport.requests_to(TOKEN_URL)) == 1


@pytest.mark.anyio
async def test_exchange_failure_leaves_state_unchanged(manager, transport, store) -> None:
    transport.add_json("POST", TOKEN_URL, {"error": "invalid_grant"}, status=400)
    with pytest.raises(TokenRequestFailed):
        await manager.exchange_authorization_code("bad")
    assert store.saved == []
    assert manager.current_token is None


@pytest.mark.anyio
async def test_token_not_current_when_persistence_fails(manager, transport, store) -> None:
    transport.add_json("POST", TOKEN_URL, _token_body("tok1"))
    store.fail_with = OSError("disk full")
    with pytest.raises(OSError):
        await manager.exchange_authorization_code("code")
    assert manager.current_token is None


@pytest.mark.anyio
async def test_cancelled_exchange_stores_nothing(manager, transport, store) -> None:
    async def _hang(method, url, headers, body):
        await anyio.sleep(10)

    transport.add("POST", TOKEN_URL, _hang)
    with anyio.move_on_after(0.05):
        await manager.exchange_authorization_code("code")
    assert store.saved == []
    assert manager.state is LifecycleState.NO_TOKEN


# --------------------------------------------------------------------------- #
# Refresh                                                                     #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_refresh_when_inside_window(manager, transport, store, clock) -> None:
    old = Token(access_token="old", expires_at=clock.now + 30, refresh_token="rt-old")
    await store.save(old, SERVER_URL)
    transport.add_json("POST", TOKEN_URL, _token_body("new", refresh="rt-new"))

    token = await manager.get_valid_token()

    assert token.access_token == "new"
    assert token is not old
    assert old.access_token == "old"  # never mutated
    assert store.saved[-1] is token
    assert await store.load(SERVER_URL) is token
    body = parse_qs(transport.requests_to(TOKEN_URL)[0]["body"].decode())
    assert body["refresh_token"] == ["rt-old"]


@pytest.mark.anyio
async def test_refresh_keeps_previous_refresh_token_when_not_rotated(manager, transport, store, clock) -> None:
    await store.save(Token("old", expires_at=clock.now - 1, refresh_token="rt-keep"), SERVER_URL)
    transport.add_json("POST", TOKEN_URL, _token_body("new", refresh=None))

    token = await manager.get_valid_token()
    assert token.refresh_token == "rt-keep"


@pytest.mark.anyio
async def test_loaded_token_valid_is_returned(manager, store, clock, transport) -> None:
    stored = Token(access_token="stored", expires_at=clock.now + 3600)
    await store.save(stored, SERVER_URL)
    assert await manager.get_valid_token() is stored
    assert manager.current_token is stored
    assert transport.calls == []


@pytest.mark.anyio
async def test_token_without_expiry_is_never_refreshed(manager, store, clock, transport) -> None:
    await store.save(Token(access_token="forever"), SERVER_URL)
    clock.advance(10 * 365 * 86400)
    assert (await manager.get_valid_token()).access_token == "forever"
    assert transport.calls == []


@pytest.mark.anyio
async def test_valid_becomes_needs_refresh_as_time_passes(manager, transport, clock) -> None:
    transport.add_json("POST", TOKEN_URL, _token_body("tok1", expires_in=600))
    await manager.exchange_authorization_code("code")
    assert manager.state is LifecycleState.VALID
    clock.advance(540)
    assert manager.state is LifecycleState.NEEDS_REFRESH


@pytest.mark.anyio
async def test_explicit_refresh_without_refresh_token(manager) -> None:
    with pytest.raises(TokenRefreshFailed):
        await manager.refresh_token(Token(access_token="t", expires_at=0))


@pytest.mark.anyio
async def test_explicit_refresh_of_superseded_token_returns_current(manager, transport, clock) -> None:
    transport.add_json("POST", TOKEN_URL, _token_body("tok1"))
    current = await manager.exchange_authorization_code("code")
    stale = Token(access_token="stale", expires_at=clock.now - 5, refresh_token="rt-stale")

    assert await manager.refresh_token(stale) is current
    assert len(transport.requests_to(TOKEN_URL)) == 1


@pytest.mark.anyio
async def test_rejected_explicit_refresh_of_current_token_invalidates(manager, transport, clock) -> None:
    transport.add_json("POST", TOKEN_URL, _token_body("tok1", refresh="rt1"))
    current = await manager.exchange_authorization_code("code")
    transport.add_json("POST", TOKEN_URL, {"error": "invalid_grant"}, status=400)

    with pytest.raises(TokenRefreshFailed):
        await manager.refresh_token(current)

    assert manager.state is LifecycleState.INVALID
    with pytest.raises(AuthorizationFailed):
        await manager.get_valid_token()


@pytest.mark.anyio
async def test_failed_explicit_refresh_of_other_token_keeps_session(manager, transport, clock) -> None:
    stale = Token(access_token="stale", expires_at=clock.now - 5, refresh_token="rt-stale")
    transport.add_json("POST", TOKEN_URL, {"error": "invalid_grant"}, status=400)

    with pytest.raises(TokenRefreshFailed):
        await manager.refresh_token(stale)

    assert manager.state is LifecycleState.NO_TOKEN


@pytest.mark.anyio
async def test_expired_without_refresh_token_invalidates(manager, transport, store, clock) -> None:
    await store.save(Token("old", expires_at=clock.now - 1), SERVER_URL)

    with pytest.raises(AuthorizationFailed):
        await manager.get_valid_token()
    assert manager.state is LifecycleState.INVALID
    assert transport.calls == []

    # terminal until a fresh authorization-code flow
    await store.save(Token("other", expires_at=clock.now + 3600), SERVER_URL)
    with pytest.raises(AuthorizationFailed):
        await manager.get_valid_token()

    transport.add_json("POST", TOKEN_URL, _token_body("fresh"))
    await manager.exchange_authorization_code("code")
    assert manager.state is LifecycleState.VALID
    assert (await manager.get_valid_token()).access_token == "fresh"


@pytest.mark.anyio
async def test_rejected_refresh_invalidates_session(manager, transport, store, clock) -> None:
    await store.save(Token("old", expires_at=clock.now, refresh_token="rt"), SERVER_URL)
    transport.add_json("POST", TOKEN_URL, {"error": "invalid_grant"}, status=400)

    with pytest.raises(AuthorizationFailed) as exc_info:
        await manager.get_valid_token()

    assert isinstance(exc_info.value.__cause__, TokenRefreshFailed)
    assert manager.state is LifecycleState.INVALID
    # no automatic retry
    with pytest.raises(AuthorizationFailed):
        await manager.get_valid_token()
    assert len(transport.requests_to(TOKEN_URL)) == 1


@pytest.mark.anyio
async def test_unreachable_token_endpoint_invalidates_session(manager, transport, store, clock) -> None:
    await store.save(Token("old", expires_at=clock.now, refresh_token="rt"), SERVER_URL)
    transport.add("POST", TOKEN_URL, httpx.ConnectTimeout("timed out"))

    with pytest.raises(AuthorizationFailed) as exc_info:
        await manager.get_valid_token()

    assert isinstance(exc_info.value.__cause__, NetworkError)
    assert manager.state is LifecycleState.INVALID

    # terminal until a fresh authorization-code flow
    transport.add_json("POST", TOKEN_URL, _token_body("new"))
    with pytest.raises(AuthorizationFailed):
        await manager.get_valid_token()
    assert len(transport.requests_to(TOKEN_URL)) == 1


# --------------------------------------------------------------------------- #
# Single-flight: concurrent refresh only once                                 #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_single_flight_refresh(manager, transport, store, clock) -> None:
    await store.save(Token("old", expires_at=clock.now - 1, refresh_token="rt"), SERVER_URL)
    release = anyio.Event()

    async def _slow_refresh(method, url, headers, body):
        await release.wait()
        return HttpResponse(
            status=200,
            body=b'{"access_token": "refreshed", "token_type": "Bearer", "expires_in": 3600}',
        )

    transport.add("POST", TOKEN_URL, _slow_refresh)
    results: list[Token] = []

    async def _worker() -> None:
        results.append(await manager.get_valid_token())

    async with anyio.create_task_group() as tg:
        for _ in range(5):
            tg.start_soon(_worker)
        await anyio.sleep(0.05)
        release.set()

    assert len(transport.requests_to(TOKEN_URL)) == 1
    assert len(results) == 5
    assert all(r is results[0] for r in results)
    assert results[0].access_token == "refreshed"


@pytest.mark.anyio
async def test_single_flight_refresh_with_short_lived_token(manager, transport, store, clock) -> None:
    # the refreshed token already sits inside the refresh window
    await store.save(Token("old", expires_at=clock.now - 1, refresh_token="rt"), SERVER_URL)
    release = anyio.Event()

    async def _slow_refresh(method, url, headers, body):
        await release.wait()
        return HttpResponse(
            status=200,
            body=b'{"access_token": "short", "token_type": "Bearer", "expires_in": 30}',
        )

    transport.add("POST", TOKEN_URL, _slow_refresh)
    results: list[Token] = []

    async def _worker() -> None:
        results.append(await manager.get_valid_token())

    async with anyio.create_task_group() as tg:
        for _ in range(5):
            tg.start_soon(_worker)
        await anyio.sleep(0.05)
        release.set()

    assert len(transport.requests_to(TOKEN_URL)) == 1
    assert len(results) == 5
    assert all(r is results[0] for r in results)
    assert results[0].access_token == "short"


@pytest.mark.anyio
async def test_single_flight_shares_network_failure(manager, transport, store, clock) -> None:
    await store.save(Token("old", expires_at=clock.now - 1, refresh_token="rt"), SERVER_URL)
    release = anyio.Event()

    async def _unreachable(method, url, headers, body):
        await release.wait()
        raise httpx.ConnectTimeout("timed out")

    transport.add("POST", TOKEN_URL, _unreachable)
    errors: list[Exception] = []

    async def _worker() -> None:
        try:
            await manager.get_valid_token()
        except AuthorizationFailed as exc:
            errors.append(exc)

    async with anyio.create_task_group() as tg:
        for _ in range(5):
            tg.start_soon(_worker)
        await anyio.sleep(0.05)
        release.set()

    assert len(transport.requests_to(TOKEN_URL)) == 1
    assert len(errors) == 5
    assert manager.state is LifecycleState.INVALID


# --------------------------------------------------------------------------- #
# Authorization URL                                                           #
# --------------------------------------------------------------------------- #
def test_begin_authorization_binds_challenge_to_verifier(manager) -> None:
    url, pkce = manager.begin_authorization(state="xyz")
    query = parse_qs(urlsplit(url).query)
    assert query["code_challenge"] == [code_challenge_s256(pkce.code_verifier)]
    assert query["code_challenge_method"] == ["S256"]
    assert query["state"] == ["xyz"]
    assert query["aud"] == [SERVER_URL]
    assert query["scope"] == ["launch/patient patient/*.read openid offline_access"]


# --------------------------------------------------------------------------- #
# Revocation / sign-out                                                       #
# --------------------------------------------------------------------------- #
def _route_revocation(transport, status: int = 200) -> None:
    transport.add_json(
        "GET",
        WELL_KNOWN,
        {
            "authorization_endpoint": CONFIG.authorize_url,
            "token_endpoint": TOKEN_URL,
            "revocation_endpoint": REVOKE_URL,
        },
    )
    transport.add("POST", REVOKE_URL, HttpResponse(status=status))


@pytest.mark.anyio
async def test_revoke_current_token(manager, transport, store) -> None:
    transport.add_json("POST", TOKEN_URL, _token_body("tok1"))
    await manager.exchange_authorization_code("code")
    _route_revocation(transport)

    await manager.revoke()

    assert manager.state is LifecycleState.NO_TOKEN
    assert await store.load(SERVER_URL) is None


@pytest.mark.anyio
async def test_revoke_other_token_keeps_current(manager, transport) -> None:
    transport.add_json("POST", TOKEN_URL, _token_body("tok1"))
    current = await manager.exchange_authorization_code("code")
    _route_revocation(transport)

    await manager.revoke(Token(access_token="older"))

    assert manager.current_token is current


@pytest.mark.anyio
async def test_failed_revocation_keeps_state(manager, transport, store) -> None:
    transport.add_json("POST", TOKEN_URL, _token_body("tok1"))
    token = await manager.exchange_authorization_code("code")
    _route_revocation(transport, status=500)

    with pytest.raises(TokenRequestFailed):
        await manager.revoke()

    assert manager.current_token is token
    assert await store.load(SERVER_URL) is token


@pytest.mark.anyio
async def test_revoke_without_token(manager) -> None:
    with pytest.raises(AuthorizationFailed):
        await manager.revoke()


@pytest.mark.anyio
async def test_clear(manager, transport, store) -> None:
    transport.add_json("POST", TOKEN_URL, _token_body("tok1"))
    await manager.exchange_authorization_code("code")
    await manager.clear()
    assert manager.state is LifecycleState.NO_TOKEN
    assert await store.load(SERVER_URL) is None


# --------------------------------------------------------------------------- #
# Wiring                                                                      #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_from_settings(tmp_path, transport) -> None:
    settings = Settings(refresh_window=120, storage_dir=tmp_path, sha256_backend="portable")
    manager = TokenLifecycleManager.from_settings(CONFIG, settings, transport=transport)

    assert manager.refresh_window == 120
    transport.add_json("POST", TOKEN_URL, _token_body("tok1"))
    await manager.exchange_authorization_code("code")
    assert await DiskTokenStore(tmp_path).load(SERVER_URL) == manager.current_token
