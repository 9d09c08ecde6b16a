"""
Token Manager: bootstrap seeding, ready gate, refresh-before-expiry, persistence
"""
import asyncio

import httpx
import jwt
import pytest

from hbsync.core.exceptions import BootstrapCredentialsMissingError, TokenRefreshError, TokenUnavailableError
from hbsync.services.store import Table
from hbsync.services.sync.oauth import TokenManager, decode_jwt_expiry
from tests.conftest import NOW, OAUTH_URL, Recorder, form, make_settings, token_response


@pytest.fixture
def oauth():
    return Recorder(lambda request: token_response())


@pytest.fixture
async def http_client(oauth):
    client = oauth.client()
    yield client
    await client.aclose()


@pytest.fixture
def manager(store, http_client, settings, cipher, clock):
    return TokenManager(store, http_client, settings, cipher, clock=clock)


async def _ready_with(manager, expires_in):
    await manager.store_token_pair("old-access", "old-refresh", expires_in=expires_in)
    return await manager.initialize()


# ============================================================================
# INITIALIZATION / READY GATE
# ============================================================================

async def test_seeds_from_bootstrap_credentials(store, http_client, cipher, clock):
    settings = make_settings(procore_init_token="boot-access", procore_init_refresh_token="boot-refresh")
    manager = TokenManager(store, http_client, settings, cipher, clock=clock)

    token = await manager.initialize()

    assert token.access_token == "boot-access"
    assert token.expires_at == NOW + settings.bootstrap_token_ttl
    assert manager.is_ready

    row = await store.get(Table.TOKENS, "admin")
    assert row["access_token"] != "boot-access"
    assert cipher.decrypt(row["access_token"]) == "boot-access"
    assert cipher.decrypt(row["refresh_token"]) == "boot-refresh"


async def test_stored_token_wins_over_bootstrap(store, http_client, cipher, clock):
    settings = make_settings(procore_init_token="boot-access", procore_init_refresh_token="boot-refresh")
    first = TokenManager(store, http_client, settings, cipher, clock=clock)
    await first.store_token_pair("stored-access", "stored-refresh", expires_in=3600)

    second = TokenManager(store, http_client, settings, cipher, clock=clock)
    token = await second.initialize()
    assert token.access_token == "stored-access"
    assert token.expires_at == NOW + 3600


async def test_missing_bootstrap_fails_closed(manager):
    with pytest.raises(BootstrapCredentialsMissingError):
        await manager.initialize()

    assert not manager.is_ready
    with pytest.raises(TokenUnavailableError):
        await manager.wait_until_ready()
    with pytest.raises(TokenUnavailableError):
        await manager.initialize()


async def test_gate_timeout_resolves_unavailable(manager):
    with pytest.raises(TokenUnavailableError):
        await manager.wait_until_ready(timeout=0.01)

    # The gate resolves once: a late initialize cannot reopen it
    with pytest.raises(TokenUnavailableError):
        await manager.initialize()


async def test_waiters_released_when_initialize_completes(manager):
    await manager.store_token_pair("old-access", "old-refresh", expires_in=3600)

    waiter = asyncio.create_task(manager.wait_until_ready(timeout=1.0))
    await asyncio.sleep(0)
    await manager.initialize()

    assert (await waiter).access_token == "old-access"


# ============================================================================
# REFRESH
# ============================================================================

async def test_token_inside_buffer_is_refreshed(manager, oauth, store, cipher):
    await _ready_with(manager, expires_in=100)

    token = await manager.get_valid_token()

    assert token.access_token == "new-access"
    assert token.refresh_token == "new-refresh"
    assert token.expires_at == NOW + 7200
    [request] = oauth.requests
    assert str(request.url) == f"{OAUTH_URL}/oauth/token"
    assert form(request) == {
        "grant_type": "refresh_token",
        "refresh_token": "old-refresh",
        "client_id": "client-id",
        "client_secret": "client-secret",
    }

    row = await store.get(Table.TOKENS, "admin")
    assert cipher.decrypt(row["access_token"]) == "new-access"
    assert row["version"] == 2


async def test_token_outside_buffer_is_returned_unchanged(manager, oauth):
    seeded = await _ready_with(manager, expires_in=1000)

    assert await manager.get_valid_token() == seeded
    assert oauth.requests == []


async def test_failed_refresh_keeps_previous_token(manager, oauth, store, cipher):
    seeded = await _ready_with(manager, expires_in=100)
    oauth.respond = lambda request: httpx.Response(400, json={"error": "invalid_grant"})

    with pytest.raises(TokenRefreshError) as exc_info:
        await manager.get_valid_token()

    assert exc_info.value.status_code == 400
    assert manager.current == seeded
    row = await store.get(Table.TOKENS, "admin")
    assert cipher.decrypt(row["access_token"]) == "old-access"


async def test_response_without_access_token_is_rejected(manager, oauth):
    await _ready_with(manager, expires_in=100)
    oauth.respond = lambda request: httpx.Response(200, json={"refresh_token": "x"})

    with pytest.raises(TokenRefreshError):
        await manager.refresh()


async def test_missing_refresh_token_in_response_keeps_old_one(manager, oauth):
    await _ready_with(manager, expires_in=100)
    oauth.respond = lambda request: httpx.Response(200, json={"access_token": "new-access", "expires_in": 60})

    token = await manager.refresh()
    assert token.refresh_token == "old-refresh"


async def test_expiry_falls_back_to_jwt_exp_claim(manager, oauth):
    await _ready_with(manager, expires_in=100)
    access = jwt.encode({"exp": int(NOW + 5000)}, "test-signing-key-" * 4, algorithm="HS256")
    oauth.respond = lambda request: httpx.Response(200, json={"access_token": access, "refresh_token": "r"})

    token = await manager.refresh()
    assert token.expires_at == NOW + 5000
    assert decode_jwt_expiry("not-a-jwt") is None


async def test_concurrent_callers_share_one_refresh(manager, oauth):
    await _ready_with(manager, expires_in=100)

    tokens = await asyncio.gather(*(manager.get_valid_token() for _ in range(5)))

    assert len(oauth.requests) == 1
    assert {t.access_token for t in tokens} == {"new-access"}


async def test_force_refresh_skips_when_token_already_replaced(manager, oauth):
    await _ready_with(manager, expires_in=3600)
    await manager.refresh()
    assert len(oauth.requests) == 1

    token = await manager.force_refresh("old-access")

    assert token.access_token == "new-access"
    assert len(oauth.requests) == 1


async def test_short_lived_grant_is_returned_after_one_refresh(manager, oauth, caplog):
    await _ready_with(manager, expires_in=100)
    oauth.respond = lambda request: token_response(expires_in=60)

    with caplog.at_level("WARNING", logger="hbsync.services.sync.oauth"):
        token = await manager.get_valid_token()

    assert token.access_token == "new-access"
    assert token.expires_at == NOW + 60
    assert len(oauth.requests) == 1
    assert any("buffer" in r.getMessage() for r in caplog.records)


async def test_unknown_expiry_always_needs_refresh(manager):
    token = await _ready_with(manager, expires_in=3600)
    assert manager.needs_refresh(token.model_copy(update={"expires_at": None}))


async def test_refresh_happens_once_the_clock_enters_the_buffer(manager, oauth, clock):
    seeded = await _ready_with(manager, expires_in=1000)
    assert await manager.get_valid_token() == seeded

    clock.advance(800)
    token = await manager.get_valid_token()

    assert token.access_token == "new-access"
    assert len(oauth.requests) == 1
