"""
Shared fixtures: settings, an in-memory migrated store, a controllable clock
and httpx mock transports standing in for Procore.
"""
from typing import Callable, List
from urllib.parse import parse_qs

import httpx
import pytest

from hbsync.core.config import Settings
from hbsync.core.security import TokenCipher
from hbsync.services.store import VersionedStore, apply_migrations

NOW = 1_750_000_000.0
ENCRYPTION_KEY = "11" * 32
BASE_URL = "https://api.procore.test"
OAUTH_URL = "https://login.procore.test"


def make_settings(**overrides) -> Settings:
    values = dict(
        procore_client_id="client-id",
        procore_client_secret="client-secret",
        procore_company_id="5280",
        procore_base_url=BASE_URL,
        procore_oauth_url=OAUTH_URL,
        encryption_key=ENCRYPTION_KEY,
        database_url="sqlite:///:memory:",
        environment="test",
        procore_page_size=2,
        procore_max_retries=3,
        procore_retry_backoff=0,
        token_retry_delay=0,
        token_ready_timeout=1.0,
        api_key="test-api-key",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Recorder:
    """httpx MockTransport handler that records requests and delegates to `respond`."""

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response]):
        self.respond = respond
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def fresh(response: httpx.Response) -> httpx.Response:
    """Unsent copy of a canned response, so one canned response can be served repeatedly."""
    return httpx.Response(response.status_code, headers=response.headers, content=response.content)


def token_response(access: str = "new-access", refresh: str = "new-refresh", expires_in: int = 7200) -> httpx.Response:
    return httpx.Response(200, json={"access_token": access, "refresh_token": refresh, "expires_in": expires_in})


def form(request: httpx.Request) -> dict:
    """Decoded application/x-www-form-urlencoded body."""
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


# ============================================================================
# FAKE PROCORE
# ============================================================================

USERS = [{"id": 1, "email_address": "pm@hb.test"}, {"email_address": "no-id@hb.test"}, {"id": 2}]
PROJECTS = [
    {"id": 10, "name": "Tower", "active": True, "company": {"id": 5280}},
    {"id": 11, "name": "Annex", "active": False},
]


def procore_data() -> dict:
    return {
        "/rest/v1.3/companies/5280/users": list(USERS),
        "/rest/v1.0/projects": list(PROJECTS),
        "/rest/v1.0/cost_codes": [{"id": 100, "code": "03-300", "name": "Concrete"}],
        "/rest/v1.0/work_order_contracts": [{"id": 200, "title": "Steel", "grand_total": 50}],
        "/rest/v1.0/budget_line_items": [{"id": 300, "cost_code": {"id": 100}, "amount": 75}],
        "/rest/v1.0/change_events": [{"id": 400, "number": "001", "title": "Owner request"}],
    }


class FakeProcore:
    """Serves paged JSON per path (and the token endpoint); a path may map to a fixed httpx.Response."""

    def __init__(self, data):
        self.data = data

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth/token":
            return token_response()
        records = self.data[request.url.path]
        if isinstance(records, httpx.Response):
            return fresh(records)
        page = int(request.url.params.get("page", 1))
        per_page = int(request.url.params.get("per_page", 100))
        return httpx.Response(200, json=records[(page - 1) * per_page: page * per_page])


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(log_dir=str(tmp_path / "logs"))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher(ENCRYPTION_KEY)


@pytest.fixture
async def store():
    store = await VersionedStore.open("sqlite:///:memory:")
    await apply_migrations(store)
    yield store
    await store.close()
