"""
Dependency Injection
Builds the service graph once per process and exposes it to FastAPI routes

SERVICES:
- HTTP client (Procore API + OAuth token endpoint)
- Versioned store (migrated, lookups seeded)
- Token manager + background refresher
- Procore client, sync orchestrator, daily scheduler

Nothing here is a module-level singleton: the API lifespan, the CLI and the
dramatiq worker each build their own container and pass it explicitly.
"""
import logging
from typing import Optional

import httpx
from fastapi import Request

from hbsync.core.config import Settings
from hbsync.core.security import TokenCipher
from hbsync.services.store import VersionedStore, apply_migrations, initialize_lookups, insert_test_data
from hbsync.services.sync.oauth import TokenManager, TokenRefresher
from hbsync.services.sync.orchestration.procore_sync import SyncOrchestrator
from hbsync.services.sync.providers.procore import ProcoreClient
from hbsync.services.sync.scheduler import SyncScheduler

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Every long-lived service of one process."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        store: VersionedStore,
        cipher: TokenCipher,
        token_manager: TokenManager,
        procore_client: ProcoreClient,
        orchestrator: SyncOrchestrator,
        owns_http_client: bool = True,
        owns_store: bool = True,
    ):
        self.settings = settings
        self.http_client = http_client
        self.store = store
        self.cipher = cipher
        self.token_manager = token_manager
        self.procore_client = procore_client
        self.orchestrator = orchestrator
        self.refresher: Optional[TokenRefresher] = None
        self.scheduler: Optional[SyncScheduler] = None
        self.owns_http_client = owns_http_client
        self.owns_store = owns_store

    def start_background(self, run_immediately: bool = True) -> None:
        """Start the token refresher and the sync scheduler."""
        self.refresher = TokenRefresher(self.token_manager, self.settings)
        self.refresher.start()
        self.scheduler = SyncScheduler(self.orchestrator, self.store, self.settings)
        self.scheduler.start(run_immediately=run_immediately)


def create_http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.procore_request_timeout),
        limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
    )


# ============================================================================
# INITIALIZATION (called on startup)
# ============================================================================

async def build_container(
    settings: Settings,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
    store: Optional[VersionedStore] = None,
    initialize_token: bool = True,
    start_background: bool = True,
    seed_test_data: bool = False,
) -> ServiceContainer:
    """
    Build and start the service graph.

    Args:
        settings: Validated settings
        http_client: Injected client (tests); created and owned otherwise
        store: Injected store (tests); opened from DATABASE_URL and owned otherwise
        initialize_token: Load or seed the system token now
        start_background: Start the token refresher and sync scheduler
        seed_test_data: Insert the development data set

    Raises:
        Any startup failure, after releasing what was already opened
    """
    logger.info("Initializing services...")

    owns_http_client = http_client is None
    owns_store = store is None
    http_client = http_client or create_http_client(settings)

    try:
        if store is None:
            store = await VersionedStore.open(settings.database_url)
        logger.info(f"✅ Store opened ({store.dialect})")

        await apply_migrations(store)
        await initialize_lookups(store)
        if seed_test_data:
            await insert_test_data(store)

        cipher = TokenCipher.from_settings(settings)
        token_manager = TokenManager(store, http_client, settings, cipher)
        procore_client = ProcoreClient(http_client, token_manager, settings)
        orchestrator = SyncOrchestrator(store, token_manager, procore_client, settings)

        container = ServiceContainer(
            settings=settings,
            http_client=http_client,
            store=store,
            cipher=cipher,
            token_manager=token_manager,
            procore_client=procore_client,
            orchestrator=orchestrator,
            owns_http_client=owns_http_client,
            owns_store=owns_store,
        )

        if initialize_token:
            await token_manager.initialize()
        if start_background:
            container.start_background()
    except Exception as e:
        logger.error(f"❌ Failed to initialize services: {e}")
        if owns_http_client:
            await http_client.aclose()
        if owns_store and store is not None:
            await store.close()
        raise

    logger.info("✅ All services initialized successfully")
    return container


async def close_container(container: ServiceContainer) -> None:
    """Stop background work and release owned resources."""
    logger.info("Shutting down services...")

    if container.scheduler:
        container.scheduler.shutdown()
    if container.refresher:
        await container.refresher.stop()
    if container.owns_http_client:
        await container.http_client.aclose()
    if container.owns_store:
        await container.store.close()

    logger.info("✅ All services shutdown complete")


# ============================================================================
# DEPENDENCY FUNCTIONS (injected into routes)
# ============================================================================

def get_container(request: Request) -> ServiceContainer:
    """
    Service container built by the app lifespan.

    Usage:
        @router.get("/example")
        async def example(container: ServiceContainer = Depends(get_container)):
            ...
    """
    container = getattr(request.app.state, "container", None)
    if container is None:
        logger.error("Service container not initialized")
        raise RuntimeError("Service container not initialized. Is the app lifespan running?")
    return container


def get_app_settings(request: Request) -> Settings:
    return get_container(request).settings


def get_store(request: Request) -> VersionedStore:
    return get_container(request).store


def get_orchestrator(request: Request) -> SyncOrchestrator:
    return get_container(request).orchestrator


def get_token_manager(request: Request) -> TokenManager:
    return get_container(request).token_manager
