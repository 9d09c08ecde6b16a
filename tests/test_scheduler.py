"""
Sync scheduler and background token refresher
"""
import asyncio

import pytest

from hbsync.core.exceptions import SyncAlreadyRunningError, TokenRefreshError
from hbsync.models.schemas import Token
from hbsync.services.store import Table
from hbsync.services.sync.oauth import MIN_REFRESH_INTERVAL, TokenRefresher
from hbsync.services.sync.scheduler import DAILY_JOB_ID, INITIAL_JOB_ID, SyncScheduler
from tests.conftest import NOW, make_settings


class StubOrchestrator:
    def __init__(self, error=None):
        self.error = error
        self.runs = 0

    async def run(self, kinds=None):
        self.runs += 1
        if self.error:
            raise self.error
        return "result"


# ============================================================================
# SCHEDULER
# ============================================================================

async def test_scheduled_run_logs_counts_and_returns_result(store, settings):
    await store.upsert_entity(Table.USERS, {"id": 1})
    scheduler = SyncScheduler(StubOrchestrator(), store, settings)

    assert await scheduler.run_scheduled() == "result"
    counts = await scheduler.post_sync_counts()
    assert counts["users"] == 1
    assert counts["projects"] == 0


@pytest.mark.parametrize("error", [RuntimeError("remote down"), SyncAlreadyRunningError("busy")])
async def test_scheduled_run_never_raises(store, settings, error):
    orchestrator = StubOrchestrator(error)
    scheduler = SyncScheduler(orchestrator, store, settings)

    assert await scheduler.run_scheduled() is None
    assert orchestrator.runs == 1


async def test_start_registers_daily_job(store):
    settings = make_settings(sync_cron_hour=2, sync_cron_minute=30)
    scheduler = SyncScheduler(StubOrchestrator(), store, settings)

    scheduler.start(run_immediately=False)
    try:
        assert scheduler.running
        daily = scheduler.scheduler.get_job(DAILY_JOB_ID)
        assert str(daily.trigger.fields[5]) == "2"
        assert str(daily.trigger.fields[6]) == "30"
        assert scheduler.scheduler.get_job(INITIAL_JOB_ID) is None
    finally:
        scheduler.shutdown()
    assert not scheduler.running


async def test_start_runs_a_sync_immediately(store, settings):
    orchestrator = StubOrchestrator()
    scheduler = SyncScheduler(orchestrator, store, settings)

    scheduler.start(run_immediately=True)
    try:
        for _ in range(50):
            if orchestrator.runs:
                break
            await asyncio.sleep(0.02)
        # let the job finish its post-sync counts
        await asyncio.sleep(0.1)
    finally:
        scheduler.shutdown()
    assert orchestrator.runs == 1


# ============================================================================
# TOKEN REFRESHER
# ============================================================================

class StubTokenManager:
    def __init__(self, expires_at=None, failures=0):
        self.current = Token(owner_id="admin", access_token="a", refresh_token="r", expires_at=expires_at)
        self.failures = failures
        self.refreshes = 0
        self.is_ready = True

    def clock(self):
        return NOW

    async def refresh(self):
        self.refreshes += 1
        if self.refreshes <= self.failures:
            raise TokenRefreshError("rejected", status_code=400)
        return self.current


def test_next_delay_targets_buffer_before_expiry(settings):
    refresher = TokenRefresher(StubTokenManager(expires_at=NOW + 3600), settings)
    assert refresher.next_delay(last_cycle_failed=False) == 3600 - settings.token_refresh_buffer


def test_next_delay_has_a_floor_and_a_failure_delay():
    settings = make_settings(token_retry_delay=60)
    refresher = TokenRefresher(StubTokenManager(expires_at=NOW + 10), settings)
    assert refresher.next_delay(last_cycle_failed=False) == MIN_REFRESH_INTERVAL
    assert refresher.next_delay(last_cycle_failed=True) == 60


async def test_refresh_cycle_retries_once_then_succeeds(settings):
    manager = StubTokenManager(expires_at=NOW + 100, failures=1)
    refresher = TokenRefresher(manager, settings)

    assert await refresher.refresh_cycle() is True
    assert manager.refreshes == 2
    assert refresher.failures == 0


async def test_refresh_cycle_swallows_repeated_failure(settings):
    manager = StubTokenManager(expires_at=NOW + 100, failures=5)
    refresher = TokenRefresher(manager, settings)

    assert await refresher.refresh_cycle() is False
    assert manager.refreshes == 2
    assert refresher.failures == 1


async def test_loop_keeps_rescheduling_after_failures(settings):
    manager = StubTokenManager(expires_at=NOW + 100, failures=100)
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)
        if len(sleeps) >= 3:
            raise _Stop()

    refresher = TokenRefresher(manager, settings, sleep=fake_sleep)
    with pytest.raises(_Stop):
        await refresher._run()

    # First delay from expiry, then the failure delay each time
    assert sleeps == [MIN_REFRESH_INTERVAL, settings.token_retry_delay, settings.token_retry_delay]
    assert refresher.cycles == 2


async def test_start_and_stop(settings):
    refresher = TokenRefresher(StubTokenManager(expires_at=NOW + 3600), settings)
    refresher.start()
    assert refresher.running
    await refresher.stop()
    assert not refresher.running


class _Stop(Exception):
    pass
