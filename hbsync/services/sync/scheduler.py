"""
Sync Scheduler
Runs the orchestrator once at start, then daily (APScheduler cron)

The token refresher runs independently of this cadence.
"""
import logging
from typing import Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from hbsync.core.config import Settings
from hbsync.core.exceptions import SyncAlreadyRunningError
from hbsync.models.schemas import SyncRunResult
from hbsync.services.store import Table, VersionedStore

logger = logging.getLogger(__name__)

DAILY_JOB_ID = "procore_daily_sync"
INITIAL_JOB_ID = "procore_initial_sync"

# Tables counted in the post-sync log line
COUNTED_TABLES = (Table.USERS, Table.PROJECTS, Table.COMMITMENTS, Table.BUDGET, Table.CHANGE_EVENTS)


class SyncScheduler:
    def __init__(self, orchestrator, store: VersionedStore, settings: Settings,
                 scheduler: Optional[AsyncIOScheduler] = None):
        self.orchestrator = orchestrator
        self.store = store
        self.settings = settings
        self.scheduler = scheduler or AsyncIOScheduler()

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self, run_immediately: bool = True) -> None:
        """Register the daily job (and the immediate one) and start the scheduler."""
        hour, minute = self.settings.sync_cron_hour, self.settings.sync_cron_minute
        self.scheduler.add_job(
            self.run_scheduled,
            CronTrigger(hour=hour, minute=minute),
            id=DAILY_JOB_ID,
            name="Daily Procore Sync",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        if run_immediately:
            self.scheduler.add_job(self.run_scheduled, id=INITIAL_JOB_ID, name="Initial Procore Sync",
                                   replace_existing=True)
        self.scheduler.start()
        logger.info(f"✅ Sync scheduler started (daily at {hour:02d}:{minute:02d})")

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler shut down")

    async def run_scheduled(self) -> Optional[SyncRunResult]:
        """
        One scheduled run. Failures are logged, never raised, so the next
        scheduled run still happens.
        """
        try:
            result = await self.orchestrator.run()
        except SyncAlreadyRunningError:
            logger.warning("⚠️  Scheduled sync skipped: a sync is already running")
            return None
        except Exception as e:
            logger.error(f"❌ Scheduled sync failed: {e}", exc_info=True)
            return None

        counts = await self.post_sync_counts()
        logger.info(f"Post-sync counts: {counts}")
        await self.store.checkpoint()
        return result

    async def post_sync_counts(self) -> Dict[str, int]:
        return {table.value: await self.store.count(table) for table in COUNTED_TABLES}
