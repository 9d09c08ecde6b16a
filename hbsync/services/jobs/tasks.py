"""
Dramatiq Background Tasks
Runs Procore syncs out of the request path
"""
import asyncio
import logging
from typing import List, Optional

import dramatiq

from hbsync.services.jobs.broker import broker  # noqa: F401  (registers the broker before actors)

logger = logging.getLogger(__name__)


async def _run_sync_with_cleanup(kinds: Optional[List[str]] = None) -> dict:
    """
    Build fresh dependencies, run one sync, and close everything in the same
    event loop. Dramatiq workers run in separate processes, so nothing is
    shared with the API process.
    """
    from hbsync.core.config import get_settings
    from hbsync.core.dependencies import build_container, close_container

    container = await build_container(get_settings(), start_background=False)
    try:
        result = await container.orchestrator.run(kinds)
        return result.model_dump(mode="json")
    finally:
        await close_container(container)


@dramatiq.actor(max_retries=3)
def sync_procore_task(kinds: Optional[List[str]] = None):
    """
    Background job for a Procore sync.

    Args:
        kinds: Subset of resource kinds (default: all)
    """
    logger.info(f"🚀 Starting Procore sync job (kinds={kinds or 'all'})")
    try:
        result = asyncio.run(_run_sync_with_cleanup(kinds))
    except Exception as e:
        # Re-raised so dramatiq's Retries middleware applies
        logger.error(f"❌ Procore sync job failed: {e}", exc_info=True)
        raise
    logger.info(f"✅ Procore sync job complete: {result.get('status')}")
    return result
