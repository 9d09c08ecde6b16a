"""
Dramatiq Background Worker
Processes Procore sync jobs queued by the control API

Usage:
    dramatiq worker -p 2 -t 1

Environment: same as the API process (CLIENT_ID, ENCRYPTION_KEY, REDIS_URL, ...)
"""
import logging

from hbsync.core.config import get_settings
from hbsync.core.logging import configure_logging, init_sentry

settings = get_settings()
configure_logging(settings, process_tag="worker")
init_sentry(settings)

logger = logging.getLogger(__name__)

# Import tasks (this registers them with Dramatiq)
try:
    from hbsync.services.jobs.broker import broker  # noqa: F401
    from hbsync.services.jobs.tasks import sync_procore_task  # noqa: F401

    logger.info("✅ HB Report Sync worker initialized")
    logger.info("📋 Registered tasks: sync_procore")

except Exception as e:
    logger.error(f"❌ Failed to initialize worker: {e}", exc_info=True)
    raise

# This module is imported by Dramatiq CLI
# Dramatiq will find the broker and tasks automatically
