"""
Logging Setup
Console + daily rotating file sink, every line tagged with the process role

Format:
    2025-04-04 00:00:00 [INFO] [sync] hbsync.services.sync.orchestration.procore_sync: Synced 42 users

Stacks are appended by logger.exception / exc_info=True.
"""
import logging
import os
from logging.handlers import TimedRotatingFileHandler
from typing import List, Optional

from hbsync.core.config import Settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(process_tag)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_NAME = "hb-sync.log"

# Handlers installed by configure_logging, replaced on reconfiguration
_installed_handlers: List[logging.Handler] = []


class ProcessTagFilter(logging.Filter):
    """Stamps every record with the process role (api, sync, worker, cli)."""

    def __init__(self, process_tag: str):
        super().__init__()
        self.process_tag = process_tag

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "process_tag"):
            record.process_tag = self.process_tag
        return True


def configure_logging(settings: Settings, process_tag: str = "main", log_to_file: bool = True) -> None:
    """
    Configure root logging for a process.

    Args:
        settings: Loaded settings (log_dir, log_level, log_retention_days)
        process_tag: Role stamped on every line
        log_to_file: Disable the rotating file sink (tests, one-off commands)
    """
    root = logging.getLogger()
    for handler in _installed_handlers:
        root.removeHandler(handler)
        handler.close()
    _installed_handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    tag_filter = ProcessTagFilter(process_tag)

    console = logging.StreamHandler()
    console.setLevel(settings.log_level or "INFO")
    console.setFormatter(formatter)
    console.addFilter(tag_filter)
    _installed_handlers.append(console)

    if log_to_file:
        os.makedirs(settings.log_dir, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            os.path.join(settings.log_dir, LOG_FILE_NAME),
            when="midnight",
            backupCount=settings.log_retention_days,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(tag_filter)
        _installed_handlers.append(file_handler)

    for handler in _installed_handlers:
        root.addHandler(handler)
    root.setLevel(logging.DEBUG)

    # Third-party chatter
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"Logger initialized (tag={process_tag}, file={'on' if log_to_file else 'off'}, dir={settings.log_dir})"
    )


def init_sentry(settings: Settings, integrations: Optional[list] = None) -> bool:
    """
    Initialize Sentry error tracking if SENTRY_DSN is configured.

    Returns:
        True when Sentry was initialized
    """
    logger = logging.getLogger(__name__)

    if not settings.sentry_dsn:
        logger.info("ℹ️  Sentry not configured (SENTRY_DSN not set)")
        return False

    import sentry_sdk
    from sentry_sdk.integrations.logging import LoggingIntegration

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        traces_sample_rate=0.1,
        integrations=[
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            *(integrations or []),
        ],
    )
    logger.info("✅ Sentry error tracking initialized")
    return True
