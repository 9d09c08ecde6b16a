"""
Dramatiq Broker Configuration
Redis broker when REDIS_URL is set (environment or .env), an in-process stub broker otherwise

The stub broker has no worker behind it: it keeps the actors importable for the
API and tests, but jobs sent to it never run, so callers check broker_accepts_jobs().
"""
import logging

import dramatiq
from dramatiq.brokers.stub import StubBroker
from dramatiq.middleware import AgeLimit, Callbacks, Pipelines, Retries, ShutdownNotifications

from hbsync.core.config import get_broker_settings

logger = logging.getLogger(__name__)

REDIS_URL = get_broker_settings().redis_url


def _middleware():
    # TimeLimit excluded: a sync run is bounded by its own HTTP timeouts
    return [
        AgeLimit(),
        Retries(max_retries=3),
        Callbacks(),
        Pipelines(),
        ShutdownNotifications(),
    ]


if REDIS_URL:
    from dramatiq.brokers.redis import RedisBroker

    broker = RedisBroker(url=REDIS_URL, middleware=_middleware())
    logger.info(f"✅ Redis broker initialized: {REDIS_URL[:20]}...")
else:
    logger.warning("⚠️  REDIS_URL not set - using in-process stub broker, queued jobs will not run")
    broker = StubBroker(middleware=_middleware())

dramatiq.set_broker(broker)


def broker_accepts_jobs() -> bool:
    """True when sent messages reach a real queue a worker consumes."""
    return not isinstance(broker, StubBroker)
