"""
Circuit Breakers and Retry Logic
Back-off for transient Procore failures (429 rate limits, 5xx errors)

401/403/404 are never retried here; the fetcher owns the 401 refresh-and-retry.
"""
import logging

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from hbsync.core.exceptions import ProcoreRateLimitError, ProcoreServerError

logger = logging.getLogger(__name__)


# ============================================================================
# PROCORE BACK-OFF
# ============================================================================

def _wait_retry_after(backoff: float):
    """Exponential back-off that honours a 429 Retry-After header."""
    exponential = wait_exponential(multiplier=backoff, min=backoff, max=backoff * 16)

    def wait(retry_state) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, ProcoreRateLimitError) and exc.retry_after is not None:
            return exc.retry_after
        return exponential(retry_state)

    return wait


def procore_retrying(max_attempts: int = 3, backoff: float = 1.0) -> AsyncRetrying:
    """
    Retry controller for a single Procore request.

    Retries on:
    - Rate limit errors (429), waiting Retry-After when given
    - Server errors (5xx)

    Usage:
        async for attempt in procore_retrying(3, 1.0):
            with attempt:
                response = await send()
    """
    return AsyncRetrying(
        retry=retry_if_exception_type((ProcoreRateLimitError, ProcoreServerError)),
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=_wait_retry_after(backoff),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


# ============================================================================
# GENERIC RETRY
# ============================================================================

def with_retry(max_attempts=3, min_wait=1, max_wait=10):
    """
    Retry decorator for sync or async callables (tenacity picks the wrapper).

    Usage:
        @with_retry(max_attempts=2, min_wait=0, max_wait=0)
        async def refresh():
            ...
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
