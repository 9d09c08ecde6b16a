"""
Sync Routes
Trigger Procore syncs and inspect the orchestrator
"""
import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, status

from hbsync.core.dependencies import get_orchestrator
from hbsync.core.exceptions import ProcoreAPIError, SyncAlreadyRunningError, TokenError
from hbsync.core.security import verify_api_key
from hbsync.models.schemas import SyncRunRequest, SyncRunResult, SyncStatusResponse
from hbsync.services.jobs.broker import broker_accepts_jobs
from hbsync.services.jobs.tasks import sync_procore_task
from hbsync.services.sync.orchestration.procore_sync import SyncOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


def _requested_kinds(orchestrator: SyncOrchestrator, body: Optional[SyncRunRequest]):
    kinds = body.kinds if body else None
    try:
        orchestrator.select_kinds(kinds)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return kinds


@router.post("/run", response_model=SyncRunResult, dependencies=[Depends(verify_api_key)])
async def run_sync(
    body: Optional[SyncRunRequest] = None,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """
    Run a sync now and wait for the result.

    409 while another run is in progress; 502 when Procore or the token
    endpoint fails (the failing kind has been rolled back).
    """
    kinds = _requested_kinds(orchestrator, body)
    logger.info(f"Manual sync requested (kinds={kinds or 'all'})")

    try:
        return await orchestrator.run(kinds)
    except SyncAlreadyRunningError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except (ProcoreAPIError, TokenError, httpx.HTTPError) as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Sync failed for {orchestrator.last_result.failed_kind}: {e}",
        )


@router.post("/enqueue", status_code=status.HTTP_202_ACCEPTED, dependencies=[Depends(verify_api_key)])
async def enqueue_sync(
    body: Optional[SyncRunRequest] = None,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """
    Queue a sync on the dramatiq worker instead of running it in this process.

    503 when no Redis broker is configured: nothing would ever consume the job.
    """
    kinds = _requested_kinds(orchestrator, body)
    if not broker_accepts_jobs():
        logger.warning("⚠️  Refusing to enqueue sync: REDIS_URL not set, no worker can pick it up")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job queue unavailable: REDIS_URL is not configured",
        )
    message = sync_procore_task.send(kinds)
    logger.info(f"📋 Queued Procore sync job {message.message_id} (kinds={kinds or 'all'})")
    return {"status": "queued", "message_id": message.message_id}


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Current orchestrator state and the last run's result."""
    return SyncStatusResponse(
        state=orchestrator.state,
        running=orchestrator.running,
        last_result=orchestrator.last_result,
    )
