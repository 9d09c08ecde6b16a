"""
Health Check Routes
System status and diagnostics
"""
import logging

from fastapi import APIRouter, Depends

from hbsync.core.config import APP_VERSION
from hbsync.core.dependencies import ServiceContainer, get_container
from hbsync.models.schemas import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(container: ServiceContainer = Depends(get_container)):
    """
    Health check endpoint.

    "degraded" while the system token is not ready (sync runs would fail).
    """
    token_manager = container.token_manager
    token = token_manager.current
    return HealthResponse(
        status="healthy" if token_manager.is_ready else "degraded",
        version=APP_VERSION,
        database=container.store.dialect,
        schema_version=await container.store.schema_version(),
        token_ready=token_manager.is_ready,
        token_expires_at=token.expires_at if token else None,
    )
