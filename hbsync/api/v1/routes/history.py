"""
History Routes
Archived row versions from the versioned store
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from hbsync.core.dependencies import get_store
from hbsync.core.exceptions import HistoryDecodeError, UnknownTableError
from hbsync.models.schemas import HistorySnapshot
from hbsync.services.store import VersionedStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/history", tags=["history"])


@router.get("/{table}/{entity_id}", response_model=List[HistorySnapshot])
async def get_history(table: str, entity_id: str, store: VersionedStore = Depends(get_store)):
    """Snapshots of one row, oldest first. Empty when the row was never updated."""
    try:
        return await store.get_history(table, entity_id)
    except UnknownTableError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except HistoryDecodeError as e:
        logger.error(f"❌ {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
