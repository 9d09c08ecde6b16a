"""
Sync Schemas
Models for sync runs, their state and results
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class SyncState(str, Enum):
    """Lifecycle of one sync run."""
    IDLE = "idle"
    FETCHING_TOKEN = "fetching_token"
    FETCHING_REMOTE = "fetching_remote"
    MAPPING = "mapping"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


class KindResult(BaseModel):
    """Outcome for one resource kind."""
    kind: str
    fetched: int = 0
    mapped: int = 0
    skipped: int = 0
    persisted: int = 0


class SyncRunResult(BaseModel):
    """
    Result of one orchestrator run.
    On failure, `kinds` holds the kinds committed before the failing one.
    """
    status: str  # "success", "failed"
    started_at: datetime
    finished_at: Optional[datetime] = None
    kinds: List[KindResult] = []
    failed_kind: Optional[str] = None
    error: Optional[str] = None


class SyncRunRequest(BaseModel):
    """Body of POST /sync/run."""
    kinds: Optional[List[str]] = Field(default=None, description="Subset of resource kinds; all when omitted")


class SyncStatusResponse(BaseModel):
    state: SyncState
    running: bool
    last_result: Optional[SyncRunResult] = None
