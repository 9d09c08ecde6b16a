"""
Pydantic Schemas
Domain models and request/response models for API endpoints
"""

# Health check schemas
from .health import HealthResponse

# History schemas
from .history import SNAPSHOT_FORMAT, HistorySnapshot, SnapshotEnvelope

# Sync schemas
from .sync import KindResult, SyncRunRequest, SyncRunResult, SyncState, SyncStatusResponse

# Token schemas
from .token import Token

__all__ = [
    # Health
    "HealthResponse",
    # History
    "SNAPSHOT_FORMAT",
    "HistorySnapshot",
    "SnapshotEnvelope",
    # Sync
    "KindResult",
    "SyncRunRequest",
    "SyncRunResult",
    "SyncState",
    "SyncStatusResponse",
    # Token
    "Token",
]
