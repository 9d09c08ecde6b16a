"""
History Schemas
Archival snapshots of rows as they were before an update
"""
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

# Bump when the envelope layout changes; decoders keep reading older formats.
SNAPSHOT_FORMAT = 1


class SnapshotEnvelope(BaseModel):
    """
    Serialized form stored in history.data.

    Tagged by table so a row remains decodable after its table's columns change.
    """
    format: int = SNAPSHOT_FORMAT
    table: str
    row: Dict[str, Any]


class HistorySnapshot(BaseModel):
    """Decoded history row."""
    id: int
    entity_type: str
    entity_id: str
    version: int
    superseded_at: Optional[datetime] = None
    format: int = SNAPSHOT_FORMAT
    data: Dict[str, Any] = Field(default_factory=dict)
