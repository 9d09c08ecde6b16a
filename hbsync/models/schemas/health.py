"""
Health Check Schemas
Models for system health endpoint
"""
from typing import Optional

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    database: str
    schema_version: int
    token_ready: bool
    token_expires_at: Optional[float] = None
