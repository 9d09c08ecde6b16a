"""
Procore Sync System
Token management, remote fetching, mapping and orchestration
"""
from hbsync.services.sync.mapping import map_record, map_records
from hbsync.services.sync.oauth import TokenManager, TokenRefresher
from hbsync.services.sync.orchestration.procore_sync import ResourceKind, SyncOrchestrator, default_kinds
from hbsync.services.sync.providers.procore import ProcoreClient
from hbsync.services.sync.scheduler import SyncScheduler

__all__ = [
    "map_record",
    "map_records",
    "TokenManager",
    "TokenRefresher",
    "ResourceKind",
    "SyncOrchestrator",
    "default_kinds",
    "ProcoreClient",
    "SyncScheduler",
]
