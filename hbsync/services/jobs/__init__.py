"""
Background Job Queue
Dramatiq-based async task processing
"""
from hbsync.services.jobs.tasks import sync_procore_task

__all__ = ["sync_procore_task"]
