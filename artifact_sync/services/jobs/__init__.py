"""
Background Job Queue
Dramatiq-based async task processing
"""
from artifact_sync.services.jobs.broker import broker
from artifact_sync.services.jobs.tasks import sync_contact_task

__all__ = ["broker", "sync_contact_task"]
