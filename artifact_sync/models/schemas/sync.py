"""
Sync Schemas
Models for triggering syncs and reading persisted sync state
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from artifact_sync.services.sync.models import SyncMode, SyncProgress


class SyncRequest(BaseModel):
    """
    Request body for POST /api/v1/sync/{provider}.
    query_terms are contact email addresses (gmail) or a LinkedIn username/profile URL (linkedin).
    """
    user_id: str
    contact_id: str
    contact_name: Optional[str] = None
    query_terms: List[str] = Field(min_length=1)
    start_date: Optional[datetime] = None  # Defaults to SYNC_BACKFILL_DAYS ago
    end_date: Optional[datetime] = None
    max_results: Optional[int] = Field(default=None, gt=0)
    mode: SyncMode = SyncMode.REFRESH
    known_ids: List[str] = []
    background: bool = False  # Enqueue as a dramatiq job instead of running inline


class SyncResponse(BaseModel):
    """
    Response for the sync endpoint.
    Inline runs carry the full progress report; background runs only the message id.
    """
    status: str  # "ok", "partial", "failed", "queued"
    provider: str
    message: str
    job_id: Optional[str] = None
    progress: Optional[SyncProgress] = None


class SyncStateResponse(BaseModel):
    """Persisted summary of the latest run for (user, provider)."""
    user_id: str
    provider: str
    status: str  # "never_synced", "syncing", "ok", "partial", "failed"
    last_synced_at: Optional[datetime] = None
    error_message: Optional[str] = None
    last_progress: Optional[Dict[str, Any]] = None
    connected: bool = False  # a credential is on file (always true for API-key providers)
