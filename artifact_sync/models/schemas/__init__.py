"""
Pydantic Schemas
All request/response models for API endpoints
"""

# Health check schemas
from .health import HealthResponse

# Sync schemas
from .sync import SyncRequest, SyncResponse, SyncStateResponse

__all__ = [
    # Health
    "HealthResponse",
    # Sync
    "SyncRequest",
    "SyncResponse",
    "SyncStateResponse",
]
