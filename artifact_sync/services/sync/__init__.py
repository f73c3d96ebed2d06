"""
Data Sync System
Incremental sync of external provider data (Gmail, LinkedIn) into contact artifacts
"""
from artifact_sync.services.sync.database import (
    CredentialStore,
    SupabaseCredentialStore,
    SupabaseSyncStateStore,
    SyncStateStore,
)
from artifact_sync.services.sync.dedup import DuplicateGuard
from artifact_sync.services.sync.errors import (
    CredentialInvalid,
    NormalizationError,
    PersistenceError,
    ProviderAuthError,
    ProviderRequestFailed,
    RateLimitExceeded,
    SyncError,
)
from artifact_sync.services.sync.models import SyncMode, SyncProgress, SyncState, SyncStatus, SyncWindow
from artifact_sync.services.sync.oauth import TokenManager
from artifact_sync.services.sync.orchestration.engine import SyncOrchestrator, build_window
from artifact_sync.services.sync.persistence import ArtifactUpsertSink, SupabaseArtifactSink
from artifact_sync.services.sync.transport import RateLimitedTransport

__all__ = [
    "CredentialStore",
    "SupabaseCredentialStore",
    "SyncStateStore",
    "SupabaseSyncStateStore",
    "DuplicateGuard",
    "SyncError",
    "CredentialInvalid",
    "ProviderAuthError",
    "RateLimitExceeded",
    "ProviderRequestFailed",
    "NormalizationError",
    "PersistenceError",
    "SyncMode",
    "SyncProgress",
    "SyncState",
    "SyncStatus",
    "SyncWindow",
    "TokenManager",
    "SyncOrchestrator",
    "build_window",
    "ArtifactUpsertSink",
    "SupabaseArtifactSink",
    "RateLimitedTransport",
]
