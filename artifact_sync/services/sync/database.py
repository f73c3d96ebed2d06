"""
Database helpers for the sync engine
Credential storage and persisted per-provider sync state

One engine serves every caller; what differs is only which store it is
handed, so the stores are small interfaces with a Supabase implementation.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from supabase import Client

from artifact_sync.services.sync.errors import PersistenceError
from artifact_sync.services.sync.models import Credential, SyncProgress, SyncState

logger = logging.getLogger(__name__)


# ============================================================================
# CREDENTIAL STORE
# ============================================================================

class CredentialStore(ABC):
    """Owns provider grants. At most one live credential per (user, provider)."""

    @abstractmethod
    async def load(self, user_id: str, provider: str) -> Optional[Credential]:
        ...

    @abstractmethod
    async def save(self, credential: Credential) -> None:
        ...

    @abstractmethod
    async def delete(self, user_id: str, provider: str) -> None:
        """Remove the grant. A missing row is not an error."""
        ...


class SupabaseCredentialStore(CredentialStore):
    """
    Credentials in the `user_tokens` table.

    Unique key (user_id, provider); save() upserts on it so a refresh
    replaces the previous grant instead of adding a second one.
    """

    table = "user_tokens"

    def __init__(self, supabase: Client):
        self.supabase = supabase

    async def load(self, user_id: str, provider: str) -> Optional[Credential]:
        try:
            result = self.supabase.table(self.table)\
                .select("user_id, provider, access_token, refresh_token, expires_at")\
                .eq("user_id", user_id)\
                .eq("provider", provider)\
                .limit(1)\
                .execute()
        except Exception as e:
            logger.error(f"Failed to load {provider} credential for user {user_id}: {e}")
            raise PersistenceError(f"credential lookup failed: {e}") from e

        if not result.data:
            return None
        return Credential(**result.data[0])

    async def save(self, credential: Credential) -> None:
        payload = {
            "user_id": credential.user_id,
            "provider": credential.provider,
            "access_token": credential.access_token,
            "refresh_token": credential.refresh_token,
            "expires_at": credential.expires_at.isoformat() if credential.expires_at else None,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self.supabase.table(self.table).upsert(payload, on_conflict="user_id,provider").execute()
        except Exception as e:
            logger.error(f"❌ Failed to save {credential.provider} credential for user {credential.user_id}: {e}")
            raise PersistenceError(f"credential save failed: {e}") from e

        logger.info(f"✅ Saved {credential.provider} credential for user {credential.user_id}")

    async def delete(self, user_id: str, provider: str) -> None:
        try:
            self.supabase.table(self.table)\
                .delete()\
                .eq("user_id", user_id)\
                .eq("provider", provider)\
                .execute()
        except Exception as e:
            logger.error(f"❌ Failed to delete {provider} credential for user {user_id}: {e}")
            raise PersistenceError(f"credential delete failed: {e}") from e

        logger.info(f"🗑️  Deleted {provider} credential for user {user_id}")


# ============================================================================
# SYNC STATE
# ============================================================================

class SyncStateStore(ABC):
    """Summary of the most recent run per (user, provider), independent of live runs."""

    @abstractmethod
    async def get(self, user_id: str, provider: str) -> Optional[SyncState]:
        ...

    @abstractmethod
    async def save(self, state: SyncState) -> None:
        ...


class SupabaseSyncStateStore(SyncStateStore):
    """Sync state in the `sync_state` table, unique on (user_id, provider)."""

    table = "sync_state"

    def __init__(self, supabase: Client):
        self.supabase = supabase

    async def get(self, user_id: str, provider: str) -> Optional[SyncState]:
        try:
            result = self.supabase.table(self.table)\
                .select("user_id, provider, status, last_synced_at, error_message, last_progress")\
                .eq("user_id", user_id)\
                .eq("provider", provider)\
                .limit(1)\
                .execute()
        except Exception as e:
            logger.error(f"Failed to read sync state for user {user_id} ({provider}): {e}")
            raise PersistenceError(f"sync state lookup failed: {e}") from e

        if not result.data:
            return None
        return SyncState(**result.data[0])

    async def save(self, state: SyncState) -> None:
        payload: Dict[str, Any] = {
            "user_id": state.user_id,
            "provider": state.provider,
            "status": state.status,
            "last_synced_at": state.last_synced_at.isoformat() if state.last_synced_at else None,
            "error_message": state.error_message,
            "last_progress": state.last_progress,
        }
        try:
            self.supabase.table(self.table).upsert(payload, on_conflict="user_id,provider").execute()
        except Exception as e:
            logger.error(f"Failed to save sync state for user {state.user_id} ({state.provider}): {e}")
            raise PersistenceError(f"sync state save failed: {e}") from e


def sync_state_from_progress(progress: SyncProgress) -> SyncState:
    """Collapse a finished run into the persisted summary."""
    status = progress.status.value if progress.status else "syncing"
    return SyncState(
        user_id=progress.user_id,
        provider=progress.provider,
        status=status,
        last_synced_at=progress.finished_at,
        error_message=progress.message if progress.errors or status == "failed" else None,
        last_progress=progress.model_dump(mode="json", exclude={"error_details"}),
    )
