"""
Artifact persistence
Idempotent storage of canonical artifacts, keyed by (contact, external id, kind)
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Set

from postgrest.exceptions import APIError
from supabase import Client

from artifact_sync.services.preprocessing.text import strip_null_bytes_from_dict
from artifact_sync.services.sync.errors import PersistenceError
from artifact_sync.services.sync.models import ArtifactKind, CanonicalArtifact, UpsertOutcome

logger = logging.getLogger(__name__)

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"
LOOKUP_BATCH_SIZE = 1000


class ArtifactUpsertSink(ABC):
    """
    Storage contract for canonical artifacts.

    upsert() must be safe to call repeatedly with the same artifact: the
    second call updates the stored row instead of inserting another.
    """

    @abstractmethod
    async def upsert(self, artifact: CanonicalArtifact) -> UpsertOutcome:
        ...

    @abstractmethod
    async def lookup_known_ids(self, owner_contact_id: str, artifact_kind: ArtifactKind) -> Set[str]:
        ...


def artifact_row(artifact: CanonicalArtifact) -> Dict[str, Any]:
    """Column mapping for the `artifacts` table."""
    row = {
        "user_id": artifact.owner_user_id,
        "contact_id": artifact.owner_contact_id,
        "type": artifact.artifact_kind.value,
        "external_id": artifact.external_id,
        "content": artifact.content_summary,
        "metadata": artifact.provider_metadata.model_dump(mode="json"),
        "timestamp": artifact.occurred_at.isoformat(),
        "sync_source": artifact.sync_source,
        "last_synced_at": artifact.last_synced_at.isoformat(),
    }
    # PostgreSQL rejects \u0000 in TEXT/JSONB
    return strip_null_bytes_from_dict(row)


class SupabaseArtifactSink(ArtifactUpsertSink):
    """
    Artifacts in the Supabase `artifacts` table.

    Requires a unique constraint on (contact_id, external_id, type). Lookup
    then insert-or-update; an insert that loses a race against another writer
    hits the constraint and is retried as an update.
    """

    table = "artifacts"

    def __init__(self, supabase: Client):
        self.supabase = supabase

    def _find_existing(self, artifact: CanonicalArtifact):
        result = self.supabase.table(self.table)\
            .select("id")\
            .eq("contact_id", artifact.owner_contact_id)\
            .eq("external_id", artifact.external_id)\
            .eq("type", artifact.artifact_kind.value)\
            .limit(1)\
            .execute()
        return result.data[0]["id"] if result.data else None

    def _update(self, row_id: Any, row: Dict[str, Any]) -> None:
        # Enrichment state is owned downstream; an update never resets it
        self.supabase.table(self.table).update(row).eq("id", row_id).execute()

    async def upsert(self, artifact: CanonicalArtifact) -> UpsertOutcome:
        row = artifact_row(artifact)
        try:
            existing_id = self._find_existing(artifact)
            if existing_id is not None:
                self._update(existing_id, row)
                return UpsertOutcome.UPDATED

            try:
                self.supabase.table(self.table).insert({**row, "ai_parsing_status": "pending"}).execute()
                return UpsertOutcome.CREATED
            except APIError as e:
                if e.code != UNIQUE_VIOLATION:
                    raise
                logger.debug(f"Concurrent insert for {artifact.external_id}, updating instead")
                existing_id = self._find_existing(artifact)
                if existing_id is None:
                    raise
                self._update(existing_id, row)
                return UpsertOutcome.UPDATED

        except Exception as e:
            logger.error(f"❌ Failed to store {artifact.artifact_kind.value} {artifact.external_id}: {e}")
            raise PersistenceError(f"upsert failed for {artifact.external_id}: {e}") from e

    async def lookup_known_ids(self, owner_contact_id: str, artifact_kind: ArtifactKind) -> Set[str]:
        known: Set[str] = set()
        offset = 0
        try:
            while True:
                result = self.supabase.table(self.table)\
                    .select("external_id")\
                    .eq("contact_id", owner_contact_id)\
                    .eq("type", artifact_kind.value)\
                    .range(offset, offset + LOOKUP_BATCH_SIZE - 1)\
                    .execute()
                rows = result.data or []
                known.update(row["external_id"] for row in rows if row.get("external_id"))
                if len(rows) < LOOKUP_BATCH_SIZE:
                    break
                offset += LOOKUP_BATCH_SIZE
        except Exception as e:
            logger.error(f"Failed to load known {artifact_kind.value} ids for contact {owner_contact_id}: {e}")
            raise PersistenceError(f"known id lookup failed: {e}") from e

        logger.info(f"📚 {len(known)} known {artifact_kind.value} artifacts for contact {owner_contact_id}")
        return known
