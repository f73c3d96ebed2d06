"""Tests for the Supabase-backed sink and stores."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from postgrest.exceptions import APIError

from artifact_sync.services.sync.database import (
    SupabaseCredentialStore,
    SupabaseSyncStateStore,
    sync_state_from_progress,
)
from artifact_sync.services.sync.errors import PersistenceError
from artifact_sync.services.sync.models import (
    ArtifactKind,
    NormalizationContext,
    RawRecord,
    SyncProgress,
    SyncState,
    SyncStatus,
    UpsertOutcome,
)
from artifact_sync.services.sync.persistence import SupabaseArtifactSink, artifact_row

from fakes import CONTACT_ID, NOW, USER_ID, normalize_test_record


def result(data):
    response = MagicMock()
    response.data = data
    return response


def supabase_returning(*results):
    """Supabase client whose query builder chains to itself and yields results from execute() in order."""
    query = MagicMock()
    for method in ("select", "eq", "limit", "range", "insert", "update", "upsert", "delete"):
        getattr(query, method).return_value = query
    query.execute.side_effect = list(results)
    supabase = MagicMock()
    supabase.table.return_value = query
    return supabase, query


@pytest.fixture
def artifact():
    context = NormalizationContext(owner_user_id=USER_ID, owner_contact_id=CONTACT_ID, synced_at=NOW)
    return normalize_test_record(RawRecord(external_id="m1"), context)


# ============================================================================
# ARTIFACT SINK
# ============================================================================

@pytest.mark.asyncio
async def test_new_artifact_is_inserted_pending_enrichment(artifact):
    supabase, query = supabase_returning(result([]), result([{"id": 1}]))

    outcome = await SupabaseArtifactSink(supabase).upsert(artifact)

    assert outcome == UpsertOutcome.CREATED
    supabase.table.assert_called_with("artifacts")
    row = query.insert.call_args[0][0]
    assert row["ai_parsing_status"] == "pending"
    assert row["external_id"] == "m1"
    assert row["contact_id"] == CONTACT_ID
    assert row["type"] == "email"
    query.update.assert_not_called()


@pytest.mark.asyncio
async def test_existing_artifact_is_updated_in_place(artifact):
    supabase, query = supabase_returning(result([{"id": 7}]), result([{"id": 7}]))

    outcome = await SupabaseArtifactSink(supabase).upsert(artifact)

    assert outcome == UpsertOutcome.UPDATED
    query.insert.assert_not_called()
    assert "ai_parsing_status" not in query.update.call_args[0][0]
    query.eq.assert_any_call("id", 7)


@pytest.mark.asyncio
async def test_lost_insert_race_becomes_update(artifact):
    supabase, query = supabase_returning(
        result([]),
        APIError({"message": "duplicate key value", "code": "23505"}),
        result([{"id": 9}]),
        result([{"id": 9}]),
    )

    outcome = await SupabaseArtifactSink(supabase).upsert(artifact)

    assert outcome == UpsertOutcome.UPDATED
    query.eq.assert_any_call("id", 9)


@pytest.mark.asyncio
async def test_other_database_errors_raise_persistence_error(artifact):
    supabase, _ = supabase_returning(result([]), APIError({"message": "relation does not exist", "code": "42P01"}))

    with pytest.raises(PersistenceError):
        await SupabaseArtifactSink(supabase).upsert(artifact)


@pytest.mark.asyncio
async def test_connection_failure_raises_persistence_error(artifact):
    supabase, _ = supabase_returning(ConnectionError("connection reset"))

    with pytest.raises(PersistenceError, match="m1"):
        await SupabaseArtifactSink(supabase).upsert(artifact)


@pytest.mark.asyncio
async def test_lookup_known_ids_pages_through_results():
    first_batch = [{"external_id": f"m{i}"} for i in range(1000)]
    supabase, query = supabase_returning(result(first_batch), result([{"external_id": "last"}, {"external_id": None}]))

    known = await SupabaseArtifactSink(supabase).lookup_known_ids(CONTACT_ID, ArtifactKind.EMAIL)

    assert len(known) == 1001
    assert "last" in known
    assert [c.args for c in query.range.call_args_list] == [(0, 999), (1000, 1999)]


@pytest.mark.asyncio
async def test_lookup_failure_raises_persistence_error():
    supabase, _ = supabase_returning(ConnectionError("down"))

    with pytest.raises(PersistenceError):
        await SupabaseArtifactSink(supabase).lookup_known_ids(CONTACT_ID, ArtifactKind.EMAIL)


def test_artifact_row_strips_null_bytes(artifact):
    dirty = artifact.model_copy(update={"content_summary": "hello\x00world"})

    row = artifact_row(dirty)

    assert row["content"] == "helloworld"
    assert row["metadata"]["message_id"] == "m1"
    assert row["sync_source"] == "test"


# ============================================================================
# CREDENTIAL & SYNC STATE STORES
# ============================================================================

@pytest.mark.asyncio
async def test_credential_store_load():
    row = {
        "user_id": USER_ID,
        "provider": "gmail",
        "access_token": "a",
        "refresh_token": "r",
        "expires_at": "2024-06-01T13:00:00+00:00",
    }
    supabase, _ = supabase_returning(result([row]), result([]))
    store = SupabaseCredentialStore(supabase)

    credential = await store.load(USER_ID, "gmail")

    assert credential.expires_at == NOW + timedelta(hours=1)
    assert await store.load(USER_ID, "gmail") is None


@pytest.mark.asyncio
async def test_credential_store_save_upserts_on_user_and_provider(fresh_credential):
    supabase, query = supabase_returning(result([]))

    await SupabaseCredentialStore(supabase).save(fresh_credential)

    supabase.table.assert_called_with("user_tokens")
    payload = query.upsert.call_args[0][0]
    assert payload["refresh_token"] == "refresh-1"
    assert payload["expires_at"] == fresh_credential.expires_at.isoformat()
    assert query.upsert.call_args[1] == {"on_conflict": "user_id,provider"}


@pytest.mark.asyncio
async def test_credential_store_failure_raises_persistence_error(fresh_credential):
    supabase, _ = supabase_returning(ConnectionError("down"))

    with pytest.raises(PersistenceError):
        await SupabaseCredentialStore(supabase).save(fresh_credential)


@pytest.mark.asyncio
async def test_credential_store_delete_targets_one_grant():
    supabase, query = supabase_returning(result([]))

    await SupabaseCredentialStore(supabase).delete(USER_ID, "gmail")

    supabase.table.assert_called_with("user_tokens")
    query.delete.assert_called_once_with()
    query.eq.assert_any_call("user_id", USER_ID)
    query.eq.assert_any_call("provider", "gmail")


@pytest.mark.asyncio
async def test_credential_store_delete_failure_raises_persistence_error():
    supabase, _ = supabase_returning(ConnectionError("down"))

    with pytest.raises(PersistenceError, match="delete"):
        await SupabaseCredentialStore(supabase).delete(USER_ID, "gmail")


@pytest.mark.asyncio
async def test_sync_state_store_round_trip_shapes():
    supabase, query = supabase_returning(result([]), result([{"user_id": USER_ID, "provider": "gmail", "status": "ok"}]))
    store = SupabaseSyncStateStore(supabase)

    await store.save(SyncState(user_id=USER_ID, provider="gmail", status="ok", last_synced_at=NOW))
    state = await store.get(USER_ID, "gmail")

    supabase.table.assert_called_with("sync_state")
    assert query.upsert.call_args[0][0]["last_synced_at"] == NOW.isoformat()
    assert state.status == "ok"


def test_sync_state_from_progress():
    progress = SyncProgress(user_id=USER_ID, contact_id=CONTACT_ID, provider="gmail")
    progress.record_error("page 2: boom")
    progress.status = SyncStatus.PARTIAL
    progress.message = "Completed with 1 issues"
    progress.finished_at = NOW

    state = sync_state_from_progress(progress)

    assert state.status == "partial"
    assert state.last_synced_at == NOW
    assert state.error_message == "Completed with 1 issues"
    assert state.last_progress["errors"] == 1
    assert "error_details" not in state.last_progress
