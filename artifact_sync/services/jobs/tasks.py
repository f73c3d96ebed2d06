"""
Dramatiq Background Tasks
Runs contact syncs outside the request cycle
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import dramatiq
import httpx
from supabase import create_client

from artifact_sync.core.config import settings
from artifact_sync.services.jobs.broker import broker  # noqa: F401  (sets the global broker before actors register)
from artifact_sync.services.sync.models import SyncMode, SyncWindow

logger = logging.getLogger(__name__)


async def _run_sync_with_cleanup(
    user_id: str,
    contact_id: str,
    provider: str,
    window: SyncWindow,
    contact_name: Optional[str],
    known_ids: List[str],
    mode: SyncMode,
) -> Dict[str, Any]:
    """
    Build fresh clients, run one sync and close the HTTP client in the same event loop.
    Dramatiq workers run in separate processes, so the API's global clients can't be shared.
    """
    from artifact_sync.core.dependencies import build_orchestrator

    http_client = httpx.AsyncClient(
        timeout=settings.http_timeout_seconds,
        limits=httpx.Limits(max_keepalive_connections=5, max_connections=10)
    )
    supabase = create_client(settings.supabase_url, settings.supabase_service_key)

    try:
        orchestrator = build_orchestrator(http_client, supabase)
        progress = await orchestrator.start_sync(
            user_id=user_id,
            contact_id=contact_id,
            provider=provider,
            window=window,
            contact_name=contact_name,
            known_ids=known_ids,
            mode=mode,
        )
        return progress.model_dump(mode="json")
    finally:
        await http_client.aclose()


@dramatiq.actor(max_retries=3)
def sync_contact_task(
    user_id: str,
    contact_id: str,
    provider: str,
    window: Dict[str, Any],
    contact_name: Optional[str] = None,
    known_ids: Optional[List[str]] = None,
    mode: str = SyncMode.REFRESH.value,
):
    """
    Background job for one (user, contact, provider) sync.

    Args:
        user_id: Owner of the provider credential
        contact_id: Contact the artifacts attach to
        provider: "gmail" or "linkedin"
        window: SyncWindow as JSON (model_dump(mode="json"))
        contact_name: Optional display name for relevance matching
        known_ids: External ids the caller already holds
        mode: SyncMode value

    Sync failures are reported on the progress (and persisted sync state);
    only crashes raise, and retries are safe because upserts are idempotent.
    """
    logger.info(f"🚀 Starting background {provider} sync for contact {contact_id} (user {user_id})")

    result = asyncio.run(_run_sync_with_cleanup(
        user_id,
        contact_id,
        provider,
        SyncWindow.model_validate(window),
        contact_name,
        known_ids or [],
        SyncMode(mode),
    ))

    logger.info(
        f"✅ Background {provider} sync for contact {contact_id}: {result['status']} "
        f"({result['created']} created, {result['updated']} updated, {result['errors']} errors)"
    )
    return result
