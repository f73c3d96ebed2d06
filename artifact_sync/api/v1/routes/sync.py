"""
Sync Routes
Trigger contact syncs (inline or as background jobs), read persisted sync state, disconnect providers
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import ValidationError

from artifact_sync.core.config import settings
from artifact_sync.core.dependencies import get_orchestrator
from artifact_sync.middleware.rate_limit import limiter
from artifact_sync.models.schemas.sync import SyncRequest, SyncResponse, SyncStateResponse
from artifact_sync.services.jobs.tasks import sync_contact_task
from artifact_sync.services.sync.orchestration.engine import SyncOrchestrator, build_window
from artifact_sync.services.sync.providers import PROVIDERS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/sync", tags=["sync"])


def _validate_provider(provider: str) -> str:
    provider = provider.lower()
    if provider not in PROVIDERS:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid provider. Must be one of: {', '.join(sorted(PROVIDERS))}"
        )
    return provider


@router.post("/{provider}", response_model=SyncResponse)
@limiter.limit(settings.sync_rate_limit)
async def trigger_sync(
    provider: str,
    request: Request,
    body: SyncRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """
    Sync one contact's history from a provider.

    Runs to completion and returns the full progress report, or with
    background=true enqueues a job and returns its message id.

    Supported providers: gmail, linkedin
    """
    provider = _validate_provider(provider)

    try:
        window = build_window(body.query_terms, body.start_date, body.end_date, body.max_results)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid sync window: {e.errors()[0]['msg']}")

    if body.background:
        message = sync_contact_task.send(
            body.user_id,
            body.contact_id,
            provider,
            window.model_dump(mode="json"),
            body.contact_name,
            body.known_ids,
            body.mode.value,
        )
        logger.info(f"✅ {provider} sync for contact {body.contact_id} queued (message {message.message_id})")
        return SyncResponse(
            status="queued",
            provider=provider,
            job_id=message.message_id,
            message=f"{provider} sync started in background. Use GET /api/v1/sync/{provider}/state to check status."
        )

    logger.info(f"Running {provider} sync inline for contact {body.contact_id} (user {body.user_id})")
    progress = await orchestrator.start_sync(
        user_id=body.user_id,
        contact_id=body.contact_id,
        provider=provider,
        window=window,
        contact_name=body.contact_name,
        known_ids=body.known_ids,
        mode=body.mode,
    )

    return SyncResponse(
        status=progress.status.value,
        provider=provider,
        message=progress.message,
        progress=progress
    )


@router.post("/{provider}/cancel")
async def cancel_sync(
    provider: str,
    user_id: str = Query(..., description="Owner of the running sync"),
    contact_id: str = Query(..., description="Contact being synced"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """Stop an inline sync after its current page. 404 when no such run is active in this process."""
    provider = _validate_provider(provider)

    if not orchestrator.cancel(user_id, contact_id, provider):
        raise HTTPException(status_code=404, detail="No running sync for this contact")

    return {"status": "cancelling", "provider": provider, "contact_id": contact_id}


@router.get("/{provider}/state", response_model=SyncStateResponse)
async def get_sync_state(
    provider: str,
    user_id: str = Query(..., description="User whose sync state to read"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """Persisted summary of the most recent sync for (user, provider), plus whether the provider is connected."""
    provider = _validate_provider(provider)

    connected = await orchestrator.is_connected(user_id, provider)
    state = await orchestrator.get_sync_state(user_id, provider)
    if state is None:
        return SyncStateResponse(user_id=user_id, provider=provider, status="never_synced", connected=connected)

    return SyncStateResponse(**state.model_dump(), connected=connected)


@router.delete("/{provider}/credential")
async def disconnect_provider(
    provider: str,
    user_id: str = Query(..., description="User whose grant to remove"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """Remove the stored OAuth credential. Later syncs fail until the user reconnects."""
    provider = _validate_provider(provider)

    try:
        removed = await orchestrator.disconnect(user_id, provider)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not removed:
        raise HTTPException(status_code=404, detail=f"{provider} is not connected for this user")

    return {"status": "disconnected", "provider": provider, "user_id": user_id}
