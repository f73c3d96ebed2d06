"""
Health Check Routes
System status and API info
"""
import logging
from fastapi import APIRouter

from artifact_sync.models.schemas.health import HealthResponse
from artifact_sync.services.sync.providers import PROVIDERS

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

VERSION = "1.0.0"


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=VERSION, providers=sorted(PROVIDERS))


@router.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "Artifact Sync API",
        "version": VERSION,
        "description": "Incremental sync of Gmail and LinkedIn history into contact artifacts",
        "endpoints": {
            "health": "/health",
            "sync": "/api/v1/sync/{provider}",
            "cancel": "/api/v1/sync/{provider}/cancel",
            "state": "/api/v1/sync/{provider}/state",
            "disconnect": "/api/v1/sync/{provider}/credential"
        }
    }
