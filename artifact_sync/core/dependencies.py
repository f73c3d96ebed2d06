"""
Dependency Injection
Provides reusable dependencies for FastAPI routes and background jobs

DEPENDENCIES:
- Supabase client (credentials, artifacts, sync state)
- HTTP client (shared by every provider call)
- SyncOrchestrator (engine wired to the Supabase stores)
"""
import logging
from typing import Optional

import httpx
from supabase import create_client, Client

from artifact_sync.core.config import settings
from artifact_sync.services.sync.database import SupabaseCredentialStore, SupabaseSyncStateStore
from artifact_sync.services.sync.oauth import TokenManager
from artifact_sync.services.sync.orchestration.engine import SyncOrchestrator
from artifact_sync.services.sync.persistence import SupabaseArtifactSink
from artifact_sync.services.sync.transport import RateLimitedTransport

logger = logging.getLogger(__name__)

# ============================================================================
# GLOBAL CLIENTS (initialized once, reused across requests)
# ============================================================================

# Supabase client (singleton)
_supabase_client: Optional[Client] = None

# HTTP client (singleton, connection pooling across syncs)
_http_client: Optional[httpx.AsyncClient] = None

# Orchestrator (singleton: refresh locks and the overlapping-run guard live on it)
_orchestrator: Optional[SyncOrchestrator] = None


# ============================================================================
# INITIALIZATION (called on app startup)
# ============================================================================

async def initialize_clients():
    """
    Initialize all global clients on app startup.

    Called from main.py lifespan event.
    """
    global _supabase_client, _http_client, _orchestrator

    logger.info("Initializing global clients...")

    # Supabase
    try:
        _supabase_client = create_client(
            settings.supabase_url,
            settings.supabase_service_key  # Backend uses service role
        )
        logger.info("✅ Supabase client initialized")
    except Exception as e:
        logger.error(f"❌ Failed to initialize Supabase: {e}")
        raise

    # Per-call timeouts are applied by RateLimitedTransport
    _http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    logger.info("✅ HTTP client initialized")

    _orchestrator = build_orchestrator(_http_client, _supabase_client)
    logger.info("✅ Sync orchestrator ready")

    logger.info("✅ All clients initialized successfully")


async def shutdown_clients():
    """
    Shutdown all global clients on app shutdown.

    Called from main.py lifespan event.
    """
    global _supabase_client, _http_client, _orchestrator

    logger.info("Shutting down global clients...")

    if _http_client:
        try:
            await _http_client.aclose()
            logger.info("✅ HTTP client closed")
        except Exception as e:
            logger.error(f"Error closing HTTP client: {e}")
        _http_client = None

    # Supabase doesn't need explicit cleanup
    _supabase_client = None
    _orchestrator = None

    logger.info("✅ All clients shutdown complete")


# ============================================================================
# FACTORIES
# ============================================================================

def build_orchestrator(http_client: httpx.AsyncClient, supabase: Client) -> SyncOrchestrator:
    """Wire a SyncOrchestrator to the Supabase-backed stores."""
    transport = RateLimitedTransport(http_client)
    return SyncOrchestrator(
        token_manager=TokenManager(SupabaseCredentialStore(supabase), transport),
        transport=transport,
        sink=SupabaseArtifactSink(supabase),
        state_store=SupabaseSyncStateStore(supabase),
    )


# ============================================================================
# DEPENDENCY FUNCTIONS (injected into routes)
# ============================================================================

def get_orchestrator() -> SyncOrchestrator:
    """
    Get a SyncOrchestrator for dependency injection.

    Usage:
        @router.post("/sync/{provider}")
        async def sync(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
            progress = await orchestrator.start_sync(...)
    """
    if _orchestrator is None:
        logger.error("Sync orchestrator not initialized")
        raise RuntimeError("Sync orchestrator not initialized. Call initialize_clients() first.")

    return _orchestrator
