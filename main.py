"""
Artifact Sync API
=================

Pulls a contact's history from external providers (Gmail, LinkedIn) into
de-duplicated artifacts.

Layout:
- artifact_sync/core/: settings, shared clients, logging/Sentry setup
- artifact_sync/middleware/: error mapping, request logging, CORS, rate limits
- artifact_sync/models/schemas/: request/response bodies
- artifact_sync/services/sync/: the sync engine
- artifact_sync/services/jobs/: dramatiq actor for background syncs
- artifact_sync/api/v1/routes/: HTTP endpoints

Run locally:
    uvicorn main:app --reload
"""
import logging
import sys
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI

try:
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from slowapi import _rate_limit_exceeded_handler
    from slowapi.errors import RateLimitExceeded as RequestRateLimitExceeded

    from artifact_sync.core.config import settings
    from artifact_sync.core.dependencies import initialize_clients, shutdown_clients
    from artifact_sync.core.observability import configure_logging, init_sentry
    from artifact_sync.middleware.cors import get_cors_middleware
    from artifact_sync.middleware.error_handler import ErrorHandlerMiddleware
    from artifact_sync.middleware.logging import RequestLoggingMiddleware
    from artifact_sync.middleware.rate_limit import limiter
    from artifact_sync.api.v1.routes.health import router as health_router, VERSION
    from artifact_sync.api.v1.routes.sync import router as sync_router
    from artifact_sync.services.sync.providers import PROVIDERS
except Exception as e:
    # Misconfiguration (missing SUPABASE_URL, bad .env) should fail loudly at boot
    print(f"🚨 FATAL STARTUP ERROR: {e}", file=sys.stderr)
    print(f"Traceback:\n{traceback.format_exc()}", file=sys.stderr)
    sys.exit(1)

configure_logging()
logger = logging.getLogger(__name__)

init_sentry("api", [FastApiIntegration()])


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the shared Supabase/httpx clients and the orchestrator; close them on shutdown."""
    logger.info("=" * 80)
    logger.info(f"Starting Artifact Sync API v{VERSION} ({settings.environment}, port {settings.port})")
    logger.info(f"Providers: {', '.join(sorted(PROVIDERS))}")
    logger.info("=" * 80)

    await initialize_clients()
    logger.info("✅ Artifact Sync ready")

    yield

    logger.info("Shutting down Artifact Sync...")
    await shutdown_clients()
    logger.info("✅ Shutdown complete")


app = FastAPI(
    title="Artifact Sync API",
    description="Incremental sync of external communication history into contact artifacts",
    version=VERSION,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan
)

# slowapi reads the limiter from app.state; 429s come from its handler
app.state.limiter = limiter
app.add_exception_handler(RequestRateLimitExceeded, _rate_limit_exceeded_handler)

# Added last = outermost: the error handler wraps logging, which wraps CORS
cors_middleware, cors_config = get_cors_middleware()
app.add_middleware(cors_middleware, **cors_config)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(ErrorHandlerMiddleware)

app.include_router(health_router)
app.include_router(sync_router)

logger.info(f"✅ Routes registered: health, sync (limit {settings.sync_rate_limit} per caller)")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
        log_level="info"
    )
