"""
Observability
Logging setup and Sentry error tracking, shared by the API (main.py) and the worker (worker.py)
"""
import logging
from typing import List, Optional

from artifact_sync.core.config import settings

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# HTTP client internals log every request at DEBUG; page summaries are enough
NOISY_LOGGERS = ("httpx", "httpcore", "hpack")


def configure_logging(level: Optional[int] = None) -> None:
    """Root logging config. DEBUG outside production unless a level is given."""
    if level is None:
        level = logging.INFO if settings.environment == "production" else logging.DEBUG

    logging.basicConfig(level=level, format=LOG_FORMAT)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def init_sentry(process: str, integrations: Optional[List] = None) -> bool:
    """
    Initialize Sentry if SENTRY_DSN is set.

    Args:
        process: "api" or "worker", for log lines only
        integrations: Process-specific integrations (FastApiIntegration, DramatiqIntegration)

    Returns:
        True when Sentry is active
    """
    if not settings.sentry_dsn:
        logger.info("ℹ️  Sentry not configured (SENTRY_DSN not set)")
        return False

    try:
        import sentry_sdk
        from sentry_sdk.integrations.logging import LoggingIntegration

        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            traces_sample_rate=settings.sentry_traces_sample_rate,
            # Events would otherwise carry mailbox addresses from request data
            send_default_pii=False,
            integrations=[
                *(integrations or []),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            ],
        )
    except Exception as e:
        logger.warning(f"⚠️  Failed to initialize Sentry ({process}): {e}")
        return False

    logger.info(f"✅ Sentry error tracking initialized ({process})")
    return True
