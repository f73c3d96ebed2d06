"""
CORS Configuration
Cross-Origin Resource Sharing settings for the dashboard that triggers syncs

SECURITY:
- Production: only origins listed in CORS_ALLOWED_ORIGINS
- Development: all origins, without credentials
- NO "null" origin (prevents file:// attacks)
"""
import logging
from fastapi.middleware.cors import CORSMiddleware as FastAPICORSMiddleware
from artifact_sync.core.config import settings

logger = logging.getLogger(__name__)


def parse_origins(raw: str):
    """Split the comma-separated origin list, dropping blanks and "null"."""
    return [o.strip().rstrip("/") for o in raw.split(",") if o.strip() and o.strip() != "null"]


def get_cors_middleware():
    """Returns the CORS middleware class and its keyword config."""
    if settings.environment == "development":
        logger.warning("⚠️  DEV MODE: CORS allowing ALL origins (*)")
        return FastAPICORSMiddleware, {
            "allow_origins": ["*"],
            "allow_credentials": False,  # Must be False when using "*"
            "allow_methods": ["GET", "POST", "OPTIONS"],
            "allow_headers": ["*"],
            "expose_headers": ["X-Request-ID"],
            "max_age": 600,
        }

    allowed_origins = parse_origins(settings.cors_allowed_origins)
    logger.info(f"🌐 CORS allowed origins: {allowed_origins}")

    return FastAPICORSMiddleware, {
        "allow_origins": allowed_origins,
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "OPTIONS"],
        "allow_headers": [
            "Content-Type",
            "Authorization",
            "X-User-ID",
            "X-Request-ID",
        ],
        "expose_headers": ["X-Request-ID"],
        "max_age": 600,  # Cache preflight requests for 10 minutes
    }
