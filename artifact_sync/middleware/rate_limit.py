"""
Rate Limiting Middleware
Keeps callers from hammering provider quotas through the sync endpoints (slowapi)

RATE LIMITS:
- Global: DEFAULT_RATE_LIMIT per caller (100/minute)
- Sync triggers: SYNC_RATE_LIMIT per caller (30/hour); every sync spends provider quota

Storage is Redis when REDIS_URL is set (shared across instances), memory otherwise.
"""
import logging
from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

from artifact_sync.core.config import settings

logger = logging.getLogger(__name__)


def rate_limit_key_func(request: Request) -> str:
    """
    Determine rate limit key for a request.

    STRATEGY:
    - Requests forwarded by the product backend carry X-User-ID: limit per user
    - Anything else: limit per client IP
    """
    user_id = request.headers.get("X-User-ID")
    if user_id:
        # Don't log full user_id (PII)
        logger.debug(f"Rate limit key: user_id={user_id[:8]}...")
        return f"user:{user_id}"

    ip = get_remote_address(request)
    logger.debug(f"Rate limit key: ip={ip}")
    return f"ip:{ip}"


limiter = Limiter(
    key_func=rate_limit_key_func,
    default_limits=[settings.default_rate_limit],
    storage_uri=settings.redis_url or "memory://",
)
