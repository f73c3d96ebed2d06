"""
Dramatiq Broker Configuration
Queue for background sync runs

Redis in deployment; without REDIS_URL a StubBroker is installed so the
API and tests can import the actors without a Redis server.
"""
import logging
import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.brokers.stub import StubBroker
from dramatiq.middleware import (
    AgeLimit, Callbacks, Pipelines,
    Retries, ShutdownNotifications
)

from artifact_sync.core.config import settings

logger = logging.getLogger(__name__)

if not settings.redis_url:
    logger.warning("⚠️  REDIS_URL not set - background syncs will be queued in memory only")
    broker = StubBroker()
else:
    # Explicit middleware (excludes TimeLimit for Python 3.13 compatibility)
    broker = RedisBroker(
        url=settings.redis_url,
        middleware=[
            AgeLimit(),
            Retries(max_retries=3),
            Callbacks(),
            Pipelines(),
            ShutdownNotifications(),
        ]
    )
    logger.info(f"✅ Redis broker initialized: {settings.redis_url[:20]}...")

dramatiq.set_broker(broker)
