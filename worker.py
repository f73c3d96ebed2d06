"""
Dramatiq Background Worker
Runs queued contact syncs (sync_contact_task) outside the API process

Usage:
    dramatiq worker -p 4 -t 4

Each job builds its own HTTP and Supabase clients, so worker processes share
nothing with the API except Redis and the database. Needs the same environment
as the API (REDIS_URL, SUPABASE_URL, GOOGLE_CLIENT_ID, RAPIDAPI_KEY, ...).
"""
import logging

from sentry_sdk.integrations.dramatiq import DramatiqIntegration

from artifact_sync.core.config import settings
from artifact_sync.core.observability import configure_logging, init_sentry

configure_logging(logging.INFO)
logger = logging.getLogger(__name__)

init_sentry("worker", [DramatiqIntegration()])

if not settings.redis_url:
    # StubBroker queues live in this process only; nothing would reach us
    logger.error("❌ REDIS_URL not set - this worker cannot receive jobs from the API")

# Importing the actor registers it on the broker the dramatiq CLI picks up
from artifact_sync.services.jobs.broker import broker  # noqa: E402
from artifact_sync.services.jobs.tasks import sync_contact_task  # noqa: E402

logger.info(f"✅ Artifact sync worker ready (queue: {sync_contact_task.queue_name}, max retries: {sync_contact_task.options.get('max_retries')})")

__all__ = ["broker", "sync_contact_task"]
