"""pytest fixtures for artifact sync tests."""

import os

# Set environment variables BEFORE any imports
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("RAPIDAPI_KEY", "test-rapidapi-key")
os.environ.setdefault("ENVIRONMENT", "development")
# Background jobs go to dramatiq's StubBroker, rate limits to memory
os.environ.pop("REDIS_URL", None)

from datetime import timedelta
from typing import List

import httpx
import pytest

from artifact_sync.services.sync.models import ArtifactKind, Credential, SyncWindow
from artifact_sync.services.sync.oauth import OAuthClient, TokenManager
from artifact_sync.services.sync.orchestration.engine import SyncOrchestrator
from artifact_sync.services.sync.providers import ProviderAdapter
from artifact_sync.services.sync.transport import RateLimitedTransport

from fakes import (
    NOW,
    USER_ID,
    InMemoryArtifactSink,
    InMemoryCredentialStore,
    InMemorySyncStateStore,
    PageScript,
    ScriptedFetcher,
    no_sleep,
    normalize_test_record,
)


@pytest.fixture
def fresh_credential():
    """Gmail credential valid for another hour."""
    return Credential(
        user_id=USER_ID,
        provider="gmail",
        access_token="access-1",
        refresh_token="refresh-1",
        expires_at=NOW + timedelta(hours=1),
    )


@pytest.fixture
def credential_store(fresh_credential):
    return InMemoryCredentialStore([fresh_credential])


@pytest.fixture
def state_store():
    return InMemorySyncStateStore()


@pytest.fixture
def sink():
    return InMemoryArtifactSink()


@pytest.fixture
def offline_transport():
    """Transport whose every call fails with 500; for components that never reach the network."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    return RateLimitedTransport(client, max_retries=1, sleep=no_sleep)


@pytest.fixture
def window():
    return SyncWindow(
        start_date=NOW - timedelta(days=30),
        max_results=500,
        provider_query_terms=("ada@example.com",),
    )


@pytest.fixture
def sleeps():
    """Delays requested by the orchestrator under test."""
    return []


@pytest.fixture
def make_orchestrator(credential_store, state_store, sink, offline_transport, sleeps):
    """
    Build an orchestrator whose "gmail" provider serves scripted pages.

    Returns (orchestrator, built) where built["fetcher"] is the ScriptedFetcher
    once a run has started.
    """

    def _make(script: List[PageScript], page_size: int = 50, requires_oauth: bool = True, **kwargs):
        built = {}

        def build_fetcher(transport, get_token, size):
            built["fetcher"] = ScriptedFetcher(transport, script, size, get_token)
            return built["fetcher"]

        adapter = ProviderAdapter(
            name="gmail",
            artifact_kind=ArtifactKind.EMAIL,
            sync_source="test",
            build_fetcher=build_fetcher,
            normalize=normalize_test_record,
            requires_oauth=requires_oauth,
        )

        async def record_sleep(seconds):
            sleeps.append(seconds)

        token_manager = TokenManager(
            credential_store,
            offline_transport,
            oauth_clients={"gmail": OAuthClient(token_url="https://oauth.test/token", client_id="id", client_secret="secret")},
            clock=lambda: NOW,
        )
        orchestrator = SyncOrchestrator(
            token_manager=token_manager,
            transport=offline_transport,
            sink=kwargs.pop("sink", sink),
            state_store=kwargs.pop("state_store", state_store),
            providers={"gmail": adapter},
            page_size=page_size,
            page_delay=0.5,
            sleep=kwargs.pop("sleep", record_sleep),
            clock=lambda: NOW,
            **kwargs,
        )
        return orchestrator, built

    return _make
