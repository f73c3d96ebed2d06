"""Tests for TokenManager refresh behaviour."""

import asyncio
import gc
from datetime import timedelta
from urllib.parse import parse_qs

import httpx
import pytest

from artifact_sync.services.sync.errors import CredentialInvalid, ProviderAuthError
from artifact_sync.services.sync.oauth import OAuthClient, TokenManager
from artifact_sync.services.sync.transport import RateLimitedTransport

from fakes import NOW, USER_ID, InMemoryCredentialStore, no_sleep

TOKEN_URL = "https://oauth.test/token"


class TokenEndpoint:
    """MockTransport handler that records refresh requests."""

    def __init__(self, status=200, body=None, delay=0.0):
        self.status = status
        self.body = body if body is not None else {"access_token": "access-2", "expires_in": 3600}
        self.delay = delay
        self.requests = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(parse_qs(request.content.decode()))
        if self.delay:
            await asyncio.sleep(self.delay)
        return httpx.Response(self.status, json=self.body)


def make_manager(store, endpoint):
    client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint))
    transport = RateLimitedTransport(client, max_retries=2, sleep=no_sleep)
    return TokenManager(
        store,
        transport,
        oauth_clients={"gmail": OAuthClient(token_url=TOKEN_URL, client_id="id", client_secret="secret")},
        refresh_buffer=timedelta(minutes=5),
        clock=lambda: NOW,
    )


def expiring(credential, minutes):
    return credential.model_copy(update={"expires_at": NOW + timedelta(minutes=minutes)})


@pytest.mark.asyncio
async def test_token_inside_buffer_is_refreshed_and_saved(fresh_credential):
    credential = expiring(fresh_credential, 4)
    store = InMemoryCredentialStore([credential])
    endpoint = TokenEndpoint()
    manager = make_manager(store, endpoint)

    token = await manager.get_valid_access_token(credential)

    assert token == "access-2"
    assert len(endpoint.requests) == 1
    assert endpoint.requests[0]["grant_type"] == ["refresh_token"]
    assert endpoint.requests[0]["refresh_token"] == ["refresh-1"]
    saved = store.saves[-1]
    assert saved.access_token == "access-2"
    assert saved.expires_at == NOW + timedelta(seconds=3600)


@pytest.mark.asyncio
async def test_token_outside_buffer_is_reused(fresh_credential):
    credential = expiring(fresh_credential, 10)
    store = InMemoryCredentialStore([credential])
    endpoint = TokenEndpoint()
    manager = make_manager(store, endpoint)

    token = await manager.get_valid_access_token(credential)

    assert token == "access-1"
    assert endpoint.requests == []
    assert store.saves == []


@pytest.mark.asyncio
async def test_missing_refresh_token_requires_reauthorization(fresh_credential):
    credential = expiring(fresh_credential, -1).model_copy(update={"refresh_token": None})
    manager = make_manager(InMemoryCredentialStore([credential]), TokenEndpoint())

    with pytest.raises(CredentialInvalid):
        await manager.get_valid_access_token(credential)


@pytest.mark.asyncio
async def test_revoked_grant_raises_auth_error(fresh_credential):
    credential = expiring(fresh_credential, -1)
    store = InMemoryCredentialStore([credential])
    manager = make_manager(store, TokenEndpoint(status=400, body={"error": "invalid_grant"}))

    with pytest.raises(ProviderAuthError) as exc_info:
        await manager.get_valid_access_token(credential)

    assert exc_info.value.status == 400
    assert "invalid_grant" in exc_info.value.detail
    assert store.saves == []


@pytest.mark.asyncio
async def test_malformed_token_response_raises_auth_error(fresh_credential):
    credential = expiring(fresh_credential, -1)
    manager = make_manager(InMemoryCredentialStore([credential]), TokenEndpoint(body={"token_type": "Bearer"}))

    with pytest.raises(ProviderAuthError, match="malformed"):
        await manager.get_valid_access_token(credential)


@pytest.mark.asyncio
async def test_rotated_refresh_token_is_stored(fresh_credential):
    credential = expiring(fresh_credential, 1)
    store = InMemoryCredentialStore([credential])
    endpoint = TokenEndpoint(body={"access_token": "access-2", "expires_in": 1800, "refresh_token": "refresh-2"})
    manager = make_manager(store, endpoint)

    await manager.get_valid_access_token(credential)

    assert store.saves[-1].refresh_token == "refresh-2"


@pytest.mark.asyncio
async def test_refresh_token_kept_when_not_rotated(fresh_credential):
    credential = expiring(fresh_credential, 1)
    store = InMemoryCredentialStore([credential])
    manager = make_manager(store, TokenEndpoint())

    await manager.get_valid_access_token(credential)

    assert store.saves[-1].refresh_token == "refresh-1"


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh(fresh_credential):
    credential = expiring(fresh_credential, 1)
    store = InMemoryCredentialStore([credential])
    endpoint = TokenEndpoint(delay=0.01)
    manager = make_manager(store, endpoint)

    tokens = await asyncio.gather(*[manager.get_valid_access_token(credential) for _ in range(5)])

    assert tokens == ["access-2"] * 5
    assert len(endpoint.requests) == 1
    assert len(store.saves) == 1


@pytest.mark.asyncio
async def test_token_getter_keeps_refreshed_credential(fresh_credential):
    credential = expiring(fresh_credential, 1)
    store = InMemoryCredentialStore([credential])
    endpoint = TokenEndpoint()
    manager = make_manager(store, endpoint)
    get_token = manager.token_getter(credential)

    assert await get_token() == "access-2"
    assert await get_token() == "access-2"
    assert len(endpoint.requests) == 1


@pytest.mark.asyncio
async def test_access_token_for_unconnected_provider():
    manager = make_manager(InMemoryCredentialStore(), TokenEndpoint())

    with pytest.raises(CredentialInvalid, match="not connected"):
        await manager.access_token_for(USER_ID, "gmail")


@pytest.mark.asyncio
async def test_provider_without_oauth_client(fresh_credential):
    credential = expiring(fresh_credential, -1).model_copy(update={"provider": "outlook"})
    manager = make_manager(InMemoryCredentialStore([credential]), TokenEndpoint())

    with pytest.raises(ProviderAuthError, match="no OAuth client"):
        await manager.get_valid_access_token(credential)


@pytest.mark.asyncio
async def test_refresh_locks_are_released_after_use(fresh_credential):
    credentials = [expiring(fresh_credential, 1).model_copy(update={"user_id": f"user-{i}"}) for i in range(3)]
    manager = make_manager(InMemoryCredentialStore(credentials), TokenEndpoint())

    for credential in credentials:
        await manager.get_valid_access_token(credential)
    gc.collect()

    assert len(manager._locks) == 0


@pytest.mark.asyncio
async def test_disconnect_deletes_stored_credential(fresh_credential):
    store = InMemoryCredentialStore([fresh_credential])
    manager = make_manager(store, TokenEndpoint())

    assert await manager.is_connected(USER_ID, "gmail") is True
    assert await manager.disconnect(USER_ID, "gmail") is True
    assert store.deletes == [(USER_ID, "gmail")]
    assert await manager.is_connected(USER_ID, "gmail") is False

    with pytest.raises(CredentialInvalid):
        await manager.access_token_for(USER_ID, "gmail")


@pytest.mark.asyncio
async def test_disconnect_without_credential():
    store = InMemoryCredentialStore()
    manager = make_manager(store, TokenEndpoint())

    assert await manager.disconnect(USER_ID, "gmail") is False
    assert store.deletes == []
