"""Tests for RateLimitedTransport backoff and error mapping."""

import httpx
import pytest

from artifact_sync.services.sync.errors import ProviderRequestFailed, RateLimitExceeded
from artifact_sync.services.sync.transport import RateLimitedTransport, is_throttled

URL = "https://provider.test/items"


def scripted_client(responses):
    """AsyncClient answering with the given responses in order, repeating the last one."""
    calls = []

    def handler(request):
        calls.append(request)
        index = min(len(calls), len(responses)) - 1
        response = responses[index]
        if isinstance(response, Exception):
            raise response
        return response

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), calls


def make_transport(client, sleeps, **kwargs):
    async def record_sleep(seconds):
        sleeps.append(seconds)

    kwargs.setdefault("max_retries", 5)
    kwargs.setdefault("base_delay", 1.0)
    kwargs.setdefault("max_delay", 30.0)
    return RateLimitedTransport(client, sleep=record_sleep, **kwargs)


@pytest.mark.asyncio
async def test_persistent_throttling_gives_up_after_max_retries():
    client, calls = scripted_client([httpx.Response(429)])
    sleeps = []
    transport = make_transport(client, sleeps)

    with pytest.raises(RateLimitExceeded) as exc_info:
        await transport.request("GET", URL)

    assert len(calls) == 5
    assert exc_info.value.attempts == 5
    assert sleeps == [1, 2, 4, 8]


@pytest.mark.asyncio
async def test_backoff_is_capped_at_max_delay():
    client, calls = scripted_client([httpx.Response(429)])
    sleeps = []
    transport = make_transport(client, sleeps, max_delay=3.0)

    with pytest.raises(RateLimitExceeded):
        await transport.request("GET", URL)

    assert sleeps == [1, 2, 3, 3]
    assert sum(sleeps) <= 3.0 * (transport.max_retries - 1)


@pytest.mark.asyncio
async def test_throttle_then_success():
    client, calls = scripted_client([httpx.Response(429), httpx.Response(200, json={"ok": True})])
    sleeps = []
    transport = make_transport(client, sleeps)

    response = await transport.request("GET", URL, params={"q": "x"})

    assert response.json() == {"ok": True}
    assert len(calls) == 2
    assert sleeps == [1]
    assert calls[1].url.params["q"] == "x"


@pytest.mark.asyncio
async def test_server_error_is_not_retried():
    client, calls = scripted_client([httpx.Response(500, text="backend error")])
    sleeps = []
    transport = make_transport(client, sleeps)

    with pytest.raises(ProviderRequestFailed) as exc_info:
        await transport.request("GET", URL)

    assert len(calls) == 1
    assert sleeps == []
    assert exc_info.value.status == 500
    assert "backend error" in exc_info.value.body


@pytest.mark.asyncio
async def test_google_rate_limit_403_is_retried():
    throttled = httpx.Response(403, json={"error": {"errors": [{"reason": "userRateLimitExceeded"}]}})
    client, calls = scripted_client([throttled, httpx.Response(200, json={})])
    transport = make_transport(client, [])

    await transport.request("GET", URL)

    assert len(calls) == 2


@pytest.mark.asyncio
async def test_plain_403_is_not_retried():
    client, calls = scripted_client([httpx.Response(403, json={"error": {"errors": [{"reason": "forbidden"}]}})])
    transport = make_transport(client, [])

    with pytest.raises(ProviderRequestFailed) as exc_info:
        await transport.request("GET", URL)

    assert exc_info.value.status == 403
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_timeout_maps_to_request_failed_without_status():
    client, calls = scripted_client([httpx.ReadTimeout("read timed out")])
    transport = make_transport(client, [])

    with pytest.raises(ProviderRequestFailed) as exc_info:
        await transport.request("GET", URL)

    assert exc_info.value.status is None
    assert "timeout" in exc_info.value.body


@pytest.mark.asyncio
async def test_connection_error_maps_to_request_failed():
    client, calls = scripted_client([httpx.ConnectError("connection refused")])
    transport = make_transport(client, [])

    with pytest.raises(ProviderRequestFailed) as exc_info:
        await transport.request("GET", URL)

    assert exc_info.value.status is None
    assert "ConnectError" in exc_info.value.body


def test_is_throttled():
    assert is_throttled(httpx.Response(429))
    assert is_throttled(httpx.Response(403, text='{"reason": "rateLimitExceeded"}'))
    assert not is_throttled(httpx.Response(403, text="forbidden"))
    assert not is_throttled(httpx.Response(200))


def test_max_retries_must_be_positive():
    with pytest.raises(ValueError):
        RateLimitedTransport(httpx.AsyncClient(), max_retries=0)
