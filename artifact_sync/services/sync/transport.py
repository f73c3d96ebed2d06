"""
Rate-limited provider transport
Wraps httpx with exponential backoff on throttling responses

Retries ONLY on throttling (HTTP 429, Google 403 rateLimitExceeded).
Every other non-2xx surfaces immediately: auth failures and bad queries
will not fix themselves by waiting.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from artifact_sync.core.config import settings
from artifact_sync.services.sync.errors import ProviderRequestFailed, RateLimitExceeded

logger = logging.getLogger(__name__)

THROTTLE_REASONS = ("rateLimitExceeded", "userRateLimitExceeded")


class _Throttled(Exception):
    def __init__(self, response: httpx.Response):
        self.response = response
        super().__init__(f"throttled: HTTP {response.status_code}")


def is_throttled(response: httpx.Response) -> bool:
    """HTTP 429, or Google's 403 carrying a rate-limit reason."""
    if response.status_code == 429:
        return True
    if response.status_code == 403:
        return any(reason in response.text for reason in THROTTLE_REASONS)
    return False


class RateLimitedTransport:
    """
    Provider HTTP calls with capped exponential backoff.

    delay(attempt) = min(base_delay * 2**attempt, max_delay), attempt counted from 0,
    for at most max_retries attempts in total.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        throttle_detector: Callable[[httpx.Response], bool] = is_throttled,
    ):
        self.http_client = http_client
        self.max_retries = max_retries if max_retries is not None else settings.transport_max_retries
        self.base_delay = base_delay if base_delay is not None else settings.transport_base_delay
        self.max_delay = max_delay if max_delay is not None else settings.transport_max_delay
        self.timeout = timeout if timeout is not None else settings.http_timeout_seconds
        self._sleep = sleep
        self._is_throttled = throttle_detector

        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
    ) -> httpx.Response:
        """
        Issue one logical request.

        Raises:
            RateLimitExceeded: provider throttled on every attempt
            ProviderRequestFailed: any other non-2xx, network error or timeout
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(_Throttled),
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.base_delay, max=self.max_delay),
            sleep=self._sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    response = await self._send(method, url, headers, params, data, json)
                    if self._is_throttled(response):
                        raise _Throttled(response)
        except _Throttled:
            logger.error(f"❌ Still throttled after {self.max_retries} attempts: {method} {url}")
            raise RateLimitExceeded(url, self.max_retries)

        if response.is_success:
            return response

        logger.error(f"Provider request failed: {method} {url} - {response.status_code} - {response.text[:300]}")
        raise ProviderRequestFailed(response.status_code, response.text, url)

    async def _send(self, method, url, headers, params, data, json) -> httpx.Response:
        try:
            return await self.http_client.request(
                method,
                url,
                headers=headers,
                params=params,
                data=data,
                json=json,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise ProviderRequestFailed(None, f"timeout after {self.timeout}s: {e}", url) from e
        except httpx.HTTPError as e:
            raise ProviderRequestFailed(None, f"{type(e).__name__}: {e}", url) from e
