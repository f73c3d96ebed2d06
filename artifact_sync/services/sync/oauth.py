"""
OAuth token management
Guarantees every provider call carries a non-expired access token

Refresh happens proactively inside a safety buffer before expiry, and is
serialized per (user, provider): two concurrent refreshes of the same
refresh token can invalidate each other's rotated token.
"""
import asyncio
import logging
import weakref
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, Optional, Tuple

from pydantic import BaseModel

from artifact_sync.core.config import settings
from artifact_sync.services.sync.database import CredentialStore
from artifact_sync.services.sync.errors import (
    CredentialInvalid,
    ProviderAuthError,
    ProviderRequestFailed,
    RateLimitExceeded,
)
from artifact_sync.services.sync.models import Credential, Provider
from artifact_sync.services.sync.transport import RateLimitedTransport

logger = logging.getLogger(__name__)


class OAuthClient(BaseModel):
    """Client registration used for the refresh_token grant."""
    token_url: str
    client_id: str
    client_secret: str


def default_oauth_clients() -> Dict[str, OAuthClient]:
    """OAuth clients configured through settings. Providers without credentials are left out."""
    clients: Dict[str, OAuthClient] = {}
    if settings.google_client_id and settings.google_client_secret:
        clients[Provider.GMAIL.value] = OAuthClient(
            token_url=settings.google_token_url,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
        )
    return clients


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenManager:
    """Wraps a CredentialStore and refreshes tokens before they expire."""

    def __init__(
        self,
        store: CredentialStore,
        transport: RateLimitedTransport,
        oauth_clients: Optional[Dict[str, OAuthClient]] = None,
        refresh_buffer: Optional[timedelta] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.transport = transport
        self.oauth_clients = oauth_clients if oauth_clients is not None else default_oauth_clients()
        self.refresh_buffer = refresh_buffer or timedelta(seconds=settings.token_refresh_buffer_seconds)
        self._clock = clock
        # An entry lives only while some refresh holds or waits on its lock
        self._locks: "weakref.WeakValueDictionary[Tuple[str, str], asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, user_id: str, provider: str) -> asyncio.Lock:
        key = (user_id, provider)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def load_credential(self, user_id: str, provider: str) -> Credential:
        credential = await self.store.load(user_id, provider)
        if credential is None:
            raise CredentialInvalid(user_id, provider, reason=f"{provider} is not connected")
        return credential

    async def is_connected(self, user_id: str, provider: str) -> bool:
        return await self.store.load(user_id, provider) is not None

    async def disconnect(self, user_id: str, provider: str) -> bool:
        """
        Forget the stored credential for (user, provider).

        Returns:
            False when nothing was connected
        """
        if not await self.is_connected(user_id, provider):
            return False
        await self.store.delete(user_id, provider)
        logger.info(f"🔌 Disconnected {provider} for user {user_id}")
        return True

    async def access_token_for(self, user_id: str, provider: str) -> str:
        """Load the stored credential for (user, provider) and return a valid access token."""
        return await self.get_valid_access_token(await self.load_credential(user_id, provider))

    def token_getter(self, credential: Credential) -> Callable[[], Awaitable[str]]:
        """
        Token source for a long-running sync: each call returns a valid token
        and keeps the latest refreshed credential for the next call.
        """
        current = credential

        async def get_token() -> str:
            nonlocal current
            current = await self.ensure_fresh(current)
            return current.access_token

        return get_token

    async def get_valid_access_token(self, credential: Credential) -> str:
        """
        Return an access token that stays valid for at least the refresh buffer.

        Raises:
            CredentialInvalid: no refresh token stored, user must re-authorize
            ProviderAuthError: token endpoint rejected the refresh
        """
        return (await self.ensure_fresh(credential)).access_token

    async def ensure_fresh(self, credential: Credential) -> Credential:
        """The credential itself if still outside the buffer, otherwise a refreshed and persisted one."""
        if not credential.expires_within(self._clock(), self.refresh_buffer):
            return credential

        lock = self._lock_for(credential.user_id, credential.provider)
        async with lock:
            # Another run may have refreshed while we waited on the lock
            current = await self.store.load(credential.user_id, credential.provider) or credential
            if not current.expires_within(self._clock(), self.refresh_buffer):
                logger.debug(f"Reusing token refreshed concurrently for user {credential.user_id} ({credential.provider})")
                return current

            refreshed = await self._refresh(current)
            await self.store.save(refreshed)
            return refreshed

    async def _refresh(self, credential: Credential) -> Credential:
        if not credential.refresh_token:
            raise CredentialInvalid(credential.user_id, credential.provider)

        client = self.oauth_clients.get(credential.provider)
        if client is None:
            raise ProviderAuthError(credential.provider, detail="no OAuth client configured for provider")

        logger.info(f"🔄 Refreshing {credential.provider} access token for user {credential.user_id}")

        try:
            response = await self.transport.request(
                "POST",
                client.token_url,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                data={
                    "client_id": client.client_id,
                    "client_secret": client.client_secret,
                    "refresh_token": credential.refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        except ProviderRequestFailed as e:
            logger.error(f"❌ {credential.provider} refresh rejected for user {credential.user_id}: {e.status}")
            raise ProviderAuthError(credential.provider, e.status, e.body) from e
        except RateLimitExceeded as e:
            raise ProviderAuthError(credential.provider, 429, str(e)) from e

        try:
            data = response.json()
            access_token = data["access_token"]
            expires_in = int(data.get("expires_in", 3600))
        except (ValueError, KeyError, TypeError) as e:
            raise ProviderAuthError(credential.provider, response.status_code, f"malformed token response: {e}") from e

        logger.info(f"✅ {credential.provider} token refreshed for user {credential.user_id} (expires in {expires_in}s)")

        return credential.model_copy(update={
            "access_token": access_token,
            "expires_at": self._clock() + timedelta(seconds=expires_in),
            # Keep the existing refresh token unless the provider rotated it
            "refresh_token": data.get("refresh_token") or credential.refresh_token,
        })
