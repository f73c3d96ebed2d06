"""
Sync error taxonomy

Run-level:    CredentialInvalid, ProviderAuthError (user must reconnect)
Page-level:   RateLimitExceeded, ProviderRequestFailed
Record-level: NormalizationError, PersistenceError
"""
from typing import Optional


class SyncError(Exception):
    """Base class for every error raised inside the sync engine."""


class CredentialInvalid(SyncError):
    """No usable refresh token is stored; the user must re-authorize."""

    def __init__(self, user_id: str, provider: str, reason: str = "no refresh token stored"):
        self.user_id = user_id
        self.provider = provider
        self.reason = reason
        super().__init__(f"{provider} credential for user {user_id} is unusable: {reason}")


class ProviderAuthError(SyncError):
    """The provider rejected the refresh-token exchange (revoked grant, bad client)."""

    def __init__(self, provider: str, status: Optional[int] = None, detail: str = ""):
        self.provider = provider
        self.status = status
        self.detail = detail
        super().__init__(f"{provider} token refresh rejected (status={status}): {detail[:200]}")


class RateLimitExceeded(SyncError):
    """Provider kept throttling after every backoff attempt."""

    def __init__(self, url: str, attempts: int):
        self.url = url
        self.attempts = attempts
        super().__init__(f"Rate limited by provider after {attempts} attempts: {url}")


class ProviderRequestFailed(SyncError):
    """Non-throttle provider failure. status is None for network errors and timeouts."""

    def __init__(self, status: Optional[int], body: str = "", url: str = ""):
        self.status = status
        self.body = body
        self.url = url
        super().__init__(f"Provider request failed (status={status}) {url}: {body[:200]}")


class NormalizationError(SyncError):
    """A single provider payload could not be mapped to a canonical artifact."""

    def __init__(self, external_id: Optional[str], reason: str):
        self.external_id = external_id
        self.reason = reason
        super().__init__(f"Cannot normalize record {external_id}: {reason}")


class PersistenceError(SyncError):
    """The artifact sink failed to store or look up records."""
