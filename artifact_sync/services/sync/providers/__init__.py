"""
Data Source Providers
Registry of provider adapters (Gmail, LinkedIn): how to fetch and how to normalize

The orchestrator only ever talks to a ProviderAdapter; provider JSON shapes
stay inside the fetcher and normalizer modules.
"""
from typing import Callable, Dict, Optional

from artifact_sync.services.sync.models import ArtifactKind, CanonicalArtifact, NormalizationContext, Provider, RawRecord
from artifact_sync.services.sync.pagination import PaginatedFetcher, TokenGetter
from artifact_sync.services.sync.providers import gmail, linkedin
from artifact_sync.services.sync.providers.gmail import normalize_gmail_message
from artifact_sync.services.sync.providers.linkedin import normalize_linkedin_post
from artifact_sync.services.sync.transport import RateLimitedTransport

Normalizer = Callable[[RawRecord, NormalizationContext], CanonicalArtifact]
FetcherFactory = Callable[[RateLimitedTransport, Optional[TokenGetter], int], PaginatedFetcher]


class ProviderAdapter:
    """Everything provider-specific the engine needs for one provider."""

    def __init__(
        self,
        name: str,
        artifact_kind: ArtifactKind,
        sync_source: str,
        build_fetcher: FetcherFactory,
        normalize: Normalizer,
        requires_oauth: bool = True,
    ):
        self.name = name
        self.artifact_kind = artifact_kind
        self.sync_source = sync_source
        self.build_fetcher = build_fetcher
        self.normalize = normalize
        # False for providers authenticated by a service API key rather than a user grant
        self.requires_oauth = requires_oauth


def _gmail_fetcher(transport: RateLimitedTransport, get_token: Optional[TokenGetter], page_size: int) -> PaginatedFetcher:
    return gmail.GmailMessageFetcher(transport, get_token, page_size=page_size)


def _linkedin_fetcher(transport: RateLimitedTransport, get_token: Optional[TokenGetter], page_size: int) -> PaginatedFetcher:
    return linkedin.LinkedInPostsFetcher(transport, page_size=page_size)


PROVIDERS: Dict[str, ProviderAdapter] = {
    Provider.GMAIL.value: ProviderAdapter(
        name=Provider.GMAIL.value,
        artifact_kind=ArtifactKind.EMAIL,
        sync_source=gmail.SYNC_SOURCE,
        build_fetcher=_gmail_fetcher,
        normalize=normalize_gmail_message,
    ),
    Provider.LINKEDIN.value: ProviderAdapter(
        name=Provider.LINKEDIN.value,
        artifact_kind=ArtifactKind.LINKEDIN_POST,
        sync_source=linkedin.SYNC_SOURCE,
        build_fetcher=_linkedin_fetcher,
        normalize=normalize_linkedin_post,
        requires_oauth=False,
    ),
}


def get_provider(name: str, registry: Optional[Dict[str, ProviderAdapter]] = None) -> ProviderAdapter:
    """Look up a provider adapter by name. Raises ValueError for unknown providers."""
    registry = PROVIDERS if registry is None else registry
    try:
        return registry[name.lower()]
    except KeyError:
        raise ValueError(f"Unsupported provider: {name}. Supported: {', '.join(sorted(registry))}") from None


__all__ = [
    "ProviderAdapter",
    "PROVIDERS",
    "get_provider",
    "normalize_gmail_message",
    "normalize_linkedin_post",
]
