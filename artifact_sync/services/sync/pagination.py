"""
Paginated provider fetching
Base class for provider listing fetchers and the end-of-results rules
"""
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

from artifact_sync.services.sync.models import FetchPage, RawRecord, SyncWindow
from artifact_sync.services.sync.transport import RateLimitedTransport

logger = logging.getLogger(__name__)

# Returns a currently valid access token; called before every request so a
# long run picks up refreshed tokens.
TokenGetter = Callable[[], Awaitable[str]]


class PaginatedFetcher(ABC):
    """
    Walks one provider's listing endpoint a page at a time.

    Subclasses translate the window into the provider's query syntax and pull
    (external_id, payload) pairs out of the listing response. They never look
    inside an item's payload beyond its id.
    """

    def __init__(self, transport: RateLimitedTransport, page_size: int = 50):
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self.transport = transport
        self.page_size = page_size

    @abstractmethod
    async def fetch(
        self,
        window: SyncWindow,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> FetchPage:
        """Fetch one page. limit lowers the page size for the last page under max_results."""

    async def hydrate(self, record: RawRecord) -> RawRecord:
        """Complete a listing stub with its full payload. Listing endpoints with full items return it as-is."""
        return record

    def page_request_size(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.page_size
        return max(1, min(self.page_size, limit))


def end_of_results_reason(page: FetchPage, total_seen: int, max_results: int) -> Optional[str]:
    """
    Why pagination should stop after this page, or None to keep going.

    Checked in order: result cap, empty page, short page, missing cursor.
    """
    if total_seen >= max_results:
        return "max_results_reached"
    if not page.records:
        return "empty_page"
    if len(page.records) < page.requested:
        return "short_page"
    if not page.next_cursor:
        return "no_cursor"
    return None
