"""
Duplicate suppression and early-stop heuristic

Once consecutive pages are mostly records we already hold, the sync has
caught up with previously ingested history and further paging only burns
provider quota. This assumes the provider lists newest-first; a provider
that reorders results can trigger a premature stop, which is why full
resyncs disable the guard.
"""
import logging
from typing import Iterable, List, Set, Tuple

from artifact_sync.services.sync.models import RawRecord

logger = logging.getLogger(__name__)


class DuplicateGuard:
    """
    Filters known records out of each page and tracks the high-duplicate streak.

    A page counts toward the streak when its duplicate ratio is strictly above
    `ratio_threshold`; any other page resets it. `should_stop` turns true once
    the streak reaches `streak_limit`. A disabled guard still filters but never
    stops pagination.
    """

    def __init__(self, ratio_threshold: float = 0.8, streak_limit: int = 2, enabled: bool = True):
        if not 0.0 <= ratio_threshold <= 1.0:
            raise ValueError("ratio_threshold must be between 0 and 1")
        if streak_limit < 1:
            raise ValueError("streak_limit must be at least 1")
        self.ratio_threshold = ratio_threshold
        self.streak_limit = streak_limit
        self.enabled = enabled
        self.streak = 0

    @property
    def should_stop(self) -> bool:
        return self.enabled and self.streak >= self.streak_limit

    def filter(self, records: Iterable[RawRecord], known_ids: Set[str]) -> Tuple[List[RawRecord], float]:
        """
        Split a page into records not seen before and return the page's duplicate ratio.

        Repeats of the same id within one page count as duplicates too.
        known_ids is read, never modified; the caller owns its growth.
        """
        records = list(records)
        if not records:
            return [], 0.0

        fresh: List[RawRecord] = []
        seen_in_page: Set[str] = set()
        for record in records:
            if record.external_id in known_ids or record.external_id in seen_in_page:
                continue
            seen_in_page.add(record.external_id)
            fresh.append(record)

        ratio = (len(records) - len(fresh)) / len(records)

        if not self.enabled:
            return fresh, ratio

        if ratio > self.ratio_threshold:
            self.streak += 1
            logger.info(f"   🔁 High-duplicate page ({ratio:.0%}), streak {self.streak}/{self.streak_limit}")
        else:
            self.streak = 0

        return fresh, ratio
