"""Tests for DuplicateGuard filtering and early-stop streaks."""

import pytest

from artifact_sync.services.sync.dedup import DuplicateGuard
from artifact_sync.services.sync.models import RawRecord

from fakes import ids


def records(external_ids):
    return [RawRecord(external_id=i) for i in external_ids]


def test_filters_known_ids_and_reports_ratio():
    guard = DuplicateGuard()

    fresh, ratio = guard.filter(records(["a", "b", "c", "d"]), {"a", "b", "c"})

    assert [r.external_id for r in fresh] == ["d"]
    assert ratio == 0.75
    assert guard.streak == 0


def test_known_ids_are_not_modified():
    known = {"a"}

    DuplicateGuard().filter(records(["a", "b"]), known)

    assert known == {"a"}


def test_repeats_within_a_page_count_as_duplicates():
    guard = DuplicateGuard()

    fresh, ratio = guard.filter(records(["a", "a", "b", "b"]), set())

    assert [r.external_id for r in fresh] == ["a", "b"]
    assert ratio == 0.5


def test_ratio_at_threshold_does_not_extend_streak():
    guard = DuplicateGuard(ratio_threshold=0.8, streak_limit=2)
    page = ids("m", 10)
    known = set(ids("m", 8))

    guard.filter(records(page), known)

    assert guard.streak == 0


def test_stops_after_consecutive_high_duplicate_pages():
    guard = DuplicateGuard(ratio_threshold=0.8, streak_limit=2)
    known = set(ids("m", 100))

    guard.filter(records(ids("m", 50)), known)
    assert guard.streak == 1
    assert not guard.should_stop

    guard.filter(records(ids("m", 50, 50)), known)
    assert guard.should_stop


def test_low_duplicate_page_resets_streak():
    guard = DuplicateGuard(ratio_threshold=0.8, streak_limit=2)
    known = set(ids("m", 50))

    guard.filter(records(ids("m", 50)), known)
    guard.filter(records(ids("n", 50)), known)

    assert guard.streak == 0
    assert not guard.should_stop


def test_disabled_guard_filters_but_never_stops():
    guard = DuplicateGuard(streak_limit=1, enabled=False)
    known = set(ids("m", 50))

    fresh, ratio = guard.filter(records(ids("m", 50)), known)

    assert fresh == []
    assert ratio == 1.0
    assert not guard.should_stop


def test_empty_page():
    fresh, ratio = DuplicateGuard().filter([], {"a"})

    assert fresh == []
    assert ratio == 0.0


@pytest.mark.parametrize("kwargs", [{"ratio_threshold": 1.5}, {"ratio_threshold": -0.1}, {"streak_limit": 0}])
def test_rejects_invalid_configuration(kwargs):
    with pytest.raises(ValueError):
        DuplicateGuard(**kwargs)
