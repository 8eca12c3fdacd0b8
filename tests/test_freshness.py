"""Tests for staleness classification and reporting."""

from __future__ import annotations

from datetime import timedelta

from docs_sync.config import HOUR, StalenessPolicy
from docs_sync.freshness import NEVER_FETCHED, FreshnessClassifier, format_relative_time, staleness_warning
from docs_sync.memory.source_cache import CacheEntry, SourceCache
from docs_sync.sources import SourceDescriptor

HIGH = SourceDescriptor(id="high", path="high.md", priority=100)
MID = SourceDescriptor(id="mid", path="mid.md", priority=80)
LOW = SourceDescriptor(id="low", path="low.md", priority=10)


def _entry(at) -> CacheEntry:
    return CacheEntry(content="x", revision="r1", last_fetched=at, size=1)


class TestClassify:
    def test_never_fetched_is_stale(self, clock) -> None:
        record = FreshnessClassifier().classify(HIGH, None, clock())
        assert record.is_stale
        assert record.reason == NEVER_FETCHED
        assert record.last_indexed_at is None

    def test_fresh_within_threshold(self, clock) -> None:
        entry = _entry(clock())
        record = FreshnessClassifier().classify(HIGH, entry, clock() + timedelta(hours=3))
        assert not record.is_stale
        assert record.reason is None
        assert record.revision == "r1"

    def test_stale_reason(self, clock) -> None:
        entry = _entry(clock())
        record = FreshnessClassifier().classify(HIGH, entry, clock() + timedelta(hours=5))
        assert record.is_stale
        assert record.reason == "Last fetched 5 hours ago (threshold: 4h)"

    def test_threshold_depends_on_priority(self, clock) -> None:
        entry = _entry(clock())
        later = clock() + timedelta(hours=6)
        classifier = FreshnessClassifier()
        assert classifier.classify(HIGH, entry, later).is_stale
        assert not classifier.classify(MID, entry, later).is_stale
        assert not classifier.classify(LOW, entry, later).is_stale

    def test_monotonic_across_boundary(self, clock) -> None:
        """Once stale, a fixed entry never becomes fresh again as time passes."""
        entry = _entry(clock())
        classifier = FreshnessClassifier()
        flags = [
            classifier.classify(HIGH, entry, clock() + timedelta(minutes=m)).is_stale
            for m in range(0, 600, 15)
        ]
        first_stale = flags.index(True)
        assert not any(flags[:first_stale])
        assert all(flags[first_stale:])

    def test_exactly_at_threshold_is_fresh(self, clock) -> None:
        entry = _entry(clock())
        record = FreshnessClassifier().classify(HIGH, entry, clock() + timedelta(seconds=4 * HOUR))
        assert not record.is_stale


class TestReport:
    def test_empty_is_fresh(self, clock) -> None:
        report = FreshnessClassifier().report([], SourceCache(), clock())
        assert report.total == 0
        assert report.overall_status == "fresh"
        assert staleness_warning(report) is None

    def test_all_stale(self, clock) -> None:
        report = FreshnessClassifier().report([HIGH, LOW], SourceCache(), clock())
        assert report.overall_status == "stale"
        assert report.stale_count == 2

    def test_ordering_stale_first_then_recent(self, clock) -> None:
        cache = SourceCache()
        now = clock()
        cache.put("high", _entry(now - timedelta(hours=5)))  # stale
        cache.put("mid", _entry(now - timedelta(hours=1)))  # fresh, older
        cache.put("low", _entry(now - timedelta(minutes=5)))  # fresh, newest
        never = SourceDescriptor(id="never", path="never.md", priority=90)

        report = FreshnessClassifier().report([LOW, MID, HIGH, never], cache, now)

        assert [r.source_id for r in report.per_source] == ["high", "never", "low", "mid"]
        assert report.overall_status == "partially-stale"
        assert report.stale_count == 2

    def test_custom_policy(self, clock) -> None:
        cache = SourceCache()
        cache.put("low", _entry(clock()))
        policy = StalenessPolicy(tiers=[{"min_priority": 0, "threshold_seconds": 60}])

        report = FreshnessClassifier(policy).report([LOW], cache, clock() + timedelta(minutes=2))

        assert report.overall_status == "stale"

    def test_to_dict(self, clock) -> None:
        data = FreshnessClassifier().report([HIGH], SourceCache(), clock()).to_dict()
        assert data["per_source"][0] == {
            "source_id": "high",
            "is_stale": True,
            "last_indexed_at": None,
            "revision": None,
            "reason": NEVER_FETCHED,
        }


class TestWarnings:
    def test_warning_lists_first_three(self, clock) -> None:
        cache = SourceCache()
        cache.put("s0", _entry(clock() - timedelta(days=5)))
        sources = [SourceDescriptor(id=f"s{i}", path=f"{i}.md", priority=10) for i in range(5)]

        warning = staleness_warning(FreshnessClassifier().report(sources, cache, clock()))

        assert warning is not None
        assert warning.startswith("Data may be outdated for: s0, ")
        assert "and 2 more" in warning
        assert warning.endswith((clock() - timedelta(days=5)).isoformat())

    def test_relative_time(self, clock) -> None:
        now = clock()
        assert format_relative_time(now - timedelta(hours=2), now) == "2 hours ago"
        assert format_relative_time(now - timedelta(minutes=1), now) == "1 minute ago"
        assert format_relative_time(now - timedelta(days=3), now) == "3 days ago"
        assert format_relative_time(now - timedelta(seconds=20), now) == "just now"
