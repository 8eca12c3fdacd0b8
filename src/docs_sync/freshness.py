"""Staleness classification of cached sources.

Freshness is derived on demand from a cache entry and the priority-tiered
staleness policy; nothing here is stored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal

from docs_sync.config import StalenessPolicy

if TYPE_CHECKING:
    from docs_sync.memory.source_cache import CacheEntry, SourceCache
    from docs_sync.sources import SourceDescriptor

OverallStatus = Literal["fresh", "partially-stale", "stale"]

NEVER_FETCHED = "never fetched"


@dataclass(frozen=True)
class FreshnessRecord:
    """Freshness of one source at a point in time."""

    source_id: str
    is_stale: bool
    last_indexed_at: datetime | None = None
    revision: str | None = None
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "is_stale": self.is_stale,
            "last_indexed_at": self.last_indexed_at.isoformat() if self.last_indexed_at else None,
            "revision": self.revision,
            "reason": self.reason,
        }


@dataclass
class FreshnessReport:
    """Aggregate freshness across sources, stale first."""

    generated_at: datetime
    total: int
    stale_count: int
    overall_status: OverallStatus
    per_source: list[FreshnessRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at": self.generated_at.isoformat(),
            "total": self.total,
            "stale_count": self.stale_count,
            "overall_status": self.overall_status,
            "per_source": [r.to_dict() for r in self.per_source],
        }


def _hours(seconds: float) -> str:
    return f"{seconds / 3600:g}h"


def classify(
    source: SourceDescriptor,
    entry: CacheEntry | None,
    policy: StalenessPolicy,
    now: datetime | None = None,
) -> FreshnessRecord:
    """Classify one source as fresh or stale."""
    if entry is None:
        return FreshnessRecord(source_id=source.id, is_stale=True, reason=NEVER_FETCHED)

    now = now or datetime.now(tz=UTC)
    threshold = policy.threshold_for(source.priority)
    age = (now - entry.last_fetched).total_seconds()

    if age > threshold:
        hours_ago = round(age / 3600)
        return FreshnessRecord(
            source_id=source.id,
            is_stale=True,
            last_indexed_at=entry.last_fetched,
            revision=entry.revision,
            reason=f"Last fetched {hours_ago} hours ago (threshold: {_hours(threshold)})",
        )

    return FreshnessRecord(
        source_id=source.id,
        is_stale=False,
        last_indexed_at=entry.last_fetched,
        revision=entry.revision,
    )


def _sort_key(record: FreshnessRecord) -> tuple[int, float]:
    # Stale first; within a group most recently indexed first, never-indexed last.
    indexed = record.last_indexed_at.timestamp() if record.last_indexed_at else float("-inf")
    return (0 if record.is_stale else 1, -indexed)


class FreshnessClassifier:
    """Applies a staleness policy to cached sources."""

    def __init__(self, policy: StalenessPolicy | None = None) -> None:
        self.policy = policy or StalenessPolicy()

    def classify(
        self, source: SourceDescriptor, entry: CacheEntry | None, now: datetime | None = None
    ) -> FreshnessRecord:
        return classify(source, entry, self.policy, now)

    def report(
        self,
        sources: list[SourceDescriptor],
        cache: SourceCache,
        now: datetime | None = None,
    ) -> FreshnessReport:
        """Build the aggregate report over ``sources``."""
        now = now or datetime.now(tz=UTC)
        records = sorted(
            (self.classify(s, cache.get(s.id), now) for s in sources),
            key=_sort_key,
        )
        stale_count = sum(1 for r in records if r.is_stale)
        total = len(records)

        overall: OverallStatus = "fresh"
        if stale_count > 0:
            overall = "stale" if stale_count == total else "partially-stale"

        return FreshnessReport(
            generated_at=now,
            total=total,
            stale_count=stale_count,
            overall_status=overall,
            per_source=records,
        )


def staleness_warning(report: FreshnessReport, max_listed: int = 3) -> str | None:
    """One-line warning naming stale sources, or None when all are fresh."""
    if report.overall_status == "fresh":
        return None

    stale = [r.source_id for r in report.per_source if r.is_stale]
    listed = stale[:max_listed]
    others = report.stale_count - len(listed)
    other_text = f" and {others} more" if others > 0 else ""

    indexed = [r.last_indexed_at for r in report.per_source if r.last_indexed_at]
    latest = max(indexed).isoformat() if indexed else "unknown"
    return f"Data may be outdated for: {', '.join(listed)}{other_text}. Last fetch: {latest}"


def format_relative_time(when: datetime, now: datetime | None = None) -> str:
    """Render e.g. ``"2 hours ago"``."""
    seconds = ((now or datetime.now(tz=UTC)) - when).total_seconds()
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        count = int(seconds // size)
        if count > 0:
            return f"{count} {unit}{'s' if count > 1 else ''} ago"
    return "just now"
