"""Sweeps over documentation sources: fetch, compare revisions, update the cache."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from docs_sync.exceptions import TransportError
from docs_sync.memory.source_cache import CacheEntry
from docs_sync.memory.update_history import ChangeType
from docs_sync.sync.fetcher import Fetched, NotFound, NotModified

if TYPE_CHECKING:
    from docs_sync.memory.source_cache import SourceCache
    from docs_sync.memory.update_history import UpdateHistory
    from docs_sync.sources import SourceCategory, SourceDescriptor
    from docs_sync.sync.fetcher import ConditionalFetcher, FetchOutcome

logger = logging.getLogger(__name__)

NOT_FOUND_REASON = "not found upstream"


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class _Status(StrEnum):
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class SweepOptions:
    """Which sources a sweep covers and whether to bypass the shortcut."""

    force: bool = False
    categories: frozenset[SourceCategory] | None = None
    min_priority: int | None = None
    max_priority: int | None = None
    source_ids: frozenset[str] | None = None

    @property
    def is_filtered(self) -> bool:
        return any(
            value is not None
            for value in (self.categories, self.min_priority, self.max_priority, self.source_ids)
        )

    def validate(self) -> None:
        if (
            self.min_priority is not None
            and self.max_priority is not None
            and self.min_priority > self.max_priority
        ):
            raise ValueError(
                f"min_priority ({self.min_priority}) is greater than max_priority ({self.max_priority})"
            )
        if self.categories is not None and not self.categories:
            raise ValueError("categories filter must not be empty")

    def select(self, sources: Iterable[SourceDescriptor]) -> list[SourceDescriptor]:
        """Apply the filters, then order by descending priority (stable)."""
        selected = [
            s
            for s in sources
            if (self.categories is None or s.category in self.categories)
            and (self.min_priority is None or s.priority >= self.min_priority)
            and (self.max_priority is None or s.priority <= self.max_priority)
            and (self.source_ids is None or s.id in self.source_ids)
        ]
        return sorted(selected, key=lambda s: s.priority, reverse=True)


@dataclass
class SweepResult:
    """Outcome of one sweep, in priority order."""

    updated: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    evicted: list[str] = field(default_factory=list)
    order: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    short_circuited: bool = False

    @property
    def has_updates(self) -> bool:
        return bool(self.updated or self.evicted)

    @property
    def is_total_failure(self) -> bool:
        """Every attempted source failed."""
        return bool(self.failed) and not self.updated and not self.unchanged

    def to_dict(self) -> dict[str, Any]:
        return {
            "updated": list(self.updated),
            "unchanged": list(self.unchanged),
            "failed": list(self.failed),
            "errors": dict(self.errors),
            "evicted": list(self.evicted),
            "duration_seconds": round(self.duration_seconds, 3),
            "short_circuited": self.short_circuited,
        }


class SyncEngine:
    """Runs sweeps of the conditional fetcher over a set of sources.

    Sweeps are serialized: a sweep requested while another is running waits
    for it to finish. Per-source failures are collected in the result and
    never abort the sweep.
    """

    def __init__(
        self,
        fetcher: ConditionalFetcher,
        cache: SourceCache,
        history: UpdateHistory | None = None,
        *,
        cooldown_seconds: float = 3600.0,
        max_concurrency: int = 1,
        per_source_timeout_seconds: float = 60.0,
        not_found_eviction_threshold: int = 0,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        """Initialize engine.

        Args:
            fetcher: Conditional fetcher for single sources.
            cache: Cache the sweep reads validators from and writes into.
            history: Optional update history to record revision changes.
            cooldown_seconds: Window after a full sweep in which an unchanged
                collection revision skips the sweep entirely.
            max_concurrency: Concurrent fetches; 1 processes sources in order.
            per_source_timeout_seconds: Fetch timeout applied when concurrent.
            not_found_eviction_threshold: Consecutive not-found results after
                which a cached source is evicted (0 keeps it forever).
            clock: Source of the current time.
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._fetcher = fetcher
        self._cache = cache
        self._history = history
        self._cooldown = cooldown_seconds
        self._max_concurrency = max_concurrency
        self._timeout = per_source_timeout_seconds
        self._eviction_threshold = not_found_eviction_threshold
        self._clock = clock
        self._not_found_counts: dict[str, int] = {}
        self._lock = asyncio.Lock()

    @property
    def cache(self) -> SourceCache:
        return self._cache

    @property
    def is_sweeping(self) -> bool:
        return self._lock.locked()

    async def latest_collection_revision(self) -> str | None:
        """Head revision of the collection upstream, or None when unreachable."""
        try:
            return await self._fetcher.latest_collection_revision()
        except TransportError as e:
            logger.warning("Collection revision check failed: %s", e)
            return None

    def _within_cooldown(self, now: datetime) -> bool:
        last = self._cache.last_full_sweep
        return last is not None and (now - last).total_seconds() < self._cooldown

    async def sweep(
        self,
        sources: Iterable[SourceDescriptor],
        options: SweepOptions | None = None,
    ) -> SweepResult:
        """Sync the selected sources and report what changed.

        Raises:
            ValueError: The options are contradictory.
        """
        options = options or SweepOptions()
        options.validate()
        candidates = options.select(sources)

        async with self._lock:
            started = time.monotonic()
            latest: str | None = None

            if not options.is_filtered:
                # The collection revision is read before any source so a change
                # landing mid-sweep is never recorded as already seen.
                latest = await self.latest_collection_revision()
                if (
                    not options.force
                    and latest is not None
                    and latest == self._cache.collection_revision
                    and self._within_cooldown(self._clock())
                ):
                    logger.info("Collection unchanged at %s, skipping sweep", latest[:8])
                    return SweepResult(
                        short_circuited=True, duration_seconds=time.monotonic() - started
                    )

            logger.info("Sweeping %d sources (force=%s)", len(candidates), options.force)
            result = SweepResult(order=[s.id for s in candidates])

            if self._max_concurrency == 1:
                statuses = [await self._sync_one(s, result) for s in candidates]
            else:
                statuses = await self._sync_concurrently(candidates, result)

            retry_needed = False
            for source, (status, error) in zip(candidates, statuses):
                if status is _Status.UPDATED:
                    result.updated.append(source.id)
                elif status is _Status.UNCHANGED:
                    result.unchanged.append(source.id)
                else:
                    result.failed.append(source.id)
                    result.errors[source.id] = error or "unknown error"
                    # NotFound never holds back the collection revision.
                    retry_needed = retry_needed or status is not _Status.NOT_FOUND

            if not options.is_filtered:
                # Keep the previous collection revision after a retryable failure
                # so the next sweep fetches again instead of short-circuiting.
                self._cache.mark_full_sweep(None if retry_needed else latest, self._clock())

            result.duration_seconds = time.monotonic() - started
            logger.info(
                "Sweep done in %.2fs: %d updated, %d unchanged, %d failed",
                result.duration_seconds,
                len(result.updated),
                len(result.unchanged),
                len(result.failed),
            )
            return result

    async def _sync_concurrently(
        self, candidates: list[SourceDescriptor], result: SweepResult
    ) -> list[tuple[_Status, str | None]]:
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def run(source: SourceDescriptor) -> tuple[_Status, str | None]:
            async with semaphore:
                return await self._sync_one(source, result, timeout=self._timeout)

        # gather keeps input order, so results stay in priority order
        return list(await asyncio.gather(*(run(s) for s in candidates)))

    async def _fetch(
        self, source: SourceDescriptor, validator: str | None, timeout: float | None
    ) -> FetchOutcome:
        if timeout is None:
            return await self._fetcher.fetch(source, validator)
        return await asyncio.wait_for(self._fetcher.fetch(source, validator), timeout)

    async def _sync_one(
        self,
        source: SourceDescriptor,
        result: SweepResult,
        timeout: float | None = None,
    ) -> tuple[_Status, str | None]:
        previous = self._cache.get(source.id)

        try:
            outcome = await self._fetch(source, previous.validator if previous else None, timeout)
        except TransportError as e:
            logger.warning("Fetch failed for %s: %s", source.id, e.cause)
            return _Status.FAILED, str(e.cause)
        except TimeoutError:
            logger.warning("Fetch timed out for %s after %.1fs", source.id, timeout or 0)
            return _Status.FAILED, f"timed out after {timeout}s"
        except Exception as e:
            logger.exception("Unexpected error fetching %s", source.id)
            return _Status.FAILED, str(e) or type(e).__name__

        now = self._clock()

        if isinstance(outcome, NotFound):
            return self._handle_not_found(source, previous, result, now)

        self._not_found_counts.pop(source.id, None)

        if isinstance(outcome, NotModified):
            if self._cache.touch_fetch_time(source.id, now):
                return _Status.UNCHANGED, None
            return _Status.FAILED, "not modified but no cached copy"

        if not isinstance(outcome, Fetched):
            raise TypeError(f"Unexpected fetch outcome for {source.id}: {outcome!r}")
        self._cache.put(
            source.id,
            CacheEntry(
                content=outcome.content,
                revision=outcome.revision,
                last_fetched=now,
                size=outcome.size,
                validator=outcome.validator,
            ),
        )

        if previous is not None and previous.revision == outcome.revision:
            return _Status.UNCHANGED, None

        if self._history is not None:
            change = ChangeType.CREATED if previous is None else ChangeType.UPDATED
            self._history.record(
                source.id, previous.revision if previous else None, outcome.revision, change, now
            )
        logger.info(
            "%s: updated (old: %s, new: %s)",
            source.id,
            previous.revision[:8] if previous and previous.revision else "none",
            outcome.revision[:8],
        )
        return _Status.UPDATED, None

    def _handle_not_found(
        self,
        source: SourceDescriptor,
        previous: CacheEntry | None,
        result: SweepResult,
        now: datetime,
    ) -> tuple[_Status, str | None]:
        count = self._not_found_counts.get(source.id, 0) + 1
        self._not_found_counts[source.id] = count

        if self._eviction_threshold and count >= self._eviction_threshold and previous is not None:
            self._cache.evict(source.id)
            result.evicted.append(source.id)
            if self._history is not None:
                self._history.record(source.id, previous.revision, None, ChangeType.DELETED, now)
            logger.warning("%s: evicted after %d consecutive not-found results", source.id, count)

        return _Status.NOT_FOUND, NOT_FOUND_REASON
