"""Sync manager that wires the cache, engine, scheduler and webhook together."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from docs_sync.freshness import FreshnessClassifier, FreshnessRecord, FreshnessReport
from docs_sync.memory.persistence import StateStore
from docs_sync.memory.source_cache import SourceCache
from docs_sync.memory.update_history import UpdateHistory
from docs_sync.search import SearchHit, search_sources
from docs_sync.sources import DEFAULT_SOURCES, sources_for_repository
from docs_sync.sync.debounce import ReindexDebouncer
from docs_sync.sync.dispatch import PendingStore, ReindexDispatcher
from docs_sync.sync.engine import SweepOptions, SyncEngine
from docs_sync.sync.events import SchedulerListener
from docs_sync.sync.fetcher import ConditionalFetcher
from docs_sync.sync.scheduler import UpdateScheduler
from docs_sync.sync.webhook import WebhookServer

if TYPE_CHECKING:
    from docs_sync.config import SyncConfig
    from docs_sync.memory.source_cache import CacheEntry
    from docs_sync.sources import SourceCategory, SourceDescriptor
    from docs_sync.sync.engine import SweepResult

logger = logging.getLogger(__name__)

# Configure logging to stderr
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class UpdateCheck:
    """Whether a sweep would find anything, decided without downloading content."""

    needs_update: bool
    current_revision: str | None
    latest_revision: str | None
    stale_sources: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "needs_update": self.needs_update,
            "current_revision": self.current_revision,
            "latest_revision": self.latest_revision,
            "stale_sources": list(self.stale_sources),
        }


class _PersistAfterCheck(SchedulerListener):
    """Writes the state file whenever a scheduler check settles."""

    def __init__(self, manager: SyncManager) -> None:
        self._manager = manager

    def on_check_completed(self, result: SweepResult) -> None:
        self._manager.save_state()

    def on_error(self, error: Exception) -> None:
        self._manager.save_state()


class SyncManager:
    """Owns every sync component for one process.

    Orchestrates:
    - Scheduled sweeps through the update scheduler
    - Webhook-triggered refreshes of the affected sources
    - Persistence of the cache, history and scheduler counters
    - Freshness and status queries
    """

    def __init__(
        self,
        config: SyncConfig,
        sources: Iterable[SourceDescriptor] | None = None,
        *,
        fetcher: ConditionalFetcher | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        """Initialize sync manager.

        Args:
            config: Sync configuration.
            sources: Source catalog (defaults to the built-in catalog).
            fetcher: Conditional fetcher; built from ``config.upstream`` if omitted.
            clock: Source of the current time.
        """
        self._config = config
        self._sources = list(sources if sources is not None else DEFAULT_SOURCES)
        self._clock = clock

        self.cache = SourceCache()
        self.history = UpdateHistory(config.history_limit)
        self._store = StateStore(config.state_path)

        self.engine = SyncEngine(
            fetcher or ConditionalFetcher(config.upstream),
            self.cache,
            self.history,
            cooldown_seconds=config.full_sync_cooldown_seconds,
            max_concurrency=config.max_concurrency,
            per_source_timeout_seconds=config.per_source_timeout_seconds,
            not_found_eviction_threshold=config.not_found_eviction_threshold,
            clock=clock,
        )
        self.classifier = FreshnessClassifier(config.staleness)
        self.scheduler = UpdateScheduler(self.engine, self._sources, config.scheduler, clock=clock)
        if config.scheduler.persist_state:
            self.scheduler.add_listener(_PersistAfterCheck(self))

        self.debouncer = ReindexDebouncer(
            config.webhook.debounce_window_seconds, config.webhook.priority_repositories
        )
        self.dispatcher = ReindexDispatcher(
            config.webhook,
            PendingStore(config.pending_path, config.webhook.pending_ttl_seconds, clock),
            local_trigger=self.refresh_repository,
            token=config.upstream.token,
            api_base_url=config.upstream.api_base_url,
            clock=clock,
        )
        self.webhook = WebhookServer(config.webhook, self.debouncer, self.dispatcher)

        self._background: set[asyncio.Task[None]] = set()

    @property
    def config(self) -> SyncConfig:
        return self._config

    @property
    def sources(self) -> list[SourceDescriptor]:
        return list(self._sources)

    def get_source(self, source_id: str) -> SourceDescriptor | None:
        return next((s for s in self._sources if s.id == source_id), None)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load_state(self) -> bool:
        """Restore cache, history and scheduler counters from the state file."""
        scheduler_data = self._store.load(self.cache, self.history)
        if scheduler_data is None:
            return False
        self.scheduler.import_state(scheduler_data)
        return True

    def save_state(self) -> None:
        """Write cache, history and scheduler counters to the state file."""
        try:
            self._store.save(self.cache, self.history, self.scheduler.export_state())
        except OSError:
            logger.exception("Failed to save state to %s", self._config.state_path)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Load state, then start the webhook server and scheduler if enabled."""
        self.load_state()

        if self._config.webhook.enabled:
            await self.webhook.start()

        if self._config.scheduler.auto_start:
            self.scheduler.start()

        logger.info("Sync manager started (%d sources)", len(self._sources))

    async def stop(self) -> None:
        """Stop services, wait for background refreshes and persist state."""
        self.scheduler.stop()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        if self._config.webhook.enabled:
            await self.webhook.stop()
        if self._config.scheduler.persist_state:
            self.save_state()
        logger.info("Sync manager stopped")

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def sync_now(
        self,
        force: bool = False,
        categories: Iterable[SourceCategory] | None = None,
        min_priority: int | None = None,
        max_priority: int | None = None,
    ) -> SweepResult:
        """Run a manual sweep with optional filters."""
        options = SweepOptions(
            force=force,
            categories=frozenset(categories) if categories is not None else None,
            min_priority=min_priority,
            max_priority=max_priority,
        )
        result = await self.engine.sweep(self._sources, options)
        if self._config.scheduler.persist_state:
            self.save_state()
        return result

    async def refresh_repository(self, key: str, priority: bool = False) -> None:
        """Refresh the sources a push for ``key`` affects.

        Priority keys are swept before returning; others are swept in the
        background.
        """
        affected = sources_for_repository(self._sources, key, self._config.upstream.repo)
        if not affected:
            logger.warning("Received change event for untracked repository %s", key)
            return

        options = SweepOptions(force=True, source_ids=frozenset(s.id for s in affected))
        if priority:
            await self._sweep_and_save(options)
            return

        task = asyncio.create_task(self._background_sweep(key, options))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _sweep_and_save(self, options: SweepOptions) -> SweepResult:
        result = await self.engine.sweep(self._sources, options)
        if self._config.scheduler.persist_state:
            self.save_state()
        return result

    async def _background_sweep(self, key: str, options: SweepOptions) -> None:
        try:
            await self._sweep_and_save(options)
        except Exception:
            logger.exception("Background refresh failed for %s", key)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def freshness_report(self, now: datetime | None = None) -> FreshnessReport:
        return self.classifier.report(self._sources, self.cache, now or self._clock())

    def source_freshness(self, source_id: str, now: datetime | None = None) -> FreshnessRecord | None:
        """Freshness of one source, or None for an unknown id."""
        source = self.get_source(source_id)
        if source is None:
            return None
        return self.classifier.classify(source, self.cache.get(source_id), now or self._clock())

    def status(self) -> dict[str, Any]:
        """Scheduler state, cache statistics and pending work."""
        return {
            "scheduler": self.scheduler.state.to_dict(),
            "seconds_until_next_check": self.scheduler.time_until_next_check(),
            "cache": self.cache.stats(),
            "total_sources": len(self._sources),
            "pending_reindex": len(self.dispatcher.pending.list_pending()),
            "history_entries": len(self.history),
        }

    async def check_for_updates(self) -> UpdateCheck:
        """Compare the upstream collection revision and source ages against the cache.

        An unreachable upstream is not treated as a change; stale sources
        alone can still make ``needs_update`` true.
        """
        latest = await self.engine.latest_collection_revision()
        current = self.cache.collection_revision
        now = self._clock()
        stale = [
            s.id for s in self._sources if self.classifier.classify(s, self.cache.get(s.id), now).is_stale
        ]
        changed = latest is not None and latest != current
        return UpdateCheck(
            needs_update=changed or bool(stale),
            current_revision=current,
            latest_revision=latest,
            stale_sources=stale,
        )

    async def has_updates_available(self) -> bool:
        return (await self.check_for_updates()).needs_update

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    def get_doc(self, source_id: str) -> CacheEntry | None:
        """Cached entry of a catalog source, or None if unknown or never fetched."""
        if self.get_source(source_id) is None:
            return None
        return self.cache.get(source_id)

    def all_docs(self) -> dict[str, CacheEntry]:
        return {s.id: entry for s in self._sources if (entry := self.cache.get(s.id)) is not None}

    def docs_by_category(self, category: SourceCategory) -> list[tuple[SourceDescriptor, CacheEntry]]:
        """Cached sources in ``category``, in catalog order."""
        return [
            (s, entry)
            for s in self._sources
            if s.category == category and (entry := self.cache.get(s.id)) is not None
        ]

    def search_docs(
        self,
        query: str,
        categories: Iterable[SourceCategory] | None = None,
        limit: int | None = None,
    ) -> list[SearchHit]:
        return search_sources(
            self._sources,
            self.cache,
            query,
            frozenset(categories) if categories is not None else None,
            limit,
        )
