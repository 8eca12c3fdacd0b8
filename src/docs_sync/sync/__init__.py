"""Sync module: conditional fetching, sweeps, scheduling and push-triggered refresh."""

from docs_sync.sync.debounce import ReindexDebouncer
from docs_sync.sync.dispatch import DispatchOutcome, PendingReindex, PendingStore, ReindexDispatcher
from docs_sync.sync.engine import SweepOptions, SweepResult, SyncEngine
from docs_sync.sync.events import SchedulerListener
from docs_sync.sync.fetcher import ConditionalFetcher, Fetched, FetchOutcome, NotFound, NotModified
from docs_sync.sync.manager import SyncManager
from docs_sync.sync.scheduler import SchedulerState, UpdateScheduler
from docs_sync.sync.webhook import WebhookServer, verify_signature

__all__ = [
    "ConditionalFetcher",
    "DispatchOutcome",
    "FetchOutcome",
    "Fetched",
    "NotFound",
    "NotModified",
    "PendingReindex",
    "PendingStore",
    "ReindexDebouncer",
    "ReindexDispatcher",
    "SchedulerListener",
    "SchedulerState",
    "SweepOptions",
    "SweepResult",
    "SyncEngine",
    "SyncManager",
    "UpdateScheduler",
    "WebhookServer",
    "verify_signature",
]
