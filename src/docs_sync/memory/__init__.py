"""Memory package."""

from docs_sync.memory.persistence import STATE_VERSION, StateStore
from docs_sync.memory.source_cache import CacheEntry, SourceCache
from docs_sync.memory.update_history import ChangeType, UpdateHistory, UpdateRecord

__all__ = [
    "CacheEntry",
    "ChangeType",
    "STATE_VERSION",
    "SourceCache",
    "StateStore",
    "UpdateHistory",
    "UpdateRecord",
]
