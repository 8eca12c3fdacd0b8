"""In-memory cache of fetched documentation sources."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)


class CacheEntry(BaseModel):
    """Last known content of a source.

    ``revision`` and ``content`` are written together; an entry carrying a
    revision without content is rejected.
    """

    model_config = ConfigDict(frozen=True)

    content: str | None = Field(default=None, description="Raw content (None if never fetched)")
    revision: str | None = Field(default=None, description="Content revision token, e.g. a blob SHA")
    last_fetched: datetime = Field(description="When upstream was last consulted for this source")
    size: int = Field(default=0, description="Size in bytes reported upstream")
    validator: str | None = Field(default=None, description="Transport validator, e.g. an ETag")

    @model_validator(mode="after")
    def _revision_needs_content(self) -> CacheEntry:
        if self.revision is not None and self.content is None:
            raise ValueError("A cache entry with a revision must carry content")
        return self


class SourceCache:
    """Maps source ids to their last fetched content.

    Entries are immutable and only ever replaced whole. The cache also keeps
    the collection-level revision observed by the last unfiltered sweep.
    """

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._collection_revision: str | None = None
        self._last_full_sweep: datetime | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._entries

    @property
    def collection_revision(self) -> str | None:
        """Revision of the whole collection at the last full sweep."""
        return self._collection_revision

    @property
    def last_full_sweep(self) -> datetime | None:
        """When the last unfiltered sweep finished."""
        return self._last_full_sweep

    def get(self, source_id: str) -> CacheEntry | None:
        """Get the entry for a source, or None."""
        return self._entries.get(source_id)

    def get_content(self, source_id: str) -> str | None:
        """Get the cached content of a source, or None if never fetched."""
        entry = self._entries.get(source_id)
        return entry.content if entry is not None else None

    def put(self, source_id: str, entry: CacheEntry) -> None:
        """Replace the entry for a source."""
        self._entries[source_id] = entry

    def touch_fetch_time(self, source_id: str, at: datetime | None = None) -> bool:
        """Bump ``last_fetched`` after a not-modified response.

        Returns False when the source has no entry to touch.
        """
        entry = self._entries.get(source_id)
        if entry is None:
            logger.debug("No cache entry to touch for %s", source_id)
            return False
        self._entries[source_id] = entry.model_copy(update={"last_fetched": at or datetime.now(tz=UTC)})
        return True

    def evict(self, source_id: str) -> bool:
        """Drop a source from the cache."""
        return self._entries.pop(source_id, None) is not None

    def snapshot_all(self) -> dict[str, CacheEntry]:
        """Return a shallow copy of all entries."""
        return dict(self._entries)

    def mark_full_sweep(self, revision: str | None, at: datetime) -> None:
        """Record an unfiltered sweep; a None revision keeps the previous one."""
        if revision is not None:
            self._collection_revision = revision
        self._last_full_sweep = at

    def clear(self) -> None:
        """Remove every entry and the collection-level markers."""
        self._entries = {}
        self._collection_revision = None
        self._last_full_sweep = None

    def stats(self) -> dict[str, Any]:
        """Summary numbers for status reporting."""
        return {
            "cached_sources": len(self._entries),
            "total_bytes": sum(e.size for e in self._entries.values()),
            "collection_revision": self._collection_revision,
            "last_full_sweep": self._last_full_sweep.isoformat() if self._last_full_sweep else None,
        }

    def export_for_persistence(self) -> dict[str, Any]:
        """Serialize the cache to JSON-compatible data."""
        return {
            "entries": {sid: e.model_dump(mode="json") for sid, e in self._entries.items()},
            "collection_revision": self._collection_revision,
            "last_full_sweep": self._last_full_sweep.isoformat() if self._last_full_sweep else None,
        }

    def import_from_persistence(self, data: dict[str, Any]) -> None:
        """Replace the cache contents with previously exported data."""
        entries = {sid: CacheEntry.model_validate(raw) for sid, raw in data.get("entries", {}).items()}
        last_full_sweep = data.get("last_full_sweep")

        self._entries = entries
        self._collection_revision = data.get("collection_revision")
        self._last_full_sweep = datetime.fromisoformat(last_full_sweep) if last_full_sweep else None
        logger.info("Imported %d cache entries", len(entries))
