"""State file holding the source cache, update history and scheduler counters."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from docs_sync.memory.source_cache import SourceCache
    from docs_sync.memory.update_history import UpdateHistory

logger = logging.getLogger(__name__)

STATE_VERSION = 1


class StateStore:
    """Reads and writes the versioned state document.

    Layout::

        {"version": 1, "cache": {...}, "history": [...], "scheduler": {...}}
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def save(
        self,
        cache: SourceCache,
        history: UpdateHistory,
        scheduler: dict[str, Any] | None = None,
    ) -> None:
        """Persist state to disk."""
        data: dict[str, Any] = {
            "version": STATE_VERSION,
            "cache": cache.export_for_persistence(),
            "history": history.export(),
            "scheduler": scheduler or {},
        }

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        tmp_path.replace(self.path)

        logger.debug("Saved state with %d cached sources to %s", len(cache), self.path)

    def load(self, cache: SourceCache, history: UpdateHistory) -> dict[str, Any] | None:
        """Restore cache and history in place.

        Returns the scheduler section, or None when there was nothing usable
        on disk.
        """
        if not self.path.exists():
            return None

        try:
            with self.path.open(encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError):
            logger.exception("Failed to read state from %s", self.path)
            return None

        if data.get("version") != STATE_VERSION:
            logger.warning(
                "State version mismatch in %s (found %s), starting cold", self.path, data.get("version")
            )
            return None

        try:
            cache.import_from_persistence(data.get("cache", {}))
            history.load(data.get("history", []))
        except (ValueError, KeyError):
            logger.exception("Corrupt state in %s, starting cold", self.path)
            cache.clear()
            history.clear()
            return None

        logger.info("Loaded state for %d sources from %s", len(cache), self.path)
        return dict(data.get("scheduler", {}))
