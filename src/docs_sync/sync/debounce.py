"""Debounce ledger for push-triggered reindex requests."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime


class ReindexDebouncer:
    """Admits at most one reindex request per key per debounce window.

    The ledger maps each key to the time of its last admitted event. Entries
    are overwritten on admission and expire logically once older than the
    window; the key space is the set of tracked repositories.
    """

    def __init__(self, window_seconds: float = 300.0, priority_keys: Iterable[str] = ()) -> None:
        if window_seconds < 0:
            raise ValueError("window_seconds must be >= 0")
        self.window_seconds = window_seconds
        self.priority_keys = frozenset(priority_keys)
        self._ledger: dict[str, datetime] = {}

    def admit(self, key: str, now: datetime | None = None) -> bool:
        """Return True and stamp ``now`` if ``key`` is outside its window."""
        now = now or datetime.now(tz=UTC)
        last = self._ledger.get(key)
        if last is not None and (now - last).total_seconds() < self.window_seconds:
            return False
        self._ledger[key] = now
        return True

    def is_priority(self, key: str) -> bool:
        return key in self.priority_keys

    def last_admitted(self, key: str) -> datetime | None:
        return self._ledger.get(key)
