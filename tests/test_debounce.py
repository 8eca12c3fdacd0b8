"""Tests for the reindex debounce ledger."""

from __future__ import annotations

from datetime import timedelta

import pytest

from docs_sync.sync.debounce import ReindexDebouncer


class TestAdmit:
    def test_first_event_admitted(self, clock) -> None:
        debouncer = ReindexDebouncer(300)
        assert debouncer.admit("midnight-docs", clock())
        assert debouncer.last_admitted("midnight-docs") == clock()

    def test_within_window_suppressed_without_stamping(self, clock) -> None:
        debouncer = ReindexDebouncer(300)
        t0 = clock()
        debouncer.admit("midnight-docs", t0)

        assert not debouncer.admit("midnight-docs", t0 + timedelta(seconds=299))
        assert debouncer.last_admitted("midnight-docs") == t0

    def test_after_window_admitted(self, clock) -> None:
        debouncer = ReindexDebouncer(300)
        t0 = clock()
        debouncer.admit("midnight-docs", t0)

        later = t0 + timedelta(seconds=300, microseconds=1)
        assert debouncer.admit("midnight-docs", later)
        assert debouncer.last_admitted("midnight-docs") == later

    def test_keys_are_independent(self, clock) -> None:
        debouncer = ReindexDebouncer(300)
        assert debouncer.admit("a", clock())
        assert debouncer.admit("b", clock())

    def test_priority_key_burst(self, clock) -> None:
        """Two pushes to compact within 60s collapse to one; a third after 301s is admitted."""
        debouncer = ReindexDebouncer(300, priority_keys=["compact"])
        t0 = clock()

        assert debouncer.is_priority("compact")
        assert debouncer.admit("compact", t0)
        assert not debouncer.admit("compact", t0 + timedelta(seconds=60))
        assert debouncer.admit("compact", t0 + timedelta(seconds=301))

    def test_negative_window_rejected(self) -> None:
        with pytest.raises(ValueError):
            ReindexDebouncer(-1)
