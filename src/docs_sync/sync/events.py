"""Listener interface for scheduler notifications."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from docs_sync.sync.engine import SweepResult
    from docs_sync.sync.scheduler import SchedulerState

logger = logging.getLogger(__name__)


class SchedulerListener:
    """Base class for scheduler subscribers; override what you need.

    Hooks run synchronously on the event loop. Exceptions they raise are
    logged and never change scheduler state.
    """

    def on_check_started(self) -> None:
        pass

    def on_check_completed(self, result: SweepResult) -> None:
        pass

    def on_update_detected(self, source_ids: list[str]) -> None:
        pass

    def on_error(self, error: Exception) -> None:
        pass

    def on_state_changed(self, state: SchedulerState) -> None:
        pass


class ListenerSet:
    """Fan-out of hook calls to registered listeners."""

    def __init__(self) -> None:
        self._listeners: list[SchedulerListener] = []

    def __len__(self) -> int:
        return len(self._listeners)

    def add(self, listener: SchedulerListener) -> Callable[[], None]:
        """Register a listener and return a callable that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def emit(self, hook: str, *args: object) -> None:
        for listener in list(self._listeners):
            try:
                getattr(listener, hook)(*args)
            except Exception:
                logger.exception("Listener %r failed in %s", listener, hook)
