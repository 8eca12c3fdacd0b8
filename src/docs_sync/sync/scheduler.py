"""Periodic sweep scheduler with exponential backoff on failure."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from docs_sync.config import SchedulerConfig
from docs_sync.exceptions import ExhaustedRetriesError, TransportError
from docs_sync.sync.engine import SweepOptions
from docs_sync.sync.events import ListenerSet, SchedulerListener
from docs_sync.sync.fetcher import COLLECTION_ID

if TYPE_CHECKING:
    from docs_sync.sources import SourceDescriptor
    from docs_sync.sync.engine import SweepResult, SyncEngine

logger = logging.getLogger(__name__)

# Configure logging to stderr (never stdout, the MCP transport may own it)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class SchedulerState:
    """Scheduler counters and timestamps."""

    is_running: bool = False
    last_check_time: datetime | None = None
    last_refresh_time: datetime | None = None
    last_update_time: datetime | None = None
    next_check_time: datetime | None = None
    consecutive_failures: int = 0
    total_checks: int = 0
    total_updates: int = 0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_running": self.is_running,
            "last_check_time": _iso(self.last_check_time),
            "last_refresh_time": _iso(self.last_refresh_time),
            "last_update_time": _iso(self.last_update_time),
            "next_check_time": _iso(self.next_check_time),
            "consecutive_failures": self.consecutive_failures,
            "total_checks": self.total_checks,
            "total_updates": self.total_updates,
            "last_error": self.last_error,
        }


class UpdateScheduler:
    """Drives periodic sweeps through the sync engine.

    Two states, stopped (initial) and running. Starting runs a check
    immediately; each later check is armed only after the previous one has
    settled, so timer-driven checks never overlap. The delay grows as
    ``interval * multiplier ** failures`` up to the configured cap, and the
    scheduler stops itself after too many consecutive failures.
    """

    def __init__(
        self,
        engine: SyncEngine,
        sources: list[SourceDescriptor],
        config: SchedulerConfig | None = None,
        *,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        """Initialize scheduler.

        Args:
            engine: Sync engine the checks run through.
            sources: Sources swept by every check.
            config: Timing and failure policy.
            clock: Source of the current time.
        """
        self._engine = engine
        self._sources = list(sources)
        self._config = config or SchedulerConfig()
        self._clock = clock
        self._state = SchedulerState()
        self._listeners = ListenerSet()
        self._lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None
        self._generation = 0
        self._timer_check_running = False

    @property
    def state(self) -> SchedulerState:
        """A copy of the current state."""
        return replace(self._state)

    @property
    def config(self) -> SchedulerConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._state.is_running

    def add_listener(self, listener: SchedulerListener) -> Callable[[], None]:
        """Subscribe to scheduler notifications; returns an unsubscribe callable."""
        return self._listeners.add(listener)

    def _notify_state(self) -> None:
        self._listeners.emit("on_state_changed", self.state)

    # ------------------------------------------------------------------
    # Timing
    # ------------------------------------------------------------------

    def compute_delay(self, consecutive_failures: int) -> float:
        """Delay in seconds before the next automatic check."""
        delay = self._config.check_interval_seconds
        if consecutive_failures > 0:
            backoff = delay * self._config.backoff_multiplier**consecutive_failures
            delay = min(backoff, self._config.max_backoff_seconds)
        return delay

    def next_delay(self) -> float:
        return self.compute_delay(self._state.consecutive_failures)

    def should_force(self) -> bool:
        """True when no real sweep has run within the force interval."""
        last = self._state.last_refresh_time
        if last is None:
            return True
        return (self._clock() - last).total_seconds() > self._config.force_interval_seconds

    def time_until_next_check(self) -> float | None:
        """Seconds until the next timer check, or None when not scheduled."""
        if not self._state.is_running or self._state.next_check_time is None:
            return None
        return max(0.0, (self._state.next_check_time - self._clock()).total_seconds())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start checking; the first check runs immediately.

        Must be called from within a running event loop.
        """
        if self._state.is_running:
            return

        self._state.is_running = True
        self._notify_state()
        self._arm(0.0)
        logger.info("Scheduler started (interval: %.0f seconds)", self._config.check_interval_seconds)

    def stop(self) -> None:
        """Cancel the next timer check. A check already in flight completes."""
        if not self._state.is_running:
            return

        self._state.is_running = False
        self._state.next_check_time = None
        self._generation += 1
        if self._task is not None and not self._timer_check_running:
            self._task.cancel()
        self._task = None
        self._notify_state()
        logger.info("Scheduler stopped")

    def update_config(self, config: SchedulerConfig) -> None:
        """Swap the configuration, re-arming a pending timer with the new delay."""
        self._config = config
        if self._state.is_running and not self._timer_check_running:
            self._generation += 1
            if self._task is not None:
                self._task.cancel()
            self._arm(self.next_delay())

    def _arm(self, delay: float) -> None:
        self._task = asyncio.create_task(self._run(self._generation, delay))

    async def _run(self, generation: int, delay: float) -> None:
        while self._generation == generation:
            self._state.next_check_time = self._clock() + timedelta(seconds=delay)
            self._notify_state()
            await asyncio.sleep(delay)
            if self._generation != generation:
                return

            self._timer_check_running = True
            try:
                await self.check_now(force=self.should_force())
            except Exception as e:
                # Already recorded by check_now; the loop keeps going with backoff.
                logger.debug("Timer check failed: %s", e)
            finally:
                self._timer_check_running = False

            delay = self.next_delay()

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    async def check_now(self, force: bool = False) -> SweepResult:
        """Run one check now, queued behind any check in flight.

        Raises:
            Exception: Whatever made the check fail, after it was recorded.
        """
        async with self._lock:
            self._listeners.emit("on_check_started")
            try:
                result = await self._engine.sweep(self._sources, SweepOptions(force=force))
                if result.is_total_failure:
                    raise TransportError(
                        COLLECTION_ID, f"all {len(result.failed)} sources failed: {result.errors}"
                    )
            except Exception as e:
                self._record_failure(e)
                raise

            self._record_success(result)
            return result

    def _record_success(self, result: SweepResult) -> None:
        now = self._clock()
        self._state.last_check_time = now
        self._state.total_checks += 1
        if not result.short_circuited:
            self._state.last_refresh_time = now
        if result.has_updates:
            self._state.last_update_time = now
            self._state.total_updates += 1
        self._state.consecutive_failures = 0
        self._state.last_error = None

        self._listeners.emit("on_check_completed", result)
        if result.has_updates:
            self._listeners.emit("on_update_detected", result.updated + result.evicted)
        self._notify_state()

    def _record_failure(self, error: Exception) -> None:
        self._state.last_check_time = self._clock()
        self._state.total_checks += 1
        self._state.consecutive_failures += 1
        self._state.last_error = str(error) or type(error).__name__
        logger.warning(
            "Check failed (%d consecutive): %s", self._state.consecutive_failures, self._state.last_error
        )

        self._listeners.emit("on_error", error)
        self._notify_state()

        if self._state.consecutive_failures >= self._config.max_consecutive_failures:
            logger.error("Stopping after %d consecutive failures", self._state.consecutive_failures)
            self.stop()
            self._listeners.emit(
                "on_error",
                ExhaustedRetriesError(self._state.consecutive_failures, self._state.last_error),
            )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def export_state(self) -> dict[str, Any]:
        """Counters and timestamps worth keeping across restarts."""
        data = self._state.to_dict()
        data.pop("is_running")
        data.pop("next_check_time")
        return data

    def import_state(self, data: dict[str, Any]) -> None:
        """Restore counters; the running flag is never restored."""
        self._state.last_check_time = _parse(data.get("last_check_time"))
        self._state.last_refresh_time = _parse(data.get("last_refresh_time"))
        self._state.last_update_time = _parse(data.get("last_update_time"))
        self._state.consecutive_failures = int(data.get("consecutive_failures", 0))
        self._state.total_checks = int(data.get("total_checks", 0))
        self._state.total_updates = int(data.get("total_updates", 0))
        self._state.last_error = data.get("last_error")
