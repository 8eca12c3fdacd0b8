"""Downstream actions for admitted reindex requests."""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from docs_sync.config import WebhookConfig

logger = logging.getLogger(__name__)

LocalTrigger = Callable[[str, bool], Awaitable[None]]


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class PendingReindex(BaseModel):
    """Marker for a requested reindex that may not have completed yet."""

    repository: str = Field(description="Repository key")
    event_type: str = Field(description="Event that requested the reindex, e.g. push or release:v1.2")
    requested_at: datetime = Field(description="When the request was admitted")
    priority: bool = Field(default=False, description="Routed to the priority path")
    processed: bool = Field(default=False, description="Downstream action confirmed")


class PendingStore:
    """Pending reindex markers keyed by repository, expiring after a TTL.

    Persisted to a JSON file when a path is given.
    """

    def __init__(
        self,
        path: Path | None = None,
        ttl_seconds: float = 3600.0,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._path = path
        self._ttl = ttl_seconds
        self._clock = clock
        self._markers: dict[str, PendingReindex] = {}
        self._load()

    def _load(self) -> None:
        if self._path is None or not self._path.exists():
            return
        try:
            with self._path.open(encoding="utf-8") as f:
                data = json.load(f)
            self._markers = {k: PendingReindex.model_validate(v) for k, v in data.get("pending", {}).items()}
        except (json.JSONDecodeError, OSError, ValueError):
            logger.exception("Failed to load pending markers from %s", self._path)
            self._markers = {}

    def _save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data: dict[str, Any] = {"pending": {k: m.model_dump(mode="json") for k, m in self._markers.items()}}
        with self._path.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

    def _expire(self) -> None:
        now = self._clock()
        expired = [k for k, m in self._markers.items() if (now - m.requested_at).total_seconds() > self._ttl]
        for key in expired:
            del self._markers[key]

    def put(self, marker: PendingReindex) -> None:
        self._expire()
        self._markers[marker.repository] = marker
        self._save()

    def mark_processed(self, repository: str) -> None:
        marker = self._markers.get(repository)
        if marker is None:
            return
        self._markers[repository] = marker.model_copy(update={"processed": True})
        self._save()

    def get(self, repository: str) -> PendingReindex | None:
        self._expire()
        return self._markers.get(repository)

    def list_pending(self) -> list[PendingReindex]:
        """All unexpired markers, oldest first."""
        self._expire()
        return sorted(self._markers.values(), key=lambda m: m.requested_at)


@dataclass(frozen=True)
class DispatchOutcome:
    """What to tell the notification sender."""

    success: bool
    message: str


class ReindexDispatcher:
    """Runs the refresh for an admitted push notification.

    A pending marker is written first. Then the local refresh runs (priority
    keys are awaited, others are left to the trigger to schedule) and, when
    a workflow repository and token are configured, an indexing workflow is
    dispatched. Downstream failures still report success because the
    periodic scheduler refreshes everything eventually.
    """

    def __init__(
        self,
        config: WebhookConfig,
        pending: PendingStore,
        *,
        local_trigger: LocalTrigger | None = None,
        token: str | None = None,
        api_base_url: str = "https://api.github.com",
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._config = config
        self._pending = pending
        self._local_trigger = local_trigger
        self._token = token
        self._api_base_url = api_base_url.rstrip("/")
        self._client = client
        self._clock = clock

    @property
    def pending(self) -> PendingStore:
        return self._pending

    async def _post(self, url: str, headers: dict[str, str], body: dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(url, headers=headers, json=body)
        async with httpx.AsyncClient(timeout=30.0) as client:
            return await client.post(url, headers=headers, json=body)

    async def _dispatch_workflow(self, key: str, priority: bool) -> None:
        workflow = self._config.priority_workflow_file if priority else self._config.workflow_file
        url = f"{self._api_base_url}/repos/{self._config.workflow_repo}/actions/workflows/{workflow}/dispatches"
        headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {self._token}",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "docs-sync-webhook",
        }
        body = {"ref": self._config.workflow_ref, "inputs": {"manual_run": "true", "target_repo": key}}
        response = await self._post(url, headers, body)
        response.raise_for_status()
        logger.info("Dispatched %s for %s", workflow, key)

    async def dispatch(self, key: str, event_type: str, priority: bool = False) -> DispatchOutcome:
        """Queue and trigger a reindex of ``key``.

        Always reports success once the request was admitted; a marker that
        could not be written is reported in the message only.
        """
        triggered = 0
        failures: list[str] = []

        try:
            self._pending.put(
                PendingReindex(
                    repository=key,
                    event_type=event_type,
                    requested_at=self._clock(),
                    priority=priority,
                )
            )
        except OSError as e:
            logger.exception("Failed to record pending reindex for %s", key)
            failures.append(f"pending marker not saved: {e}")

        if self._local_trigger is not None:
            try:
                await self._local_trigger(key, priority)
                triggered += 1
            except Exception as e:
                logger.exception("Local refresh failed for %s", key)
                failures.append(f"local refresh failed: {e}")

        if self._config.workflow_repo and self._token:
            try:
                await self._dispatch_workflow(key, priority)
                triggered += 1
            except httpx.HTTPStatusError as e:
                logger.error("Workflow dispatch for %s failed: %s", key, e.response.status_code)
                failures.append(f"workflow trigger failed: {e.response.status_code}")
            except httpx.HTTPError as e:
                logger.error("Workflow dispatch for %s failed: %s", key, e)
                failures.append(f"workflow trigger failed: {e}")

        if failures:
            return DispatchOutcome(
                True,
                f"Reindex queued for {key} ({'; '.join(failures)}, will be picked up by scheduled run)",
            )
        if triggered:
            self._pending.mark_processed(key)
            return DispatchOutcome(True, f"Reindex triggered for {key} (trigger: {event_type})")
        return DispatchOutcome(
            True, f"Reindex queued for {key} (trigger: {event_type}, will be processed by next scheduled run)"
        )
