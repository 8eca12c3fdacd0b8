"""Shared test fixtures for docs-sync."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from docs_sync.config import SchedulerConfig, SyncConfig, UpstreamConfig, WebhookConfig
from docs_sync.memory.source_cache import SourceCache
from docs_sync.memory.update_history import UpdateHistory
from docs_sync.sources import SourceCategory, SourceDescriptor
from docs_sync.sync.fetcher import Fetched, NotModified

T0 = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class FakeFetcher:
    """Scripted stand-in for ConditionalFetcher.

    ``outcomes`` maps source ids to a Fetched/NotModified/NotFound value or
    an exception to raise. Unscripted sources report NotModified.
    """

    def __init__(self) -> None:
        self.outcomes: dict[str, object] = {}
        self.collection_revision: str | Exception = "rev-1"
        self.calls: list[tuple[str, str | None]] = []
        self.collection_calls = 0

    async def fetch(self, source: SourceDescriptor, validator: str | None = None):
        self.calls.append((source.id, validator))
        outcome = self.outcomes.get(source.id, NotModified())
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def latest_collection_revision(self) -> str:
        self.collection_calls += 1
        if isinstance(self.collection_revision, Exception):
            raise self.collection_revision
        return self.collection_revision

    @property
    def fetched_ids(self) -> list[str]:
        return [source_id for source_id, _ in self.calls]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def cache() -> SourceCache:
    return SourceCache()


@pytest.fixture
def history() -> UpdateHistory:
    return UpdateHistory(limit=100)


@pytest.fixture
def sources() -> list[SourceDescriptor]:
    """Three sources declared out of priority order."""
    return [
        SourceDescriptor(id="tutorial", path="develop/tutorial.mdx", category=SourceCategory.TUTORIAL, priority=70),
        SourceDescriptor(id="lang-ref", path="compact/lang-ref.mdx", category=SourceCategory.COMPACT, priority=100),
        SourceDescriptor(id="glossary", path="glossary.md", category=SourceCategory.GENERAL, priority=40),
    ]


@pytest.fixture
def sync_config(tmp_path: Path) -> SyncConfig:
    """Configuration writing state under tmp_path and never touching the network."""
    return SyncConfig(
        upstream=UpstreamConfig(token=None),
        scheduler=SchedulerConfig(check_interval_seconds=3600, persist_state=True),
        webhook=WebhookConfig(secret="s3cret"),
        state_path=tmp_path / "state.json",
        pending_path=tmp_path / "pending.json",
    )


@pytest.fixture
def make_fetched():
    """Build a Fetched outcome whose ETag is derived from the revision."""

    def build(revision: str, content: str | None = None) -> Fetched:
        body = content if content is not None else f"content of {revision}"
        return Fetched(content=body, revision=revision, size=len(body), validator=f'"{revision}"')

    return build
