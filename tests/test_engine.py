"""Tests for SyncEngine sweeps."""

from __future__ import annotations

import asyncio

import pytest

from docs_sync.exceptions import TransportError
from docs_sync.memory.source_cache import CacheEntry
from docs_sync.memory.update_history import ChangeType
from docs_sync.sources import SourceCategory, SourceDescriptor
from docs_sync.sync.engine import NOT_FOUND_REASON, SweepOptions, SyncEngine
from docs_sync.sync.fetcher import Fetched, NotFound, NotModified


@pytest.fixture
def engine(fetcher, cache, history, clock) -> SyncEngine:
    return SyncEngine(fetcher, cache, history, cooldown_seconds=3600, clock=clock)


def _seed(cache, clock, source_id: str, revision: str) -> CacheEntry:
    entry = CacheEntry(
        content=f"content of {revision}", revision=revision, last_fetched=clock(), size=10, validator=f'"{revision}"'
    )
    cache.put(source_id, entry)
    return entry


class TestSweepScenario:
    def test_fetched_not_modified_and_error(self, engine, fetcher, cache, clock, make_fetched) -> None:
        """A updated, B unchanged, C failed and its cache entry left alone."""
        sources = [
            SourceDescriptor(id="A", path="a.md", priority=90),
            SourceDescriptor(id="B", path="b.md", priority=80),
            SourceDescriptor(id="C", path="c.md", priority=70),
        ]
        _seed(cache, clock, "A", "a1")
        _seed(cache, clock, "B", "b1")
        c_before = _seed(cache, clock, "C", "c1")
        fetcher.outcomes = {
            "A": make_fetched("a2"),
            "B": NotModified(),
            "C": TransportError("C", "connection reset"),
        }
        clock.advance(60)

        result = asyncio.run(engine.sweep(sources, SweepOptions(force=True)))

        assert result.updated == ["A"]
        assert result.unchanged == ["B"]
        assert result.failed == ["C"]
        assert result.errors == {"C": "connection reset"}
        assert cache.get("C") == c_before
        assert cache.get("A").revision == "a2"
        assert cache.get("B").last_fetched == clock()
        assert cache.get("B").revision == "b1"

    def test_sends_cached_validator(self, engine, fetcher, cache, clock, sources) -> None:
        _seed(cache, clock, "lang-ref", "r1")

        asyncio.run(engine.sweep(sources, SweepOptions(force=True)))

        assert ("lang-ref", '"r1"') in fetcher.calls
        assert ("tutorial", None) in fetcher.calls

    def test_same_revision_transfer_is_unchanged(self, engine, fetcher, cache, clock, history, make_fetched) -> None:
        source = SourceDescriptor(id="A", path="a.md")
        _seed(cache, clock, "A", "a1")
        fetcher.outcomes = {"A": make_fetched("a1")}

        result = asyncio.run(engine.sweep([source], SweepOptions(force=True)))

        assert result.unchanged == ["A"]
        assert len(history) == 0

    def test_not_found_preserves_entry(self, engine, fetcher, cache, clock) -> None:
        source = SourceDescriptor(id="A", path="a.md")
        before = _seed(cache, clock, "A", "a1")
        fetcher.outcomes = {"A": NotFound()}

        result = asyncio.run(engine.sweep([source], SweepOptions(force=True)))

        assert result.failed == ["A"]
        assert result.errors["A"] == NOT_FOUND_REASON
        assert cache.get("A") == before

    def test_not_modified_without_cache_is_failure(self, engine, fetcher) -> None:
        source = SourceDescriptor(id="A", path="a.md")
        fetcher.outcomes = {"A": NotModified()}

        result = asyncio.run(engine.sweep([source], SweepOptions(force=True)))

        assert result.failed == ["A"]

    def test_unexpected_exception_is_recorded(self, engine, fetcher) -> None:
        source = SourceDescriptor(id="A", path="a.md")
        fetcher.outcomes = {"A": RuntimeError("boom")}

        result = asyncio.run(engine.sweep([source], SweepOptions(force=True)))

        assert result.errors == {"A": "boom"}

    def test_unknown_outcome_type_raises(self, engine, fetcher) -> None:
        source = SourceDescriptor(id="A", path="a.md")
        fetcher.outcomes = {"A": "not an outcome"}

        with pytest.raises(TypeError, match="Unexpected fetch outcome for A"):
            asyncio.run(engine.sweep([source], SweepOptions(force=True)))

        assert not engine.is_sweeping

    def test_history_records_created_and_updated(self, engine, fetcher, history, make_fetched) -> None:
        source = SourceDescriptor(id="A", path="a.md")

        async def go():
            fetcher.outcomes = {"A": make_fetched("a1")}
            await engine.sweep([source], SweepOptions(force=True))
            fetcher.outcomes = {"A": make_fetched("a2")}
            await engine.sweep([source], SweepOptions(force=True))

        asyncio.run(go())

        changes = [(r.change_type, r.previous_revision, r.new_revision) for r in history.query()]
        assert changes == [(ChangeType.UPDATED, "a1", "a2"), (ChangeType.CREATED, "", "a1")]


class TestOrderingAndFilters:
    def test_priority_order(self, engine, sources) -> None:
        """Higher priority sources are fetched and reported first."""
        result = asyncio.run(engine.sweep(sources, SweepOptions(force=True)))
        assert result.order == ["lang-ref", "tutorial", "glossary"]

    def test_ties_keep_declaration_order(self, engine, fetcher) -> None:
        sources = [SourceDescriptor(id=name, path=f"{name}.md", priority=50) for name in ("c", "a", "b")]
        asyncio.run(engine.sweep(sources, SweepOptions(force=True)))
        assert fetcher.fetched_ids == ["c", "a", "b"]

    def test_category_filter(self, engine, fetcher, sources) -> None:
        options = SweepOptions(categories=frozenset({SourceCategory.COMPACT}))
        result = asyncio.run(engine.sweep(sources, options))
        assert fetcher.fetched_ids == ["lang-ref"]
        assert result.order == ["lang-ref"]

    def test_priority_range_filter(self, engine, fetcher, sources) -> None:
        asyncio.run(engine.sweep(sources, SweepOptions(min_priority=50, max_priority=90)))
        assert fetcher.fetched_ids == ["tutorial"]

    def test_filtered_sweep_skips_collection_check(self, engine, fetcher, cache, sources) -> None:
        asyncio.run(engine.sweep(sources, SweepOptions(source_ids=frozenset({"glossary"}))))
        assert fetcher.collection_calls == 0
        assert cache.last_full_sweep is None

    def test_inverted_priority_range_rejected(self, engine, sources) -> None:
        with pytest.raises(ValueError, match="min_priority"):
            asyncio.run(engine.sweep(sources, SweepOptions(min_priority=90, max_priority=10)))

    def test_empty_category_filter_rejected(self, engine, sources) -> None:
        with pytest.raises(ValueError):
            asyncio.run(engine.sweep(sources, SweepOptions(categories=frozenset())))


class TestCollectionShortCircuit:
    def test_second_sweep_short_circuits(self, engine, fetcher, sources, make_fetched) -> None:
        """Two unforced sweeps with no upstream change: the second does no per-source work."""
        fetcher.outcomes = {s.id: make_fetched(f"{s.id}-1") for s in sources}

        async def go():
            first = await engine.sweep(sources)
            calls = len(fetcher.calls)
            second = await engine.sweep(sources)
            return first, second, calls

        first, second, calls = asyncio.run(go())

        assert sorted(first.updated) == sorted(s.id for s in sources)
        assert second.short_circuited
        assert second.updated == [] and second.unchanged == [] and second.failed == []
        assert len(fetcher.calls) == calls

    def test_force_bypasses_short_circuit(self, engine, fetcher, sources, make_fetched) -> None:
        fetcher.outcomes = {s.id: make_fetched(f"{s.id}-1") for s in sources}

        async def go():
            await engine.sweep(sources)
            return await engine.sweep(sources, SweepOptions(force=True))

        second = asyncio.run(go())

        assert not second.short_circuited
        assert sorted(second.unchanged) == sorted(s.id for s in sources)

    def test_cooldown_expiry_runs_full_sweep(self, engine, fetcher, clock, sources, make_fetched) -> None:
        fetcher.outcomes = {s.id: make_fetched(f"{s.id}-1") for s in sources}

        async def go():
            await engine.sweep(sources)
            clock.advance(3601)
            return await engine.sweep(sources)

        assert not asyncio.run(go()).short_circuited

    def test_changed_collection_runs_full_sweep(self, engine, fetcher, cache, sources, make_fetched) -> None:
        fetcher.outcomes = {s.id: make_fetched(f"{s.id}-1") for s in sources}

        async def go():
            await engine.sweep(sources)
            fetcher.collection_revision = "rev-2"
            fetcher.outcomes["lang-ref"] = make_fetched("lang-ref-2")
            return await engine.sweep(sources)

        result = asyncio.run(go())

        assert not result.short_circuited
        assert result.updated == ["lang-ref"]
        assert cache.collection_revision == "rev-2"

    def test_missing_source_does_not_block_short_circuit(self, engine, fetcher, cache, clock, sources, make_fetched) -> None:
        """A path that is gone upstream still lets later sweeps skip on an unchanged collection."""
        fetcher.outcomes = {s.id: make_fetched(f"{s.id}-1") for s in sources}
        fetcher.outcomes["glossary"] = NotFound()

        async def go():
            results = []
            for _ in range(3):
                results.append(await engine.sweep(sources))
                clock.advance(60)
            return results

        results = asyncio.run(go())

        assert results[0].failed == ["glossary"]
        assert cache.collection_revision == "rev-1"
        assert [r.short_circuited for r in results] == [False, True, True]
        assert len(fetcher.calls) == 3

    def test_failed_source_keeps_previous_collection_revision(self, engine, fetcher, cache, sources, make_fetched) -> None:
        fetcher.outcomes = {s.id: make_fetched(f"{s.id}-1") for s in sources}
        fetcher.outcomes["glossary"] = TransportError("glossary", "timeout")

        asyncio.run(engine.sweep(sources))

        assert cache.collection_revision is None
        assert cache.last_full_sweep is not None

    def test_collection_check_failure_still_sweeps(self, engine, fetcher, sources) -> None:
        fetcher.collection_revision = TransportError("<collection>", "rate limited")

        result = asyncio.run(engine.sweep(sources))

        assert not result.short_circuited
        assert len(fetcher.calls) == 3


class TestEviction:
    def test_evicts_after_threshold(self, fetcher, cache, history, clock) -> None:
        engine = SyncEngine(fetcher, cache, history, not_found_eviction_threshold=3, clock=clock)
        source = SourceDescriptor(id="A", path="a.md")
        _seed(cache, clock, "A", "a1")
        fetcher.outcomes = {"A": NotFound()}

        async def go():
            return [await engine.sweep([source], SweepOptions(force=True)) for _ in range(3)]

        results = asyncio.run(go())

        assert [r.evicted for r in results] == [[], [], ["A"]]
        assert "A" not in cache
        assert results[2].has_updates
        (record,) = history.query()
        assert record.change_type == ChangeType.DELETED
        assert record.previous_revision == "a1"

    def test_success_resets_not_found_count(self, fetcher, cache, clock, make_fetched) -> None:
        engine = SyncEngine(fetcher, cache, not_found_eviction_threshold=2, clock=clock)
        source = SourceDescriptor(id="A", path="a.md")
        _seed(cache, clock, "A", "a1")

        async def go():
            fetcher.outcomes = {"A": NotFound()}
            await engine.sweep([source], SweepOptions(force=True))
            fetcher.outcomes = {"A": make_fetched("a1")}
            await engine.sweep([source], SweepOptions(force=True))
            fetcher.outcomes = {"A": NotFound()}
            return await engine.sweep([source], SweepOptions(force=True))

        assert asyncio.run(go()).evicted == []
        assert "A" in cache

    def test_zero_threshold_never_evicts(self, engine, fetcher, cache, clock) -> None:
        source = SourceDescriptor(id="A", path="a.md")
        _seed(cache, clock, "A", "a1")
        fetcher.outcomes = {"A": NotFound()}

        async def go():
            for _ in range(10):
                await engine.sweep([source], SweepOptions(force=True))

        asyncio.run(go())
        assert "A" in cache


class SlowFetcher:
    """Fetcher with a fixed latency per source."""

    def __init__(self, delays: dict[str, float]) -> None:
        self.delays = delays
        self.in_flight = 0
        self.peak = 0

    async def fetch(self, source, validator=None):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(source.id, 0))
        finally:
            self.in_flight -= 1
        return Fetched(content=source.id, revision=f"{source.id}-1", size=1)

    async def latest_collection_revision(self) -> str:
        return "rev"


class TestConcurrency:
    def test_concurrent_results_keep_priority_order(self, cache, clock) -> None:
        sources = [SourceDescriptor(id=f"s{p}", path=f"{p}.md", priority=p) for p in (10, 50, 90, 30)]
        fetcher = SlowFetcher({"s90": 0.05, "s50": 0.03, "s30": 0.01, "s10": 0.0})
        engine = SyncEngine(fetcher, cache, max_concurrency=2, clock=clock)

        result = asyncio.run(engine.sweep(sources, SweepOptions(force=True)))

        assert result.updated == ["s90", "s50", "s30", "s10"]
        assert fetcher.peak <= 2

    def test_per_source_timeout(self, cache, clock) -> None:
        sources = [
            SourceDescriptor(id="hang", path="hang.md", priority=90),
            SourceDescriptor(id="ok", path="ok.md", priority=10),
        ]
        engine = SyncEngine(
            SlowFetcher({"hang": 5.0}), cache, max_concurrency=2, per_source_timeout_seconds=0.05, clock=clock
        )

        result = asyncio.run(engine.sweep(sources, SweepOptions(force=True)))

        assert result.failed == ["hang"]
        assert "timed out" in result.errors["hang"]
        assert result.updated == ["ok"]

    def test_overlapping_sweeps_are_queued(self, cache, clock) -> None:
        sources = [SourceDescriptor(id="a", path="a.md")]
        fetcher = SlowFetcher({"a": 0.02})
        engine = SyncEngine(fetcher, cache, clock=clock)

        async def go():
            first = asyncio.create_task(engine.sweep(sources, SweepOptions(force=True)))
            await asyncio.sleep(0)
            assert engine.is_sweeping
            second = await engine.sweep(sources, SweepOptions(force=True))
            return await first, second

        first, second = asyncio.run(go())

        assert fetcher.peak == 1
        assert first.updated == ["a"]
        assert second.unchanged == ["a"]

    def test_invalid_concurrency_rejected(self, fetcher, cache) -> None:
        with pytest.raises(ValueError):
            SyncEngine(fetcher, cache, max_concurrency=0)
