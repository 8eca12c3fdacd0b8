"""Keyword search over cached documentation content."""

from __future__ import annotations

from collections.abc import Collection, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from docs_sync.memory.source_cache import CacheEntry, SourceCache
    from docs_sync.sources import SourceCategory, SourceDescriptor


@dataclass(frozen=True)
class LineMatch:
    """A matching line with one line of context on each side."""

    line: int
    context: str


@dataclass(frozen=True)
class SearchHit:
    """All matches within one cached source."""

    source: SourceDescriptor
    entry: CacheEntry
    matches: list[LineMatch] = field(default_factory=list)


def find_lines(content: str, query: str, context_lines: int = 1) -> list[LineMatch]:
    """Case-insensitive substring match per line; line numbers are 1-based."""
    needle = query.lower()
    lines = content.split("\n")
    matches = []
    for i, line in enumerate(lines):
        if needle in line.lower():
            start = max(0, i - context_lines)
            end = min(len(lines), i + context_lines + 1)
            matches.append(LineMatch(line=i + 1, context="\n".join(lines[start:end])))
    return matches


def search_sources(
    sources: Iterable[SourceDescriptor],
    cache: SourceCache,
    query: str,
    categories: Collection[SourceCategory] | None = None,
    limit: int | None = None,
) -> list[SearchHit]:
    """Search cached content of ``sources`` in catalog order.

    Sources without cached content are skipped. ``limit`` caps the number
    of sources returned, not the matches within each.

    Raises:
        ValueError: The query is blank.
    """
    if not query.strip():
        raise ValueError("Search query must not be empty")

    hits: list[SearchHit] = []
    for source in sources:
        if categories is not None and source.category not in categories:
            continue
        entry = cache.get(source.id)
        if entry is None or entry.content is None:
            continue

        matches = find_lines(entry.content, query)
        if matches:
            hits.append(SearchHit(source=source, entry=entry, matches=matches))
            if limit is not None and len(hits) >= limit:
                break

    return hits
