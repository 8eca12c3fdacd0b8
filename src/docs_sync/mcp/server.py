"""FastMCP server exposing sync status and freshness tools."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from fastmcp import FastMCP

from docs_sync.freshness import format_relative_time, staleness_warning
from docs_sync.mcp.schemas import (
    DocContent,
    DocContentInput,
    DocList,
    DocSummary,
    FreshnessReportInput,
    FreshnessReportResult,
    HistoryInput,
    HistoryResult,
    LineMatchEntry,
    ListDocsInput,
    SearchDocsInput,
    SearchDocsResult,
    SearchHitEntry,
    SourceFreshness,
    SourceFreshnessInput,
    SyncInput,
    SyncResult,
    SyncStatus,
    UpdateCheckResult,
    UpdateEntry,
)
from docs_sync.sources import SourceCategory

if TYPE_CHECKING:
    from docs_sync.freshness import FreshnessRecord
    from docs_sync.sync.manager import SyncManager

# Configure logging to stderr (CRITICAL: never print to stdout for MCP)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)
logger = logging.getLogger(__name__)

# Create FastMCP server instance
mcp = FastMCP("docs-sync")

# Process-wide manager for this entry point only (lazy initialized)
_manager: SyncManager | None = None
_init_lock = asyncio.Lock()


async def get_manager() -> SyncManager:
    """Get or create the sync manager.

    ``DOCS_SYNC_CONFIG`` and ``DOCS_SYNC_SOURCES`` may point at JSON files
    overriding the default configuration and source catalog.
    """
    global _manager

    async with _init_lock:
        if _manager is None:
            from docs_sync.config import SYNC_CONFIG, load_config
            from docs_sync.sources import DEFAULT_SOURCES, load_sources
            from docs_sync.sync.manager import SyncManager as Manager

            config_path = os.environ.get("DOCS_SYNC_CONFIG")
            sources_path = os.environ.get("DOCS_SYNC_SOURCES")
            config = load_config(Path(config_path)) if config_path else SYNC_CONFIG
            sources = load_sources(Path(sources_path)) if sources_path else DEFAULT_SOURCES

            logger.info("Initializing sync manager...")
            _manager = Manager(config, sources)
            await _manager.start()
            logger.info("Sync manager initialized")

        return _manager


def _parse_categories(values: list[str] | None) -> list[SourceCategory] | None:
    """Convert category names, rejecting unknown ones instead of dropping them."""
    if values is None:
        return None
    categories = []
    for value in values:
        try:
            categories.append(SourceCategory(value))
        except ValueError:
            valid = ", ".join(c.value for c in SourceCategory)
            msg = f"Unknown category: {value} (expected one of: {valid})"
            raise ValueError(msg) from None
    return categories


def _to_source_freshness(record: FreshnessRecord) -> SourceFreshness:
    return SourceFreshness(
        source_id=record.source_id,
        is_stale=record.is_stale,
        last_indexed_at=record.last_indexed_at.isoformat() if record.last_indexed_at else None,
        last_indexed_relative=format_relative_time(record.last_indexed_at) if record.last_indexed_at else None,
        revision=record.revision,
        reason=record.reason,
    )


@mcp.tool
async def get_sync_status() -> SyncStatus:
    """Get scheduler and cache status."""
    manager = await get_manager()
    status = manager.status()
    scheduler = status["scheduler"]
    cache = status["cache"]

    return SyncStatus(
        is_running=scheduler["is_running"],
        last_check_time=scheduler["last_check_time"],
        last_update_time=scheduler["last_update_time"],
        next_check_time=scheduler["next_check_time"],
        seconds_until_next_check=status["seconds_until_next_check"],
        consecutive_failures=scheduler["consecutive_failures"],
        total_checks=scheduler["total_checks"],
        total_updates=scheduler["total_updates"],
        last_error=scheduler["last_error"],
        total_sources=status["total_sources"],
        cached_sources=cache["cached_sources"],
        collection_revision=cache["collection_revision"],
        last_full_sweep=cache["last_full_sweep"],
        pending_reindex=status["pending_reindex"],
    )


@mcp.tool
async def get_freshness_report(input: FreshnessReportInput) -> FreshnessReportResult:
    """Report staleness of all sources."""
    manager = await get_manager()
    report = manager.freshness_report()

    records = [r for r in report.per_source if r.is_stale] if input.stale_only else report.per_source
    return FreshnessReportResult(
        generated_at=report.generated_at.isoformat(),
        total=report.total,
        stale_count=report.stale_count,
        overall_status=report.overall_status,
        warning=staleness_warning(report),
        sources=[_to_source_freshness(r) for r in records],
    )


@mcp.tool
async def get_source_freshness(input: SourceFreshnessInput) -> SourceFreshness:
    """Get freshness of one source."""
    manager = await get_manager()
    record = manager.source_freshness(input.source_id)
    if record is None:
        return SourceFreshness(source_id=input.source_id, found=False, reason="Unknown source")
    return _to_source_freshness(record)


@mcp.tool
async def sync_docs(input: SyncInput) -> SyncResult:
    """Sync sources from upstream now."""
    categories = _parse_categories(input.categories)
    manager = await get_manager()

    result = await manager.sync_now(
        force=input.force,
        categories=categories,
        min_priority=input.min_priority,
        max_priority=input.max_priority,
    )
    return SyncResult(**result.to_dict())


@mcp.tool
async def check_for_updates() -> UpdateCheckResult:
    """Check upstream for changes without downloading."""
    manager = await get_manager()
    check = await manager.check_for_updates()
    return UpdateCheckResult(**check.to_dict())


@mcp.tool
async def get_update_history(input: HistoryInput) -> HistoryResult:
    """List recent revision changes."""
    from docs_sync.memory.update_history import ChangeType

    change_type = None
    if input.change_type:
        try:
            change_type = ChangeType(input.change_type)
        except ValueError:
            msg = f"Unknown change type: {input.change_type} (expected created, updated, or deleted)"
            raise ValueError(msg) from None

    manager = await get_manager()
    records = manager.history.query(source_id=input.source_id, change_type=change_type, limit=input.limit)
    return HistoryResult(records=[UpdateEntry(**r.to_dict()) for r in records])


@mcp.tool
async def get_doc_content(input: DocContentInput) -> DocContent:
    """Get cached content of one source."""
    manager = await get_manager()
    source = manager.get_source(input.source_id)
    entry = manager.get_doc(input.source_id)
    if source is None or entry is None:
        return DocContent(source_id=input.source_id, found=False)

    return DocContent(
        source_id=source.id,
        category=source.category.value,
        path=source.path,
        content=entry.content,
        revision=entry.revision,
        last_fetched=entry.last_fetched.isoformat(),
        size=entry.size,
    )


@mcp.tool
async def list_docs(input: ListDocsInput) -> DocList:
    """List cached sources, optionally by category."""
    categories = _parse_categories([input.category] if input.category else None)
    manager = await get_manager()

    if categories:
        pairs = manager.docs_by_category(categories[0])
    else:
        pairs = [(manager.get_source(sid), entry) for sid, entry in manager.all_docs().items()]

    return DocList(
        docs=[
            DocSummary(
                source_id=source.id,
                category=source.category.value,
                path=source.path,
                description=source.description,
                revision=entry.revision,
                last_fetched=entry.last_fetched.isoformat(),
                size=entry.size,
            )
            for source, entry in pairs
        ]
    )


@mcp.tool
async def search_docs(input: SearchDocsInput) -> SearchDocsResult:
    """Keyword search over cached documentation."""
    categories = _parse_categories(input.categories)
    manager = await get_manager()

    hits = manager.search_docs(input.query, categories=categories, limit=input.limit)
    return SearchDocsResult(
        query=input.query,
        hits=[
            SearchHitEntry(
                source_id=hit.source.id,
                category=hit.source.category.value,
                path=hit.source.path,
                total_matches=len(hit.matches),
                matches=[LineMatchEntry(line=m.line, context=m.context) for m in hit.matches[: input.max_matches]],
            )
            for hit in hits
        ],
    )


def main() -> None:
    """Run the MCP server."""
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
