"""Pydantic input/output models for MCP tool handlers."""

from __future__ import annotations

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Input models (keep descriptions under 10 words)
# ---------------------------------------------------------------------------


class SourceFreshnessInput(BaseModel):
    """Input for get_source_freshness tool."""

    source_id: str = Field(description="Source ID")


class FreshnessReportInput(BaseModel):
    """Input for get_freshness_report tool."""

    stale_only: bool = Field(default=False, description="Only list stale sources")


class SyncInput(BaseModel):
    """Input for sync_docs tool."""

    force: bool = Field(default=False, description="Bypass the unchanged-collection shortcut")
    categories: list[str] | None = Field(default=None, description="Restrict to these categories")
    min_priority: int | None = Field(default=None, description="Lowest priority to sync")
    max_priority: int | None = Field(default=None, description="Highest priority to sync")


class HistoryInput(BaseModel):
    """Input for get_update_history tool."""

    source_id: str | None = Field(default=None, description="Filter by source")
    change_type: str | None = Field(default=None, description="created, updated, or deleted")
    limit: int = Field(default=20, description="Max records")


class DocContentInput(BaseModel):
    """Input for get_doc_content tool."""

    source_id: str = Field(description="Source ID")


class ListDocsInput(BaseModel):
    """Input for list_docs tool."""

    category: str | None = Field(default=None, description="Only this category")


class SearchDocsInput(BaseModel):
    """Input for search_docs tool."""

    query: str = Field(description="Case-insensitive keyword")
    categories: list[str] | None = Field(default=None, description="Restrict to these categories")
    limit: int = Field(default=10, ge=1, description="Max sources returned")
    max_matches: int = Field(default=20, ge=1, description="Max matches per source")


# ---------------------------------------------------------------------------
# Output models
# ---------------------------------------------------------------------------


class SourceFreshness(BaseModel):
    """Freshness of one source."""

    source_id: str
    found: bool = Field(default=True, description="False when the id is unknown")
    is_stale: bool = False
    last_indexed_at: str | None = None
    last_indexed_relative: str | None = Field(default=None, description="e.g. 2 hours ago")
    revision: str | None = None
    reason: str | None = None


class FreshnessReportResult(BaseModel):
    """Aggregate freshness across all sources."""

    generated_at: str
    total: int
    stale_count: int
    overall_status: str = Field(description="fresh, partially-stale, or stale")
    warning: str | None = None
    sources: list[SourceFreshness] = Field(default_factory=list)


class SyncStatus(BaseModel):
    """Scheduler state and cache statistics."""

    is_running: bool
    last_check_time: str | None = None
    last_update_time: str | None = None
    next_check_time: str | None = None
    seconds_until_next_check: float | None = None
    consecutive_failures: int = 0
    total_checks: int = 0
    total_updates: int = 0
    last_error: str | None = None
    total_sources: int = 0
    cached_sources: int = 0
    collection_revision: str | None = None
    last_full_sweep: str | None = None
    pending_reindex: int = 0


class SyncResult(BaseModel):
    """Outcome of a manual sweep."""

    updated: list[str] = Field(default_factory=list)
    unchanged: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)
    evicted: list[str] = Field(default_factory=list)
    duration_seconds: float = 0.0
    short_circuited: bool = False


class UpdateEntry(BaseModel):
    """One recorded revision change."""

    timestamp: str
    source_id: str
    previous_revision: str
    new_revision: str
    change_type: str


class HistoryResult(BaseModel):
    """Recorded revision changes, newest first."""

    records: list[UpdateEntry] = Field(default_factory=list)


class DocContent(BaseModel):
    """Cached content of one source."""

    source_id: str
    found: bool = Field(default=True, description="False when unknown or never fetched")
    category: str | None = None
    path: str | None = None
    content: str | None = None
    revision: str | None = None
    last_fetched: str | None = None
    size: int = 0


class DocSummary(BaseModel):
    """A cached source without its content."""

    source_id: str
    category: str
    path: str
    description: str = ""
    revision: str | None = None
    last_fetched: str
    size: int = 0


class DocList(BaseModel):
    """Cached sources in catalog order."""

    docs: list[DocSummary] = Field(default_factory=list)


class LineMatchEntry(BaseModel):
    """Matching line and its neighbours."""

    line: int
    context: str


class SearchHitEntry(BaseModel):
    """Matches in one source."""

    source_id: str
    category: str
    path: str
    total_matches: int
    matches: list[LineMatchEntry] = Field(default_factory=list)


class SearchDocsResult(BaseModel):
    """Keyword search results."""

    query: str
    hits: list[SearchHitEntry] = Field(default_factory=list)


class UpdateCheckResult(BaseModel):
    """Whether upstream has anything new, without downloading content."""

    needs_update: bool
    current_revision: str | None = None
    latest_revision: str | None = None
    stale_sources: list[str] = Field(default_factory=list)
