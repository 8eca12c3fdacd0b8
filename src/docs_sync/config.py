"""Configuration for documentation sync."""

from __future__ import annotations

import json
import os
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, model_validator

from docs_sync.exceptions import ConfigurationError

HOUR = 60 * 60


class UpstreamConfig(BaseModel):
    """Where the documentation collection lives."""

    owner: str = Field(default="midnightntwrk", description="Repository owner on the content host")
    repo: str = Field(default="midnight-docs", description="Repository holding the documentation")
    branch: str = Field(default="main", description="Branch whose head is the source of truth")
    api_base_url: str = Field(default="https://api.github.com", description="Content host API root")
    token: str | None = Field(
        default_factory=lambda: os.environ.get("GITHUB_TOKEN"),
        description="Optional API token for higher rate limits",
    )
    timeout_seconds: float = Field(default=30.0, description="Transport timeout per request")
    user_agent: str = Field(default="docs-sync", description="User-Agent header sent upstream")


class SchedulerConfig(BaseModel):
    """Timing and failure policy for periodic sweeps."""

    check_interval_seconds: float = Field(default=1 * HOUR, description="Base delay between checks")
    force_interval_seconds: float = Field(
        default=24 * HOUR, description="Force a full refresh when no update was seen for this long"
    )
    max_consecutive_failures: int = Field(default=5, description="Stop after this many failures in a row")
    backoff_multiplier: float = Field(default=2.0, description="Delay multiplier per consecutive failure")
    max_backoff_seconds: float = Field(default=4 * HOUR, description="Upper bound for the backoff delay")
    auto_start: bool = Field(default=False, description="Start the scheduler with the sync manager")
    persist_state: bool = Field(default=True, description="Write the state file after each check")

    @model_validator(mode="after")
    def _check_bounds(self) -> SchedulerConfig:
        if self.check_interval_seconds <= 0 or self.max_backoff_seconds <= 0:
            raise ConfigurationError("Scheduler intervals must be positive")
        if self.force_interval_seconds < self.check_interval_seconds:
            raise ConfigurationError("force_interval_seconds must not be shorter than check_interval_seconds")
        if self.backoff_multiplier < 1:
            raise ConfigurationError("backoff_multiplier must be >= 1")
        if self.max_consecutive_failures < 1:
            raise ConfigurationError("max_consecutive_failures must be >= 1")
        return self


class StalenessTier(BaseModel):
    """Sources with ``priority >= min_priority`` go stale after ``threshold_seconds``."""

    min_priority: int
    threshold_seconds: float


def _default_tiers() -> list[StalenessTier]:
    return [
        StalenessTier(min_priority=100, threshold_seconds=4 * HOUR),
        StalenessTier(min_priority=70, threshold_seconds=12 * HOUR),
        StalenessTier(min_priority=0, threshold_seconds=48 * HOUR),
    ]


class StalenessPolicy(BaseModel):
    """Priority-tiered staleness thresholds.

    The tier with the highest ``min_priority`` not above a source's priority
    applies. Sources below every tier fall back to the lowest tier.
    """

    tiers: list[StalenessTier] = Field(default_factory=_default_tiers)

    @model_validator(mode="after")
    def _check_tiers(self) -> StalenessPolicy:
        if not self.tiers:
            raise ConfigurationError("Staleness policy needs at least one tier")
        priorities = [tier.min_priority for tier in self.tiers]
        if len(set(priorities)) != len(priorities):
            raise ConfigurationError(f"Duplicate tier priorities in staleness policy: {priorities}")
        for tier in self.tiers:
            if tier.threshold_seconds <= 0:
                raise ConfigurationError(
                    f"Tier for priority >= {tier.min_priority} has non-positive threshold"
                )
        self.tiers = sorted(self.tiers, key=lambda t: t.min_priority, reverse=True)
        return self

    def threshold_for(self, priority: int) -> float:
        """Return the staleness threshold in seconds for ``priority``."""
        for tier in self.tiers:
            if priority >= tier.min_priority:
                return tier.threshold_seconds
        return self.tiers[-1].threshold_seconds


class WebhookConfig(BaseModel):
    """Push notification endpoint and reindex dispatch."""

    enabled: bool = Field(default=False, description="Run the webhook HTTP server")
    host: str = Field(default="0.0.0.0", description="Interface to bind")
    port: int = Field(default=9847, description="Port for webhook server")
    secret: str | None = Field(default=None, description="Webhook secret for HMAC validation")
    default_branches: list[str] = Field(
        default_factory=lambda: ["main", "master"], description="Branches whose pushes trigger a refresh"
    )
    debounce_window_seconds: float = Field(default=5 * 60, description="Minimum gap between admitted events")
    priority_repositories: list[str] = Field(
        default_factory=lambda: [
            "compact",
            "midnight-js",
            "midnight-examples",
            "lace-wallet-midnight",
            "midnight-wallet",
            "midnight-node",
        ],
        description="Repositories routed to the priority refresh path",
    )
    workflow_repo: str | None = Field(
        default=None, description="owner/name of a repo whose indexing workflow is dispatched"
    )
    workflow_file: str = Field(default="index.yml", description="Standard indexing workflow")
    priority_workflow_file: str = Field(default="index-priority.yml", description="Priority indexing workflow")
    workflow_ref: str = Field(default="main", description="Ref the workflow runs on")
    pending_ttl_seconds: float = Field(default=1 * HOUR, description="Expiry for pending reindex markers")


class SyncConfig(BaseModel):
    """Top-level configuration for documentation sync."""

    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    staleness: StalenessPolicy = Field(default_factory=StalenessPolicy)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)

    full_sync_cooldown_seconds: float = Field(
        default=1 * HOUR, description="Window in which an unchanged collection revision skips the sweep"
    )
    max_concurrency: int = Field(default=1, ge=1, description="Concurrent fetches per sweep (1 = sequential)")
    per_source_timeout_seconds: float = Field(
        default=60.0, description="Per-source timeout when fetching concurrently"
    )
    not_found_eviction_threshold: int = Field(
        default=5, ge=0, description="Evict after this many consecutive not-found results (0 = never)"
    )
    history_limit: int = Field(default=100, ge=1, description="Update records kept in history")

    # Storage
    state_path: Path = Field(
        default_factory=lambda: Path.home() / ".docs-sync" / "state.json",
        description="Path to the persisted cache and scheduler state",
    )
    pending_path: Path = Field(
        default_factory=lambda: Path.home() / ".docs-sync" / "pending-reindex.json",
        description="Path to pending reindex markers",
    )


def load_config(path: Path) -> SyncConfig:
    """Load a JSON configuration file, raising ConfigurationError when malformed."""
    try:
        with path.open(encoding="utf-8") as f:
            data = json.load(f)
        return SyncConfig.model_validate(data)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        raise ConfigurationError(f"Invalid configuration in {path}: {e}") from e


# Default configuration
SYNC_CONFIG = SyncConfig()
