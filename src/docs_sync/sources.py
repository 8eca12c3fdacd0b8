"""Catalog of documentation sources tracked by the sync engine."""

from __future__ import annotations

import json
import logging
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from docs_sync.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class SourceCategory(StrEnum):
    """Content category of a documentation source."""

    COMPACT = "compact"
    SDK = "sdk"
    NETWORK = "network"
    TUTORIAL = "tutorial"
    API = "api"
    GENERAL = "general"


class SourceKind(StrEnum):
    """File format of a documentation source."""

    MDX = "mdx"
    MD = "md"
    JSON = "json"
    TXT = "txt"


class SourceDescriptor(BaseModel):
    """Static description of one upstream documentation source."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Unique source identifier")
    path: str = Field(description="Path of the file in the upstream repository")
    kind: SourceKind = Field(default=SourceKind.MD, description="File format")
    description: str = Field(default="", description="Human-readable summary")
    category: SourceCategory = Field(default=SourceCategory.GENERAL, description="Content category")
    priority: int = Field(default=50, description="Higher syncs first")
    repository: str | None = Field(
        default=None, description="Webhook repository key owning this source (None = upstream repo)"
    )


DEFAULT_SOURCES: list[SourceDescriptor] = [
    # Compact language reference
    SourceDescriptor(
        id="compact-lang-ref",
        path="compact/lang-ref.mdx",
        kind=SourceKind.MDX,
        description="Compact Language Reference - Complete language specification",
        category=SourceCategory.COMPACT,
        priority=100,
    ),
    SourceDescriptor(
        id="compact-index",
        path="compact/index.mdx",
        kind=SourceKind.MDX,
        description="Compact Language Overview",
        category=SourceCategory.COMPACT,
        priority=95,
    ),
    SourceDescriptor(
        id="compact-std-library-exports",
        path="compact/compact-std-library/exports.md",
        kind=SourceKind.MD,
        description="Compact Standard Library Exports",
        category=SourceCategory.COMPACT,
        priority=90,
    ),
    SourceDescriptor(
        id="compact-writing",
        path="compact/writing.mdx",
        kind=SourceKind.MDX,
        description="Writing Compact Contracts",
        category=SourceCategory.COMPACT,
        priority=85,
    ),
    SourceDescriptor(
        id="compact-ledger-adt",
        path="compact/ledger-adt.mdx",
        kind=SourceKind.MDX,
        description="Ledger Abstract Data Types",
        category=SourceCategory.COMPACT,
        priority=80,
    ),
    SourceDescriptor(
        id="compact-explicit-disclosure",
        path="compact/explicit_disclosure.mdx",
        kind=SourceKind.MDX,
        description="Explicit Disclosure in Compact",
        category=SourceCategory.COMPACT,
        priority=75,
    ),
    SourceDescriptor(
        id="compact-opaque-data",
        path="compact/opaque_data.mdx",
        kind=SourceKind.MDX,
        description="Opaque Data Types",
        category=SourceCategory.COMPACT,
        priority=70,
    ),
    SourceDescriptor(
        id="compact-grammar",
        path="compact/compact-grammar.mdx",
        kind=SourceKind.MDX,
        description="Compact Grammar Reference",
        category=SourceCategory.COMPACT,
        priority=65,
    ),
    # SDK
    SourceDescriptor(
        id="sdk-overview",
        path="docs/develop/reference/midnight-api.mdx",
        kind=SourceKind.MDX,
        description="Midnight SDK API Overview",
        category=SourceCategory.SDK,
        priority=100,
    ),
    # Network
    SourceDescriptor(
        id="network-overview",
        path="docs/learn/what-is-midnight.mdx",
        kind=SourceKind.MDX,
        description="What is Midnight Network",
        category=SourceCategory.NETWORK,
        priority=100,
    ),
    SourceDescriptor(
        id="network-architecture",
        path="docs/learn/understanding-midnight.mdx",
        kind=SourceKind.MDX,
        description="Understanding Midnight Architecture",
        category=SourceCategory.NETWORK,
        priority=90,
    ),
    # Tutorials
    SourceDescriptor(
        id="tutorial-getting-started",
        path="docs/develop/getting-started/index.mdx",
        kind=SourceKind.MDX,
        description="Getting Started Guide",
        category=SourceCategory.TUTORIAL,
        priority=100,
    ),
    SourceDescriptor(
        id="tutorial-create-project",
        path="docs/develop/getting-started/create-mn-project.mdx",
        kind=SourceKind.MDX,
        description="Creating a Midnight Project",
        category=SourceCategory.TUTORIAL,
        priority=95,
    ),
    # Overview and metadata
    SourceDescriptor(
        id="llms-overview",
        path="llms.txt",
        kind=SourceKind.TXT,
        description="LLM-optimized documentation overview",
        category=SourceCategory.GENERAL,
        priority=110,
    ),
    SourceDescriptor(
        id="doc-metadata",
        path=".docmeta.json",
        kind=SourceKind.JSON,
        description="Documentation metadata and versioning",
        category=SourceCategory.GENERAL,
        priority=120,
    ),
]


def load_sources(path: Path) -> list[SourceDescriptor]:
    """Load a source catalog from a JSON file.

    The file holds either a list of descriptors or ``{"sources": [...]}``.
    """
    try:
        with path.open(encoding="utf-8") as f:
            data = json.load(f)
        raw = data.get("sources", []) if isinstance(data, dict) else data
        sources = [SourceDescriptor.model_validate(item) for item in raw]
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        raise ConfigurationError(f"Invalid source catalog {path}: {e}") from e

    seen: set[str] = set()
    for source in sources:
        if source.id in seen:
            raise ConfigurationError(f"Duplicate source id in catalog: {source.id}")
        seen.add(source.id)

    logger.info("Loaded %d sources from %s", len(sources), path)
    return sources


def sources_for_repository(
    sources: list[SourceDescriptor], key: str, upstream_repo: str
) -> list[SourceDescriptor]:
    """Return the sources a push for repository ``key`` affects."""
    return [s for s in sources if (s.repository or upstream_repo) == key]
