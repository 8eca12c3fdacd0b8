"""Bounded history of source revision changes."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any


class ChangeType(StrEnum):
    """Kind of change recorded for a source."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(frozen=True)
class UpdateRecord:
    """One observed revision change."""

    timestamp: datetime
    source_id: str
    previous_revision: str
    new_revision: str
    change_type: ChangeType

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        data["change_type"] = str(self.change_type)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UpdateRecord:
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            source_id=data["source_id"],
            previous_revision=data.get("previous_revision", ""),
            new_revision=data.get("new_revision", ""),
            change_type=ChangeType(data["change_type"]),
        )


class UpdateHistory:
    """Newest-first list of update records, trimmed to ``limit`` entries."""

    def __init__(self, limit: int = 100) -> None:
        self.limit = limit
        self._records: list[UpdateRecord] = []

    def __len__(self) -> int:
        return len(self._records)

    def record(
        self,
        source_id: str,
        previous_revision: str | None,
        new_revision: str | None,
        change_type: ChangeType,
        at: datetime,
    ) -> UpdateRecord:
        """Prepend a record and trim the oldest beyond the limit."""
        entry = UpdateRecord(
            timestamp=at,
            source_id=source_id,
            previous_revision=previous_revision or "",
            new_revision=new_revision or "",
            change_type=change_type,
        )
        self._records.insert(0, entry)
        del self._records[self.limit :]
        return entry

    def query(
        self,
        source_id: str | None = None,
        change_type: ChangeType | None = None,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[UpdateRecord]:
        """Filter records, newest first."""
        records = self._records
        if source_id:
            records = [r for r in records if r.source_id == source_id]
        if change_type:
            records = [r for r in records if r.change_type == change_type]
        if since is not None:
            records = [r for r in records if r.timestamp >= since]
        if limit:
            records = records[:limit]
        return list(records)

    def clear(self) -> None:
        self._records = []

    def export(self) -> list[dict[str, Any]]:
        return [r.to_dict() for r in self._records]

    def load(self, data: list[dict[str, Any]]) -> None:
        self._records = [UpdateRecord.from_dict(item) for item in data][: self.limit]
