"""Core mdexport data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

Record = Dict[str, Any]


class ChangeReason(str, Enum):
    NEW = "new"
    MODIFIED = "modified"


def composite_key(record_type: str, record: Record) -> str:
    """Build the ``type|name|source`` key identifying a record across runs."""
    name = str(record.get("name") or "unknown").lower()
    source = str(record.get("source") or "unknown").lower()
    return f"{record_type}|{name}|{source}"


@dataclass(slots=True)
class ChangeEntry:
    """A record that needs exporting, with the reason it was selected."""

    record_type: str
    record: Record
    key: str
    entry_hash: str
    reason: ChangeReason


@dataclass(slots=True)
class ChangeSet:
    """Result of diffing one source file against the export state."""

    changed: bool
    file_hash: str | None = None
    entries: List[ChangeEntry] = field(default_factory=list)
    data: Dict[str, Any] | None = None

    @classmethod
    def unchanged(cls) -> "ChangeSet":
        return cls(changed=False)
