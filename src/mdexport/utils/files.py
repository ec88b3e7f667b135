"""Utility helpers for working with files."""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, Iterable, Iterator


def iter_json_paths(inputs: Iterable[Path]) -> Iterator[Path]:
    """Yield JSON paths from input paths, descending into directories."""
    for item in inputs:
        if item.is_dir():
            yield from iter_json_paths(sorted(child for child in item.rglob("*.json")))
        elif item.is_file() and item.suffix.lower() == ".json":
            yield item


def hash_bytes(data: bytes) -> str:
    """Compute SHA256 hash for an in-memory byte string."""
    return hashlib.sha256(data).hexdigest()


def canonical_json(value: Any) -> str:
    """Serialize ``value`` with sorted keys so equal records serialize equally."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def hash_record(record: Any) -> str:
    """Compute the record-level hash over the canonical serialization."""
    return hash_bytes(canonical_json(record).encode("utf-8"))
