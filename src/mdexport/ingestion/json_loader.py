"""Loading of JSON source files and iteration over their typed records.

A source file is a JSON object whose top-level keys name record types and whose
values are arrays of records, e.g. ``{"_meta": {...}, "spell": [{...}, ...]}``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, Tuple

from mdexport.errors import MalformedSourceError, SourceUnavailableError
from mdexport.models import Record

LOGGER = logging.getLogger(__name__)

META_KEY = "_meta"


def read_source_bytes(path: Path) -> bytes:
    """Read the raw bytes of a source file."""
    try:
        return path.read_bytes()
    except FileNotFoundError as exc:
        raise SourceUnavailableError(path) from exc
    except OSError as exc:
        raise SourceUnavailableError(path, reason=f"unreadable ({exc})") from exc


def parse_source(path: Path, raw: bytes) -> Dict[str, Any]:
    """Decode raw source bytes into the top-level JSON object."""
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedSourceError(path, str(exc)) from exc
    if not isinstance(data, dict):
        raise MalformedSourceError(path, "top-level value is not an object")
    return data


def load_source(path: Path) -> Tuple[bytes, Dict[str, Any]]:
    """Read and parse a source file, returning raw bytes and parsed data."""
    raw = read_source_bytes(path)
    return raw, parse_source(path, raw)


def iter_records(data: Dict[str, Any]) -> Iterator[Tuple[str, Record]]:
    """Yield ``(record_type, record)`` pairs in file order.

    Metadata blocks and non-array values are skipped, as are array items that
    are not JSON objects.
    """
    for record_type, records in data.items():
        if record_type == META_KEY or not isinstance(records, list):
            continue
        for record in records:
            if not isinstance(record, dict):
                LOGGER.debug("Ignoring non-object item in %s array", record_type)
                continue
            yield record_type, record
