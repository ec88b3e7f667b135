"""File- and record-level change detection against the export state."""

from __future__ import annotations

import logging
from pathlib import Path

from mdexport.errors import MalformedSourceError, SourceUnavailableError
from mdexport.export.storage import ExportStateStore
from mdexport.ingestion.json_loader import iter_records, parse_source, read_source_bytes
from mdexport.models import ChangeEntry, ChangeReason, ChangeSet, composite_key
from mdexport.utils.files import hash_bytes, hash_record

LOGGER = logging.getLogger(__name__)


def source_id(path: Path) -> str:
    """Key under which a source file is tracked in the export state."""
    return Path(path).as_posix()


class ChangeDetector:
    """Diffs source files against previously exported hashes.

    A file whose raw bytes hash to the stored value is reported unchanged
    without being parsed. Otherwise every record is hashed and compared with
    its stored entry hash; records with equal hashes are left out.
    """

    def __init__(self, store: ExportStateStore) -> None:
        self.store = store

    def detect(self, path: Path) -> ChangeSet:
        source = source_id(path)
        try:
            raw = read_source_bytes(path)
        except SourceUnavailableError as exc:
            LOGGER.warning("%s", exc)
            return ChangeSet.unchanged()

        file_hash = hash_bytes(raw)
        previous = self.store.file_state(source)
        if previous is not None and previous.content_hash == file_hash:
            return ChangeSet.unchanged()

        try:
            data = parse_source(path, raw)
        except MalformedSourceError as exc:
            LOGGER.error("%s", exc)
            return ChangeSet.unchanged()

        entries = []
        for record_type, record in iter_records(data):
            key = composite_key(record_type, record)
            entry_hash = hash_record(record)
            previous_hash = self.store.entry_hash(source, key)
            if previous_hash == entry_hash:
                continue
            reason = ChangeReason.NEW if previous_hash is None else ChangeReason.MODIFIED
            entries.append(
                ChangeEntry(
                    record_type=record_type,
                    record=record,
                    key=key,
                    entry_hash=entry_hash,
                    reason=reason,
                )
            )

        return ChangeSet(changed=True, file_hash=file_hash, entries=entries, data=data)
