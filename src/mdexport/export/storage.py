"""JSON-backed export state store."""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from mdexport.errors import StatePersistError

LOGGER = logging.getLogger(__name__)

STATE_VERSION = "1.0.0"
DEFAULT_STATE_FILE = ".markdown-export-state.json"


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class EntryState(BaseModel):
    entry_hash: str
    output_file: str
    exported_at: str


class FileState(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content_hash: str = Field(alias="hash")
    entries: Dict[str, EntryState] = Field(default_factory=dict)


class IndexEntry(BaseModel):
    source_file: str
    output_file: str


class ExportState(BaseModel):
    """Snapshot of everything exported so far."""

    version: str = STATE_VERSION
    last_export: str | None = None
    files: Dict[str, FileState] = Field(default_factory=dict)
    index: Dict[str, IndexEntry] = Field(default_factory=dict)


class ExportStateStore:
    """Persistence layer for per-file and per-record export bookkeeping.

    The state is loaded lazily on first access, mutated in memory by
    :meth:`record_export` and written back by a single :meth:`save` call.
    """

    def __init__(self, state_path: Path) -> None:
        self.state_path = Path(state_path)
        self._state: ExportState | None = None

    @property
    def state(self) -> ExportState:
        return self.load()

    def load(self) -> ExportState:
        """Load the snapshot, falling back to an empty one if it is missing or corrupt."""
        if self._state is not None:
            return self._state

        if not self.state_path.exists():
            self._state = ExportState()
            return self._state

        try:
            self._state = ExportState.model_validate_json(
                self.state_path.read_text(encoding="utf-8")
            )
        except (OSError, UnicodeDecodeError, ValidationError) as exc:
            LOGGER.warning(
                "Failed to load state from %s, starting fresh: %s", self.state_path, exc
            )
            self._state = ExportState()
        return self._state

    def save(self) -> None:
        """Stamp and write the snapshot. Failures propagate as StatePersistError."""
        state = self.load()
        state.last_export = _utcnow()
        payload = state.model_dump_json(indent=2, by_alias=True)
        tmp_path = self.state_path.with_name(self.state_path.name + ".tmp")
        try:
            self.state_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(payload, encoding="utf-8")
            os.replace(tmp_path, self.state_path)
        except OSError as exc:
            LOGGER.error("Failed to save state to %s: %s", self.state_path, exc)
            raise StatePersistError(f"Failed to save state to {self.state_path}: {exc}") from exc

    def record_export(
        self,
        source_file: str,
        file_hash: str,
        key: str,
        entry_hash: str,
        output_file: str,
    ) -> None:
        """Remember that ``key`` from ``source_file`` was written to ``output_file``."""
        state = self.load()
        file_state = state.files.get(source_file)
        if file_state is None:
            file_state = FileState(content_hash=file_hash)
            state.files[source_file] = file_state

        file_state.content_hash = file_hash
        file_state.entries[key] = EntryState(
            entry_hash=entry_hash,
            output_file=output_file,
            exported_at=_utcnow(),
        )
        state.index[key] = IndexEntry(source_file=source_file, output_file=output_file)

    def invalidate_file(self, source_file: str) -> None:
        """Forget the file-level hash so the next run diffs the file record by record."""
        file_state = self.load().files.get(source_file)
        if file_state is not None:
            file_state.content_hash = ""

    def refresh_file_hash(self, source_file: str, file_hash: str) -> None:
        """Store the current hash of an already tracked file."""
        file_state = self.load().files.get(source_file)
        if file_state is not None:
            file_state.content_hash = file_hash

    def file_state(self, source_file: str) -> FileState | None:
        return self.load().files.get(source_file)

    def entry_hash(self, source_file: str, key: str) -> str | None:
        file_state = self.file_state(source_file)
        if file_state is None:
            return None
        entry = file_state.entries.get(key)
        return entry.entry_hash if entry else None

    def remove_missing_files(self) -> Dict[str, FileState]:
        """Forget source files that no longer exist on disk.

        Returns the removed file states so callers can clean up their artifacts.
        Index entries are dropped only when they still point at a removed file.
        """
        state = self.load()
        missing = {
            source: file_state
            for source, file_state in state.files.items()
            if not Path(source).exists()
        }
        for source, file_state in missing.items():
            del state.files[source]
            for key in file_state.entries:
                index_entry = state.index.get(key)
                if index_entry is not None and index_entry.source_file == source:
                    del state.index[key]
        return missing
