"""Exception types raised by the export pipeline."""

from __future__ import annotations

from pathlib import Path


class MdExportError(Exception):
    """Base class for export errors."""


class SourceUnavailableError(MdExportError):
    """A source file is missing or cannot be read."""

    def __init__(self, path: Path, reason: str = "not found") -> None:
        super().__init__(f"Source file {reason}: {path}")
        self.path = path


class MalformedSourceError(MdExportError):
    """A source file does not contain valid record data."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Failed to parse {path}: {reason}")
        self.path = path


class StatePersistError(MdExportError):
    """The export state could not be written."""


class RecordExportError(MdExportError):
    """A single record could not be rendered or written."""

    def __init__(self, key: str, cause: Exception) -> None:
        super().__init__(f"Error exporting {key}: {cause}")
        self.key = key
        self.cause = cause
