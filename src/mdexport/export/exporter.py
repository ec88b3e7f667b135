"""Incremental export pipeline."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Protocol, Sequence

from mdexport.errors import MalformedSourceError, RecordExportError, SourceUnavailableError
from mdexport.export.changes import ChangeDetector, source_id
from mdexport.export.storage import ExportStateStore
from mdexport.ingestion.json_loader import iter_records, load_source
from mdexport.models import ChangeEntry, ChangeReason, Record, composite_key
from mdexport.render.formatter import MarkdownFormatter
from mdexport.render.frontmatter import FrontmatterGenerator
from mdexport.render.rules import ExportRules, display_name
from mdexport.utils.files import hash_bytes, hash_record, iter_json_paths

LOGGER = logging.getLogger(__name__)

EligibilityFilter = Callable[[str, Record], bool]
PathResolver = Callable[[str, str, "str | None"], str]


class MetadataGenerator(Protocol):
    def generate(self, record: Record, record_type: str, entry_hash: str) -> Dict[str, Any]:
        ...


class ArtifactRenderer(Protocol):
    def format(
        self,
        record: Record,
        record_type: str,
        metadata: Mapping[str, Any],
        source_data: Mapping[str, Any] | None = None,
    ) -> str:
        ...


def find_sources(paths: Sequence[Path]) -> list[Path]:
    """Find all JSON source files under the given paths."""
    return list(iter_json_paths(paths))


def filter_by_resource_types(files: Iterable[Path], resource_types: Iterable[str]) -> list[Path]:
    """Keep files whose name mentions one of the requested record types."""
    wanted = [resource.strip().lower() for resource in resource_types if resource.strip()]
    return [path for path in files if any(resource in path.name.lower() for resource in wanted)]


@dataclass(slots=True)
class ExportStats:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    processed_files: list[Path] = field(default_factory=list)
    failed_keys: list[str] = field(default_factory=list)

    def increment(self, reason: ChangeReason) -> None:
        if reason is ChangeReason.NEW:
            self.created += 1
        else:
            self.updated += 1


class Exporter:
    """Coordinates change detection, rendering and state bookkeeping."""

    def __init__(
        self,
        store: ExportStateStore,
        output_dir: Path,
        *,
        metadata: MetadataGenerator | None = None,
        renderer: ArtifactRenderer | None = None,
        eligible: EligibilityFilter | None = None,
        resolve_path: PathResolver | None = None,
    ) -> None:
        rules = ExportRules()
        self.store = store
        self.output_dir = Path(output_dir)
        self.detector = ChangeDetector(store)
        self.metadata = metadata or FrontmatterGenerator()
        self.renderer = renderer or MarkdownFormatter()
        self.eligible = eligible or rules.is_eligible
        self.resolve_path = resolve_path or rules.resolve_path

    def export(
        self,
        paths: Sequence[Path],
        *,
        force: bool = False,
        resource_types: Sequence[str] | None = None,
    ) -> ExportStats:
        """Export all records found under ``paths`` and persist the state once."""
        files = find_sources(paths)
        LOGGER.debug("Found %d data files", len(files))
        if resource_types:
            files = filter_by_resource_types(files, resource_types)
            LOGGER.debug(
                "Filtered to %d files matching resource types: %s",
                len(files),
                ", ".join(resource_types),
            )
        if not files:
            LOGGER.warning("No source files found")

        stats = ExportStats()
        for path in files:
            self.process_file(path, stats, force=force)

        self.store.save()
        return stats

    def process_file(self, path: Path, stats: ExportStats, *, force: bool = False) -> None:
        LOGGER.debug("Processing %s", path)
        if force:
            loaded = self._load_all(path)
            if loaded is None:
                return
            file_hash, data, entries = loaded
        else:
            change = self.detector.detect(path)
            if not change.changed:
                LOGGER.debug("  No changes detected, skipping")
                return
            file_hash, data, entries = change.file_hash, change.data, change.entries
            LOGGER.debug("  %d entries changed", len(entries))

        stats.processed_files.append(path)
        source = source_id(path)
        errors_before = stats.errors
        for entry in entries:
            self.export_entry(entry, source, file_hash, data, stats)

        # Failed records keep their old entry hash; bypass the fast path next run.
        if stats.errors > errors_before:
            self.store.invalidate_file(source)
        else:
            self.store.refresh_file_hash(source, file_hash)

    def export_entry(
        self,
        entry: ChangeEntry,
        source: str,
        file_hash: str,
        data: Mapping[str, Any] | None,
        stats: ExportStats,
    ) -> None:
        """Write one artifact; failures are counted and never propagate."""
        if not self.eligible(entry.record_type, entry.record):
            stats.skipped += 1
            return

        try:
            relative = self._write_artifact(entry, data)
        except Exception as exc:
            error = RecordExportError(entry.key, exc)
            LOGGER.error("  %s", error)
            stats.errors += 1
            stats.failed_keys.append(entry.key)
            return

        self.store.record_export(source, file_hash, entry.key, entry.entry_hash, relative)
        stats.increment(entry.reason)
        verb = "Created" if entry.reason is ChangeReason.NEW else "Updated"
        LOGGER.debug("  %s %s", verb, relative)

    def clean_output(self) -> None:
        """Remove the output directory and everything in it."""
        if self.output_dir.exists():
            LOGGER.info("Cleaning output directory: %s", self.output_dir)
            shutil.rmtree(self.output_dir)

    def _write_artifact(self, entry: ChangeEntry, data: Mapping[str, Any] | None) -> str:
        record, record_type = entry.record, entry.record_type
        relative = self.resolve_path(
            record_type, display_name(record_type, record), record.get("source")
        )
        metadata = self.metadata.generate(record, record_type, entry.entry_hash)
        markdown = self.renderer.format(record, record_type, metadata, source_data=data)

        target = self.output_dir / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(markdown, encoding="utf-8")
        return relative

    def _load_all(self, path: Path) -> tuple[str, Dict[str, Any], List[ChangeEntry]] | None:
        try:
            raw, data = load_source(path)
        except SourceUnavailableError as exc:
            LOGGER.warning("%s", exc)
            return None
        except MalformedSourceError as exc:
            LOGGER.error("%s", exc)
            return None

        source = source_id(path)
        entries = []
        for record_type, record in iter_records(data):
            key = composite_key(record_type, record)
            reason = (
                ChangeReason.NEW
                if self.store.entry_hash(source, key) is None
                else ChangeReason.MODIFIED
            )
            entries.append(
                ChangeEntry(
                    record_type=record_type,
                    record=record,
                    key=key,
                    entry_hash=hash_record(record),
                    reason=reason,
                )
            )
        return hash_bytes(raw), data, entries
