"""Tests for the Exporter pipeline."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from mdexport.errors import StatePersistError
from mdexport.export.changes import source_id
from mdexport.export.exporter import (
    Exporter,
    ExportStats,
    filter_by_resource_types,
    find_sources,
)
from mdexport.export.storage import ExportStateStore
from mdexport.models import ChangeReason
from mdexport.render.formatter import MarkdownFormatter
from mdexport.render.rules import ExportRules
from mdexport.utils.files import hash_bytes


@pytest.fixture
def store(tmp_path: Path) -> ExportStateStore:
    return ExportStateStore(tmp_path / "state.json")


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    return tmp_path / "out"


@pytest.fixture
def widget_rules() -> ExportRules:
    return ExportRules(type_dirs={"widget": "widgets"})


def make_exporter(store, output_dir, rules, **kwargs) -> Exporter:
    return Exporter(
        store,
        output_dir,
        eligible=rules.is_eligible,
        resolve_path=rules.resolve_path,
        **kwargs,
    )


def rerun(store: ExportStateStore, output_dir: Path, rules: ExportRules, **kwargs) -> Exporter:
    """Fresh exporter over the persisted state, as a new invocation would build."""
    return make_exporter(ExportStateStore(store.state_path), output_dir, rules, **kwargs)


class TestExportStats:
    """Test ExportStats tracking."""

    def test_init_defaults(self) -> None:
        stats = ExportStats()
        assert (stats.created, stats.updated, stats.skipped, stats.errors) == (0, 0, 0, 0)
        assert stats.processed_files == []
        assert stats.failed_keys == []

    def test_increment(self) -> None:
        stats = ExportStats()
        stats.increment(ChangeReason.NEW)
        stats.increment(ChangeReason.MODIFIED)
        stats.increment(ChangeReason.MODIFIED)

        assert stats.created == 1
        assert stats.updated == 2


class TestSourceSelection:
    """Test source discovery and resource filtering."""

    def test_find_sources(self, write_source, tmp_path: Path) -> None:
        write_source("spells.json", {})
        write_source("bestiary/bestiary-mm.json", {})

        names = [p.name for p in find_sources([tmp_path / "data"])]

        assert names == ["bestiary-mm.json", "spells.json"]

    def test_filter_by_resource_types(self) -> None:
        files = [Path("data/spells-phb.json"), Path("data/items.json"), Path("data/bestiary.json")]

        assert filter_by_resource_types(files, ["Spell", " item "]) == files[:2]

    def test_filter_ignores_blank_types(self) -> None:
        assert filter_by_resource_types([Path("a.json")], ["", "  "]) == []


class TestWidgetScenario:
    """Four consecutive runs over one evolving source file."""

    def test_incremental_runs(self, store, output_dir, widget_rules, write_source) -> None:
        path = write_source("widgets.json", {"widget": [{"name": "Alpha", "source": "S1"}]})
        data_dir = path.parent

        # Run 1: empty state
        stats = make_exporter(store, output_dir, widget_rules).export([data_dir])
        assert (stats.created, stats.updated, stats.skipped, stats.errors) == (1, 0, 0, 0)
        artifact = output_dir / "widgets" / "Alpha (S1).md"
        assert artifact.exists()
        saved = ExportStateStore(store.state_path)
        assert saved.entry_hash(source_id(path), "widget|alpha|s1") is not None
        assert saved.state.index["widget|alpha|s1"].output_file == "widgets/Alpha (S1).md"

        # Run 2: no edits
        stats = rerun(store, output_dir, widget_rules).export([data_dir])
        assert (stats.created, stats.updated) == (0, 0)
        assert stats.processed_files == []

        # Run 3: record changed
        write_source("widgets.json", {"widget": [{"name": "Alpha", "source": "S1", "level": 2}]})
        stats = rerun(store, output_dir, widget_rules).export([data_dir])
        assert (stats.created, stats.updated) == (0, 1)

        # Run 4: second record added, Alpha untouched
        write_source(
            "widgets.json",
            {
                "widget": [
                    {"name": "Alpha", "source": "S1", "level": 2},
                    {"name": "Beta", "source": "S1"},
                ]
            },
        )
        renderer = Mock(wraps=MarkdownFormatter())
        stats = rerun(store, output_dir, widget_rules, renderer=renderer).export([data_dir])
        assert (stats.created, stats.updated) == (1, 0)
        assert renderer.format.call_count == 1
        assert renderer.format.call_args.args[0]["name"] == "Beta"
        assert (output_dir / "widgets" / "Beta (S1).md").exists()


class TestExporter:
    """Test Exporter behaviour."""

    def test_idempotent(self, store, output_dir, widget_rules, write_source) -> None:
        path = write_source(
            "widgets.json",
            {"widget": [{"name": n, "source": "S1"} for n in ("A", "B", "C")]},
        )

        first = make_exporter(store, output_dir, widget_rules).export([path.parent])
        second = rerun(store, output_dir, widget_rules).export([path.parent])

        assert first.created == 3
        assert (second.created, second.updated, second.errors) == (0, 0, 0)

    def test_reformatted_file_restores_fast_path(
        self, store, output_dir, widget_rules, write_source
    ) -> None:
        payload = {"widget": [{"name": "A", "source": "S1"}]}
        path = write_source("widgets.json", payload)
        make_exporter(store, output_dir, widget_rules).export([path.parent])

        path.write_text(json.dumps(payload), encoding="utf-8")
        reformatted = rerun(store, output_dir, widget_rules).export([path.parent])

        assert (reformatted.created, reformatted.updated) == (0, 0)
        assert reformatted.processed_files == [path]
        saved = ExportStateStore(store.state_path).file_state(source_id(path))
        assert saved.content_hash == hash_bytes(path.read_bytes())

        third = rerun(store, output_dir, widget_rules).export([path.parent])

        assert third.processed_files == []

    def test_force_reexports_everything(self, store, output_dir, widget_rules, write_source) -> None:
        path = write_source(
            "widgets.json",
            {"widget": [{"name": n, "source": "S1"} for n in ("A", "B", "C")]},
        )
        make_exporter(store, output_dir, widget_rules).export([path.parent])

        stats = rerun(store, output_dir, widget_rules).export([path.parent], force=True)

        assert (stats.created, stats.updated) == (0, 3)

    def test_force_on_empty_state_creates(self, store, output_dir, widget_rules, write_source) -> None:
        path = write_source("widgets.json", {"widget": [{"name": "A", "source": "S1"}]})

        stats = make_exporter(store, output_dir, widget_rules).export([path], force=True)

        assert stats.created == 1
        assert store.file_state(source_id(path)) is not None

    def test_partial_failure_isolated(self, store, output_dir, widget_rules, write_source) -> None:
        path = write_source(
            "widgets.json",
            {"widget": [{"name": n, "source": "S1"} for n in ("A", "B", "C", "D")]},
        )
        formatter = MarkdownFormatter()

        def flaky(record, record_type, metadata, source_data=None):
            if record["name"] == "B":
                raise RuntimeError("render exploded")
            return formatter.format(record, record_type, metadata, source_data)

        renderer = Mock()
        renderer.format.side_effect = flaky

        stats = make_exporter(store, output_dir, widget_rules, renderer=renderer).export(
            [path.parent]
        )

        assert stats.created == 3
        assert stats.errors == 1
        assert stats.failed_keys == ["widget|b|s1"]
        assert not (output_dir / "widgets" / "B (S1).md").exists()
        assert store.entry_hash(source_id(path), "widget|b|s1") is None

    def test_failed_record_retried_next_run(
        self, store, output_dir, widget_rules, write_source
    ) -> None:
        path = write_source(
            "widgets.json",
            {"widget": [{"name": n, "source": "S1"} for n in ("A", "B")]},
        )
        def fail_on_b(record, *args, **kwargs):
            if record["name"] == "B":
                raise RuntimeError("boom")
            return "ok"

        broken = Mock()
        broken.format.side_effect = fail_on_b
        first = make_exporter(store, output_dir, widget_rules, renderer=broken).export(
            [path.parent]
        )
        assert (first.created, first.errors) == (1, 1)

        stats = rerun(store, output_dir, widget_rules).export([path.parent])

        assert (stats.created, stats.updated, stats.errors) == (1, 0, 0)
        assert (output_dir / "widgets" / "B (S1).md").exists()

    def test_write_failure_counted(self, store, output_dir, widget_rules, write_source) -> None:
        path = write_source("widgets.json", {"widget": [{"name": "A", "source": "S1"}]})
        # A directory in the artifact's place makes the write fail.
        (output_dir / "widgets" / "A (S1).md").mkdir(parents=True)

        stats = make_exporter(store, output_dir, widget_rules).export([path])

        assert stats.errors == 1
        assert stats.created == 0

    def test_ineligible_records_skipped(self, store, output_dir, write_source) -> None:
        path = write_source(
            "feats.json",
            {
                "feat": [
                    {"name": "Alert", "source": "PHB", "entries": ["Always ready."]},
                    {"name": "Empty", "source": "PHB"},
                    {"name": "Reprint", "source": "XPHB", "_copy": {"name": "Alert"}},
                ],
                "mystery": [{"name": "Thing", "source": "PHB"}],
            },
        )

        stats = Exporter(store, output_dir).export([path])

        assert (stats.created, stats.skipped) == (1, 3)
        assert set(store.file_state(source_id(path)).entries) == {"feat|alert|phb"}
        assert (output_dir / "feats" / "Alert (PHB).md").exists()

    def test_resource_filter(self, store, output_dir, write_source) -> None:
        spells = write_source("spells.json", {"spell": [{"name": "Light", "source": "PHB", "level": 0}]})
        write_source("bestiary.json", {"monster": [{"name": "Goblin", "source": "MM"}]})

        stats = Exporter(store, output_dir).export([spells.parent], resource_types=["spell"])

        assert stats.created == 1
        assert stats.processed_files == [spells]
        assert not (output_dir / "monsters").exists()

    def test_saves_once(self, store, output_dir, widget_rules, write_source) -> None:
        write_source("a.json", {"widget": [{"name": "A", "source": "S1"}]})
        path = write_source("b.json", {"widget": [{"name": "B", "source": "S1"}]})
        exporter = make_exporter(store, output_dir, widget_rules)

        with patch.object(store, "save", wraps=store.save) as mock_save:
            exporter.export([path.parent])

        mock_save.assert_called_once()

    def test_save_failure_propagates(self, store, output_dir, widget_rules, write_source) -> None:
        path = write_source("a.json", {"widget": [{"name": "A", "source": "S1"}]})
        exporter = make_exporter(store, output_dir, widget_rules)

        with patch.object(store, "save", side_effect=StatePersistError("disk full")):
            with pytest.raises(StatePersistError):
                exporter.export([path])

    def test_no_sources(self, store, output_dir, tmp_path: Path, caplog) -> None:
        empty = tmp_path / "empty"
        empty.mkdir()

        stats = Exporter(store, output_dir).export([empty])

        assert stats.created == 0
        assert "No source files found" in caplog.text
        assert ExportStateStore(store.state_path).state.last_export is not None

    def test_malformed_file_left_untracked(
        self, store, output_dir, widget_rules, tmp_path: Path
    ) -> None:
        data = tmp_path / "data"
        data.mkdir()
        broken = data / "broken.json"
        broken.write_text("{nope", encoding="utf-8")

        for force in (False, True):
            stats = make_exporter(store, output_dir, widget_rules).export([data], force=force)
            assert (stats.created, stats.errors) == (0, 0)

        assert store.file_state(source_id(broken)) is None

    def test_clean_output(self, store, output_dir) -> None:
        (output_dir / "spells").mkdir(parents=True)
        (output_dir / "spells" / "old.md").write_text("stale")

        Exporter(store, output_dir).clean_output()

        assert not output_dir.exists()

    def test_clean_output_missing_dir(self, store, output_dir) -> None:
        Exporter(store, output_dir).clean_output()

        assert not output_dir.exists()

    def test_collaborators_receive_record(self, store, output_dir, widget_rules, write_source) -> None:
        path = write_source("w.json", {"widget": [{"name": "A", "source": "S1"}]})
        metadata = Mock()
        metadata.generate.return_value = {"name": "A"}
        renderer = Mock()
        renderer.format.return_value = "# A\n"

        make_exporter(
            store, output_dir, widget_rules, metadata=metadata, renderer=renderer
        ).export([path])

        record = {"name": "A", "source": "S1"}
        entry_hash = store.entry_hash(source_id(path), "widget|a|s1")
        metadata.generate.assert_called_once_with(record, "widget", entry_hash)
        renderer.format.assert_called_once_with(
            record, "widget", {"name": "A"}, source_data={"widget": [record]}
        )
        assert (output_dir / "widgets" / "A (S1).md").read_text(encoding="utf-8") == "# A\n"

    def test_subrace_display_name(self, store, output_dir, write_source) -> None:
        path = write_source(
            "races.json",
            {
                "subrace": [
                    {"name": "High", "source": "PHB", "raceName": "Elf", "entries": ["Elegant."]}
                ]
            },
        )

        Exporter(store, output_dir).export([path])

        assert (output_dir / "races" / "High Elf (PHB).md").exists()
