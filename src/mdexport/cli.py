"""Command line interface for mdexport."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from mdexport.config import AppConfig
from mdexport.errors import MdExportError
from mdexport.export.exporter import Exporter
from mdexport.export.storage import ExportStateStore
from mdexport.render.formatter import MarkdownFormatter
from mdexport.render.frontmatter import FrontmatterGenerator


console = Console()
app = typer.Typer(help="mdexport - incremental markdown export of structured records")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _parse_resources(resource: str | None) -> list[str] | None:
    if not resource:
        return None
    return [item.strip() for item in resource.split(",") if item.strip()] or None


@app.command()
def export(
    data: Path = typer.Option(AppConfig().data_dir, "--data", help="Directory with JSON source files"),
    output: Path = typer.Option(AppConfig().output_dir, "--output", help="Output directory"),
    state: Path = typer.Option(AppConfig().state_path, "--state", help="Export state file"),
    full: bool = typer.Option(False, "--full", help="Full export (regenerate all files)"),
    force: bool = typer.Option(False, "--force", help="Ignore state and regenerate all files"),
    resource: Optional[str] = typer.Option(
        None, "--resource", help="Export specific resource types (comma-separated)"
    ),
    clean: bool = typer.Option(False, "--clean", help="Clean output directory before export"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Export records to markdown, only touching what changed since the last run."""
    _setup_logging(verbose)
    config = AppConfig(
        data_dir=data,
        output_dir=output,
        state_path=state,
        mode="full" if full else "incremental",
    )
    base = Path.cwd()
    data_dir = config.resolve_data_dir(base)
    if not data_dir.exists():
        raise typer.BadParameter(f"Data directory not found: {data_dir}")

    store = ExportStateStore(config.resolve_state_path(base))
    exporter = Exporter(
        store,
        config.resolve_output_dir(base),
        metadata=FrontmatterGenerator.from_data_dir(data_dir),
        renderer=MarkdownFormatter.from_data_dir(data_dir),
    )

    console.print(f"Exporting [bold]{data_dir}[/bold] into [bold]{exporter.output_dir}[/bold]...")
    try:
        if clean:
            exporter.clean_output()
        stats = exporter.export(
            [data_dir],
            force=force or config.force,
            resource_types=_parse_resources(resource),
        )
    except (MdExportError, OSError) as exc:
        console.print(f"[red]Export failed:[/red] {exc}")
        if verbose:
            console.print_exception()
        raise typer.Exit(code=1) from exc

    console.print(
        f"Created: {stats.created}, updated: {stats.updated}, "
        f"skipped: {stats.skipped}, errors: {stats.errors}"
    )
    if stats.errors:
        console.print(f"[yellow]{stats.errors} records failed to export.[/yellow]")


@app.command()
def status(
    state: Path = typer.Option(AppConfig().state_path, "--state", help="Export state file"),
) -> None:
    """Show what the export state currently tracks."""
    state_path = AppConfig(state_path=state).resolve_state_path(Path.cwd())
    if not state_path.exists():
        console.print("[yellow]No export state found.[/yellow]")
        return

    snapshot = ExportStateStore(state_path).load()
    console.print(f"Last export: [bold]{snapshot.last_export or 'never'}[/bold]")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Source file")
    table.add_column("Records", justify="right")
    table.add_column("Hash")
    for source, file_state in sorted(snapshot.files.items()):
        table.add_row(source, str(len(file_state.entries)), file_state.content_hash[:12])
    console.print(table)
    console.print(f"Tracked files: {len(snapshot.files)}, tracked records: {len(snapshot.index)}")


@app.command()
def prune(
    output: Path = typer.Option(AppConfig().output_dir, "--output", help="Output directory"),
    state: Path = typer.Option(AppConfig().state_path, "--state", help="Export state file"),
    delete_artifacts: bool = typer.Option(
        False, "--delete-artifacts", help="Also delete artifacts exported from removed sources"
    ),
) -> None:
    """Forget source files that no longer exist on disk."""
    config = AppConfig(output_dir=output, state_path=state)
    state_path = config.resolve_state_path(Path.cwd())
    if not state_path.exists():
        console.print("[yellow]State not found, nothing to prune.[/yellow]")
        return

    store = ExportStateStore(state_path)
    removed = store.remove_missing_files()
    deleted = 0
    if delete_artifacts:
        output_dir = config.resolve_output_dir(Path.cwd())
        for file_state in removed.values():
            for entry in file_state.entries.values():
                artifact = output_dir / entry.output_file
                if artifact.exists():
                    artifact.unlink()
                    deleted += 1

    try:
        store.save()
    except MdExportError as exc:
        console.print(f"[red]Prune failed:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    console.print(f"Removed {len(removed)} missing source files, deleted {deleted} artifacts.")
