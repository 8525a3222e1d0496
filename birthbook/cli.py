"""Command Line Interface for the Birth-Book import core.

This module provides a CLI using Typer for importing birth records, deriving
relations between them and inspecting the active configuration.
"""

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from birthbook.domain.batch_importer import ImportReport
from birthbook.domain.canonical_schema import RelationKind
from birthbook.domain.ports import BirthBookError, StoragePort
from birthbook.domain.relation_inferencer import RelationInferencer
from birthbook.infrastructure.logging_config import setup_logging
from birthbook.infrastructure.settings import APP_VERSION, settings
from birthbook.main import create_storage_adapter, ensure_schema, run_import

# Initialize Typer app and Rich console
app = typer.Typer(
    name="birthbook",
    help="Birth-Book: birth record normalization and import",
    add_completion=False
)
console = Console()

# Failures listed individually after an import; the rest are summarized
MAX_FAILURES_SHOWN = 20


def create_storage_adapter_cli() -> StoragePort:
    """Create storage adapter based on configuration (CLI wrapper)."""
    try:
        return create_storage_adapter()
    except (ValueError, BirthBookError) as e:
        console.print(f"[red]✗[/red] Failed to create storage adapter: {str(e)}")
        raise typer.Exit(code=1)


def _print_report(report: ImportReport) -> None:
    console.print("\n[bold]Import Summary:[/bold]")

    summary_table = Table(show_header=False, box=None, padding=(0, 2))
    summary_table.add_row("Total processed:", f"[bold]{report.processed:,}[/bold]")
    summary_table.add_row("Inserted:", f"[green]{report.inserted:,}[/green]")
    summary_table.add_row("Skipped (already imported):", f"{report.skipped:,}")
    summary_table.add_row("Failed:", f"[red]{report.failed:,}[/red]" if report.failed else f"{report.failed:,}")
    for kind, count in report.relations.items():
        summary_table.add_row(f"Relations {kind.value}:", f"{count:,}")
    summary_table.add_row("Import ID:", report.import_id)
    console.print(summary_table)

    if not report.errors:
        return

    failure_table = Table(title="Rejected records", show_header=True, header_style="bold")
    failure_table.add_column("Position", justify="right")
    failure_table.add_column("Error", style="red")
    failure_table.add_column("Field")
    failure_table.add_column("Trace ID", style="cyan")
    failure_table.add_column("Message")
    for failure in report.errors[:MAX_FAILURES_SHOWN]:
        failure_table.add_row(
            str(failure.position),
            failure.error_type,
            failure.field or "",
            failure.trace_id or "",
            failure.message.splitlines()[0] if failure.message else "",
        )
    console.print()
    console.print(failure_table)
    if len(report.errors) > MAX_FAILURES_SHOWN:
        console.print(f"[dim]... and {len(report.errors) - MAX_FAILURES_SHOWN} more[/dim]")


@app.command()
def ingest(
    source: Path = typer.Argument(..., help="Input file path (JSON export or legacy .txt/.tsv export)", exists=True),
    chunk_size: Optional[int] = typer.Option(None, "--chunk-size", "-c", min=1, help="Records per checkpoint"),
    no_relations: bool = typer.Option(False, "--no-relations", help="Skip relation inference after the import"),
    created_by: Optional[str] = typer.Option(None, "--created-by", help="Operator recorded on imported records"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Import birth records from a JSON or legacy text export.

    Each record is mapped to the canonical schema, given a trace id, checked
    against already imported records and persisted. Relations between records
    (same mother, same clinic, same month) are derived at the end.

    Examples:
        birthbook ingest datos.txt
        birthbook ingest partos.json --chunk-size 500 --created-by matrona1
        birthbook ingest datos.txt --no-relations --verbose
    """
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        console.print("[dim]Verbose logging enabled[/dim]")

    console.print(f"\n[bold blue]{settings.app_name} Import[/bold blue]")
    console.print(f"[dim]Input file:[/dim] {source}")
    console.print(f"[dim]Database:[/dim] {settings.db_config.db_type}")
    console.print(f"[dim]Chunk size:[/dim] {chunk_size or settings.chunk_size}")
    console.print()

    storage = create_storage_adapter_cli()
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console
        ) as progress:
            task = progress.add_task("Importing records...", total=None)

            def on_chunk(running: ImportReport) -> None:
                progress.update(task, description=f"Imported {running.processed:,} records...")

            report = run_import(
                source=str(source),
                storage=storage,
                chunk_size=chunk_size,
                derive_relations=False if no_relations else None,
                created_by=created_by,
                on_chunk=on_chunk,
            )
    except KeyboardInterrupt:
        console.print("\n[yellow]⚠[/yellow] Import interrupted by user")
        raise typer.Exit(code=130)
    except (BirthBookError, RuntimeError) as e:
        console.print(f"\n[red]✗[/red] Import failed: {str(e)}")
        if verbose:
            console.print_exception()
        raise typer.Exit(code=1)
    finally:
        storage.close()

    _print_report(report)

    if report.failed:
        console.print(f"\n[yellow]⚠[/yellow] Import completed with {report.failed} failures")
        raise typer.Exit(code=1)
    console.print("\n[green]✓[/green] Import completed successfully")


@app.command()
def relations(
    rebuild: bool = typer.Option(False, "--rebuild", help="Drop every relation edge before deriving them again"),
) -> None:
    """Derive relations between the stored records.

    Without --rebuild only missing edges are added.
    """
    storage = create_storage_adapter_cli()
    inferencer = RelationInferencer(max_group_size=settings.relation_max_group_size)
    try:
        ensure_schema(storage)
        with console.status("[bold green]Deriving relations..."):
            added = inferencer.recompute(storage) if rebuild else inferencer.infer(storage)

        relation_table = Table(show_header=True, header_style="bold")
        relation_table.add_column("Relation", style="cyan")
        relation_table.add_column("Added", justify="right")
        relation_table.add_column("Total", justify="right")
        for kind in RelationKind:
            relation_table.add_row(kind.value, f"{added.get(kind, 0):,}", f"{storage.count_edges(kind.value):,}")
    except (BirthBookError, RuntimeError) as e:
        console.print(f"[red]✗[/red] Relation derivation failed: {str(e)}")
        raise typer.Exit(code=1)
    finally:
        storage.close()

    console.print(relation_table)


@app.command("init-db")
def init_db() -> None:
    """Create the record and relation tables if they don't exist."""
    storage = create_storage_adapter_cli()
    try:
        ensure_schema(storage)
    except RuntimeError as e:
        console.print(f"[red]✗[/red] {str(e)}")
        raise typer.Exit(code=1)
    finally:
        storage.close()
    console.print("[green]✓[/green] Schema initialized")


@app.command()
def info() -> None:
    """Display configuration."""
    console.print("[bold blue]System Information[/bold blue]\n")

    info_table = Table(show_header=False, box=None, padding=(0, 2))
    info_table.add_row("Application:", f"{settings.app_name} v{APP_VERSION}")
    info_table.add_row("Database Type:", settings.db_config.db_type)

    if settings.db_config.db_type == "duckdb":
        info_table.add_row("Database Path:", settings.get_db_path())
    elif settings.db_config.db_type == "postgresql":
        info_table.add_row("Database Host:", str(settings.db_config.host))
        info_table.add_row("Database Name:", str(settings.db_config.database))

    info_table.add_row("Chunk Size:", str(settings.chunk_size))
    info_table.add_row("Read Chunk Size:", str(settings.read_chunk_size))
    info_table.add_row("Derive Relations:", "Enabled" if settings.derive_relations else "Disabled")
    info_table.add_row("Relation Group Cap:", str(settings.relation_max_group_size or "None"))
    info_table.add_row("Require Trace ID:", "Yes" if settings.require_trace_id else "No")
    info_table.add_row("Skip Duplicate Content:", "Yes" if settings.skip_duplicate_content else "No")
    info_table.add_row("Log Level:", settings.log_level)

    console.print(info_table)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"{settings.app_name} v{APP_VERSION}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version information"
    )
) -> None:
    """Birth-Book: birth record normalization and import."""
    setup_logging(use_json=settings.log_json, log_level=settings.log_level)


if __name__ == "__main__":
    app()
