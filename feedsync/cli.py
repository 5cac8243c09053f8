"""Command Line Interface for feedsync.

Typer commands for running imports, listing the source catalog, reading the
import history and seeding reference tables.

    feedsync import cirugias CIRUGIAS.xls
    feedsync import bd-neps BD_Neps.zip --cloud https://imports.example.org
    feedsync sources
    feedsync history --limit 20
    feedsync load-reference cups cups.csv
"""

from pathlib import Path
from typing import Optional

import pandas as pd
import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from feedsync import __version__
from feedsync.adapters.cloud_client import CloudImportClient
from feedsync.adapters.storage.schema import references
from feedsync.domain.models import ImportResult
from feedsync.domain.ports import IngestionError, StoragePort
from feedsync.domain.sources import list_sources
from feedsync.infrastructure.logging_config import setup_logging
from feedsync.infrastructure.settings import settings

app = typer.Typer(
    name="feedsync",
    help="feedsync: clinical spreadsheet and roster import pipeline",
    add_completion=False,
)
console = Console()


def create_storage_adapter_cli() -> StoragePort:
    """Create and initialize the configured storage adapter (CLI wrapper)."""
    from feedsync.main import create_storage_adapter

    try:
        storage = create_storage_adapter(settings.db_config)
    except Exception as e:
        console.print(f"[red]✗[/red] Failed to create storage adapter: {e}")
        raise typer.Exit(code=1)

    init = storage.initialize_schema()
    if init.is_failure():
        console.print(f"[red]✗[/red] Failed to initialize schema: {init.error}")
        storage.close()
        raise typer.Exit(code=1)
    return storage


def _print_result(result: ImportResult) -> None:
    console.print("\n[bold]Import Summary:[/bold]")
    summary_table = Table(show_header=False, box=None, padding=(0, 2))
    summary_table.add_row("Total processed:", f"[bold]{result.total_processed:,}[/bold]")
    summary_table.add_row("Successful:", f"[green]{result.success:,}[/green]")
    summary_table.add_row("Errors:", f"[red]{result.errors:,}[/red]" if result.errors else "0")
    summary_table.add_row("Duplicates:", f"{result.duplicates:,}")
    summary_table.add_row("Skipped:", f"{result.skipped:,}")
    summary_table.add_row("Duration:", result.duration)
    console.print(summary_table)
    if result.error_message:
        console.print(f"\n[yellow]⚠[/yellow] {result.error_message}")


@app.command("import")
def import_(
    source_id: str = typer.Argument(..., help="Import source id (see `feedsync sources`)"),
    input_file: Path = typer.Argument(..., help="Payload file", exists=True, dir_okay=False),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="User recorded in the import history"),
    cloud: Optional[str] = typer.Option(None, "--cloud", help="Run the import on a feedsync server at this URL"),
    report: Optional[Path] = typer.Option(None, "--report", "-r", help="Write the error and info reports here"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Import one payload for a source.

    Examples:
        feedsync import cirugias CIRUGIAS.xls
        feedsync import bd-sigires-neps Sigires_NEPS.txt --user auditoria
        feedsync import bd-neps BD_Neps.zip --cloud http://localhost:8000
    """
    setup_logging(use_json=settings.json_logs, log_level="DEBUG" if verbose else "WARNING")

    console.print(f"\n[bold blue]feedsync import[/bold blue] [cyan]{source_id}[/cyan]")
    console.print(f"[dim]Input file:[/dim] {input_file}")
    console.print(f"[dim]Target:[/dim] {cloud or settings.db_config.db_type}\n")

    storage: Optional[StoragePort] = None
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
            console=console,
        ) as progress:
            task = progress.add_task("Iniciando...", total=100)

            def on_progress(status: str, pct: int) -> None:
                progress.update(task, description=status, completed=pct)

            if cloud:
                with CloudImportClient(cloud) as client:
                    result = client.run(
                        source_id, input_file.read_bytes(), input_file.name, user, on_progress
                    )
            else:
                from feedsync.main import create_pipeline, import_file

                storage = create_storage_adapter_cli()
                pipeline = create_pipeline(storage, settings.import_config)
                result = import_file(pipeline, source_id, input_file, user, on_progress)

        _print_result(result)
        if report:
            sections = [s for s in (result.error_report, result.info_report) if s]
            report.write_text("\n\n".join(sections) + "\n", encoding="utf-8")
            console.print(f"[green]✓[/green] Report saved: {report}")

    except KeyboardInterrupt:
        console.print("\n[yellow]⚠[/yellow] Import interrupted by user")
        raise typer.Exit(code=130)
    except IngestionError as e:
        console.print(f"\n[red]✗[/red] Import failed: {e}")
        raise typer.Exit(code=1)
    finally:
        if storage is not None:
            storage.close()

    if result.errors:
        raise typer.Exit(code=1)
    console.print("\n[green]✓[/green] Import completed successfully")


@app.command()
def sources(
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Only sources of this category"),
    active: bool = typer.Option(False, "--active", help="Only importable sources"),
) -> None:
    """List the import source catalog."""
    table = Table(show_header=True, header_style="bold")
    table.add_column("Id", style="cyan")
    table.add_column("Name")
    table.add_column("Category")
    table.add_column("Status")
    table.add_column("Mode")
    table.add_column("Expected file")
    for config in list_sources(category=category, active_only=active):
        status_style = "green" if config.is_importable else "yellow"
        table.add_row(
            config.id,
            config.name,
            config.category,
            f"[{status_style}]{config.status.value}[/{status_style}]",
            config.mode.value,
            config.expected_file_name,
        )
    console.print(table)


@app.command()
def history(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of rows to show"),
    source_id: Optional[str] = typer.Option(None, "--source", "-s", help="Only this source"),
) -> None:
    """Show the most recent imports."""
    storage = create_storage_adapter_cli()
    try:
        result = storage.list_import_history(limit=limit, source_id=source_id)
    finally:
        storage.close()
    if result.is_failure():
        console.print(f"[red]✗[/red] Failed to read import history: {result.error}")
        raise typer.Exit(code=1)

    table = Table(show_header=True, header_style="bold")
    for column in ("Fecha", "Fuente", "Archivo", "Usuario", "Total", "Exitosos", "Fallidos", "Duplicados", "Duración"):
        table.add_column(column)
    for record in result.value:
        table.add_row(
            record.fecha_importacion.strftime("%Y-%m-%d %H:%M"),
            record.tipo_fuente,
            record.archivo_nombre,
            record.usuario,
            str(record.total_registros),
            str(record.exitosos),
            str(record.fallidos),
            str(record.duplicados),
            record.duracion,
        )
    console.print(table)


@app.command("load-reference")
def load_reference(
    table_name: str = typer.Argument(..., help="Reference table (cups, cie10, divipola, divipola_dep, red, tipoid)"),
    input_file: Path = typer.Argument(..., help="CSV (';' or ',') or Excel file", exists=True, dir_okay=False),
) -> None:
    """Seed or refresh a reference table from a CSV or Excel file.

    Column headers must match the table's columns (case-insensitive).
    """
    schema = references().get(table_name)
    if schema is None:
        console.print(f"[red]✗[/red] Unknown reference table '{table_name}'. Known: {', '.join(references())}")
        raise typer.Exit(code=1)

    if input_file.suffix.lower() in (".xls", ".xlsx"):
        df = pd.read_excel(input_file, dtype=str)
    else:
        df = pd.read_csv(input_file, dtype=str, sep=None, engine="python", encoding_errors="replace")
    df.columns = [str(c).strip().lower() for c in df.columns]
    df = df.apply(lambda column: column.str.strip())

    missing = [c for c in schema.key if c not in df.columns]
    if missing:
        console.print(f"[red]✗[/red] Missing key column(s): {', '.join(missing)}")
        raise typer.Exit(code=1)

    storage = create_storage_adapter_cli()
    try:
        result = storage.persist_dataframe(df, table_name)
    finally:
        storage.close()
    if result.is_failure():
        console.print(f"[red]✗[/red] Load failed: {result.error}")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Loaded {result.value:,} rows into {table_name}")


@app.command()
def info() -> None:
    """Display system information and configuration."""
    console.print("[bold blue]System Information[/bold blue]\n")

    info_table = Table(show_header=False, box=None, padding=(0, 2))
    info_table.add_row("Application:", f"{settings.app_name} {__version__}")
    info_table.add_row("Database Type:", settings.db_config.db_type)
    if settings.db_config.db_type == "duckdb":
        info_table.add_row("Database Path:", settings.get_db_path())
    else:
        info_table.add_row("Database Host:", str(settings.db_config.host))
        info_table.add_row("Database Name:", str(settings.db_config.database))
    import_config = settings.import_config
    info_table.add_row("Reference chunk size:", str(import_config.reference_chunk_size))
    info_table.add_row("Stream chunk rows:", f"{import_config.stream_chunk_rows:,}")
    info_table.add_row("Default user:", import_config.default_user)
    info_table.add_row("Active sources:", str(len(list_sources(active_only=True))))
    console.print(info_table)


@app.callback()
def main_callback(
    version: bool = typer.Option(False, "--version", help="Show version information"),
) -> None:
    """feedsync: clinical spreadsheet and roster import pipeline."""
    if version:
        console.print(f"feedsync v{__version__}")
        raise typer.Exit()


if __name__ == "__main__":
    app()
