"""Command Line Interface for fhir-bridge.

Runs CSV synchronizations against the configured FHIR server, validates files
without writing, and shows the active configuration.

Security Impact:
    - Output names rows, fields and identifiers, never patient data
    - The auth token is never printed; ``info`` only says whether one is set
"""

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from fhir_bridge import __version__
from fhir_bridge.adapters.csv_parser import PatientCsvParser
from fhir_bridge.domain.ports import ParseError, StoreError
from fhir_bridge.domain.services import SyncReport
from fhir_bridge.domain.validation import RowValidator
from fhir_bridge.infrastructure.logging_config import setup_logging
from fhir_bridge.infrastructure.settings import settings
from fhir_bridge.main import bootstrap, run_sync

app = typer.Typer(
    name="fhir-bridge",
    help="fhir-bridge: synchronize flat patient records with a FHIR server",
    add_completion=False
)
console = Console()


def _print_errors(report: SyncReport) -> None:
    table = Table(title="Errors", show_lines=False)
    table.add_column("Type", style="red")
    table.add_column("Message")
    table.add_column("Where", style="dim")
    for error in report.errors:
        details = error.details
        if "rowIndex" in details:
            where = f"row {details['rowIndex']} / {details.get('field')}"
        elif details.get("line") is not None:
            where = f"line {details['line']}"
        else:
            where = str(details.get("identifier") or details.get("resource_id") or "")
        table.add_row(error.error_type, error.message, where)
    console.print(table)


@app.command()
def sync(
    input_file: Path = typer.Argument(..., help="Patient CSV file", exists=True, dir_okay=False),
    dry_run: bool = typer.Option(False, "--dry-run", help="Write to an in-memory store instead of the server"),
    skip_bad_records: bool = typer.Option(False, "--skip-bad-records", help="Skip records that fail conversion"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines"),
) -> None:
    """Synchronize a patient CSV file with the FHIR server.

    Examples:
        fhir-bridge sync data/patients.csv
        fhir-bridge sync data/patients.csv --dry-run --verbose
    """
    setup_logging(use_json=json_logs or settings.json_logs, log_level="DEBUG" if verbose else settings.log_level)

    console.print(f"\n[bold blue]{settings.app_name}[/bold blue]")
    console.print(f"[dim]Input file:[/dim] {input_file}")
    console.print(f"[dim]Store:[/dim] {'memory (dry run)' if dry_run else settings.store_backend}")
    console.print()

    try:
        with console.status("[bold green]Synchronizing..."):
            report = asyncio.run(run_sync(
                input_file.read_bytes(),
                dry_run=dry_run,
                skip_bad_records=skip_bad_records,
            ))
    except KeyboardInterrupt:
        console.print("\n[yellow]⚠[/yellow] Sync interrupted; re-run to reconcile remote state")
        raise typer.Exit(code=130)
    except StoreError as e:
        console.print(f"[red]✗[/red] Store unavailable ({e.operation}): {e}")
        raise typer.Exit(code=1)

    summary = Table(show_header=False, box=None, padding=(0, 2))
    summary.add_row("Created:", f"[green]{report.created_count}[/green]")
    summary.add_row("Updated:", f"[green]{report.updated_count}[/green]")
    summary.add_row("Errors:", f"[red]{len(report.errors)}[/red]" if report.errors else "0")
    summary.add_row("Last stage:", report.stage.value if report.stage else "none")
    console.print(summary)

    if report.errors:
        _print_errors(report)
        console.print(f"\n[yellow]⚠[/yellow] Sync finished with {len(report.errors)} error(s)")
        raise typer.Exit(code=1)
    console.print("\n[green]✓[/green] Sync completed successfully")
    raise typer.Exit(code=0)


@app.command()
def validate(
    input_file: Path = typer.Argument(..., help="Patient CSV file", exists=True, dir_okay=False),
) -> None:
    """Parse and validate a patient CSV file without contacting the server."""
    try:
        records = PatientCsvParser().parse(input_file.read_bytes())
    except ParseError as e:
        console.print(f"[red]✗[/red] Parse error at line {e.line}: {e}")
        raise typer.Exit(code=1)

    verdict = RowValidator.default().validate(records)
    if verdict.is_valid:
        console.print(f"[green]✓[/green] {len(records)} row(s) valid")
        raise typer.Exit(code=0)

    table = Table(title="Violations")
    table.add_column("Row", justify="right")
    table.add_column("Field", style="cyan")
    table.add_column("Message")
    for violation in verdict.violations:
        table.add_row(str(violation.row_index), violation.field, violation.message)
    console.print(table)
    console.print(f"[red]✗[/red] {len(verdict.violations)} violation(s) in {len(records)} row(s)")
    raise typer.Exit(code=1)


@app.command()
def info() -> None:
    """Display configuration."""
    console.print("[bold blue]Configuration[/bold blue]\n")

    fhir_config = settings.fhir_config
    info_table = Table(show_header=False, box=None, padding=(0, 2))
    info_table.add_row("Application:", settings.app_name)
    info_table.add_row("Store backend:", settings.store_backend)
    info_table.add_row("FHIR base URL:", fhir_config.base_url)
    info_table.add_row("Timeout:", f"{fhir_config.timeout_seconds:g}s")
    info_table.add_row("Patient identifier system:", fhir_config.identifier_system)
    info_table.add_row("Auth token:", "set" if fhir_config.auth_token else "not set")
    info_table.add_row("Conversion policy:", settings.conversion_policy)
    registry = bootstrap()
    info_table.add_row("Citizenship table:", f"{settings.citizenship_table} ({len(registry)} codes)")
    info_table.add_row("Log level:", settings.log_level)
    console.print(info_table)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"fhir-bridge v{__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False, "--version", help="Show version information", callback=_version_callback, is_eager=True
    )
) -> None:
    """fhir-bridge: synchronize flat patient records with a FHIR server."""


if __name__ == "__main__":
    app()
