"""
Command line entry point (mysql-pg-migrate).

Commands:
    transfer TABLE...|all   Stream oversized tables (exit 0 PASS, 2 WARN, 1 error)
    batch {all|2|3|4|5}     Run pgloader batches
    batches                 List batch definitions
    check                   Check batch coverage against live source tables
"""

from pathlib import Path
from typing import Annotated, List, Optional
import logging

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from mysql_pg_migration.config import MigrationConfig
from mysql_pg_migration.data_transfer import FAILED, format_elapsed, transfer_tables
from mysql_pg_migration.errors import ConfigurationError, MigrationError
from mysql_pg_migration.mysql_helper import MySqlConnectionHelper
from mysql_pg_migration.pgloader import run_batches
from mysql_pg_migration.schema_extractor import SchemaExtractor
from mysql_pg_migration.table_config import BATCHES, LARGE_TABLES, check_partition
from mysql_pg_migration.validation import PASS, WARN

logger = logging.getLogger(__name__)

EXIT_ERROR = 1
EXIT_WARN = 2

console = Console()

app = typer.Typer(
    name="mysql-pg-migrate",
    help="MySQL to PostgreSQL (Neon) migration: pgloader batches and streaming transfers.",
    no_args_is_help=True,
)


@app.callback()
def setup(
    log_level: Annotated[
        str,
        typer.Option("--log-level", envvar="LOG_LEVEL", help="Logging level (DEBUG, INFO, WARNING, ERROR)"),
    ] = "INFO",
    env_file: Annotated[
        Optional[Path],
        typer.Option("--env-file", help="Load environment variables from this file"),
    ] = None,
) -> None:
    """Load .env and configure logging."""
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )


def load_config() -> MigrationConfig:
    """Build configuration from the environment, exiting 1 if incomplete."""
    try:
        return MigrationConfig.from_env()
    except ConfigurationError as e:
        console.print(f"✗ {e}", style="red", markup=False)
        if e.missing_keys:
            for key in e.missing_keys:
                console.print(f"[red]  Missing required env var: {key}[/red]")
        raise typer.Exit(EXIT_ERROR)


@app.command()
def transfer(
    tables: Annotated[
        List[str],
        typer.Argument(help="Tables to stream, or 'all' for every registered large table"),
    ],
) -> None:
    """Stream tables from MySQL into PostgreSQL with COPY."""
    config = load_config()
    table_names = list(LARGE_TABLES) if tables == ["all"] else tables

    console.print(f"[green]▶ Streaming {len(table_names)} table(s) into schema {config.target_schema}[/green]")
    try:
        results = transfer_tables(config, table_names)
    except MigrationError as e:
        console.print(f"✗ {e}", style="red", markup=False)
        raise typer.Exit(EXIT_ERROR)

    summary = Table(title="Transfer Summary")
    summary.add_column("Table")
    summary.add_column("Rows", justify="right")
    summary.add_column("Invalid bytes", justify="right")
    summary.add_column("Next id", justify="right")
    summary.add_column("Elapsed", justify="right")
    summary.add_column("Status")

    for result in results:
        if result['phase'] == FAILED:
            status = f"[red]FAILED ({result['failed_phase']})[/red]"
        elif result['verification'] == PASS:
            status = "[green]PASS[/green]"
        else:
            status = (
                f"[yellow]WARN ({result['source_row_count']:,} → "
                f"{result['target_row_count']:,})[/yellow]"
            )
        sequence = result.get('sequence')
        summary.add_row(
            result['table_name'],
            f"{result.get('rows_transferred', 0):,}",
            f"{result.get('dropped_bytes', 0):,}",
            f"{sequence['next_value']:,}" if sequence else "-",
            format_elapsed(result['elapsed_time_seconds']) if 'elapsed_time_seconds' in result else "-",
            status,
        )
    console.print(summary)

    if any(r['phase'] == FAILED for r in results):
        for result in results:
            if result['phase'] == FAILED:
                console.print(f"✗ {result['table_name']}: {result['error']}", style="red", markup=False)
        raise typer.Exit(EXIT_ERROR)
    if any(r['verification'] == WARN for r in results):
        raise typer.Exit(EXIT_WARN)


@app.command()
def batch(
    target: Annotated[str, typer.Argument(help="'all' or a batch number (2-5)")] = "all",
) -> None:
    """Run pgloader for one batch or all batches."""
    if target != "all" and (not target.isdigit() or int(target) not in BATCHES):
        console.print(f"[red]Usage: mysql-pg-migrate batch {{all|{'|'.join(str(n) for n in sorted(BATCHES))}}}[/red]")
        _print_batches()
        raise typer.Exit(EXIT_ERROR)

    config = load_config()
    try:
        results = run_batches(target, config)
    except MigrationError as e:
        console.print(f"✗ {e}", style="red", markup=False)
        raise typer.Exit(EXIT_ERROR)

    failed = [r for r in results if not r['success']]
    if failed:
        for result in failed:
            console.print(f"[red]✗ Batch {result['batch']} failed[/red]")
            console.print(f"[yellow]Load file kept at: {result['config_file']}[/yellow]")
        raise typer.Exit(EXIT_ERROR)

    console.print(f"[green]✓ {len(results)} batch(es) completed[/green]")


@app.command()
def batches() -> None:
    """List the pgloader batch definitions."""
    _print_batches()


@app.command()
def check() -> None:
    """Check that every live source table is covered exactly once."""
    config = load_config()
    try:
        mysql_helper = MySqlConnectionHelper(config.mysql)
        mysql_helper.check_connection()
        live_tables = SchemaExtractor(mysql_helper).get_tables()
    except MigrationError as e:
        console.print(f"✗ {e}", style="red", markup=False)
        raise typer.Exit(EXIT_ERROR)

    result = check_partition(live_tables)

    labels = {
        'uncovered': ("red", "Not covered by any batch"),
        'duplicated': ("red", "Loaded by more than one batch"),
        'streamed_and_batched': ("yellow", "Streamed and also in a batch"),
        'not_migrated': ("yellow", "Excluded and not streamed"),
        'missing': ("yellow", "Configured but not in source"),
    }
    for key, (color, label) in labels.items():
        if result[key]:
            console.print(f"[{color}]{label}: {', '.join(result[key])}[/{color}]")

    if result['uncovered'] or result['duplicated']:
        raise typer.Exit(EXIT_ERROR)
    console.print(f"[green]✓ All {len(live_tables):,} source tables accounted for[/green]")


def _print_batches() -> None:
    table = Table(title="pgloader Batches")
    table.add_column("Batch", justify="right")
    table.add_column("Tables")
    table.add_column("Description")
    for number, batch_def in sorted(BATCHES.items()):
        table.add_row(str(number), batch_def.display_tables, batch_def.description)
    table.add_row("-", ' '.join(LARGE_TABLES), "streamed with 'transfer'")
    console.print(table)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
