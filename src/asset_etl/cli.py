"""asset_etl.cli

Command-line entry point for the asset extract imports.

Usage:
    asset-etl --import-type assets --db-dsn "$DB_DSN" data/extracts/asset_extract.csv

    python -m asset_etl.cli \\
        --import-type pegging \\
        --db-dsn "$DB_DSN" \\
        --batch-size 50 \\
        --dry-run

    asset-etl --definition-file config/imports/custom.yml --db-dsn "$DB_DSN" extract.xlsx

SOURCE_PATH defaults to the import type's conventional extract path.
Exit status 1 signals a fatal failure (missing or undecodable source,
unreachable database, incompatible target table); row and batch
failures are written to the error log and do not change the exit status.
"""

from __future__ import annotations

import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

import click
import psycopg

from asset_etl.commit import TargetSchemaError
from asset_etl.contract import ImportDefinitionError, load_import_definition
from asset_etl.definitions import BUILTIN_DEFINITIONS
from asset_etl.pipeline import run_import
from asset_etl.row_source import SourceReadError
from asset_etl.shared import ErrorSink, ImportCounters, write_run_report


@click.command()
@click.argument("source_path", required=False, type=click.Path(dir_okay=False))
@click.option(
    "--import-type",
    default="assets",
    type=click.Choice(sorted(BUILTIN_DEFINITIONS)),
    show_default=True,
    help="Built-in import definition",
)
@click.option(
    "--definition-file",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="YAML import definition; overrides --import-type",
)
@click.option("--db-dsn", required=True, envvar="DB_DSN", help="PostgreSQL DSN [env: DB_DSN]")
@click.option("--batch-size", default=None, type=click.IntRange(min=1), help="Override the definition's batch size")
@click.option("--errors-path", default=None, type=click.Path(dir_okay=False), help="Override the error log path")
@click.option("--reports-dir", default="./artifacts/reports", show_default=True, type=click.Path(file_okay=False))
@click.option("--dry-run", is_flag=True, default=False, help="Roll back every write at the end of the run")
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option("-v", "--verbose", is_flag=True, default=False, help="Enable debug logging")
def main(
    source_path: str | None,
    import_type: str,
    definition_file: str | None,
    db_dsn: str,
    batch_size: int | None,
    errors_path: str | None,
    reports_dir: str,
    dry_run: bool,
    run_id: str | None,
    verbose: bool,
) -> None:
    """Import a CSV or spreadsheet extract into its target table."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc).isoformat()

    if definition_file:
        try:
            definition = load_import_definition(Path(definition_file))
        except ImportDefinitionError as e:
            click.echo(f"[{run_id}] FATAL: {e}", err=True)
            sys.exit(1)
    else:
        definition = BUILTIN_DEFINITIONS[import_type]

    source = source_path or definition.source_path
    if not source:
        click.echo(f"[{run_id}] FATAL: no source path given and {definition.name!r} has no default", err=True)
        sys.exit(1)
    source_file = Path(source)
    error_log = Path(errors_path or definition.error_log_path or f"./artifacts/errors/{definition.name}_errors.json")

    counters = ImportCounters()
    sink = ErrorSink(error_log)

    click.echo(f"[{run_id}] Starting {definition.name} run (dry_run={dry_run})")
    try:
        summary = run_import(
            run_id, db_dsn, definition, source_file, counters, sink,
            batch_size=batch_size,
            dry_run=dry_run,
        )
    except SourceReadError as e:
        click.echo(f"[{run_id}] FATAL: {e}", err=True)
        if not source_path:
            click.echo(
                f"[{run_id}] Provide a path: asset-etl --import-type {definition.name} path/to/extract",
                err=True,
            )
        sys.exit(1)
    except TargetSchemaError as e:
        click.echo(f"[{run_id}] FATAL: {e}", err=True)
        sys.exit(1)
    except psycopg.Error as e:
        click.echo(f"[{run_id}] FATAL: run failed with DB error: {e}", err=True)
        sys.exit(1)

    report_path = write_run_report(
        run_id, started_at, definition.name, dry_run, str(source_file),
        counters, summary, Path(reports_dir),
    )
    click.echo(f"[{run_id}] Run report: {report_path}")


if __name__ == "__main__":
    main()
