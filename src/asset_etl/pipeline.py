"""asset_etl.pipeline

Generic tabular import: source file → validate → transform → batch commit
→ error artifact + summary. One function per phase so tests can drive
each phase against their own connection.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import click
import psycopg

from asset_etl.commit import clear_table, commit_batches, verify_target
from asset_etl.contract import ImportDefinition
from asset_etl.row_source import SourceRows, missing_columns, read_rows
from asset_etl.shared import ErrorSink, ImportCounters, ImportSummary
from asset_etl.validate import transform_row, validate_row

log = logging.getLogger(__name__)

PROGRESS_EVERY = 1000
ERRORS_SHOWN = 5


# ---------------------------------------------------------------------------
# Validate + transform
# ---------------------------------------------------------------------------

def process_rows(
    source: SourceRows,
    definition: ImportDefinition,
    sink: ErrorSink,
    counters: ImportCounters,
    run_id: str = "",
) -> list[dict[str, Any]]:
    """Validate and transform every row in file order; failures go to the sink."""
    records: list[dict[str, Any]] = []
    for row_number, raw_row in source.rows:
        counters.rows_read += 1
        result = validate_row(raw_row, definition.contract)
        if result.ok:
            records.append(transform_row(result.values, definition.mappings))
            counters.rows_valid += 1
        else:
            sink.add_row_failure(row_number, result.reason, raw_row)
            counters.rows_rejected += 1
            log.debug("Row %d rejected: %s", row_number, result.reason)

        if counters.rows_read % PROGRESS_EVERY == 0:
            click.echo(f"[{run_id}] Processed {counters.rows_read} rows...")
    return records


# ---------------------------------------------------------------------------
# Store phase
# ---------------------------------------------------------------------------

def _write_records(
    conn: psycopg.Connection,
    definition: ImportDefinition,
    records: list[dict[str, Any]],
    sink: ErrorSink,
    counters: ImportCounters,
    batch_size: int | None,
    run_id: str,
) -> None:
    if definition.write_mode == "replace":
        deleted = clear_table(conn, definition.table)
        click.echo(f"[{run_id}] Cleared {deleted} existing rows from {definition.table}")
    commit_batches(conn, definition, records, sink, counters, batch_size, run_id)


def load_records(
    conn: psycopg.Connection,
    definition: ImportDefinition,
    records: list[dict[str, Any]],
    sink: ErrorSink,
    counters: ImportCounters,
    batch_size: int | None = None,
    dry_run: bool = False,
    run_id: str = "",
) -> None:
    """Verify the target table, then clear (replace mode) and commit in batches.

    Raises:
        TargetSchemaError: target table missing or incompatible.
    """
    natural_key = definition.natural_key if definition.write_mode == "upsert" else ()
    verify_target(conn, definition.table, definition.target_columns, natural_key)
    if not dry_run:
        _write_records(conn, definition, records, sink, counters, batch_size, run_id)
        return
    with conn.transaction(force_rollback=True):
        _write_records(conn, definition, records, sink, counters, batch_size, run_id)
    click.echo(f"[{run_id}] [dry-run] All changes rolled back.")


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

def report_summary(run_id: str, summary: ImportSummary, sink: ErrorSink) -> Path | None:
    click.echo(f"[{run_id}] Import Summary:")
    click.echo(f"[{run_id}]   Total records processed: {summary.total_processed}")
    click.echo(f"[{run_id}]   Successfully imported: {summary.total_succeeded}")
    click.echo(f"[{run_id}]   Failed: {summary.total_failed}")

    error_path = sink.write()
    if error_path is None:
        return None
    click.echo(f"[{run_id}] Errors have been logged to: {error_path}")
    for record in sink.records[:ERRORS_SHOWN]:
        click.echo(f"[{run_id}]   Row {record.row}: {record.error}")
        if isinstance(record.data, dict):
            click.echo(f"[{run_id}]     Data: {json.dumps(record.data, default=str)}")
    return error_path


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------

def run_import(
    run_id: str,
    db_dsn: str,
    definition: ImportDefinition,
    source_path: Path,
    counters: ImportCounters,
    sink: ErrorSink,
    batch_size: int | None = None,
    dry_run: bool = False,
) -> ImportSummary:
    """Run one import end to end and return its summary.

    Raises:
        SourceReadError: source file missing or undecodable (nothing written).
        TargetSchemaError: target table missing or incompatible.
        psycopg.OperationalError: database unreachable.
    """
    click.echo(f"[{run_id}] Starting {definition.name} import from: {source_path}")
    source = read_rows(source_path)

    missing = missing_columns(source.header, definition.contract.columns)
    if missing:
        warning = f"columns missing from source header: {missing}"
        counters.warnings.append(warning)
        log.warning("%s: %s", source_path.name, warning)
        click.echo(f"[{run_id}] WARNING: {warning}", err=True)

    records = process_rows(source, definition, sink, counters, run_id)
    click.echo(
        f"[{run_id}] Pre-scan: {counters.rows_read} rows read, "
        f"{counters.rows_valid} valid, {counters.rows_rejected} rejected"
    )

    with psycopg.connect(db_dsn, autocommit=True) as conn:
        load_records(conn, definition, records, sink, counters, batch_size, dry_run, run_id)

    summary = ImportSummary.from_run(counters, sink)
    report_summary(run_id, summary, sink)
    return summary
