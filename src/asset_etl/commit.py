"""asset_etl.commit

Batch committer: writes transformed records to the target table in
fixed-size batches, each batch inside its own transaction.

A batch whose write fails is rolled back as a unit and recorded as a
single error; later batches are still attempted. In replace mode the
table is cleared in one step before the first batch.

Caller owns the connection (autocommit=True). When the caller wraps the
whole phase in an outer transaction (dry run), each batch becomes a
savepoint instead of a commit.
"""

from __future__ import annotations

import math
from typing import Any, Iterator

import click
import psycopg
from psycopg import sql

from asset_etl.contract import ImportDefinition
from asset_etl.shared import ErrorSink, ImportCounters


class TargetSchemaError(Exception):
    """Raised when the target table is missing or lacks a mapped column."""


# ---------------------------------------------------------------------------
# Target checks
# ---------------------------------------------------------------------------

def _unique_keys(conn: psycopg.Connection, table: str) -> list[set[str]]:
    """Column sets of the table's non-partial unique indexes (ON CONFLICT targets)."""
    rows = conn.execute(
        """
        SELECT ARRAY(
            SELECT a.attname::text
            FROM unnest(i.indkey) AS k(attnum)
            JOIN pg_attribute a ON a.attrelid = i.indrelid AND a.attnum = k.attnum
        )
        FROM pg_index i
        WHERE i.indrelid = to_regclass(quote_ident(%s))
          AND i.indisunique
          AND i.indpred IS NULL
        """,
        (table,),
    ).fetchall()
    return [set(r[0]) for r in rows]


def verify_target(
    conn: psycopg.Connection,
    table: str,
    columns: tuple[str, ...],
    natural_key: tuple[str, ...] = (),
) -> None:
    """Raise TargetSchemaError unless the table can take every mapped column.

    With a natural_key, the table must also carry a unique index on exactly
    those columns, or every upsert batch would fail.
    """
    rows = conn.execute(
        """
        SELECT column_name
        FROM information_schema.columns
        WHERE table_schema = current_schema() AND table_name = %s
        """,
        (table,),
    ).fetchall()
    if not rows:
        raise TargetSchemaError(f"target table {table!r} does not exist")
    present = {r[0] for r in rows}
    missing = [c for c in columns if c not in present]
    if missing:
        raise TargetSchemaError(f"target table {table!r} is missing columns: {missing}")
    if natural_key and set(natural_key) not in _unique_keys(conn, table):
        raise TargetSchemaError(
            f"target table {table!r} has no unique constraint on natural key {list(natural_key)}"
        )


# ---------------------------------------------------------------------------
# SQL builders
# ---------------------------------------------------------------------------

def _column_list(columns: tuple[str, ...]) -> sql.Composed:
    return sql.SQL(", ").join(sql.Identifier(c) for c in columns)


def build_insert_sql(table: str, columns: tuple[str, ...]) -> sql.Composed:
    return sql.SQL("INSERT INTO {table} ({columns}) VALUES ({values})").format(
        table=sql.Identifier(table),
        columns=_column_list(columns),
        values=sql.SQL(", ").join([sql.Placeholder()] * len(columns)),
    )


def build_upsert_sql(
    table: str,
    columns: tuple[str, ...],
    natural_key: tuple[str, ...],
) -> sql.Composed:
    """INSERT ... ON CONFLICT (natural_key) DO UPDATE for every non-key column."""
    updates = [c for c in columns if c not in natural_key]
    if updates:
        action = sql.SQL("DO UPDATE SET {}").format(
            sql.SQL(", ").join(
                sql.SQL("{col} = EXCLUDED.{col}").format(col=sql.Identifier(c))
                for c in updates
            )
        )
    else:
        action = sql.SQL("DO NOTHING")
    return sql.SQL("{insert} ON CONFLICT ({key}) {action}").format(
        insert=build_insert_sql(table, columns),
        key=_column_list(natural_key),
        action=action,
    )


def build_write_sql(definition: ImportDefinition) -> sql.Composed:
    if definition.write_mode == "upsert":
        return build_upsert_sql(
            definition.table, definition.target_columns, definition.natural_key
        )
    return build_insert_sql(definition.table, definition.target_columns)


# ---------------------------------------------------------------------------
# Clear + batches
# ---------------------------------------------------------------------------

def clear_table(conn: psycopg.Connection, table: str) -> int:
    """Delete every row of the target table in one transaction; return the count."""
    with conn.transaction():
        cur = conn.execute(sql.SQL("DELETE FROM {}").format(sql.Identifier(table)))
    return cur.rowcount


def iter_batches(
    records: list[dict[str, Any]],
    batch_size: int,
) -> Iterator[tuple[int, list[dict[str, Any]]]]:
    """Yield (offset, batch) contiguous slices in original order."""
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    for offset in range(0, len(records), batch_size):
        yield offset, records[offset:offset + batch_size]


def commit_batches(
    conn: psycopg.Connection,
    definition: ImportDefinition,
    records: list[dict[str, Any]],
    sink: ErrorSink,
    counters: ImportCounters,
    batch_size: int | None = None,
    run_id: str = "",
) -> None:
    size = batch_size or definition.batch_size
    columns = definition.target_columns
    statement = build_write_sql(definition)
    total = math.ceil(len(records) / size)

    for number, (offset, batch) in enumerate(iter_batches(records, size), start=1):
        params = [[record[c] for c in columns] for record in batch]
        try:
            with conn.transaction():
                with conn.cursor() as cur:
                    cur.executemany(statement, params)
        except psycopg.Error as exc:
            if conn.closed:
                raise
            reason = str(exc).strip() or type(exc).__name__
            sink.add_batch_failure(offset, reason, batch)
            counters.batches_failed += 1
            click.echo(
                f"[{run_id}] Error committing batch starting at record {offset}: {reason}",
                err=True,
            )
            continue
        counters.records_committed += len(batch)
        counters.batches_committed += 1
        click.echo(f"[{run_id}] Committed batch {number}/{total}")
