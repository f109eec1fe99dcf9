"""Integration tests for the asset imports.

These tests run against an ephemeral PostgreSQL database with the target
tables applied via the db_conn fixture in conftest.py.
"""

from __future__ import annotations

import csv
import json
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import psycopg
import pytest
from click.testing import CliRunner
from openpyxl import Workbook

from asset_etl.cli import main
from asset_etl.commit import TargetSchemaError
from asset_etl.definitions import ASSET_REPAIR, ASSETS
from asset_etl.pipeline import load_records, run_import
from asset_etl.row_source import SourceReadError
from asset_etl.shared import ErrorSink, ImportCounters

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ASSET_HEADER = [
    "RPF_TOOL_GROUP", "RPF_SUB_TOOL_GROUP", "RPF_SUB_SUB_TOOL_GROUP",
    "Assettype", "TDA2RASSET_SerialNum", "SLB_GEOUNIT", "SLB_COUNTRY",
    "SLB_DISTRICT", "LOCATION", "REPAIR_STATUS",
]

REPAIR_HEADER = [
    "Geounit", "Physical Location", "Asset Status", "Asset Type", "Assetnum",
    "Days Down", "Repair Responsability", "RAN Status", "Parts Declared",
    "Reservation Status", "Supply Status", "GBV", "Estimate Repair Date",
]


def _asset_row(serial: str, status: str = "IN REPAIR", assettype: str = "AX100") -> dict[str, str]:
    return {
        "RPF_TOOL_GROUP": "DRILLING",
        "RPF_SUB_TOOL_GROUP": "MWD",
        "RPF_SUB_SUB_TOOL_GROUP": "",
        "Assettype": assettype,
        "TDA2RASSET_SerialNum": serial,
        "SLB_GEOUNIT": "NAM",
        "SLB_COUNTRY": "US",
        "SLB_DISTRICT": "HOUSTON",
        "LOCATION": "HOU-01",
        "REPAIR_STATUS": status,
    }


def _write_assets_csv(path: Path, rows: list[dict[str, str]]) -> Path:
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=ASSET_HEADER)
        writer.writeheader()
        writer.writerows(rows)
    return path


def _write_xlsx(path: Path, header: list[str], rows: list[list]) -> Path:
    wb = Workbook()
    ws = wb.active
    ws.append(header)
    for row in rows:
        ws.append(row)
    wb.save(path)
    return path


def _repair_rows(n: int) -> list[list]:
    return [
        ["NAM", "HOUSTON", "DOWN", "PUMP", f"AX{i} | SN{i}", "12", "VENDOR", "OPEN",
         "Y", "RESERVED", "ORDERED", 1500 + i, 44197]
        for i in range(n)
    ]


def _invoke(args: list[str]):
    return CliRunner().invoke(main, args)


def _count(conn, table: str) -> int:
    return conn.execute(f"SELECT count(*) FROM {table}").fetchone()[0]


# ---------------------------------------------------------------------------
# assets (CSV, upsert)
# ---------------------------------------------------------------------------

class TestAssetsImport:
    def test_upsert_inserts_then_updates(self, db_conn, tmp_path):
        conn, dsn = db_conn
        csv_path = _write_assets_csv(tmp_path / "assets.csv", [_asset_row("SN1"), _asset_row("SN2")])
        args = [
            "--import-type", "assets", "--db-dsn", dsn,
            "--errors-path", str(tmp_path / "errors.json"),
            "--reports-dir", str(tmp_path / "reports"),
            "--run-id", "assets-1",
            str(csv_path),
        ]

        result = _invoke(args)
        assert result.exit_code == 0, result.output
        assert _count(conn, "asset_information") == 2
        assert "Successfully imported: 2" in result.output

        _write_assets_csv(csv_path, [_asset_row("SN1", status="AVAILABLE"), _asset_row("SN3")])
        result = _invoke(args)
        assert result.exit_code == 0, result.output

        rows = conn.execute(
            "SELECT asset_serial_number, asset_status FROM asset_information ORDER BY 1"
        ).fetchall()
        assert rows == [("SN1", "AVAILABLE"), ("SN2", "IN REPAIR"), ("SN3", "IN REPAIR")]
        assert not (tmp_path / "errors.json").exists()
        assert (tmp_path / "reports" / "assets-1.json").exists()

    def test_invalid_row_logged_and_run_succeeds(self, db_conn, tmp_path):
        conn, dsn = db_conn
        csv_path = _write_assets_csv(
            tmp_path / "assets.csv",
            [_asset_row("SN1"), _asset_row("SN2", assettype=""), _asset_row("SN3")],
        )
        errors_path = tmp_path / "errors.json"

        result = _invoke([
            "--import-type", "assets", "--db-dsn", dsn,
            "--errors-path", str(errors_path),
            "--reports-dir", str(tmp_path / "reports"),
            str(csv_path),
        ])

        assert result.exit_code == 0, result.output
        assert _count(conn, "asset_information") == 2
        errors = json.loads(errors_path.read_text())
        assert len(errors) == 1
        assert errors[0]["row"] == 3
        assert errors[0]["error"] == "Assettype: required value is missing"
        assert errors[0]["data"]["TDA2RASSET_SerialNum"] == "SN2"

    def test_upsert_without_unique_key_is_fatal(self, db_conn, tmp_path):
        conn, dsn = db_conn
        conn.execute(
            "ALTER TABLE asset_information DROP CONSTRAINT asset_information_natural_key"
        )
        csv_path = _write_assets_csv(tmp_path / "assets.csv", [_asset_row("SN1")])
        errors_path = tmp_path / "errors.json"

        result = _invoke([
            "--import-type", "assets", "--db-dsn", dsn,
            "--errors-path", str(errors_path),
            "--reports-dir", str(tmp_path / "reports"),
            str(csv_path),
        ])

        assert result.exit_code == 1
        assert "no unique constraint on natural key" in result.output
        assert _count(conn, "asset_information") == 0
        assert not errors_path.exists()

    def test_unreachable_database_is_fatal(self, tmp_path):
        csv_path = _write_assets_csv(tmp_path / "assets.csv", [_asset_row("SN1")])
        errors_path = tmp_path / "errors.json"

        result = _invoke([
            "--import-type", "assets",
            "--db-dsn", "host=invalid.invalid dbname=none connect_timeout=2",
            "--errors-path", str(errors_path),
            "--reports-dir", str(tmp_path / "reports"),
            str(csv_path),
        ])

        assert result.exit_code == 1
        assert "FATAL: run failed with DB error" in result.output
        assert not errors_path.exists()
        assert not (tmp_path / "reports").exists()

    def test_dry_run_leaves_table_untouched(self, db_conn, tmp_path):
        conn, dsn = db_conn
        csv_path = _write_assets_csv(tmp_path / "assets.csv", [_asset_row("SN1")])

        result = _invoke([
            "--import-type", "assets", "--db-dsn", dsn, "--dry-run",
            "--errors-path", str(tmp_path / "errors.json"),
            "--reports-dir", str(tmp_path / "reports"),
            str(csv_path),
        ])

        assert result.exit_code == 0, result.output
        assert "[dry-run] All changes rolled back." in result.output
        assert _count(conn, "asset_information") == 0


# ---------------------------------------------------------------------------
# asset_repair (XLSX, replace)
# ---------------------------------------------------------------------------

class TestAssetRepairImport:
    def _args(self, dsn: str, tmp_path: Path, source: Path) -> list[str]:
        return [
            "--import-type", "asset_repair", "--db-dsn", dsn,
            "--batch-size", "2",
            "--errors-path", str(tmp_path / "repair_errors.json"),
            "--reports-dir", str(tmp_path / "reports"),
            str(source),
        ]

    def test_replace_is_idempotent(self, db_conn, tmp_path):
        conn, dsn = db_conn
        source = _write_xlsx(tmp_path / "repair.xlsx", REPAIR_HEADER, _repair_rows(5))

        first = _invoke(self._args(dsn, tmp_path, source))
        assert first.exit_code == 0, first.output
        snapshot = conn.execute(
            "SELECT asset_code_level4, asset_serial_number, gbv FROM asset_repair_summary ORDER BY 1"
        ).fetchall()

        second = _invoke(self._args(dsn, tmp_path, source))
        assert second.exit_code == 0, second.output
        assert conn.execute(
            "SELECT asset_code_level4, asset_serial_number, gbv FROM asset_repair_summary ORDER BY 1"
        ).fetchall() == snapshot
        assert len(snapshot) == 5
        assert "Committed batch 3/3" in second.output

    def test_prior_rows_are_replaced(self, db_conn, tmp_path):
        conn, dsn = db_conn
        conn.execute(
            "INSERT INTO asset_repair_summary (asset_code_level4, asset_serial_number) "
            "VALUES ('OLD', 'RESIDUE')"
        )
        source = _write_xlsx(tmp_path / "repair.xlsx", REPAIR_HEADER, _repair_rows(1))

        result = _invoke(self._args(dsn, tmp_path, source))

        assert result.exit_code == 0, result.output
        rows = conn.execute(
            "SELECT asset_code_level4, asset_serial_number, gbv, estimated_repair_date "
            "FROM asset_repair_summary"
        ).fetchall()
        assert rows == [("AX0", "SN0", "1500", datetime(2021, 1, 1, tzinfo=timezone.utc))]

    def test_missing_source_is_fatal(self, db_conn, tmp_path):
        conn, dsn = db_conn
        conn.execute(
            "INSERT INTO asset_repair_summary (asset_code_level4) VALUES ('KEEP')"
        )

        result = _invoke(self._args(dsn, tmp_path, tmp_path / "absent.xlsx"))

        assert result.exit_code == 1
        assert "FATAL: File not found" in result.output
        assert _count(conn, "asset_repair_summary") == 1

    def test_missing_target_table_is_fatal(self, db_conn, tmp_path):
        conn, dsn = db_conn
        conn.execute("DROP TABLE asset_repair_summary")
        source = _write_xlsx(tmp_path / "repair.xlsx", REPAIR_HEADER, _repair_rows(1))

        result = _invoke(self._args(dsn, tmp_path, source))

        assert result.exit_code == 1
        assert "does not exist" in result.output


# ---------------------------------------------------------------------------
# pegging (XLSX, replace)
# ---------------------------------------------------------------------------

def test_pegging_import_coerces_types(db_conn, tmp_path):
    conn, dsn = db_conn
    header = [
        "Plant", "Geo-Unit", "Material", "Reservation -Line", "Requirements Date",
        "Creation Date", "Stock On Hand - DDSC", "Stock On Hand - HDSC",
        "Maximo Asset Num", "Maximo Serial No", "Goods recipient", "Unused Column",
    ]
    rows = [
        [1234, "NAM", "100200300", "0098765-0002", 44197, "not a date",
         "12.5", "abc", "PMP-220 | 4411", "4411", "J. SMITH", "x"],
    ]
    source = _write_xlsx(tmp_path / "pegging.xlsx", header, rows)

    result = _invoke([
        "--import-type", "pegging", "--db-dsn", dsn,
        "--errors-path", str(tmp_path / "pegging_errors.json"),
        "--reports-dir", str(tmp_path / "reports"),
        str(source),
    ])

    assert result.exit_code == 0, result.output
    row = conn.execute(
        """
        SELECT plant, reservation, reservation_line, reservation_requirement_date,
               reservation_creation_date, stock_on_hand_ddsc, stock_on_hand_hdsc,
               asset_code_level4, asset_serial_number, requester, material_description
        FROM pegging_report
        """
    ).fetchone()
    assert row == (
        "1234", "0098765", "0002", datetime(2021, 1, 1, tzinfo=timezone.utc),
        None, Decimal("12.5"), None, "PMP-220", "4411", "J. SMITH", "",
    )
    assert "columns missing from source header" in result.output


# ---------------------------------------------------------------------------
# Batch isolation and run_import
# ---------------------------------------------------------------------------

def _asset_records(n: int) -> list[dict[str, str]]:
    return [
        {
            "asset_code_level1": "", "asset_code_level2": "", "asset_code_level3": "",
            "asset_code_level4": f"AX{i}", "asset_serial_number": f"SN{i}",
            "geo_unit": "NAM", "country_code": "US", "location_code": "HOU",
            "asset_status": "OK",
        }
        for i in range(n)
    ]


def test_unique_violation_fails_only_its_batch(db_conn, tmp_path):
    conn, dsn = db_conn
    definition = replace(ASSETS, write_mode="replace")
    records = _asset_records(9)
    records[4] = dict(records[1])
    sink = ErrorSink(tmp_path / "errors.json")
    counters = ImportCounters()

    with psycopg.connect(dsn, autocommit=True) as store:
        load_records(store, definition, records, sink, counters, batch_size=3)

    serials = [r[0] for r in conn.execute(
        "SELECT asset_serial_number FROM asset_information ORDER BY id"
    ).fetchall()]
    assert serials == ["SN0", "SN1", "SN2", "SN6", "SN7", "SN8"]
    assert counters.records_committed == 6
    assert counters.batches_failed == 1
    (error,) = sink.records
    assert error.row == "Batch starting at 3"
    assert len(error.data) == 3


def test_run_import_returns_summary(db_conn, tmp_path):
    conn, dsn = db_conn
    source = _write_xlsx(tmp_path / "repair.xlsx", REPAIR_HEADER, _repair_rows(4))
    counters = ImportCounters()
    sink = ErrorSink(tmp_path / "errors.json")

    summary = run_import("r1", dsn, ASSET_REPAIR, source, counters, sink, batch_size=3)

    assert summary.total_processed == 4
    assert summary.total_succeeded == 4
    assert summary.total_failed == 0
    assert counters.batches_committed == 2
    assert _count(conn, "asset_repair_summary") == 4


def test_run_import_missing_table_raises(db_conn, tmp_path):
    conn, dsn = db_conn
    conn.execute("ALTER TABLE asset_repair_summary DROP COLUMN gbv")
    source = _write_xlsx(tmp_path / "repair.xlsx", REPAIR_HEADER, _repair_rows(1))

    with pytest.raises(TargetSchemaError, match="gbv"):
        run_import("r1", dsn, ASSET_REPAIR, source, ImportCounters(), ErrorSink(tmp_path / "e.json"))


def test_run_import_bad_source_raises_before_connecting(tmp_path):
    bad = tmp_path / "broken.xlsx"
    bad.write_bytes(b"not a workbook")
    with pytest.raises(SourceReadError):
        run_import(
            "r1", "host=invalid.invalid dbname=none", ASSET_REPAIR, bad,
            ImportCounters(), ErrorSink(tmp_path / "e.json"),
        )
