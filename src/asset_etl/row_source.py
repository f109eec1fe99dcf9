"""asset_etl.row_source

Decode a CSV or spreadsheet extract into raw rows (header → cell value),
in file order. Spreadsheets are read from the first worksheet only.
"""

from __future__ import annotations

import csv
import logging
import zipfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable
from xml.etree.ElementTree import ParseError

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

log = logging.getLogger(__name__)

CSV_SUFFIXES = {".csv"}
SPREADSHEET_SUFFIXES = {".xlsx", ".xlsm"}

# Row 1 is the header; data rows are numbered from 2.
FIRST_DATA_ROW = 2

_DECODE_ERRORS = (
    csv.Error,
    UnicodeDecodeError,
    InvalidFileException,
    zipfile.BadZipFile,
    ParseError,
    KeyError,
    ValueError,
    OSError,
)


class SourceReadError(Exception):
    """Raised when the source file is missing or cannot be decoded."""


@dataclass
class SourceRows:
    """Decoded source file: header plus (row_number, raw_row) pairs."""

    header: list[str]
    rows: list[tuple[int, dict[str, Any]]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)


def normalize_headers(raw: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict with header keys whitespace-stripped."""
    return {k.strip(): v for k, v in raw.items() if k is not None}


def missing_columns(header: Iterable[str], expected: Iterable[str]) -> list[str]:
    present = set(header)
    return [col for col in expected if col not in present]


def _read_csv(path: Path) -> SourceRows:
    with path.open(encoding="utf-8-sig", newline="") as fh:
        reader = csv.DictReader(fh, restval="")
        source = SourceRows(header=[h.strip() for h in reader.fieldnames or []])
        for row in reader:
            # Surplus cells land under the None key and are dropped here.
            cleaned = {
                k: v.strip() if isinstance(v, str) else v
                for k, v in normalize_headers(row).items()
            }
            if not any(cleaned.values()):
                continue
            source.rows.append((reader.line_num, cleaned))
    return source


def _cell_value(value: Any) -> Any:
    # Date-formatted cells come back naive; workbook dates are UTC.
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _read_spreadsheet(path: Path) -> SourceRows:
    workbook = load_workbook(path, read_only=True, data_only=True)
    try:
        cells = workbook.worksheets[0].iter_rows(values_only=True)
        header_cells = next(cells, None)
        if header_cells is None:
            return SourceRows(header=[])
        header = [str(c).strip() if c is not None else "" for c in header_cells]
        source = SourceRows(header=[h for h in header if h])
        for row_number, values in enumerate(cells, start=FIRST_DATA_ROW):
            row = {
                name: _cell_value(value)
                for name, value in zip(header, values)
                if name and value is not None and value != ""
            }
            if row:
                source.rows.append((row_number, row))
        return source
    finally:
        workbook.close()


def read_rows(path: Path) -> SourceRows:
    """Decode the whole source file.

    Raises:
        SourceReadError: file missing, unsupported extension, or undecodable.
    """
    if not path.is_file():
        raise SourceReadError(f"File not found: {path}")

    suffix = path.suffix.lower()
    if suffix in CSV_SUFFIXES:
        reader = _read_csv
    elif suffix in SPREADSHEET_SUFFIXES:
        reader = _read_spreadsheet
    else:
        raise SourceReadError(
            f"Unsupported file type {suffix!r}: expected one of "
            f"{sorted(CSV_SUFFIXES | SPREADSHEET_SUFFIXES)}"
        )

    try:
        source = reader(path)
    except _DECODE_ERRORS as exc:
        raise SourceReadError(f"Could not decode {path}: {exc}") from exc

    log.debug("Columns in %s: %s", path.name, source.header)
    for row_number, row in source.rows[:2]:
        log.debug("Row %d raw data: %s", row_number, row)
    return source
