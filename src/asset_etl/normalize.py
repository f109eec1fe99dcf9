"""Normalization functions for spreadsheet and CSV asset extracts.

All functions accept a raw cell value (str, int, float, date, datetime or
None) and return the canonical type or a neutral value; none of them
raise on bad input.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

# Day 25569 in the 1900 date system is 1970-01-01.
EXCEL_EPOCH_OFFSET_DAYS = 25569
MS_PER_DAY = 86_400_000

_UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%m/%d/%Y %H:%M",
    "%m/%d/%y",
    "%d-%b-%Y",
    "%d-%b-%y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d %b %Y",
)


# ---------------------------------------------------------------------------
# Rule 1: trim / is_blank
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


def is_blank(value: Any) -> bool:
    """True for None and for strings that are empty after stripping."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


# ---------------------------------------------------------------------------
# Rule 2: to_text
# ---------------------------------------------------------------------------

def to_text(value: Any) -> str:
    """Render a cell as a stripped string. None → ''.

    Integral floats (spreadsheet cells holding 1234.0) render as '1234';
    dates render in ISO format.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value).strip()


# ---------------------------------------------------------------------------
# Rule 3: parse_numeric
# ---------------------------------------------------------------------------

def parse_numeric(value: Any) -> Decimal | None:
    """Parse a number from a cell, returning None for blank or non-numeric input."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        text = str(value)
    else:
        text = trim(str(value))
        if text is None:
            return None
    try:
        number = Decimal(text)
    except InvalidOperation:
        return None
    return number if number.is_finite() else None


# ---------------------------------------------------------------------------
# Rule 4: parse_excel_date
# ---------------------------------------------------------------------------

def excel_serial_to_datetime(serial: float) -> datetime:
    """Convert an Excel serial day count to a UTC datetime."""
    offset_ms = (serial - EXCEL_EPOCH_OFFSET_DAYS) * MS_PER_DAY
    return _UNIX_EPOCH + timedelta(milliseconds=offset_ms)


def parse_date_text(value: str | None) -> datetime | None:
    """Parse a free-form date string; naive results are taken as UTC."""
    v = trim(value)
    if v is None:
        return None
    parsed = None
    try:
        parsed = datetime.fromisoformat(v.replace("Z", "+00:00"))
    except ValueError:
        for fmt in _DATE_FORMATS:
            try:
                parsed = datetime.strptime(v, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_excel_date(value: Any) -> date | datetime | None:
    """Coerce a spreadsheet date cell.

    - None / blank string      → None
    - date or datetime         → returned unchanged
    - int / float              → Excel serial date (days since 1899-12-30)
    - other strings            → parse_date_text, None when unparseable
    """
    if is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, (date, datetime)):
        return value
    if isinstance(value, (int, float, Decimal)):
        try:
            return excel_serial_to_datetime(float(value))
        except OverflowError:
            return None
    if isinstance(value, str):
        return parse_date_text(value)
    return None


# ---------------------------------------------------------------------------
# Rule 5: split_composite
# ---------------------------------------------------------------------------

def split_composite(value: Any, delimiter: str) -> tuple[str, str]:
    """Split a composite code into (first, second) trimmed segments.

    Without the delimiter the whole value is the first segment and the
    second is ''. Segments after the second are dropped:
    'AX100 | SN99887' → ('AX100', 'SN99887'), 'AX100' → ('AX100', '').
    """
    text = to_text(value)
    if delimiter not in text:
        return text, ""
    parts = text.split(delimiter)
    return parts[0].strip(), parts[1].strip()
