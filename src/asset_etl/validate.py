"""asset_etl.validate

Row validation and transformation.

validate_row applies a RowContract to one raw row and returns a
ValidationResult instead of raising; transform_row remaps a validated row
onto target column names. Both are pure: no I/O, no shared state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from asset_etl.contract import FieldMapping, FieldRule, RowContract
from asset_etl.normalize import (
    is_blank,
    parse_excel_date,
    parse_numeric,
    split_composite,
    to_text,
)

COERCERS: dict[str, Callable[[Any], Any]] = {
    "text": to_text,
    "number": parse_numeric,
    "excel_date": parse_excel_date,
}

_KIND_LABELS = {
    "text": "text",
    "number": "a number",
    "excel_date": "a date",
}


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating one raw row: values on success, reason on failure."""

    values: dict[str, Any] | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.reason is None


def coerce_field(rule: FieldRule, raw: Any) -> tuple[Any, str | None]:
    """Return (value, error) for one column.

    Blank input takes the rule's default; a required column that is blank,
    or whose value coerces to nothing, yields an error.
    """
    if is_blank(raw):
        if rule.required:
            return None, f"{rule.column}: required value is missing"
        if rule.default is not None:
            raw = rule.default
        elif rule.kind == "text":
            return "", None
        else:
            return None, None

    value = COERCERS[rule.kind](raw)
    if rule.required and (value is None or value == ""):
        return None, f"{rule.column}: expected {_KIND_LABELS[rule.kind]}, got {raw!r}"
    return value, None


def validate_row(raw_row: dict[str, Any], contract: RowContract) -> ValidationResult:
    values: dict[str, Any] = {}
    errors: list[str] = []
    for rule in contract.fields:
        value, error = coerce_field(rule, raw_row.get(rule.column))
        if error:
            errors.append(error)
        else:
            values[rule.column] = value
    if errors:
        return ValidationResult(reason="; ".join(errors))
    return ValidationResult(values=values)


def _map_value(mapping: FieldMapping, validated: dict[str, Any]) -> Any:
    value = validated[mapping.source]
    if mapping.transform is None:
        return value
    first, second = split_composite(value, mapping.delimiter)
    return first if mapping.transform == "split_first" else second


def transform_row(
    validated: dict[str, Any],
    mappings: tuple[FieldMapping, ...],
) -> dict[str, Any]:
    """Remap a validated row to target column names, computing split fields."""
    return {m.target: _map_value(m, validated) for m in mappings}
