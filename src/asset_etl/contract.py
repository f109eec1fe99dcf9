"""asset_etl.contract

Declarative row contracts and import definitions.

An ImportDefinition bundles everything one import type needs:
  - RowContract   — per-column coercion kind, default and required flag
  - FieldMapping  — source column → target column, with optional split
  - target table, write mode, natural key, batch size and default paths

Definitions are plain frozen dataclasses so they can be shared read-only
across every row of a run. They can also be loaded from YAML:

    from pathlib import Path
    from asset_etl.contract import load_import_definition

    definition = load_import_definition(Path("config/imports/assets.yml"))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

FIELD_KINDS = ("text", "number", "excel_date")
TRANSFORMS = ("split_first", "split_second")
WRITE_MODES = ("replace", "upsert")

DEFAULT_BATCH_SIZE = 50

REQUIRED_YAML_KEYS = frozenset({
    "name",
    "table",
    "write_mode",
    "fields",
    "mappings",
})


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ImportDefinitionError(ValueError):
    """Raised when an import definition fails schema validation."""


# ---------------------------------------------------------------------------
# Contract dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FieldRule:
    """Coercion rule for one source column."""

    column: str
    kind: str = "text"
    default: Any = None
    required: bool = False


@dataclass(frozen=True)
class RowContract:
    fields: tuple[FieldRule, ...]

    @property
    def columns(self) -> tuple[str, ...]:
        return tuple(rule.column for rule in self.fields)


@dataclass(frozen=True)
class FieldMapping:
    """Maps a validated source column onto a target column.

    transform=None copies the value; split_first / split_second take the
    corresponding segment of a delimiter-separated composite code.
    """

    target: str
    source: str
    transform: str | None = None
    delimiter: str | None = None


@dataclass(frozen=True)
class ImportDefinition:
    name: str
    table: str
    contract: RowContract
    mappings: tuple[FieldMapping, ...]
    write_mode: str = "replace"
    natural_key: tuple[str, ...] = ()
    batch_size: int = DEFAULT_BATCH_SIZE
    source_path: str | None = None
    error_log_path: str | None = None
    description: str = field(default="", compare=False)

    @property
    def target_columns(self) -> tuple[str, ...]:
        return tuple(m.target for m in self.mappings)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def check_import_definition(definition: ImportDefinition) -> ImportDefinition:
    """Raise ImportDefinitionError if the definition is inconsistent.

    Returns the definition unchanged so it can be used inline.
    """
    errors: list[str] = []

    seen_columns: set[str] = set()
    for rule in definition.contract.fields:
        if rule.kind not in FIELD_KINDS:
            errors.append(f"field {rule.column!r}: unknown kind {rule.kind!r}")
        if rule.required and rule.default is not None:
            errors.append(f"field {rule.column!r}: required fields cannot declare a default")
        if rule.column in seen_columns:
            errors.append(f"field {rule.column!r}: declared twice")
        seen_columns.add(rule.column)

    targets: set[str] = set()
    for mapping in definition.mappings:
        if mapping.source not in seen_columns:
            errors.append(
                f"mapping {mapping.target!r}: source {mapping.source!r} is not a contract field"
            )
        if mapping.transform is not None:
            if mapping.transform not in TRANSFORMS:
                errors.append(
                    f"mapping {mapping.target!r}: unknown transform {mapping.transform!r}"
                )
            if not mapping.delimiter:
                errors.append(f"mapping {mapping.target!r}: transform requires a delimiter")
        if mapping.target in targets:
            errors.append(f"mapping {mapping.target!r}: target declared twice")
        targets.add(mapping.target)

    if definition.write_mode not in WRITE_MODES:
        errors.append(f"write_mode must be one of {WRITE_MODES}, got {definition.write_mode!r}")
    if definition.write_mode == "upsert" and not definition.natural_key:
        errors.append("write_mode 'upsert' requires a natural_key")
    for key in definition.natural_key:
        if key not in targets:
            errors.append(f"natural_key column {key!r} is not a mapping target")

    if definition.batch_size < 1:
        errors.append(f"batch_size must be >= 1, got {definition.batch_size}")

    if errors:
        raise ImportDefinitionError(
            f"Invalid import definition {definition.name!r}: " + "; ".join(errors)
        )
    return definition


def validate_import_definition(data: dict[str, Any]) -> None:
    """Raise ImportDefinitionError if raw YAML data lacks required structure."""
    if not isinstance(data, dict):
        raise ImportDefinitionError("import definition must be a mapping")
    missing = REQUIRED_YAML_KEYS - set(data.keys())
    if missing:
        raise ImportDefinitionError(f"Missing required keys: {sorted(missing)}")
    if not isinstance(data["fields"], list) or not data["fields"]:
        raise ImportDefinitionError("'fields' must be a non-empty list")
    if not isinstance(data["mappings"], list) or not data["mappings"]:
        raise ImportDefinitionError("'mappings' must be a non-empty list")
    for idx, item in enumerate(data["fields"]):
        if not isinstance(item, dict) or "column" not in item:
            raise ImportDefinitionError(f"fields[{idx}] must be a mapping with a 'column'")
        if not isinstance(item.get("required", False), bool):
            raise ImportDefinitionError(
                f"fields[{idx}].required must be true or false, got {item['required']!r}"
            )
    for idx, item in enumerate(data["mappings"]):
        if not isinstance(item, dict) or "target" not in item or "source" not in item:
            raise ImportDefinitionError(
                f"mappings[{idx}] must be a mapping with 'target' and 'source'"
            )


# ---------------------------------------------------------------------------
# YAML loader
# ---------------------------------------------------------------------------

def _natural_key(value: Any) -> tuple[str, ...]:
    """Accept one column name or a list of them."""
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return tuple(value)
    raise ImportDefinitionError(
        f"natural_key must be a column name or a list of column names, got {value!r}"
    )


def import_definition_from_dict(data: dict[str, Any]) -> ImportDefinition:
    validate_import_definition(data)
    contract = RowContract(tuple(
        FieldRule(
            column=str(item["column"]),
            kind=str(item.get("kind", "text")),
            default=item.get("default"),
            required=item.get("required", False),
        )
        for item in data["fields"]
    ))
    mappings = tuple(
        FieldMapping(
            target=str(item["target"]),
            source=str(item["source"]),
            transform=item.get("transform"),
            delimiter=item.get("delimiter"),
        )
        for item in data["mappings"]
    )
    try:
        batch_size = int(data.get("batch_size", DEFAULT_BATCH_SIZE))
    except (TypeError, ValueError) as exc:
        raise ImportDefinitionError(
            f"batch_size must be an integer, got {data.get('batch_size')!r}"
        ) from exc
    definition = ImportDefinition(
        name=str(data["name"]),
        table=str(data["table"]),
        contract=contract,
        mappings=mappings,
        write_mode=str(data["write_mode"]),
        natural_key=_natural_key(data.get("natural_key")),
        batch_size=batch_size,
        source_path=data.get("source_path"),
        error_log_path=data.get("error_log_path"),
        description=str(data.get("description", "")),
    )
    return check_import_definition(definition)


def load_import_definition(yaml_path: Path) -> ImportDefinition:
    """Load, validate, and return an ImportDefinition from a YAML file.

    Raises:
        ImportDefinitionError: If any required field is missing or invalid.
        FileNotFoundError: If the YAML file does not exist.
    """
    raw = yaml_path.read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise ImportDefinitionError(f"{yaml_path}: invalid YAML: {exc}") from exc
    return import_definition_from_dict(data)
