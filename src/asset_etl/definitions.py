"""Built-in import definitions for the three asset extracts.

  assets        — asset master CSV, upserted on (asset_code_level4, asset_serial_number)
  asset_repair  — asset repair summary spreadsheet, replaced wholesale
  pegging       — reservation/PO pegging report spreadsheet, replaced wholesale
"""

from __future__ import annotations

from asset_etl.contract import (
    FieldMapping,
    FieldRule,
    ImportDefinition,
    RowContract,
    check_import_definition,
)

EXTRACTS_DIR = "data/extracts"


def _text(column: str, default: str = "") -> FieldRule:
    return FieldRule(column, "text", default=default)


def _required(column: str) -> FieldRule:
    return FieldRule(column, "text", required=True)


def _number(column: str) -> FieldRule:
    return FieldRule(column, "number")


def _date(column: str) -> FieldRule:
    return FieldRule(column, "excel_date")


# ---------------------------------------------------------------------------
# assets
# ---------------------------------------------------------------------------

ASSETS = check_import_definition(ImportDefinition(
    name="assets",
    description="Asset master extract (CSV)",
    table="asset_information",
    contract=RowContract((
        _text("RPF_TOOL_GROUP"),
        _text("RPF_SUB_TOOL_GROUP"),
        _text("RPF_SUB_SUB_TOOL_GROUP"),
        _required("Assettype"),
        _required("TDA2RASSET_SerialNum"),
        _required("SLB_GEOUNIT"),
        _required("SLB_COUNTRY"),
        _required("SLB_DISTRICT"),
        _required("LOCATION"),
        _required("REPAIR_STATUS"),
    )),
    mappings=(
        FieldMapping("asset_code_level1", "RPF_TOOL_GROUP"),
        FieldMapping("asset_code_level2", "RPF_SUB_TOOL_GROUP"),
        FieldMapping("asset_code_level3", "RPF_SUB_SUB_TOOL_GROUP"),
        FieldMapping("asset_code_level4", "Assettype"),
        FieldMapping("asset_serial_number", "TDA2RASSET_SerialNum"),
        FieldMapping("geo_unit", "SLB_GEOUNIT"),
        FieldMapping("country_code", "SLB_COUNTRY"),
        FieldMapping("location_code", "SLB_DISTRICT"),
        FieldMapping("asset_status", "REPAIR_STATUS"),
    ),
    write_mode="upsert",
    natural_key=("asset_code_level4", "asset_serial_number"),
    batch_size=100,
    source_path=f"{EXTRACTS_DIR}/asset_extract.csv",
    error_log_path=f"{EXTRACTS_DIR}/import_errors.json",
))


# ---------------------------------------------------------------------------
# asset_repair
# ---------------------------------------------------------------------------

ASSET_REPAIR = check_import_definition(ImportDefinition(
    name="asset_repair",
    description="Asset repair summary (XLSX)",
    table="asset_repair_summary",
    contract=RowContract((
        _text("Geounit"),
        _text("Physical Location"),
        _text("Asset Status"),
        _text("Asset Type"),
        _text("Assetnum"),
        _text("Days Down"),
        _text("Repair Responsability"),
        _text("RAN Status"),
        _text("Parts Declared"),
        _text("Reservation Status"),
        _text("Supply Status"),
        _text("GBV", default="0"),
        _date("Estimate Repair Date"),
    )),
    mappings=(
        FieldMapping("geo_unit", "Geounit"),
        FieldMapping("location_code", "Physical Location"),
        FieldMapping("asset_status", "Asset Status"),
        FieldMapping("asset_code_level4", "Assetnum", "split_first", "|"),
        FieldMapping("asset_serial_number", "Assetnum", "split_second", "|"),
        FieldMapping("days_down", "Days Down"),
        FieldMapping("repair_responsibility", "Repair Responsability"),
        FieldMapping("ran_status", "RAN Status"),
        FieldMapping("parts_declared", "Parts Declared"),
        FieldMapping("reservation_status", "Reservation Status"),
        FieldMapping("supply_status", "Supply Status"),
        FieldMapping("gbv", "GBV"),
        FieldMapping("estimated_repair_date", "Estimate Repair Date"),
    ),
    write_mode="replace",
    batch_size=50,
    source_path=f"{EXTRACTS_DIR}/asset_repair_summary.xlsx",
    error_log_path=f"{EXTRACTS_DIR}/import_repair_errors.json",
))


# ---------------------------------------------------------------------------
# pegging
# ---------------------------------------------------------------------------

_PEGGING_COLUMNS: tuple[tuple[str, FieldRule, str | None, str | None], ...] = (
    # (target, rule, transform, delimiter)
    ("plant", _text("Plant"), None, None),
    ("geo_unit", _text("Geo-Unit"), None, None),
    ("material", _text("Material"), None, None),
    ("reservation", _text("Reservation -Line"), "split_first", "-"),
    ("reservation_line", _text("Reservation -Line"), "split_second", "-"),
    ("reservation_requirement_date", _date("Requirements Date"), None, None),
    ("reservation_creation_date", _date("Creation Date"), None, None),
    ("stock_on_hand_ddsc", _number("Stock On Hand - DDSC"), None, None),
    ("stock_on_hand_hdsc", _number("Stock On Hand - HDSC"), None, None),
    ("last_3_month_consumption", _number("Last 3 Month Consumption"), None, None),
    ("last_6_month_consumption", _number("Last 6 Month Consumption"), None, None),
    ("last_12_month_consumption", _number("Last 12 Month Consumption"), None, None),
    ("material_stratification_6_month",
     _text("Material Stratification (Last 6 Month Consumption)"), None, None),
    ("material_stratification_12_month",
     _text("Material Stratification (Last 12 Month Consumption)"), None, None),
    ("reservation_open_qty", _number("Open Qty - Reservation"), None, None),
    ("reservation_open_value", _number("Open Reservation Value"), None, None),
    ("stock_on_hand_plant", _number("Material/Plant-SOH - Total"), None, None),
    ("pegged_po_line", _number("Primary Pegged PO-LN - Open Qty"), None, None),
    ("pegging_status", _text("Combined SOH & PO Pegging"), None, None),
    ("pegged_po_number", _text("Main - PO to Peg to Reservation"), None, None),
    ("pegged_po_number_additional", _text("Additional PO - Line to Peg"), None, None),
    ("pegged_po_qty", _number("Primary Pegged PO-LN - Order Qty"), None, None),
    ("pegged_po_invoice_status", _text("Pegged Main PO Invoice Status"), None, None),
    ("material_description", _text("Material Description"), None, None),
    ("material_prime_status", _text("MRP Parameters - Prime Status"), None, None),
    ("material_safety_stock", _number("MRP Parameters - Safety Stock"), None, None),
    ("planned_order_status", _text("Planned Order - Status"), None, None),
    ("asset_code_level4", _text("Maximo Asset Num"), "split_first", "|"),
    ("asset_serial_number", _text("Maximo Serial No"), None, None),
    ("requester", _text("Goods recipient"), None, None),
)


def _unique_rules(columns) -> tuple[FieldRule, ...]:
    rules: dict[str, FieldRule] = {}
    for _, rule, _, _ in columns:
        rules.setdefault(rule.column, rule)
    return tuple(rules.values())


PEGGING = check_import_definition(ImportDefinition(
    name="pegging",
    description="Reservation to purchase-order pegging report (XLSX)",
    table="pegging_report",
    contract=RowContract(_unique_rules(_PEGGING_COLUMNS)),
    mappings=tuple(
        FieldMapping(target, rule.column, transform, delimiter)
        for target, rule, transform, delimiter in _PEGGING_COLUMNS
    ),
    write_mode="replace",
    batch_size=50,
    source_path=f"{EXTRACTS_DIR}/pegging_report.xlsx",
    error_log_path=f"{EXTRACTS_DIR}/import_pegging_errors.json",
))


BUILTIN_DEFINITIONS: dict[str, ImportDefinition] = {
    d.name: d for d in (ASSETS, ASSET_REPAIR, PEGGING)
}
