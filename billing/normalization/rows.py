"""Map classified raw records onto the canonical ``BillingRow``."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence, Tuple

from ..config import RateConventions
from .fields import BillingRow, RecordFamily, coerce_flag, coerce_number, coerce_text, to_fraction
from .shapes import ClassifiedRecord, RawShape

LOGGER = logging.getLogger(__name__)

_MISSING = object()

# Ordered source keys per canonical field; dotted keys walk nested mappings.
STANDARD_KEYS: Dict[str, Tuple[str, ...]] = {
    "meter_id": ("meter_id", "meterId", "meter_no", "meter_number", "meter_code"),
    "meter_sn": ("meter_sn", "meter_serial", "serial_no"),
    "meter_type": ("meter_type", "utility_type", "utility", "type"),
    "tenant_id": ("tenant_id", "tenantId", "tenant.tenant_id"),
    "tenant_name": ("tenant_name", "tenant.tenant_name", "tenant.name"),
    "stall_id": ("stall_id", "stall_no", "stall.stall_id"),
    "building_id": ("building_id", "buildingId"),
    "prev_index": ("prev_index", "previous_index", "prev_reading", "previous_reading"),
    "curr_index": ("curr_index", "current_index", "present_index", "curr_reading", "current_reading"),
    "prev_cons": (
        "previous_consumption",
        "prev_consumption",
        "prev_cons",
        "previous_month_units",
        "totals.previous_consumption",
    ),
    "curr_cons": (
        "current_consumption",
        "consumption",
        "curr_cons",
        "current_month_units",
        "totals.consumption",
        "totals.current_consumption",
    ),
    "utility_rate": ("utility_rate", "rate_per_unit", "unit_rate", "rate"),
    "vat_rate": ("vat_rate", "vat_percent"),
    "wt_rate": ("wt_rate", "wt_percent", "whtax_rate"),
    "tax_code": ("tax_code", "vat_code"),
    "whtax_code": ("whtax_code", "wt_code"),
    "base": ("base", "base_amount", "totals.base"),
    "vat": ("vat", "vat_amount", "totals.vat"),
    "wt": ("wt", "wt_amount", "withholding", "totals.wt"),
    "penalty": ("penalty", "penalty_amount", "totals.penalty"),
    "total": ("total", "total_amount", "amount_due", "totals.total"),
    "rate_of_change": ("rate_of_change", "roc", "change_rate", "totals.rate_of_change"),
    "memo": ("memo", "remarks", "note"),
    "for_penalty": ("for_penalty", "penalty_flag"),
}

LEGACY_KEYS: Dict[str, Tuple[str, ...]] = {
    **STANDARD_KEYS,
    "meter_id": ("meter_no", "meter_id", "meter_number"),
    "stall_id": ("stall_no", "stall_id"),
    "curr_cons": (
        "consumed_kwh",
        "consumed_cbm",
        "consumed_kg",
        "current_consumption",
        "consumption",
        "current_month_units",
        "totals.consumption",
    ),
    "prev_cons": ("prev_consumed_kwh", "prev_consumed_cbm", "prev_consumed_kg", "previous_consumption", "prev_cons"),
    "utility_rate": ("rate", "utility_rate", "rate_per_unit"),
    "total": ("amount_due", "total", "total_amount", "totals.total"),
}

_STRUCTURED_PATHS: Dict[str, Tuple[str, ...]] = {
    "meter_id": ("meter.meter_id", "meter.id", "meter.meter_no"),
    "meter_sn": ("meter.meter_sn", "meter.serial_no"),
    "meter_type": ("meter.meter_type", "meter.type"),
    "tenant_id": ("tenant.id",),
    "stall_id": ("meter.stall_id", "stall.id"),
    "building_id": ("meter.building_id",),
    "prev_index": ("indices.prev_index", "indices.prev", "indices.previous"),
    "curr_index": ("indices.curr_index", "indices.curr", "indices.current"),
    "prev_cons": ("billing.previous_consumption", "billing.prev_consumption"),
    "curr_cons": ("billing.consumption", "billing.current_consumption", "indices.consumption"),
    "utility_rate": ("billing.utility_rate", "billing.rate", "meter.rate"),
    "vat_rate": ("billing.vat_rate",),
    "wt_rate": ("billing.wt_rate",),
    "tax_code": ("billing.tax_code", "tenant.tax_code"),
    "whtax_code": ("billing.whtax_code", "tenant.whtax_code"),
    "base": ("billing.base",),
    "vat": ("billing.vat",),
    "wt": ("billing.wt",),
    "penalty": ("billing.penalty",),
    "total": ("billing.total",),
    "rate_of_change": ("billing.rate_of_change",),
    "memo": ("billing.memo",),
    "for_penalty": ("billing.for_penalty", "tenant.for_penalty"),
}

STRUCTURED_KEYS: Dict[str, Tuple[str, ...]] = {
    name: _STRUCTURED_PATHS.get(name, ()) + keys for name, keys in STANDARD_KEYS.items()
}

VOCABULARIES: Dict[RecordFamily, Dict[str, Tuple[str, ...]]] = {
    RecordFamily.STANDARD: STANDARD_KEYS,
    RecordFamily.LEGACY: LEGACY_KEYS,
    RecordFamily.STRUCTURED: STRUCTURED_KEYS,
}

_LEGACY_UTILITY_SENTINELS = (
    ("consumed_kwh", "electric"),
    ("consumed_cbm", "water"),
    ("consumed_kg", "lpg"),
)

_NUMERIC_FIELDS = (
    "prev_index",
    "curr_index",
    "prev_cons",
    "curr_cons",
    "utility_rate",
    "base",
    "vat",
    "wt",
    "penalty",
    "total",
    "rate_of_change",
)
_TEXT_FIELDS = ("meter_sn", "tenant_id", "tenant_name", "stall_id", "building_id", "tax_code", "whtax_code", "memo")


def lookup_path(record: Mapping[str, Any], path: str) -> Any:
    current: Any = record
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def first_value(
    record: Mapping[str, Any],
    keys: Iterable[str],
    coerce: Callable[[Any], Any],
) -> Any:
    """Return the first value under ``keys`` that survives ``coerce``."""

    for key in keys:
        raw = lookup_path(record, key)
        if raw is _MISSING:
            continue
        value = coerce(raw)
        if value is not None:
            return value
    return None


def _period_indices(record: Mapping[str, Any]) -> tuple[float | None, float | None]:
    periods = record.get("periods")
    if not isinstance(periods, list):
        return None, None
    bills = [item.get("bill") for item in periods if isinstance(item, Mapping) and isinstance(item.get("bill"), Mapping)]
    if not bills:
        return None, None
    return coerce_number(bills[0].get("prev_index")), coerce_number(bills[-1].get("curr_index"))


def _meter_type(record: Mapping[str, Any], family: RecordFamily, keys: Sequence[str], context: Mapping[str, Any]) -> str | None:
    value = first_value(record, keys, coerce_text)
    if value is None:
        value = coerce_text(context.get("meter_type"))
    if value is None and family is RecordFamily.LEGACY:
        for sentinel, utility in _LEGACY_UTILITY_SENTINELS:
            if sentinel in record:
                value = utility
                break
    return value.lower() if value else None


def normalize_record(classified: ClassifiedRecord, conventions: RateConventions | None = None) -> BillingRow:
    """Build a ``BillingRow``; malformed records yield a row with an empty ``meter_id``."""

    conventions = conventions or RateConventions()
    record, context, family = classified.record, classified.context, classified.family
    try:
        vocabulary = VOCABULARIES[family]
        values: Dict[str, Any] = {}
        for name in _NUMERIC_FIELDS:
            values[name] = first_value(record, vocabulary[name], coerce_number)
        for name in _TEXT_FIELDS:
            value = first_value(record, vocabulary[name], coerce_text)
            if value is None:
                value = coerce_text(context.get(name))
            values[name] = value

        if values["prev_index"] is None or values["curr_index"] is None:
            prev_index, curr_index = _period_indices(record)
            values["prev_index"] = values["prev_index"] if values["prev_index"] is not None else prev_index
            values["curr_index"] = values["curr_index"] if values["curr_index"] is not None else curr_index

        convention = conventions.for_family(family.value)
        values["vat_rate"] = to_fraction(first_value(record, vocabulary["vat_rate"], coerce_number), convention)
        values["wt_rate"] = to_fraction(first_value(record, vocabulary["wt_rate"], coerce_number), convention)
        values["for_penalty"] = coerce_flag(first_value(record, vocabulary["for_penalty"], _present))

        return BillingRow(
            meter_id=first_value(record, vocabulary["meter_id"], coerce_text) or "",
            meter_type=_meter_type(record, family, vocabulary["meter_type"], context),
            **values,
        )
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        LOGGER.warning("Skipping malformed %s billing record: %s", family.value, exc)
        return BillingRow(meter_id="")


def _present(value: Any) -> Any:
    return None if value is None or value == "" else value


def normalize_shape(shape: RawShape, conventions: RateConventions | None = None) -> List[BillingRow]:
    rows = [normalize_record(item, conventions) for item in shape.records]
    missing = sum(1 for row in rows if not row.is_admissible)
    if missing:
        LOGGER.info("%d of %d %s record(s) carry no meter id", missing, len(rows), shape.kind.value)
    return rows


__all__ = [
    "LEGACY_KEYS",
    "STANDARD_KEYS",
    "STRUCTURED_KEYS",
    "VOCABULARIES",
    "first_value",
    "lookup_path",
    "normalize_record",
    "normalize_shape",
]
