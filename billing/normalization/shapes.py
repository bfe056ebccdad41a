"""Structural classification of raw billing payloads.

``classify`` is a pure function of the payload's shape. It never looks at which
entity kind was queried, so building, tenant and meter responses share it.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Mapping, Sequence

from ..errors import UnrecognizedPayload
from .fields import RecordFamily

METER_ID_KEYS = frozenset({"meter_id", "meterId", "meter_no", "meter_number", "meter_code", "meter_sn"})
ROW_SENTINELS = METER_ID_KEYS | frozenset(
    {"meter", "billing", "indices", "consumed_kwh", "current_consumption", "current_month_units"}
)
LEGACY_SENTINELS = frozenset({"meter_no", "stall_no", "consumed_kwh"})
STRUCTURED_SENTINELS = frozenset({"meter", "billing", "indices"})
TOTALS_KEYS = ("totals", "summary", "grand_totals")
CONTAINER_KEYS = ("meters", "lines", "rows", "tenants")
CONTEXT_KEYS = ("building_id", "tenant_id", "tenant_name")


class ShapeKind(str, Enum):
    FLAT_LIST = "flat_list"
    SINGLE_TENANT_LEGACY = "single_tenant_legacy"
    TENANT_ROLLUP = "tenant_rollup"
    FLAT_ROWS = "flat_rows"
    BARE_RECORD = "bare_record"
    HEURISTIC = "heuristic"


@dataclass(frozen=True)
class ClassifiedRecord:
    """A raw record, its vocabulary, and fields inherited from its container."""

    family: RecordFamily
    record: Mapping[str, Any]
    context: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RawShape:
    """Matched shape variant with the slices the normalizer needs."""

    kind: ShapeKind
    records: tuple[ClassifiedRecord, ...]
    totals: Mapping[str, Any] | None = None
    source_key: str | None = None


def _unwrap(payload: Any) -> tuple[Any, Mapping[str, Any] | None]:
    totals = None
    while isinstance(payload, Mapping) and isinstance(payload.get("data"), (Mapping, list)):
        if any(key in payload for key in CONTAINER_KEYS):
            break
        totals = _totals(payload) or totals
        payload = payload["data"]
    return payload, totals


def unwrap_envelope(payload: Any) -> Any:
    """Strip generic ``{"data": ...}`` envelopes."""

    return _unwrap(payload)[0]


def is_empty_payload(payload: Any) -> bool:
    """True when a decoded body carries no billing content once unwrapped.

    Placeholder entries (``None`` and ``{}``) do not count as content, and an
    object whose meters/lines/rows/tenants lists hold nothing else is empty.
    """

    payload = unwrap_envelope(payload)
    if payload is None or payload == "":
        return True
    if isinstance(payload, list):
        return all(_is_placeholder(item) for item in payload)
    if not isinstance(payload, Mapping):
        return False
    if not payload:
        return True
    if looks_like_row(payload):
        return False
    present = [payload[key] for key in CONTAINER_KEYS if key in payload]
    return bool(present) and all(
        isinstance(value, list) and all(_is_placeholder(item) for item in value) for value in present
    )


def detect_family(record: Mapping[str, Any]) -> RecordFamily:
    if any(isinstance(record.get(key), Mapping) for key in STRUCTURED_SENTINELS):
        return RecordFamily.STRUCTURED
    if LEGACY_SENTINELS.intersection(record.keys()):
        return RecordFamily.LEGACY
    return RecordFamily.STANDARD


def looks_like_row(value: Any) -> bool:
    return isinstance(value, Mapping) and bool(ROW_SENTINELS.intersection(value.keys()))


def _is_placeholder(item: Any) -> bool:
    return item is None or (isinstance(item, Mapping) and not item)


def _mapping_list(value: Any) -> list[Mapping[str, Any]] | None:
    """Object elements of ``value`` with placeholders dropped; None unless it is a list of objects."""

    if not isinstance(value, list):
        return None
    if not all(item is None or isinstance(item, Mapping) for item in value):
        return None
    return [item for item in value if not _is_placeholder(item)]


def _rows_dominate(items: Sequence[Mapping[str, Any]]) -> bool:
    row_like = sum(1 for item in items if looks_like_row(item))
    return 2 * row_like > len(items)


def _context(source: Mapping[str, Any], inherited: Mapping[str, Any] | None = None) -> Dict[str, Any]:
    context = dict(inherited or {})
    for key in CONTEXT_KEYS:
        if source.get(key) not in (None, ""):
            context[key] = source[key]
    if "tenant_name" not in context and source.get("tenant_id") is not None and source.get("name"):
        context["tenant_name"] = source["name"]
    return context


def _records(items: Sequence[Mapping[str, Any]], context: Mapping[str, Any] | None = None) -> list[ClassifiedRecord]:
    return [ClassifiedRecord(family=detect_family(item), record=item, context=dict(context or {})) for item in items]


def _totals(payload: Mapping[str, Any]) -> Mapping[str, Any] | None:
    for key in TOTALS_KEYS:
        value = payload.get(key)
        if isinstance(value, Mapping):
            return value
    return None


def _tenant_records(tenant: Mapping[str, Any], inherited: Mapping[str, Any]) -> list[ClassifiedRecord] | None:
    context = _context(tenant, inherited)
    for key in ("meters", "rows"):
        items = _mapping_list(tenant.get(key))
        if items is not None:
            return _records(items, context)
    groups = _mapping_list(tenant.get("groups"))
    if groups is not None:
        collected: list[ClassifiedRecord] = []
        for group in groups:
            items = _mapping_list(group.get("meters")) or []
            group_context = dict(context)
            if group.get("meter_type"):
                group_context["meter_type"] = group["meter_type"]
            collected.extend(_records(items, group_context))
        return collected
    return None


def classify(payload: Any) -> RawShape:
    """Match ``payload`` against the known shapes in priority order.

    Totals found on a stripped envelope are kept when the matched shape has none.
    """

    payload, envelope_totals = _unwrap(payload)
    shape = _match(payload)
    if shape.totals is None and envelope_totals is not None:
        shape = replace(shape, totals=envelope_totals)
    return shape


def _match(payload: Any) -> RawShape:
    # 1. flat list of meter records, or an object exposing one under meters/lines
    items = _mapping_list(payload)
    if items is not None and (not items or _rows_dominate(items)):
        return RawShape(kind=ShapeKind.FLAT_LIST, records=tuple(_records(items)))
    if isinstance(payload, Mapping) and "tenant_id" not in payload:
        for key in ("meters", "lines"):
            items = _mapping_list(payload.get(key))
            if items and _rows_dominate(items):
                return RawShape(
                    kind=ShapeKind.FLAT_LIST,
                    records=tuple(_records(items, _context(payload))),
                    totals=_totals(payload),
                    source_key=key,
                )

    # 2. single tenant: tenant_id with meters (or ROC meter-type groups)
    if isinstance(payload, Mapping) and payload.get("tenant_id") not in (None, ""):
        if _mapping_list(payload.get("meters")) is not None or _mapping_list(payload.get("groups")) is not None:
            records = _tenant_records(payload, {}) or []
            return RawShape(
                kind=ShapeKind.SINGLE_TENANT_LEGACY,
                records=tuple(records),
                totals=_totals(payload),
                source_key="meters" if "meters" in payload else "groups",
            )

    # 3. building roll-up: tenants[] each with meters/rows
    tenants = _mapping_list(payload.get("tenants")) if isinstance(payload, Mapping) else None
    inherited = _context(payload) if isinstance(payload, Mapping) else {}
    if tenants is None and items is not None and items and all(
        _mapping_list(item.get("meters")) is not None or _mapping_list(item.get("rows")) is not None
        for item in items
    ):
        tenants = items
    if tenants is not None:
        collected: list[ClassifiedRecord] = []
        for tenant in tenants:
            collected.extend(_tenant_records(tenant, inherited) or [])
        return RawShape(
            kind=ShapeKind.TENANT_ROLLUP,
            records=tuple(collected),
            totals=_totals(payload) if isinstance(payload, Mapping) else None,
            source_key="tenants",
        )

    if isinstance(payload, Mapping):
        # 4. top-level rows/lines of flat billing lines
        for key in ("rows", "lines"):
            rows = _mapping_list(payload.get(key))
            if rows is not None:
                return RawShape(
                    kind=ShapeKind.FLAT_ROWS,
                    records=tuple(_records(rows, _context(payload))),
                    totals=_totals(payload),
                    source_key=key,
                )

        # 5. a single bare record
        if looks_like_row(payload):
            return RawShape(
                kind=ShapeKind.BARE_RECORD,
                records=(ClassifiedRecord(family=detect_family(payload), record=payload),),
                totals=_totals(payload),
            )

        # 6. first key holding an array of objects, classified per element
        for key, value in payload.items():
            rows = _mapping_list(value)
            if rows:
                return RawShape(
                    kind=ShapeKind.HEURISTIC,
                    records=tuple(_records(rows, _context(payload))),
                    totals=_totals(payload),
                    source_key=str(key),
                )

    raise UnrecognizedPayload(
        f"Unrecognized billing payload shape ({type(payload).__name__})",
        payload=payload,
    )


__all__ = [
    "ClassifiedRecord",
    "RawShape",
    "ShapeKind",
    "classify",
    "detect_family",
    "is_empty_payload",
    "looks_like_row",
    "unwrap_envelope",
]
