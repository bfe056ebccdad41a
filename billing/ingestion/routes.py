"""Catalog of historical backend route variants per entity kind."""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Mapping, Tuple
from urllib.parse import quote

from .request import EntityKind

# Ordered newest-first; the legacy singular "/billing" family is kept last.
_BILLING_TEMPLATES: Dict[str, Tuple[str, ...]] = {
    "meter": (
        "/billings/meters/{id}/period-end/{end}",
        "/billing/meters/{id}/period-end/{end}",
    ),
    "tenant": (
        "/billings/with-markup/tenants/{id}/period-end/{end}",
        "/billings/tenants/{id}/period-end/{end}",
        "/billing/tenants/{id}/period-end/{end}",
    ),
    "building": (
        "/billings/with-markup/buildings/{id}/period-end/{end}",
        "/billings/buildings/{id}/period-end/{end}",
        "/billing/buildings/{id}/period-end/{end}",
    ),
}

_ROC_COLLECTIONS = {"meter": "meters", "tenant": "tenants", "building": "buildings"}


@dataclass(frozen=True)
class RouteCandidate:
    """One request target; ``prefixed`` targets are multiplied by the route-prefix axis."""

    path: str
    params: Mapping[str, Any] | None = None
    prefixed: bool = False

    def with_prefix(self, prefix: str) -> str:
        return f"{prefix}{self.path}" if self.prefixed else self.path


def _segment(value: Any) -> str:
    return quote(str(value), safe="")


def billing_routes(
    kind: EntityKind,
    entity_id: str,
    period_end: date,
    *,
    params: Mapping[str, Any] | None = None,
) -> tuple[RouteCandidate, ...]:
    try:
        templates = _BILLING_TEMPLATES[kind]
    except KeyError as exc:
        raise ValueError(f"No billing routes registered for entity kind {kind!r}") from exc
    return tuple(
        RouteCandidate(
            path=template.format(id=_segment(entity_id), end=_segment(period_end.isoformat())),
            params=dict(params) if params else None,
        )
        for template in templates
    )


def roc_routes(kind: EntityKind, entity_id: str, period_start: date, period_end: date) -> tuple[RouteCandidate, ...]:
    collection = _ROC_COLLECTIONS[kind]
    path = (
        f"/roc/{collection}/{_segment(entity_id)}"
        f"/period-start/{_segment(period_start.isoformat())}"
        f"/period-end/{_segment(period_end.isoformat())}"
    )
    return (RouteCandidate(path=path, prefixed=True),)


def comparison_routes(building_id: str, period_start: date, period_end: date, window: str) -> tuple[RouteCandidate, ...]:
    if window not in {"monthly", "quarterly"}:
        raise ValueError(f"Unsupported comparison window {window!r}")
    (base,) = roc_routes("building", building_id, period_start, period_end)
    return (RouteCandidate(path=f"{base.path}/{window}-comparison", prefixed=True),)


def yearly_comparison_routes(building_id: str, year: int) -> tuple[RouteCandidate, ...]:
    path = f"/roc/buildings/{_segment(building_id)}/year/{_segment(year)}/yearly-comparison"
    return (RouteCandidate(path=path, prefixed=True),)


def tenant_listing_routes(building_id: str) -> tuple[RouteCandidate, ...]:
    return (
        RouteCandidate(path="/tenants", params={"building_id": building_id}),
        RouteCandidate(path=f"/buildings/{_segment(building_id)}/tenants"),
    )


def vat_table_routes() -> tuple[RouteCandidate, ...]:
    return (RouteCandidate(path="/vat"),)


def wt_table_routes() -> tuple[RouteCandidate, ...]:
    return (RouteCandidate(path="/wt"),)


def building_rate_routes(building_id: str) -> tuple[RouteCandidate, ...]:
    return (RouteCandidate(path=f"/buildings/{_segment(building_id)}/base-rates"),)


def period_end_candidates(requested: date) -> list[date]:
    """Requested date, then canonical 20th/month-end anchors of this and the previous month."""

    year, month = requested.year, requested.month
    prev_year, prev_month = (year - 1, 12) if month == 1 else (year, month - 1)
    ordered = [
        requested,
        date(year, month, 20),
        date(year, month, calendar.monthrange(year, month)[1]),
        date(prev_year, prev_month, 20),
        date(prev_year, prev_month, calendar.monthrange(prev_year, prev_month)[1]),
    ]
    return list(dict.fromkeys(ordered))


def default_period_start(period_end: date) -> date:
    """21st of the month before ``period_end`` (21st-to-20th billing cycle)."""

    if period_end.month == 1:
        return date(period_end.year - 1, 12, 21)
    return date(period_end.year, period_end.month - 1, 21)


__all__ = [
    "RouteCandidate",
    "billing_routes",
    "building_rate_routes",
    "comparison_routes",
    "default_period_start",
    "period_end_candidates",
    "roc_routes",
    "tenant_listing_routes",
    "vat_table_routes",
    "wt_table_routes",
    "yearly_comparison_routes",
]
