"""Validated query container shared by the CLI and the engine."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Literal

from ..errors import ValidationError

EntityKind = Literal["building", "tenant", "meter"]
ENTITY_KINDS: tuple[str, ...] = ("building", "tenant", "meter")

_YMD = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_ymd(value: Any, *, label: str = "date") -> date:
    """Parse a strict ``YYYY-MM-DD`` value into a date."""

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value or "").strip()
    if not _YMD.match(text):
        raise ValidationError(f"{label} must use YYYY-MM-DD, got {text!r}")
    try:
        return date.fromisoformat(text)
    except ValueError as exc:
        raise ValidationError(f"{label} is not a calendar date: {text!r}") from exc


def _maybe_ymd(value: Any, *, label: str) -> date | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return parse_ymd(value, label=label)


def coerce_penalty_rate(value: Any) -> float | None:
    """Return a finite non-negative penalty percentage, or None when unusable."""

    if value is None or isinstance(value, bool):
        return None
    try:
        rate = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(rate) or rate < 0:
        return None
    return rate


@dataclass(frozen=True)
class BillingQuery:
    """One user-initiated lookup for a building, tenant or meter."""

    kind: EntityKind
    entity_id: str
    period_end: date
    period_start: date | None = None
    penalty_rate: float | None = None
    notes: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def create(
        cls,
        kind: str,
        entity_id: Any,
        period_end: Any,
        *,
        period_start: Any = None,
        penalty_rate: Any = None,
    ) -> "BillingQuery":
        normalized_kind = str(kind or "").strip().lower()
        if normalized_kind not in ENTITY_KINDS:
            raise ValidationError(f"entity kind must be one of {', '.join(ENTITY_KINDS)}, got {kind!r}")
        identifier = str(entity_id or "").strip()
        if not identifier:
            raise ValidationError(f"{normalized_kind} id must be provided")
        end = parse_ymd(period_end, label="period end")
        start = _maybe_ymd(period_start, label="period start")
        if start is not None and start > end:
            raise ValidationError("period start must be on or before period end")

        notes: list[str] = []
        rate = coerce_penalty_rate(penalty_rate)
        if penalty_rate not in (None, "") and rate is None:
            notes.append(f"Ignoring invalid penalty rate {penalty_rate!r}; expected a non-negative number.")

        return cls(
            kind=normalized_kind,  # type: ignore[arg-type]
            entity_id=identifier,
            period_end=end,
            period_start=start,
            penalty_rate=rate,
            notes=tuple(notes),
        )

    def with_period_end(self, period_end: date) -> "BillingQuery":
        return BillingQuery(
            kind=self.kind,
            entity_id=self.entity_id,
            period_end=period_end,
            period_start=self.period_start,
            penalty_rate=self.penalty_rate,
            notes=self.notes,
        )

    def billing_params(self) -> dict[str, Any]:
        if self.penalty_rate is None:
            return {}
        return {"penalty_rate": _format_rate(self.penalty_rate)}


def _format_rate(rate: float) -> str:
    if rate.is_integer():
        return str(int(rate))
    return repr(rate)


__all__ = [
    "BillingQuery",
    "ENTITY_KINDS",
    "EntityKind",
    "coerce_penalty_rate",
    "parse_ymd",
]
