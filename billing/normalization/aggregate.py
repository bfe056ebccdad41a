"""Fold normalized rows into summary totals."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from .fields import BillingRow, coerce_number, round_money

_BACKEND_CONSUMPTION_KEYS = ("consumption", "total_consumption", "current_consumption")
_BACKEND_TOTAL_KEYS = ("total", "grand_total", "total_amount", "amount_due")


@dataclass(frozen=True)
class Summary:
    consumption: float = 0.0
    base: float = 0.0
    vat: float = 0.0
    wt: float = 0.0
    penalty: float = 0.0
    total: float = 0.0
    row_count: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def admit_rows(rows: Iterable[BillingRow]) -> List[BillingRow]:
    """Drop placeholder rows without a meter id."""

    return [row for row in rows if row.is_admissible]


def _sum(values: Iterable[float | None]) -> float:
    return round_money(sum(value for value in values if value is not None))


def _backend_value(totals: Mapping[str, Any] | None, keys: Sequence[str]) -> float | None:
    if not totals:
        return None
    for key in keys:
        value = coerce_number(totals.get(key))
        if value is not None:
            return value
    return None


def aggregate(rows: Sequence[BillingRow], backend_totals: Mapping[str, Any] | None = None) -> Summary:
    """Sum row values, preferring backend consumption/total figures when supplied.

    ``base``, ``vat``, ``wt`` and ``penalty`` are always recomputed from rows;
    null row values count as zero here and stay null on the rows themselves.
    """

    consumption = _backend_value(backend_totals, _BACKEND_CONSUMPTION_KEYS)
    total = _backend_value(backend_totals, _BACKEND_TOTAL_KEYS)
    return Summary(
        consumption=consumption if consumption is not None else _sum(row.curr_cons for row in rows),
        base=_sum(row.base for row in rows),
        vat=_sum(row.vat for row in rows),
        wt=_sum(row.wt for row in rows),
        penalty=_sum(row.penalty for row in rows),
        total=total if total is not None else _sum(row.total for row in rows),
        row_count=len(rows),
    )


__all__ = ["Summary", "admit_rows", "aggregate"]
