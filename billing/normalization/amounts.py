"""Fill missing money fields from whatever partial data a row carries.

Derivation only fills gaps: a value present in the payload is never replaced.
All rates handled here are fractions.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, Mapping

from .fields import BillingRow, coerce_number, coerce_text, round_money, to_fraction

UTILITIES = ("electric", "water", "lpg")
_UTILITY_ALIASES = {
    "electric": "electric",
    "electricity": "electric",
    "power": "electric",
    "water": "water",
    "lpg": "lpg",
    "gas": "lpg",
}
_TABLE_COLUMNS = {"electric": "e", "water": "w", "lpg": "l"}


def utility_of(meter_type: str | None) -> str | None:
    if not meter_type:
        return None
    return _UTILITY_ALIASES.get(meter_type.strip().lower())


@dataclass(frozen=True)
class RateTable:
    """Tax or withholding code mapped to a per-utility fraction.

    A code stored under the ``"*"`` utility applies to every meter type.
    """

    rates: Mapping[str, Mapping[str, float]] = field(default_factory=dict)

    @classmethod
    def from_rows(cls, rows: Iterable[Mapping[str, Any]], *, kind: str, convention: str = "percent") -> "RateTable":
        """Build from ``/vat`` (``vat_code``, ``e_vat`` ...) or ``/wt`` (``wt_code``, ``e_wt`` ...) rows."""

        rates: Dict[str, Dict[str, float]] = {}
        for row in rows:
            if not isinstance(row, Mapping):
                continue
            code = coerce_text(row.get(f"{kind}_code") or row.get("code"))
            if code is None:
                continue
            per_utility: Dict[str, float] = {}
            for utility, column in _TABLE_COLUMNS.items():
                value = to_fraction(coerce_number(row.get(f"{column}_{kind}")), convention)
                if value is not None:
                    per_utility[utility] = value
            flat = to_fraction(
                coerce_number(row.get(f"{kind}_percent", row.get("rate", row.get("percent")))),
                convention,
            )
            if flat is not None:
                per_utility["*"] = flat
            if per_utility:
                rates[code] = per_utility
        return cls(rates=rates)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any], *, convention: str = "percent") -> "RateTable":
        """Build from a plain ``{code: pct}`` mapping."""

        rates: Dict[str, Dict[str, float]] = {}
        for code, value in mapping.items():
            rate = to_fraction(coerce_number(value), convention)
            if rate is not None:
                rates[str(code)] = {"*": rate}
        return cls(rates=rates)

    @classmethod
    def from_payload(cls, payload: Any, *, kind: str, convention: str = "percent") -> "RateTable":
        if isinstance(payload, Mapping) and isinstance(payload.get("data"), list):
            payload = payload["data"]
        if isinstance(payload, list):
            return cls.from_rows(payload, kind=kind, convention=convention)
        if isinstance(payload, Mapping):
            return cls.from_mapping(payload, convention=convention)
        return cls()

    def lookup(self, code: str | None, meter_type: str | None = None) -> float | None:
        if not code:
            return None
        per_utility = self.rates.get(code)
        if per_utility is None:
            return None
        utility = utility_of(meter_type)
        if utility is not None and utility in per_utility:
            return per_utility[utility]
        return per_utility.get("*")

    def __len__(self) -> int:
        return len(self.rates)


@dataclass(frozen=True)
class BuildingRates:
    """Per-utility base rate of a building, overriding row rates in building mode."""

    electric: float | None = None
    water: float | None = None
    lpg: float | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "BuildingRates":
        if isinstance(payload, Mapping) and isinstance(payload.get("data"), Mapping):
            payload = payload["data"]
        if isinstance(payload, list) and payload and isinstance(payload[0], Mapping):
            payload = payload[0]
        if not isinstance(payload, Mapping):
            return cls()
        return cls(
            electric=coerce_number(payload.get("erate_perKwH", payload.get("electric"))),
            water=coerce_number(payload.get("wrate_perCbM", payload.get("water"))),
            lpg=coerce_number(payload.get("lrate_perKg", payload.get("lpg"))),
        )

    def rate_for(self, meter_type: str | None) -> float | None:
        utility = utility_of(meter_type)
        if utility is None:
            return None
        return getattr(self, utility)


def resolve_effective_rate(row: BillingRow, building_rates: BuildingRates | None = None) -> float | None:
    """Building override when querying a building, else the row's own rate."""

    if building_rates is not None:
        override = building_rates.rate_for(row.meter_type)
        if override is not None:
            return override
    return row.utility_rate


def derive_amounts(
    row: BillingRow,
    effective_rate: float | None,
    vat_table: RateTable | None = None,
    wt_table: RateTable | None = None,
) -> BillingRow:
    """Return ``row`` with null money fields derived; the same object when nothing changes.

    Penalty is never synthesized. ``total`` is ``base + vat - wt + penalty``
    whenever ``base`` is known, counting missing components as zero.
    """

    base = row.base
    if base is None and row.curr_cons is not None and effective_rate is not None:
        base = round_money(row.curr_cons * effective_rate)

    vat = row.vat
    if vat is None and base is not None:
        vat_rate = row.vat_rate
        if vat_rate is None and vat_table is not None:
            vat_rate = vat_table.lookup(row.tax_code, row.meter_type)
        if vat_rate is not None:
            vat = round_money(base * vat_rate)

    wt = row.wt
    if wt is None and base is not None:
        wt_rate = row.wt_rate
        if wt_rate is None and wt_table is not None:
            wt_rate = wt_table.lookup(row.whtax_code, row.meter_type)
        if wt_rate is not None:
            wt = round_money(base * wt_rate)

    total = row.total
    if total is None and base is not None:
        total = round_money(base + (vat or 0.0) - (wt or 0.0) + (row.penalty or 0.0))

    if (base, vat, wt, total) == (row.base, row.vat, row.wt, row.total):
        return row
    return replace(row, base=base, vat=vat, wt=wt, total=total)


__all__ = [
    "BuildingRates",
    "RateTable",
    "UTILITIES",
    "derive_amounts",
    "resolve_effective_rate",
    "utility_of",
]
