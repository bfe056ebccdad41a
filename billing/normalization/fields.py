"""Canonical billing row model and value coercion rules.

Absent values stay ``None`` all the way to export: a meter with no reading is
not a meter with zero consumption.
"""

from __future__ import annotations

import math
import numbers
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict


class RecordFamily(str, Enum):
    """Vocabulary a raw record is written in."""

    STANDARD = "standard"
    """Current route families: ``meter_id``, ``current_consumption`` ..."""

    LEGACY = "legacy"
    """Flat legacy rows: ``meter_no``, ``stall_no``, ``consumed_kwh`` ..."""

    STRUCTURED = "structured"
    """Nested records: ``meter{}``, ``billing{}``, ``indices{}``."""


MONEY_FIELDS = ("base", "vat", "wt", "penalty", "total")


def coerce_number(value: Any) -> float | None:
    """Finite float or None; empty strings, null and NaN/inf are absent, never zero."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, numbers.Real):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return number


def coerce_text(value: Any) -> str | None:
    if value is None or isinstance(value, (bool, dict, list, tuple)):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def coerce_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, numbers.Real):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y", "t"}
    return False


def to_fraction(value: float | None, convention: str) -> float | None:
    """Convert a wire rate to the canonical fraction representation."""

    if value is None:
        return None
    if convention == "percent":
        return value / 100.0
    return value


def round_money(value: float) -> float:
    return round(value, 2)


@dataclass(frozen=True)
class BillingRow:
    """One physical meter's billing line for a period.

    ``vat_rate`` and ``wt_rate`` are fractions (0.12 for 12%).
    """

    meter_id: str
    meter_sn: str | None = None
    meter_type: str | None = None
    tenant_id: str | None = None
    tenant_name: str | None = None
    stall_id: str | None = None
    building_id: str | None = None
    prev_index: float | None = None
    curr_index: float | None = None
    prev_cons: float | None = None
    curr_cons: float | None = None
    utility_rate: float | None = None
    vat_rate: float | None = None
    wt_rate: float | None = None
    tax_code: str | None = None
    whtax_code: str | None = None
    base: float | None = None
    vat: float | None = None
    wt: float | None = None
    penalty: float | None = None
    total: float | None = None
    rate_of_change: float | None = None
    prev_cons_inferred: bool = False
    memo: str | None = None
    for_penalty: bool = False

    @property
    def is_admissible(self) -> bool:
        return bool(self.meter_id and self.meter_id.strip())

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


__all__ = [
    "BillingRow",
    "MONEY_FIELDS",
    "RecordFamily",
    "coerce_flag",
    "coerce_number",
    "coerce_text",
    "round_money",
    "to_fraction",
]
