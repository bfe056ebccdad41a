"""Reduce building comparison payloads to per-utility consumption totals."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Mapping

from ..errors import UnrecognizedPayload
from .fields import coerce_number, coerce_text
from .shapes import unwrap_envelope


@dataclass(frozen=True)
class ComparisonTotals:
    label: str
    start: str | None = None
    end: str | None = None
    electric: float | None = None
    water: float | None = None
    lpg: float | None = None

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _totals(label: str, window: Mapping[str, Any], totals: Any) -> ComparisonTotals:
    totals = totals if isinstance(totals, Mapping) else {}
    return ComparisonTotals(
        label=label,
        start=coerce_text(window.get("start")),
        end=coerce_text(window.get("end")),
        electric=coerce_number(totals.get("electric")),
        water=coerce_number(totals.get("water")),
        lpg=coerce_number(totals.get("lpg")),
    )


def reduce_comparison(payload: Any, *, label: str) -> List[ComparisonTotals]:
    """Monthly payloads yield one entry; multi-month payloads one per month plus ``all``."""

    payload = unwrap_envelope(payload)
    if not isinstance(payload, Mapping):
        raise UnrecognizedPayload(f"Unrecognized {label} comparison payload", payload=payload)

    months = payload.get("months")
    if isinstance(months, list):
        entries = [
            _totals(coerce_text(month.get("label")) or f"{label}-{index + 1}", month, month.get("totals"))
            for index, month in enumerate(months)
            if isinstance(month, Mapping)
        ]
        if isinstance(payload.get("totals_all"), Mapping):
            window = payload.get("window") if isinstance(payload.get("window"), Mapping) else {}
            entries.append(_totals(f"{label}-all", window, payload["totals_all"]))
        return entries

    if isinstance(payload.get("totals"), Mapping):
        window = payload.get("period") if isinstance(payload.get("period"), Mapping) else payload
        return [_totals(label, window, payload["totals"])]

    raise UnrecognizedPayload(f"Unrecognized {label} comparison payload", payload=payload)


__all__ = ["ComparisonTotals", "reduce_comparison"]
