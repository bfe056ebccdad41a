"""Rate-of-change computation and previous-consumption reconstruction."""

from __future__ import annotations

from dataclasses import replace

from .fields import BillingRow


def compute_roc(curr: float | None, prev: float | None) -> float | None:
    """Percentage change from ``prev`` to ``curr``; None when undefined."""

    if curr is None or prev is None or prev == 0:
        return None
    return (curr - prev) / prev * 100.0


def reconstruct_prev(curr: float | None, roc: float | None) -> float | None:
    """Back-solve ``prev = curr / (1 + roc/100)``; only for ``roc > -100``."""

    if curr is None or roc is None or roc <= -100:
        return None
    return round(curr / (1.0 + roc / 100.0), 2)


def apply_roc(row: BillingRow) -> BillingRow:
    """Fill ``rate_of_change`` or a reconstructed ``prev_cons`` on ``row``.

    An explicit previous consumption always wins over reconstruction. When
    ``prev_cons`` is reconstructed the payload's own percentage is kept.
    """

    if row.prev_cons is not None and not row.prev_cons_inferred:
        roc = compute_roc(row.curr_cons, row.prev_cons)
        if roc == row.rate_of_change:
            return row
        return replace(row, rate_of_change=roc)

    prev = reconstruct_prev(row.curr_cons, row.rate_of_change)
    if prev is None:
        if row.rate_of_change is None and row.prev_cons is None:
            return row
        return replace(row, prev_cons=None, prev_cons_inferred=False, rate_of_change=None)
    roc = None if prev == 0 else row.rate_of_change
    if (prev, roc) == (row.prev_cons, row.rate_of_change) and row.prev_cons_inferred:
        return row
    return replace(row, prev_cons=prev, prev_cons_inferred=True, rate_of_change=roc)


__all__ = ["apply_roc", "compute_roc", "reconstruct_prev"]
