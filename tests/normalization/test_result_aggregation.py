from __future__ import annotations

from pathlib import Path
import sys

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:  # pragma: no cover - import guard
    sys.path.insert(0, str(PROJECT_ROOT))

from billing.normalization import BillingRow, admit_rows, aggregate, reduce_comparison


def _rows():
    return [
        BillingRow(meter_id="M-1", curr_cons=100.0, base=1000.0, vat=120.0, total=1120.0),
        BillingRow(meter_id="M-2", curr_cons=200.0, base=2000.0, wt=40.0, penalty=15.0, total=1975.0),
        BillingRow(meter_id="M-3", curr_cons=None),
    ]


def test_null_consumption_contributes_zero_but_stays_null() -> None:
    rows = _rows()
    summary = aggregate(rows)

    assert summary.consumption == 300.0
    assert summary.base == 3000.0
    assert summary.vat == 120.0
    assert summary.wt == 40.0
    assert summary.penalty == 15.0
    assert summary.total == 3095.0
    assert summary.row_count == 3
    assert rows[2].curr_cons is None


def test_backend_totals_win_for_consumption_and_total_only() -> None:
    summary = aggregate(_rows(), {"consumption": "310", "grand_total": 5000, "base": 1, "vat": 2})

    assert summary.consumption == 310.0
    assert summary.total == 5000.0
    assert summary.base == 3000.0
    assert summary.vat == 120.0


def test_unusable_backend_totals_fall_back_to_row_sums() -> None:
    summary = aggregate(_rows(), {"consumption": "", "total": None})
    assert summary.consumption == 300.0
    assert summary.total == 3095.0


def test_rows_without_meter_id_are_dropped() -> None:
    rows = [BillingRow(meter_id=""), BillingRow(meter_id="   "), BillingRow(meter_id="M-1")]
    assert [row.meter_id for row in admit_rows(rows)] == ["M-1"]


def test_monthly_comparison_reduces_to_one_entry() -> None:
    (entry,) = reduce_comparison(
        {"period": {"start": "2024-02-21", "end": "2024-03-20"}, "totals": {"electric": 1200, "water": "35.5"}},
        label="monthly",
    )
    assert (entry.label, entry.start, entry.end) == ("monthly", "2024-02-21", "2024-03-20")
    assert (entry.electric, entry.water, entry.lpg) == (1200.0, 35.5, None)


def test_multi_month_comparison_keeps_months_and_window_total() -> None:
    entries = reduce_comparison(
        {
            "window": {"start": "2023-11-21", "end": "2024-03-20"},
            "months": [
                {"label": "Dec 2023", "start": "2023-11-21", "end": "2023-12-20", "totals": {"electric": 10}},
                {"start": "2023-12-21", "end": "2024-01-20", "totals": {"electric": 20}},
            ],
            "totals_all": {"electric": 30, "water": 0, "lpg": 0},
        },
        label="quarterly",
    )
    assert [entry.label for entry in entries] == ["Dec 2023", "quarterly-2", "quarterly-all"]
    assert entries[-1].electric == 30.0
    assert entries[-1].start == "2023-11-21"
