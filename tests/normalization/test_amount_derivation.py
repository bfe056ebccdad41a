from __future__ import annotations

from pathlib import Path
import sys

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:  # pragma: no cover - import guard
    sys.path.insert(0, str(PROJECT_ROOT))

from billing.normalization import BillingRow, BuildingRates, RateTable, derive_amounts, resolve_effective_rate

VAT_TABLE = RateTable.from_rows(
    [
        {"vat_code": "V12", "e_vat": 12, "w_vat": 0, "l_vat": 12},
        {"vat_code": "EXEMPT", "e_vat": 0, "w_vat": 0, "l_vat": 0},
    ],
    kind="vat",
)
WT_TABLE = RateTable.from_rows([{"wt_code": "W2", "e_wt": 2, "w_wt": 2, "l_wt": 1}], kind="wt")


def test_base_vat_wt_and_total_are_derived_from_partial_data() -> None:
    row = BillingRow(meter_id="M-1", meter_type="electric", curr_cons=100.0, vat_rate=0.12, wt_rate=0.02)

    derived = derive_amounts(row, 8.5, VAT_TABLE, WT_TABLE)

    assert derived.base == 850.0
    assert derived.vat == 102.0
    assert derived.wt == 17.0
    assert derived.total == 935.0
    assert derived.penalty is None
    assert row.base is None


def test_vat_falls_back_to_tax_code_table_per_utility() -> None:
    electric = derive_amounts(BillingRow(meter_id="M-1", meter_type="electric", base=200.0, tax_code="V12"), None, VAT_TABLE)
    water = derive_amounts(BillingRow(meter_id="M-2", meter_type="water", base=200.0, tax_code="V12"), None, VAT_TABLE)

    assert electric.vat == 24.0
    assert water.vat == 0.0


def test_withholding_falls_back_to_whtax_code_table() -> None:
    row = BillingRow(meter_id="M-1", meter_type="lpg", base=1000.0, whtax_code="W2")
    derived = derive_amounts(row, None, VAT_TABLE, WT_TABLE)
    assert derived.wt == 10.0
    assert derived.total == 990.0


def test_explicit_values_are_never_overwritten() -> None:
    row = BillingRow(meter_id="M-1", curr_cons=100.0, base=500.0, vat_rate=0.12)
    derived = derive_amounts(row, 10.0, VAT_TABLE)
    assert derived.base == 500.0
    assert derived.vat == 60.0


def test_derivation_is_idempotent_on_populated_rows() -> None:
    row = BillingRow(
        meter_id="M-1",
        curr_cons=100.0,
        vat_rate=0.12,
        base=999.0,
        vat=1.0,
        wt=2.0,
        penalty=3.0,
        total=4.0,
    )
    assert derive_amounts(row, 10.0, VAT_TABLE, WT_TABLE) is row

    once = derive_amounts(BillingRow(meter_id="M-2", curr_cons=10.0, vat_rate=0.12), 2.0)
    assert derive_amounts(once, 2.0) is once


def test_missing_inputs_leave_money_absent() -> None:
    row = BillingRow(meter_id="M-1", curr_cons=None, tax_code="V12")
    assert derive_amounts(row, 10.0, VAT_TABLE) is row

    no_rate = BillingRow(meter_id="M-1", curr_cons=100.0)
    assert derive_amounts(no_rate, None) is no_rate


def test_penalty_is_never_synthesized_but_counts_toward_total() -> None:
    row = BillingRow(meter_id="M-1", base=100.0, vat=12.0, penalty=5.0, for_penalty=True)
    derived = derive_amounts(row, None)
    assert derived.penalty == 5.0
    assert derived.total == 117.0

    flagged = derive_amounts(BillingRow(meter_id="M-2", base=100.0, for_penalty=True), None)
    assert flagged.penalty is None


def test_building_rate_overrides_row_rate() -> None:
    rates = BuildingRates.from_payload({"erate_perKwH": "11.25", "wrate_perCbM": 40, "lrate_perKg": None})
    electric = BillingRow(meter_id="M-1", meter_type="electric", utility_rate=9.0)
    lpg = BillingRow(meter_id="M-2", meter_type="lpg", utility_rate=80.0)

    assert resolve_effective_rate(electric, rates) == 11.25
    assert resolve_effective_rate(lpg, rates) == 80.0
    assert resolve_effective_rate(electric) == 9.0


def test_rate_table_from_plain_mapping_applies_to_every_utility() -> None:
    table = RateTable.from_mapping({"V12": 12, "bad": "n/a"})
    assert table.lookup("V12", "water") == pytest.approx(0.12)
    assert table.lookup("V12") == pytest.approx(0.12)
    assert table.lookup("bad") is None
    assert table.lookup(None) is None
    assert len(table) == 1
