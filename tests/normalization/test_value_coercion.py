from __future__ import annotations

from pathlib import Path
import sys

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:  # pragma: no cover - import guard
    sys.path.insert(0, str(PROJECT_ROOT))

from billing.normalization.fields import coerce_flag, coerce_number, coerce_text, to_fraction


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("12.5", 12.5), (" 7 ", 7.0), ("-3", -3.0), ("1e3", 1000.0), (0, 0.0), (4, 4.0), (2.25, 2.25)],
)
def test_numeric_inputs_parse_to_floats(raw, expected) -> None:
    assert coerce_number(raw) == expected


@pytest.mark.parametrize("raw", ["", "   ", None, "abc", "nan", "inf", "-inf", float("nan"), True, [], {}])
def test_non_numeric_inputs_are_absent_not_zero(raw) -> None:
    assert coerce_number(raw) is None


def test_zero_stays_zero() -> None:
    assert coerce_number("0") == 0.0
    assert coerce_number("0") is not None


def test_text_coercion_trims_and_drops_containers() -> None:
    assert coerce_text("  M-1 ") == "M-1"
    assert coerce_text(42) == "42"
    assert coerce_text(42.0) == "42"
    assert coerce_text("") is None
    assert coerce_text({"id": 1}) is None


def test_flags_and_rate_conventions() -> None:
    assert coerce_flag("yes") is True
    assert coerce_flag(0) is False
    assert coerce_flag(None) is False
    assert to_fraction(12.0, "percent") == pytest.approx(0.12)
    assert to_fraction(0.12, "fraction") == 0.12
    assert to_fraction(None, "percent") is None
