"""Shape classification, row normalization and derivation of billing payloads."""

from .aggregate import Summary, admit_rows, aggregate
from .amounts import BuildingRates, RateTable, derive_amounts, resolve_effective_rate
from .comparisons import ComparisonTotals, reduce_comparison
from .fields import BillingRow, RecordFamily, coerce_number, coerce_text
from .roc import apply_roc, compute_roc, reconstruct_prev
from .rows import normalize_record, normalize_shape
from .shapes import (
    ClassifiedRecord,
    RawShape,
    ShapeKind,
    classify,
    detect_family,
    is_empty_payload,
    unwrap_envelope,
)

__all__ = [
    "BillingRow",
    "BuildingRates",
    "ClassifiedRecord",
    "ComparisonTotals",
    "RateTable",
    "RawShape",
    "RecordFamily",
    "ShapeKind",
    "Summary",
    "admit_rows",
    "aggregate",
    "apply_roc",
    "classify",
    "coerce_number",
    "coerce_text",
    "compute_roc",
    "derive_amounts",
    "detect_family",
    "is_empty_payload",
    "normalize_record",
    "normalize_shape",
    "reconstruct_prev",
    "reduce_comparison",
    "resolve_effective_rate",
    "unwrap_envelope",
]
