"""Billing reconciliation engine turning heterogeneous billing payloads into one dataset."""

from .engine import QueryResult, QuerySequencer, ReconciliationEngine
from .errors import (
    AuthFailure,
    BillingError,
    NoRouteFound,
    PartialDataWarning,
    RouteNotFound,
    TransportError,
    UnrecognizedPayload,
    ValidationError,
)

__all__ = [
    "AuthFailure",
    "BillingError",
    "NoRouteFound",
    "PartialDataWarning",
    "QueryResult",
    "QuerySequencer",
    "ReconciliationEngine",
    "RouteNotFound",
    "TransportError",
    "UnrecognizedPayload",
    "ValidationError",
]
