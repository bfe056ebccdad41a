"""Backend access: validated queries, route catalog, HTTP client and fallback resolver."""

from .client import BillingClientProtocol, BillingRESTClient, TransportResponse, bearer_header
from .request import ENTITY_KINDS, BillingQuery, coerce_penalty_rate, parse_ymd
from .resolver import EndpointResolver, Resolution
from .routes import (
    RouteCandidate,
    billing_routes,
    building_rate_routes,
    comparison_routes,
    default_period_start,
    period_end_candidates,
    roc_routes,
    tenant_listing_routes,
    vat_table_routes,
    wt_table_routes,
    yearly_comparison_routes,
)

__all__ = [
    "BillingClientProtocol",
    "BillingQuery",
    "BillingRESTClient",
    "ENTITY_KINDS",
    "EndpointResolver",
    "Resolution",
    "RouteCandidate",
    "TransportResponse",
    "bearer_header",
    "billing_routes",
    "building_rate_routes",
    "coerce_penalty_rate",
    "comparison_routes",
    "default_period_start",
    "parse_ymd",
    "period_end_candidates",
    "roc_routes",
    "tenant_listing_routes",
    "vat_table_routes",
    "wt_table_routes",
    "yearly_comparison_routes",
]
