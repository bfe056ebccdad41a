"""Query boundary tying route resolution, normalization and derivation together."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Mapping, Sequence

from .config import BillingConfig
from .errors import AuthFailure, EndpointAttempt, PartialDataWarning, RouteNotFound, UnrecognizedPayload, ValidationError
from .ingestion.client import BillingClientProtocol
from .ingestion.request import BillingQuery
from .ingestion.resolver import EndpointResolver, Resolution
from .ingestion.routes import (
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
from .normalization.aggregate import Summary, admit_rows, aggregate
from .normalization.amounts import BuildingRates, RateTable, derive_amounts, resolve_effective_rate
from .normalization.comparisons import ComparisonTotals, reduce_comparison
from .normalization.fields import BillingRow, coerce_text
from .normalization.roc import apply_roc
from .normalization.rows import normalize_shape
from .normalization.shapes import classify, unwrap_envelope

LOGGER = logging.getLogger(__name__)


@dataclass
class QueryResult:
    """Canonical outcome of one user-initiated query."""

    rows: List[BillingRow]
    summary: Summary
    effective_period_end: date | None
    diagnostic_notes: List[str] = field(default_factory=list)
    comparisons: Dict[str, List[ComparisonTotals]] = field(default_factory=dict)
    warnings: List[PartialDataWarning] = field(default_factory=list)
    token: int = 0
    stale: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "rows": [row.as_dict() for row in self.rows],
            "summary": self.summary.as_dict(),
            "effectivePeriodEnd": self.effective_period_end.isoformat() if self.effective_period_end else None,
            "diagnosticNotes": list(self.diagnostic_notes),
        }


class QuerySequencer:
    """Monotonic query tokens; only the newest token may publish results."""

    def __init__(self) -> None:
        self._latest = 0

    @property
    def latest_token(self) -> int:
        return self._latest

    def issue(self) -> int:
        self._latest += 1
        return self._latest

    def is_current(self, token: int) -> bool:
        return token == self._latest


@dataclass
class _RateContext:
    vat: RateTable = field(default_factory=RateTable)
    wt: RateTable = field(default_factory=RateTable)
    building: BuildingRates | None = None


class ReconciliationEngine:
    """Runs billing, rate-of-change and comparison queries against one backend session.

    The resolver (and its remembered route prefix) lives as long as the engine.
    ``latest`` holds the result of the newest query only.
    """

    def __init__(
        self,
        client: BillingClientProtocol,
        config: BillingConfig | None = None,
        *,
        resolver: EndpointResolver | None = None,
    ) -> None:
        self.config = config or BillingConfig()
        self.resolver = resolver or EndpointResolver(client, prefixes=self.config.api.route_prefixes)
        self.sequencer = QuerySequencer()
        self.latest: QueryResult | None = None

    async def billing(self, query: BillingQuery) -> QueryResult:
        token = self._begin()
        notes: list[str] = list(query.notes)
        rates = await self._rate_context(query, notes)
        payloads, effective_end, warnings = await self._resolve_billing(query, notes)
        building_mode = query.kind == "building"
        rows, summary = self._reconcile(payloads, rates, building_mode=building_mode)

        comparisons: Dict[str, List[ComparisonTotals]] = {}
        if building_mode and self.config.comparisons.enabled:
            comparisons = await self._comparisons(query.entity_id, effective_end, notes)

        result = QueryResult(
            rows=rows,
            summary=summary,
            effective_period_end=effective_end,
            diagnostic_notes=notes,
            comparisons=comparisons,
            warnings=warnings,
            token=token,
        )
        return self._publish(result)

    async def rate_of_change(self, query: BillingQuery) -> QueryResult:
        token = self._begin()
        notes: list[str] = list(query.notes)
        start = query.period_start or default_period_start(query.period_end)
        resolution = await self.resolver.resolve(
            roc_routes(query.kind, query.entity_id, start, query.period_end),
            label=f"{query.kind} rate of change",
        )
        notes.extend(resolution.notes)
        shape = classify(resolution.payload)
        rows = [apply_roc(row) for row in self._admit(normalize_shape(shape, self.config.rates))]
        result = QueryResult(
            rows=rows,
            summary=aggregate(rows),
            effective_period_end=query.period_end,
            diagnostic_notes=notes,
            warnings=resolution.warnings,
            token=token,
        )
        return self._publish(result)

    async def yearly_comparison(self, building_id: str, year: Any) -> QueryResult:
        identifier = str(building_id or "").strip()
        if not identifier:
            raise ValidationError("building id must be provided")
        try:
            year_value = int(str(year).strip())
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"year must be YYYY, got {year!r}") from exc
        if year_value < 1900:
            raise ValidationError(f"year must be YYYY, got {year!r}")

        token = self._begin()
        resolution = await self.resolver.resolve(
            yearly_comparison_routes(identifier, year_value),
            label="yearly comparison",
        )
        result = QueryResult(
            rows=[],
            summary=Summary(),
            effective_period_end=date(year_value, 12, 31),
            diagnostic_notes=resolution.notes,
            comparisons={"yearly": reduce_comparison(resolution.payload, label="yearly")},
            warnings=resolution.warnings,
            token=token,
        )
        return self._publish(result)

    def _begin(self) -> int:
        token = self.sequencer.issue()
        self.latest = None
        return token

    def _publish(self, result: QueryResult) -> QueryResult:
        if self.sequencer.is_current(result.token):
            self.latest = result
        else:
            LOGGER.info(
                "Discarding stale result for query %d; newest is %d",
                result.token,
                self.sequencer.latest_token,
            )
            result.stale = True
        return result

    async def _optional(self, candidates: Sequence[RouteCandidate], label: str, notes: list[str]) -> Resolution | None:
        """Resolve a non-essential sub-query; route failures become notes."""

        try:
            return await self.resolver.resolve(candidates, label=label)
        except RouteNotFound as exc:
            notes.append(f"{label} unavailable: {exc.attempts[-1].note() if exc.attempts else exc}")
            return None

    async def _rate_context(self, query: BillingQuery, notes: list[str]) -> _RateContext:
        lookups = [
            self._optional(vat_table_routes(), "VAT table", notes),
            self._optional(wt_table_routes(), "withholding table", notes),
        ]
        if query.kind == "building":
            lookups.append(self._optional(building_rate_routes(query.entity_id), "building rates", notes))
        resolved = await asyncio.gather(*lookups)

        convention = self.config.rates.tables
        context = _RateContext()
        if resolved[0] is not None:
            context.vat = RateTable.from_payload(resolved[0].payload, kind="vat", convention=convention)
        if resolved[1] is not None:
            context.wt = RateTable.from_payload(resolved[1].payload, kind="wt", convention=convention)
        if len(resolved) > 2 and resolved[2] is not None:
            context.building = BuildingRates.from_payload(resolved[2].payload)
        return context

    async def _resolve_billing(
        self,
        query: BillingQuery,
        notes: list[str],
    ) -> tuple[list[Any], date, list[PartialDataWarning]]:
        label = f"{query.kind} billing"
        attempts: list[EndpointAttempt] = []
        candidates = period_end_candidates(query.period_end)
        for period_end in candidates:
            try:
                resolution = await self.resolver.resolve(
                    billing_routes(query.kind, query.entity_id, period_end, params=query.billing_params()),
                    label=label,
                )
            except RouteNotFound as exc:
                attempts.extend(exc.attempts)
                continue
            notes.extend(attempt.note() for attempt in attempts)
            notes.extend(resolution.notes)
            if period_end != query.period_end:
                notes.append(f"Using effective period end {period_end.isoformat()} (requested {query.period_end.isoformat()})")
            warnings = resolution.warnings
            if attempts:
                warnings = [PartialDataWarning(f"{len(attempts)} earlier period-end attempt(s) failed")] + warnings
            return [resolution.payload], period_end, warnings

        if query.kind == "building":
            fallback = await self._building_from_tenants(query, candidates, notes, attempts)
            if fallback is not None:
                return fallback
        raise RouteNotFound.from_attempts(label, attempts)

    async def _building_from_tenants(
        self,
        query: BillingQuery,
        candidates: Sequence[date],
        notes: list[str],
        attempts: list[EndpointAttempt],
    ) -> tuple[list[Any], date, list[PartialDataWarning]] | None:
        """Secondary strategy: enumerate the building's tenants and merge their billings."""

        try:
            listing = await self.resolver.resolve(tenant_listing_routes(query.entity_id), label="tenant listing")
        except RouteNotFound as exc:
            attempts.extend(exc.attempts)
            return None
        tenant_ids = extract_tenant_ids(listing.payload)
        if not tenant_ids:
            attempts.extend(listing.attempts)
            return None

        params = query.billing_params()
        for period_end in candidates:
            lookups = [
                self._tenant_billing(tenant_id, period_end, params)
                for tenant_id in tenant_ids
            ]
            outcomes = await asyncio.gather(*lookups, return_exceptions=True)
            errors = [
                item for item in outcomes if isinstance(item, BaseException) and not isinstance(item, RouteNotFound)
            ]
            if errors:
                raise next((item for item in errors if isinstance(item, AuthFailure)), errors[0])
            payloads = [resolution.payload for resolution in outcomes if isinstance(resolution, Resolution)]
            failures = [exc for exc in outcomes if isinstance(exc, RouteNotFound)]
            for failure in failures:
                attempts.extend(failure.attempts)
            if not payloads:
                continue
            notes.extend(attempt.note() for attempt in attempts)
            notes.extend(listing.notes)
            notes.append(
                f"Building billing assembled from {len(payloads)} of {len(tenant_ids)} tenant billing(s)"
                f" for period end {period_end.isoformat()}"
            )
            warnings = [PartialDataWarning("Building billing routes failed; aggregated tenant billings instead")]
            return payloads, period_end, warnings
        return None

    async def _tenant_billing(
        self,
        tenant_id: str,
        period_end: date,
        params: Mapping[str, Any],
    ) -> Resolution | RouteNotFound:
        try:
            return await self.resolver.resolve(
                billing_routes("tenant", tenant_id, period_end, params=params),
                label=f"tenant {tenant_id} billing",
            )
        except RouteNotFound as exc:
            return exc

    def _admit(self, rows: Sequence[BillingRow]) -> list[BillingRow]:
        admitted = admit_rows(rows)
        dropped = len(rows) - len(admitted)
        if dropped:
            LOGGER.info("Dropped %d billing row(s) without a meter id", dropped)
        return admitted

    def _reconcile(
        self,
        payloads: Sequence[Any],
        rates: _RateContext,
        *,
        building_mode: bool,
    ) -> tuple[list[BillingRow], Summary]:
        normalized: list[BillingRow] = []
        backend_totals = None
        for payload in payloads:
            shape = classify(payload)
            if len(payloads) == 1:
                backend_totals = shape.totals
            normalized.extend(normalize_shape(shape, self.config.rates))

        building_rates = rates.building if building_mode else None
        rows = [
            apply_roc(derive_amounts(row, resolve_effective_rate(row, building_rates), rates.vat, rates.wt))
            for row in self._admit(normalized)
        ]
        return rows, aggregate(rows, backend_totals)

    async def _comparisons(
        self,
        building_id: str,
        period_end: date,
        notes: list[str],
    ) -> Dict[str, List[ComparisonTotals]]:
        start = default_period_start(period_end)
        windows = ("monthly", "quarterly")
        resolved = await asyncio.gather(
            *(
                self._optional(comparison_routes(building_id, start, period_end, window), f"{window} comparison", notes)
                for window in windows
            )
        )
        comparisons: Dict[str, List[ComparisonTotals]] = {}
        for window, resolution in zip(windows, resolved):
            if resolution is None:
                continue
            try:
                comparisons[window] = reduce_comparison(resolution.payload, label=window)
            except UnrecognizedPayload as exc:
                notes.append(f"{window} comparison ignored: {exc}")
        return comparisons


def extract_tenant_ids(payload: Any) -> list[str]:
    """Tenant ids from a ``/tenants`` listing in any of its envelope forms."""

    payload = unwrap_envelope(payload)
    if isinstance(payload, Mapping):
        payload = payload.get("tenants", payload.get("rows", []))
    if not isinstance(payload, list):
        return []
    identifiers: list[str] = []
    for item in payload:
        if isinstance(item, Mapping):
            identifier = coerce_text(item.get("tenant_id", item.get("id")))
        else:
            identifier = coerce_text(item)
        if identifier:
            identifiers.append(identifier)
    return list(dict.fromkeys(identifiers))


__all__ = ["QueryResult", "QuerySequencer", "ReconciliationEngine", "extract_tenant_ids"]
