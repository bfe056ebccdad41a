#!/usr/bin/env python3
"""Run one billing reconciliation query and print a JSON summary."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import Any, Mapping, Sequence

from billing.config import BillingConfig, load_billing_config
from billing.engine import QueryResult, ReconciliationEngine
from billing.errors import BillingError, RouteNotFound, ValidationError
from billing.ingestion.client import BillingRESTClient
from billing.ingestion.request import ENTITY_KINDS, BillingQuery

OPERATIONS = ("billing", "roc", "yearly")


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", help="Optional YAML or JSON config describing the backend.")
    parser.add_argument("--base-url", help="Override the backend base URL from the config.")
    parser.add_argument("--token", help="Bearer token; defaults to the env var named in the config.")
    parser.add_argument("--verbose", "-v", action="count", default=0, help="Increase log verbosity.")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile billing data for a building, tenant or meter.")
    subparsers = parser.add_subparsers(dest="operation", required=True)

    billing = subparsers.add_parser("billing", help="Billing rows and totals for a period end.")
    billing.add_argument("--kind", required=True, choices=ENTITY_KINDS, help="Entity kind to query.")
    billing.add_argument("--id", dest="entity_id", required=True, help="Building, tenant or meter id.")
    billing.add_argument("--period-end", required=True, help="Billing period end (YYYY-MM-DD).")
    billing.add_argument("--penalty-rate", help="Optional penalty percentage forwarded to the backend.")
    _add_common(billing)

    roc = subparsers.add_parser("roc", help="Rate of change between two consecutive periods.")
    roc.add_argument("--kind", required=True, choices=ENTITY_KINDS, help="Entity kind to query.")
    roc.add_argument("--id", dest="entity_id", required=True, help="Building, tenant or meter id.")
    roc.add_argument("--period-start", help="Period start (YYYY-MM-DD); defaults to the 21st of the prior month.")
    roc.add_argument("--period-end", required=True, help="Period end (YYYY-MM-DD).")
    _add_common(roc)

    yearly = subparsers.add_parser("yearly", help="Per-month utility totals for a building year.")
    yearly.add_argument("--building-id", required=True, help="Building id.")
    yearly.add_argument("--year", required=True, help="Calendar year (YYYY).")
    _add_common(yearly)

    return parser.parse_args(argv)


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _build_client(config: BillingConfig, args: argparse.Namespace) -> BillingRESTClient:
    return BillingRESTClient(
        args.base_url or config.api.base_url,
        token=args.token or config.api.resolve_token(),
        timeout=config.api.timeout,
        user_agent=config.api.user_agent,
    )


async def _run(engine: ReconciliationEngine, args: argparse.Namespace) -> QueryResult:
    if args.operation == "billing":
        query = BillingQuery.create(args.kind, args.entity_id, args.period_end, penalty_rate=args.penalty_rate)
        return await engine.billing(query)
    if args.operation == "roc":
        query = BillingQuery.create(args.kind, args.entity_id, args.period_end, period_start=args.period_start)
        return await engine.rate_of_change(query)
    return await engine.yearly_comparison(args.building_id, args.year)


async def _execute(config: BillingConfig, args: argparse.Namespace) -> QueryResult:
    async with _build_client(config, args) as client:
        engine = ReconciliationEngine(client, config)
        return await _run(engine, args)


def _target(args: argparse.Namespace) -> dict[str, Any]:
    if args.operation == "yearly":
        return {"kind": "building", "entity_id": args.building_id, "year": args.year}
    return {"kind": args.kind, "entity_id": args.entity_id}


def _success_summary(args: argparse.Namespace, result: QueryResult) -> dict[str, Any]:
    return {
        "status": "succeeded",
        "operation": args.operation,
        **_target(args),
        "result": result.as_dict(),
        "comparisons": {
            window: [entry.as_dict() for entry in entries] for window, entries in result.comparisons.items()
        },
        "warnings": [str(warning) for warning in result.warnings],
    }


def _failure_summary(args: argparse.Namespace, exc: Exception, *, category: str) -> dict[str, Any]:
    summary: dict[str, Any] = {
        "status": "failed",
        "operation": args.operation,
        **_target(args),
        "error_type": category,
        "error": str(exc),
    }
    if isinstance(exc, RouteNotFound):
        summary["attempts"] = [attempt.note() for attempt in exc.attempts]
    return summary


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    _configure_logging(args.verbose)
    try:
        config = load_billing_config(args.config)
        result = asyncio.run(_execute(config, args))
    except ValidationError as exc:
        return _emit_summary(_failure_summary(args, exc, category="ValidationError"), exit_code=2)
    except (BillingError, FileNotFoundError, ValueError) as exc:
        return _emit_summary(_failure_summary(args, exc, category=type(exc).__name__))
    return _emit_summary(_success_summary(args, result))


def _emit_summary(summary: Mapping[str, Any], *, exit_code: int | None = None) -> int:
    print(json.dumps(summary, indent=2, sort_keys=True))
    if exit_code is not None:
        return exit_code
    if summary.get("status") == "succeeded":
        return 0
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
