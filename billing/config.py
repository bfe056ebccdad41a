"""Runtime configuration for the billing reconciliation engine."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

DEFAULT_ROUTE_PREFIXES: tuple[str, ...] = ("", "/api", "/v1", "/api/v1")
_CONVENTIONS = {"percent", "fraction"}


@dataclass(frozen=True)
class ApiConfig:
    """Backend endpoint and credential settings."""

    base_url: str = "http://localhost:3000"
    timeout: float = 20.0
    token_env: str = "BILLING_API_TOKEN"
    route_prefixes: tuple[str, ...] = DEFAULT_ROUTE_PREFIXES
    user_agent: str = "billing-recon/1.0"

    def resolve_token(self) -> str | None:
        token = os.environ.get(self.token_env, "").strip()
        return token or None


@dataclass(frozen=True)
class RateConventions:
    """How each shape family encodes VAT/withholding rates on the wire.

    Everything is converted to a fraction at ingestion; ``tables`` covers the
    ``/vat`` and ``/wt`` code tables.
    """

    standard: str = "percent"
    legacy: str = "percent"
    structured: str = "fraction"
    tables: str = "percent"

    def __post_init__(self) -> None:
        for name in ("standard", "legacy", "structured", "tables"):
            value = getattr(self, name)
            if value not in _CONVENTIONS:
                raise ValueError(f"rates.{name} must be one of {sorted(_CONVENTIONS)}, got {value!r}")

    def for_family(self, family: str) -> str:
        return getattr(self, family, "percent")


@dataclass(frozen=True)
class ComparisonConfig:
    """Building comparison sub-queries issued alongside billing queries."""

    enabled: bool = True


@dataclass(frozen=True)
class BillingConfig:
    """Top-level configuration surface."""

    api: ApiConfig = field(default_factory=ApiConfig)
    rates: RateConventions = field(default_factory=RateConventions)
    comparisons: ComparisonConfig = field(default_factory=ComparisonConfig)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> "BillingConfig":
        payload = dict(payload or {})
        api_block = payload.get("api") or {}
        rates_block = payload.get("rates") or {}
        comparisons_block = payload.get("comparisons") or {}
        prefixes = api_block.get("route_prefixes")
        base_url = os.environ.get("BILLING_API_BASE_URL") or api_block.get("base_url", ApiConfig.base_url)
        api = ApiConfig(
            base_url=str(base_url).rstrip("/"),
            timeout=float(api_block.get("timeout", ApiConfig.timeout)),
            token_env=str(api_block.get("token_env", ApiConfig.token_env)),
            route_prefixes=_normalize_prefixes(prefixes) if prefixes is not None else DEFAULT_ROUTE_PREFIXES,
            user_agent=str(api_block.get("user_agent", ApiConfig.user_agent)),
        )
        rates = RateConventions(
            standard=str(rates_block.get("standard", RateConventions.standard)).lower(),
            legacy=str(rates_block.get("legacy", RateConventions.legacy)).lower(),
            structured=str(rates_block.get("structured", RateConventions.structured)).lower(),
            tables=str(rates_block.get("tables", RateConventions.tables)).lower(),
        )
        comparisons = ComparisonConfig(
            enabled=bool(comparisons_block.get("enabled", ComparisonConfig.enabled)),
        )
        return cls(api=api, rates=rates, comparisons=comparisons)


def _normalize_prefixes(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        value = [value]
    prefixes: list[str] = []
    for item in value:
        text = str(item or "").strip().rstrip("/")
        if text and not text.startswith("/"):
            text = f"/{text}"
        prefixes.append(text)
    return tuple(dict.fromkeys(prefixes)) or ("",)


def _load_mapping(path: Path) -> Mapping[str, Any]:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in {".yml", ".yaml"}:
        payload = yaml.safe_load(text)
    else:
        payload = json.loads(text)
    if payload is None:
        return {}
    if not isinstance(payload, Mapping):
        raise ValueError("Billing config must map keys to values.")
    return payload


def load_billing_config(path: Path | str | None = None) -> BillingConfig:
    """Load configuration from disk, or return defaults when no path is given."""

    if path is None:
        return BillingConfig.from_mapping(None)
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Billing configuration not found at {config_path}")
    return BillingConfig.from_mapping(_load_mapping(config_path))


__all__ = [
    "ApiConfig",
    "BillingConfig",
    "ComparisonConfig",
    "DEFAULT_ROUTE_PREFIXES",
    "RateConventions",
    "load_billing_config",
]
