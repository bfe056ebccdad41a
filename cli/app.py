from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

import typer

from scripts import reconcile

app = typer.Typer(add_completion=False, help="Billing reconciliation against the utility billing backend.")


@dataclass(frozen=True)
class CommonOptions:
    config: Optional[str]
    base_url: Optional[str]
    token: Optional[str]
    verbose: int

    def argv(self) -> List[str]:
        args: List[str] = []
        if self.config:
            args += ["--config", self.config]
        if self.base_url:
            args += ["--base-url", self.base_url]
        if self.token:
            args += ["--token", self.token]
        if self.verbose:
            args.append("-" + "v" * self.verbose)
        return args


def _forward(operation: str, args: Sequence[str], common: CommonOptions) -> None:
    exit_code = reconcile.main([operation, *args, *common.argv()])
    if exit_code != 0:
        raise typer.Exit(code=exit_code)


_CONFIG = typer.Option(None, "--config", help="YAML or JSON backend config.")
_BASE_URL = typer.Option(None, "--base-url", help="Override the backend base URL.")
_TOKEN = typer.Option(None, "--token", envvar="BILLING_API_TOKEN", help="Bearer token.")
_VERBOSE = typer.Option(0, "--verbose", "-v", count=True, help="Increase log verbosity.")


@app.command(help="Billing rows and totals for a building, tenant or meter.")
def billing(
    kind: str = typer.Option(..., "--kind", help="building, tenant or meter."),
    entity_id: str = typer.Option(..., "--id", help="Entity id."),
    period_end: str = typer.Option(..., "--period-end", help="YYYY-MM-DD."),
    penalty_rate: Optional[str] = typer.Option(None, "--penalty-rate", help="Penalty percentage."),
    config: Optional[str] = _CONFIG,
    base_url: Optional[str] = _BASE_URL,
    token: Optional[str] = _TOKEN,
    verbose: int = _VERBOSE,
) -> None:
    args = ["--kind", kind, "--id", entity_id, "--period-end", period_end]
    if penalty_rate is not None:
        args += ["--penalty-rate", penalty_rate]
    _forward("billing", args, CommonOptions(config, base_url, token, verbose))


@app.command(help="Rate of change in consumption between consecutive periods.")
def roc(
    kind: str = typer.Option(..., "--kind", help="building, tenant or meter."),
    entity_id: str = typer.Option(..., "--id", help="Entity id."),
    period_end: str = typer.Option(..., "--period-end", help="YYYY-MM-DD."),
    period_start: Optional[str] = typer.Option(None, "--period-start", help="YYYY-MM-DD."),
    config: Optional[str] = _CONFIG,
    base_url: Optional[str] = _BASE_URL,
    token: Optional[str] = _TOKEN,
    verbose: int = _VERBOSE,
) -> None:
    args = ["--kind", kind, "--id", entity_id, "--period-end", period_end]
    if period_start is not None:
        args += ["--period-start", period_start]
    _forward("roc", args, CommonOptions(config, base_url, token, verbose))


@app.command(help="Yearly per-utility comparison for a building.")
def yearly(
    building_id: str = typer.Option(..., "--building-id", help="Building id."),
    year: str = typer.Option(..., "--year", help="YYYY."),
    config: Optional[str] = _CONFIG,
    base_url: Optional[str] = _BASE_URL,
    token: Optional[str] = _TOKEN,
    verbose: int = _VERBOSE,
) -> None:
    _forward("yearly", ["--building-id", building_id, "--year", year], CommonOptions(config, base_url, token, verbose))


if __name__ == "__main__":
    app()
