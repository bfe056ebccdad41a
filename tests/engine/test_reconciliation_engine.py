from __future__ import annotations

import asyncio
from datetime import date
import json
from pathlib import Path
import sys

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:  # pragma: no cover - import guard
    sys.path.insert(0, str(PROJECT_ROOT))

from billing import AuthFailure, ReconciliationEngine, RouteNotFound, ValidationError
from billing.config import BillingConfig
from billing.engine import extract_tenant_ids
from billing.ingestion import BillingQuery, TransportResponse


class _FakeBillingClient:
    def __init__(self, responses, *, gate_on=None):
        self.responses = dict(responses)
        self.calls = []
        self.gate_on = gate_on
        self.gate = None

    async def get(self, path, params=None):
        self.calls.append(path)
        if self.gate_on and self.gate_on in path:
            await self.gate.wait()
        status, payload = self.responses.get(path, (404, {"error": "Not found"}))
        text = json.dumps(payload) if payload is not None else ""
        return TransportResponse(status_code=status, url=f"http://backend{path}", text=text, payload=payload)


BUILDING_PAYLOAD = {
    "building_id": "B-1",
    "tenants": [
        {
            "tenant_id": "T-1",
            "tenant_name": "Acme",
            "meters": [
                {
                    "meter_id": "M-1",
                    "meter_type": "electric",
                    "current_consumption": 100,
                    "previous_consumption": 80,
                    "tax_code": "V12",
                },
                {"meter_id": "", "current_consumption": 5},
            ],
        }
    ],
}

MONTHLY_PATH = "/roc/buildings/B-1/period-start/2024-02-21/period-end/2024-03-20/monthly-comparison"
QUARTERLY_PATH = "/roc/buildings/B-1/period-start/2024-02-21/period-end/2024-03-20/quarterly-comparison"


def _building_client():
    return _FakeBillingClient(
        {
            "/vat": (200, [{"vat_code": "V12", "e_vat": 12, "w_vat": 12, "l_vat": 12}]),
            "/buildings/B-1/base-rates": (200, {"erate_perKwH": 10, "wrate_perCbM": 50, "lrate_perKg": 90}),
            "/billings/with-markup/buildings/B-1/period-end/2024-03-20": (200, BUILDING_PAYLOAD),
            MONTHLY_PATH: (
                200,
                {"period": {"start": "2024-02-21", "end": "2024-03-20"}, "totals": {"electric": 100, "water": 0}},
            ),
            f"/api{QUARTERLY_PATH}": (
                200,
                {
                    "months": [{"label": "Mar 2024", "start": "2024-02-21", "end": "2024-03-20", "totals": {"electric": 100}}],
                    "totals_all": {"electric": 100},
                },
            ),
        }
    )


def test_building_query_adopts_derived_period_end_for_comparisons() -> None:
    client = _building_client()
    engine = ReconciliationEngine(client)
    query = BillingQuery.create("building", "B-1", "2024-03-15")

    result = asyncio.run(engine.billing(query))

    assert result.effective_period_end == date(2024, 3, 20)
    assert result.as_dict()["effectivePeriodEnd"] == "2024-03-20"
    comparison_calls = [path for path in client.calls if "comparison" in path]
    assert comparison_calls
    assert all("period-end/2024-03-20" in path for path in comparison_calls)
    assert set(result.comparisons) == {"monthly", "quarterly"}
    assert result.comparisons["monthly"][0].electric == 100.0
    assert any("2024-03-15" in note and "404" in note for note in result.diagnostic_notes)
    assert any("withholding table unavailable" in note for note in result.diagnostic_notes)
    assert engine.latest is result


def test_building_rows_are_admitted_derived_and_summarized() -> None:
    engine = ReconciliationEngine(_building_client())
    result = asyncio.run(engine.billing(BillingQuery.create("building", "B-1", "2024-03-20")))

    (row,) = result.rows
    assert row.meter_id == "M-1"
    assert (row.tenant_id, row.tenant_name, row.building_id) == ("T-1", "Acme", "B-1")
    assert row.base == 1000.0
    assert row.vat == 120.0
    assert row.total == 1120.0
    assert row.rate_of_change == 25.0
    assert result.summary.consumption == 100.0
    assert result.summary.total == 1120.0
    envelope = result.as_dict()
    assert set(envelope) == {"rows", "summary", "effectivePeriodEnd", "diagnosticNotes"}
    assert envelope["rows"][0]["meter_id"] == "M-1"


def test_building_falls_back_to_tenant_billings() -> None:
    client = _FakeBillingClient(
        {
            "/tenants": (200, {"data": [{"tenant_id": "T-1"}, {"tenant_id": "T-2"}]}),
            "/billings/with-markup/tenants/T-1/period-end/2024-03-20": (
                200,
                {"tenant_id": "T-1", "meters": [{"meter_id": "M-1", "current_consumption": 10, "base": 100, "vat": 12}]},
            ),
            "/billings/tenants/T-2/period-end/2024-03-20": (
                200,
                [{"meter_no": "E-9", "consumed_kwh": "20", "amount_due": "250"}],
            ),
        }
    )
    config = BillingConfig.from_mapping({"comparisons": {"enabled": False}})
    engine = ReconciliationEngine(client, config)

    result = asyncio.run(engine.billing(BillingQuery.create("building", "B-9", "2024-03-20")))

    assert [row.meter_id for row in result.rows] == ["M-1", "E-9"]
    assert [row.tenant_id for row in result.rows] == ["T-1", None]
    assert result.summary.total == 362.0
    assert result.summary.consumption == 30.0
    assert result.effective_period_end == date(2024, 3, 20)
    assert result.comparisons == {}
    assert any("assembled from 2 of 2" in note for note in result.diagnostic_notes)
    assert result.warnings
    assert not any("comparison" in path for path in client.calls)


def test_enveloped_empty_billing_keeps_trying_period_ends() -> None:
    client = _FakeBillingClient(
        {
            "/billings/meters/M-1/period-end/2024-03-15": (200, {"data": []}),
            "/billings/meters/M-1/period-end/2024-03-20": (
                200,
                {"data": [{"meter_id": "M-1", "current_consumption": 7}], "totals": {"consumption": 7, "total": 70}},
            ),
        }
    )
    config = BillingConfig.from_mapping({"comparisons": {"enabled": False}})

    result = asyncio.run(ReconciliationEngine(client, config).billing(BillingQuery.create("meter", "M-1", "2024-03-15")))

    assert result.effective_period_end == date(2024, 3, 20)
    assert [row.meter_id for row in result.rows] == ["M-1"]
    assert result.summary.total == 70.0
    assert any("2024-03-15" in note and "empty" in note for note in result.diagnostic_notes)


def test_auth_failure_during_tenant_fan_out_is_raised() -> None:
    client = _FakeBillingClient(
        {
            "/tenants": (200, [{"tenant_id": "T-1"}, {"tenant_id": "T-2"}]),
            "/billings/with-markup/tenants/T-1/period-end/2024-03-20": (401, {"error": "Token expired"}),
            "/billings/with-markup/tenants/T-2/period-end/2024-03-20": (
                200,
                {"tenant_id": "T-2", "meters": [{"meter_id": "M-2"}]},
            ),
        }
    )
    config = BillingConfig.from_mapping({"comparisons": {"enabled": False}})
    engine = ReconciliationEngine(client, config)

    with pytest.raises(AuthFailure, match="Token expired"):
        asyncio.run(engine.billing(BillingQuery.create("building", "B-9", "2024-03-20")))
    assert "/billings/with-markup/tenants/T-2/period-end/2024-03-20" in client.calls
    assert engine.latest is None


def test_exhausted_routes_raise_route_not_found_with_attempt_matrix() -> None:
    client = _FakeBillingClient({})
    engine = ReconciliationEngine(client)

    with pytest.raises(RouteNotFound) as excinfo:
        asyncio.run(engine.billing(BillingQuery.create("meter", "M-404", "2024-03-15")))

    assert len(excinfo.value.attempts) == 10
    assert "meter billing: no candidate route succeeded." in str(excinfo.value)
    assert engine.latest is None


def test_auth_failure_aborts_the_query() -> None:
    client = _FakeBillingClient({"/vat": (401, {"error": "Unauthorized"})})
    engine = ReconciliationEngine(client)

    with pytest.raises(AuthFailure, match="Unauthorized"):
        asyncio.run(engine.billing(BillingQuery.create("tenant", "T-1", "2024-03-20")))
    assert not any("/billings/" in path for path in client.calls)


def test_penalty_rate_is_forwarded_and_invalid_rate_noted() -> None:
    seen = []

    class _ParamClient(_FakeBillingClient):
        async def get(self, path, params=None):
            seen.append((path, dict(params or {})))
            return await super().get(path, params)

    client = _ParamClient({"/billings/meters/M-1/period-end/2024-03-20": (200, {"meter_id": "M-1", "total": 5})})
    engine = ReconciliationEngine(client)

    asyncio.run(engine.billing(BillingQuery.create("meter", "M-1", "2024-03-20", penalty_rate="3")))
    assert ("/billings/meters/M-1/period-end/2024-03-20", {"penalty_rate": "3"}) in seen

    result = asyncio.run(engine.billing(BillingQuery.create("meter", "M-1", "2024-03-20", penalty_rate="x")))
    assert any("Ignoring invalid penalty rate" in note for note in result.diagnostic_notes)


def test_stale_results_never_replace_newer_ones() -> None:
    client = _FakeBillingClient(
        {
            "/billings/meters/M-SLOW/period-end/2024-03-20": (200, {"meter_id": "M-SLOW", "total": 1}),
            "/billings/meters/M-FAST/period-end/2024-03-20": (200, {"meter_id": "M-FAST", "total": 2}),
        },
        gate_on="M-SLOW",
    )
    engine = ReconciliationEngine(client)

    async def scenario():
        client.gate = asyncio.Event()
        slow = asyncio.create_task(engine.billing(BillingQuery.create("meter", "M-SLOW", "2024-03-20")))
        await asyncio.sleep(0)
        fast = await engine.billing(BillingQuery.create("meter", "M-FAST", "2024-03-20"))
        client.gate.set()
        return fast, await slow

    fast, slow = asyncio.run(scenario())

    assert slow.token < fast.token
    assert slow.stale is True
    assert fast.stale is False
    assert engine.latest is fast
    assert slow.rows[0].meter_id == "M-SLOW"


def test_rate_of_change_reconstructs_previous_and_remembers_prefix() -> None:
    path = "/roc/tenants/T-1/period-start/2024-02-21/period-end/2024-03-20"
    client = _FakeBillingClient(
        {
            f"/v1{path}": (
                200,
                {
                    "tenant_id": "T-1",
                    "groups": [
                        {
                            "meter_type": "electric",
                            "meters": [{"meter_id": "M-1", "current_consumption": 1000, "rate_of_change": 25}],
                        }
                    ],
                },
            )
        }
    )
    engine = ReconciliationEngine(client)
    query = BillingQuery.create("tenant", "T-1", "2024-03-20", period_start="2024-02-21")

    result = asyncio.run(engine.rate_of_change(query))

    (row,) = result.rows
    assert row.prev_cons == 800.0
    assert row.prev_cons_inferred is True
    assert row.meter_type == "electric"
    assert client.calls == [path, f"/api{path}", f"/v1{path}"]
    assert engine.resolver.detected_prefix == "/v1"

    client.calls.clear()
    asyncio.run(engine.rate_of_change(query))
    assert client.calls == [f"/v1{path}"]


def test_rate_of_change_defaults_start_to_previous_cycle() -> None:
    client = _FakeBillingClient(
        {"/roc/meters/M-1/period-start/2024-02-21/period-end/2024-03-20": (200, {"meter_id": "M-1", "current_consumption": 5})}
    )
    result = asyncio.run(ReconciliationEngine(client).rate_of_change(BillingQuery.create("meter", "M-1", "2024-03-20")))
    assert result.rows[0].curr_cons == 5.0


def test_yearly_comparison_validates_and_reduces() -> None:
    client = _FakeBillingClient(
        {
            "/roc/buildings/B-1/year/2024/yearly-comparison": (
                200,
                {"year": 2024, "months": [{"label": "Jan", "totals": {"electric": 1}}], "totals_all": {"electric": 1}},
            )
        }
    )
    engine = ReconciliationEngine(client)

    result = asyncio.run(engine.yearly_comparison("B-1", "2024"))
    assert [entry.label for entry in result.comparisons["yearly"]] == ["Jan", "yearly-all"]

    with pytest.raises(ValidationError):
        asyncio.run(engine.yearly_comparison("B-1", "twenty"))
    with pytest.raises(ValidationError):
        asyncio.run(engine.yearly_comparison(" ", 2024))


def test_extract_tenant_ids_handles_envelopes() -> None:
    assert extract_tenant_ids([{"tenant_id": "T-1"}, {"id": 7}, {"tenant_id": "T-1"}]) == ["T-1", "7"]
    assert extract_tenant_ids({"tenants": ["T-3"]}) == ["T-3"]
    assert extract_tenant_ids({"unexpected": True}) == []
