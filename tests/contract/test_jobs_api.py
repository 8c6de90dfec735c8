"""Contract tests for the admin jobs API."""

from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from hoa_ledger.api import jobs as jobs_api
from hoa_ledger.api.jobs import app, get_notifier
from hoa_ledger.config import reset_settings
from hoa_ledger.models import ChargeScope, RecurrencePeriod, SurchargeKind
from hoa_ledger.services import get_db
from hoa_ledger.services.charge_service import ChargeService
from hoa_ledger.services.notification_service import LoggingNotifier
from hoa_ledger.services.surcharge_service import SurchargeService

JAN_1 = date(2024, 1, 1)
JAN_31 = date(2024, 1, 31)


@pytest.fixture
def client(db_session, notifier):
    """Test client bound to the test session; the lifespan is not run."""

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


async def issue_recurring(db_session, community):
    """Monthly charge on one unit due Jan 31; its next cycle is generated on that date."""
    return await ChargeService(db_session).issue_charge(
        "Mantenimiento", Decimal("200"), JAN_31, issue_date=JAN_1,
        recurrence=RecurrencePeriod.MONTHLY,
        scope=ChargeScope.UNITS, scope_ids=[community.units[0].id],
    )


@pytest.mark.contract
class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "version": "0.1.0"}

    def test_lifespan_starts_logging_notifier(self):
        with TestClient(app) as client:
            assert client.get("/health").status_code == 200
            assert isinstance(app.state.notifier, LoggingNotifier)


@pytest.mark.contract
class TestJobTriggers:
    @pytest.mark.asyncio
    async def test_regenerate(self, client, db_session, notifier, community):
        await issue_recurring(db_session, community)
        response = client.post("/jobs/regenerate", params={"run_date": "2024-02-01"})

        assert response.status_code == 200
        body = response.json()
        assert body["job"] == "regeneration"
        assert body["run_date"] == "2024-02-01"
        assert body["succeeded"] == 1
        assert body["failed"] == 0
        assert body["failures"] == []
        assert body["items"] == ["Mantenimiento: 1 cycle(s)"]
        assert notifier.of_type("regeneration")[0][0] == community.admin.id

    @pytest.mark.asyncio
    async def test_surcharges(self, client, db_session, community):
        await issue_recurring(db_session, community)
        await SurchargeService(db_session).create_policy(
            "Recargo", SurchargeKind.FIXED, Decimal("25"), valid_from=JAN_1
        )

        response = client.post("/jobs/surcharges", params={"run_date": "2024-02-15"})

        assert response.status_code == 200
        body = response.json()
        assert body["job"] == "surcharges"
        assert body["succeeded"] == 1
        assert body["skipped"] == 0

    @pytest.mark.asyncio
    async def test_status(self, client, db_session, community):
        await issue_recurring(db_session, community)
        response = client.get("/jobs/status", params={"run_date": "2024-02-01"})

        assert response.status_code == 200
        assert response.json() == {
            "run_date": "2024-02-01",
            "regeneration": {
                "active_recurring": 1,
                "due_today": 1,
                "next_generation_date": "2024-01-31",
            },
            "surcharges": {
                "active_policies": 0,
                "due_today": 0,
                "applications_today": 0,
                "overdue_instances": 0,
            },
        }

    def test_invalid_date(self, client):
        response = client.post("/jobs/regenerate", params={"run_date": "2024-13-01"})
        assert response.status_code == 422


@pytest.mark.contract
class TestPolicyStats:
    @pytest.mark.asyncio
    async def test_stats(self, client, db_session, community):
        policy, _ = await SurchargeService(db_session).create_policy(
            "Recargo", SurchargeKind.FIXED, Decimal("25"), valid_from=JAN_1
        )

        response = client.get(f"/jobs/policies/{policy.id}")

        assert response.status_code == 200
        body = response.json()
        assert body["policy_id"] == policy.id
        assert body["applications"] == 0
        assert Decimal(body["total_amount"]) == Decimal("0")
        assert body["last_applied_on"] is None

    def test_unknown_policy(self, client):
        response = client.get("/jobs/policies/999")

        assert response.status_code == 404
        assert response.json() == {
            "error": {"code": "not_found", "message": "SurchargePolicy 999 not found"}
        }


@pytest.mark.contract
def test_serve_runs_uvicorn_with_configured_address(monkeypatch):
    captured = {}

    class FakeServer:
        def __init__(self, config):
            captured["config"] = config

        def run(self):
            captured["ran"] = True

    monkeypatch.setenv("API_HOST", "127.0.0.1")
    monkeypatch.setenv("API_PORT", "9100")
    monkeypatch.setattr(jobs_api.uvicorn, "Server", FakeServer)
    reset_settings()
    try:
        jobs_api.serve()
    finally:
        reset_settings()

    assert captured["ran"] is True
    assert captured["config"].host == "127.0.0.1"
    assert captured["config"].port == 9100
    assert captured["config"].app is app
