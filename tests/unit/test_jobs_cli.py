"""Tests for the batch jobs command line entry point."""

import logging
from datetime import date
from decimal import Decimal

import pytest

from hoa_ledger.cli import jobs
from hoa_ledger.models import ChargeScope, RecurrencePeriod
from hoa_ledger.services.charge_service import ChargeService


@pytest.fixture
def cli_env(monkeypatch, session_factory, notifier):
    """Point the CLI at the test database and notifier double."""
    monkeypatch.setattr("hoa_ledger.services.SessionLocal", session_factory)
    monkeypatch.setattr(
        "hoa_ledger.services.notification_service.build_notifier",
        lambda settings, factory: notifier,
    )
    monkeypatch.setattr(jobs, "setup_logging", lambda: logging.getLogger("hoa_ledger"))
    return notifier


async def recurring_charge(db_session, unit):
    return await ChargeService(db_session).issue_charge(
        "Mantenimiento", Decimal("500"), date(2024, 1, 31), issue_date=date(2024, 1, 1),
        recurrence=RecurrencePeriod.MONTHLY, scope=ChargeScope.UNITS, scope_ids=[unit.id],
    )


@pytest.mark.unit
class TestParseArgs:
    def test_job_and_date(self):
        args = jobs.parse_args(["surcharges", "--date", "2024-02-15"])
        assert args.job == "surcharges"
        assert args.date == date(2024, 2, 15)

    def test_date_defaults_to_none(self):
        assert jobs.parse_args(["all"]).date is None

    def test_unknown_job(self):
        with pytest.raises(SystemExit):
            jobs.parse_args(["cleanup"])

    def test_bad_date(self):
        with pytest.raises(SystemExit):
            jobs.parse_args(["regenerate", "--date", "15/02/2024"])


@pytest.mark.unit
class TestMain:
    @pytest.mark.asyncio
    async def test_successful_run(self, cli_env, db_session, community):
        await recurring_charge(db_session, community.units[0])

        exit_code = await jobs.main(["regenerate", "--date", "2024-02-01"])

        assert exit_code == 0
        assert cli_env.started
        assert cli_env.stopped
        assert cli_env.of_type("regeneration")

    @pytest.mark.asyncio
    async def test_failed_item_gives_exit_code_one(self, cli_env, db_session, community):
        unit = community.units[0]
        await recurring_charge(db_session, unit)
        unit.is_active = False
        db_session.commit()

        exit_code = await jobs.main(["all", "--date", "2024-02-01"])

        assert exit_code == 1
        assert cli_env.stopped

    @pytest.mark.asyncio
    async def test_unexpected_error(self, cli_env, monkeypatch):
        def broken_session():
            raise RuntimeError("database unavailable")

        monkeypatch.setattr("hoa_ledger.services.SessionLocal", broken_session)

        assert await jobs.main(["surcharges"]) == 1
        assert cli_env.stopped
