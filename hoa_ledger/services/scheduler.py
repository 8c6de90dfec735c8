"""Batch jobs run by cron: recurring charge regeneration and surcharges.

Both jobs process items sequentially with one transaction per item, collect
failures in a BatchReport instead of raising, and send administrators a
summary once the run is over.
"""

import logging
from datetime import date
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from hoa_ledger.models.charge_instance import ChargeInstance, InstanceStatus
from hoa_ledger.models.charge_template import ChargeTemplate, TemplateStatus
from hoa_ledger.services.batch import BatchReport
from hoa_ledger.services.charge_service import ChargeService
from hoa_ledger.services.directory_service import CommunityDirectory
from hoa_ledger.services.errors import LedgerError
from hoa_ledger.services.localizer import t
from hoa_ledger.services.notification_service import Notifier
from hoa_ledger.services.outbox import Outbox
from hoa_ledger.services.surcharge_service import SurchargeService
from hoa_ledger.services.unit_of_work import atomic

logger = logging.getLogger(__name__)


class RecurrenceScheduler:
    """Runs the periodic ledger jobs against one session."""

    def __init__(self, db: Session, notifier: Notifier | None = None):
        self.db = db
        self.notifier = notifier
        self.directory = CommunityDirectory(db)
        self.charges = ChargeService(db, notifier)
        self.surcharges = SurchargeService(db, notifier)

    def due_templates(self, today: date) -> list[ChargeTemplate]:
        """Active recurring root templates whose next cycle is due."""
        stmt = (
            select(ChargeTemplate)
            .where(
                ChargeTemplate.recurrence.is_not(None),
                ChargeTemplate.parent_template_id.is_(None),
                ChargeTemplate.status == TemplateStatus.ACTIVE,
                ChargeTemplate.next_generation_date <= today,
            )
            .order_by(ChargeTemplate.next_generation_date, ChargeTemplate.id)
        )
        return list(self.db.execute(stmt).scalars().all())

    async def run_charge_regeneration(self, today: date | None = None) -> BatchReport:
        """Generate every due cycle of every active recurring template.

        Running twice on the same day is a no-op the second time: each root's
        next generation date always ends up after today.
        """
        today = today or date.today()
        report = BatchReport(job="regeneration", run_date=today)
        outbox = Outbox()
        templates = self.due_templates(today)
        logger.info("Regeneration %s: %d template(s) due", today, len(templates))

        for template in templates:
            template_id, name = template.id, template.name
            cycle_outbox = Outbox()
            try:
                with atomic(self.db, f"regenerate template {template_id}"):
                    created = self.charges.regenerate(template, today, cycle_outbox)
            except LedgerError as e:
                report.add_failure(template_id, name, e)
                logger.error("Regeneration of template %s '%s' failed: %s", template_id, name, e)
                continue
            outbox.events.extend(cycle_outbox.events)
            report.add_success(f"{name}: {len(created)} cycle(s)")

        self._queue_summary(outbox, report, "jobs.regeneration_title", "jobs.regeneration_message")
        logger.info(
            "Regeneration %s finished: %d succeeded, %d failed",
            today,
            report.success_count,
            report.failure_count,
        )
        await outbox.dispatch(self.notifier)
        return report

    async def run_surcharge_batch(self, today: date | None = None) -> BatchReport:
        """Mark overdue instances, then apply every policy due today."""
        today = today or date.today()
        report = BatchReport(job="surcharges", run_date=today)

        try:
            overdue = self.charges.mark_overdue(today)
            logger.info("Surcharge batch %s: %d instance(s) newly overdue", today, overdue)
        except LedgerError as e:
            report.add_failure(0, "mark overdue", e)
            logger.error("Marking overdue instances failed: %s", e)

        try:
            policies = self.surcharges.due_policies(today)
        except Exception as e:
            self.db.rollback()
            report.add_failure(0, "due policies", e)
            logger.error("Selecting due surcharge policies failed: %s", e, exc_info=True)
            policies = []
        logger.info("Surcharge batch %s: %d polic(ies) due", today, len(policies))
        for policy in policies:
            policy_id, policy_name = policy.id, policy.name
            try:
                result = await self.surcharges.apply_policy(policy, today)
            except Exception as e:
                self.db.rollback()
                report.add_failure(policy_id, policy_name, e)
                logger.error(
                    "Surcharge policy %s '%s' failed: %s", policy_id, policy_name, e, exc_info=True
                )
                continue
            report.merge(result)

        outbox = Outbox()
        self._queue_summary(outbox, report, "jobs.surcharges_title", "jobs.surcharges_message")
        logger.info(
            "Surcharge batch %s finished: %d applied, %d skipped, %d failed",
            today,
            report.success_count,
            report.skipped,
            report.failure_count,
        )
        await outbox.dispatch(self.notifier)
        return report

    async def run_all(self, today: date | None = None) -> list[BatchReport]:
        """Regeneration first, so freshly generated cycles are visible to the surcharge run."""
        today = today or date.today()
        return [
            await self.run_charge_regeneration(today),
            await self.run_surcharge_batch(today),
        ]

    def _queue_summary(
        self, outbox: Outbox, report: BatchReport, title_key: str, message_key: str
    ) -> None:
        if not report.success_count and not report.failures:
            return
        lines = [
            t(
                message_key,
                date=report.run_date.isoformat(),
                succeeded=report.success_count,
                failed=report.failure_count,
            )
        ]
        lines.extend(
            t("jobs.failure_line", name=f.item_name, item_id=f.item_id, error=f.error)
            for f in report.failures
        )
        message = "\n".join(lines)
        for admin in self.directory.administrators():
            outbox.add(admin.id, t(title_key), message, type=report.job, **report.to_dict())

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def regeneration_status(self, today: date | None = None) -> dict[str, Any]:
        today = today or date.today()
        next_run = self.db.execute(
            select(func.min(ChargeTemplate.next_generation_date)).where(
                ChargeTemplate.recurrence.is_not(None),
                ChargeTemplate.parent_template_id.is_(None),
                ChargeTemplate.status == TemplateStatus.ACTIVE,
            )
        ).scalar_one_or_none()
        return {
            "active_recurring": self.charges.count_active_recurring(),
            "due_today": len(self.due_templates(today)),
            "next_generation_date": next_run.isoformat() if next_run else None,
        }

    def surcharge_status(self, today: date | None = None) -> dict[str, Any]:
        today = today or date.today()
        overdue = self.db.execute(
            select(func.count(ChargeInstance.id)).where(
                ChargeInstance.status == InstanceStatus.OVERDUE
            )
        ).scalar_one()
        return {
            "active_policies": len(self.surcharges.list_policies(active_only=True)),
            "due_today": len(self.surcharges.due_policies(today)),
            "applications_today": self.surcharges.applications_on(today),
            "overdue_instances": overdue,
        }


__all__ = ["RecurrenceScheduler"]
