"""Unit credit balance: payment surplus kept for future charges."""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from hoa_ledger.models.charge_instance import ChargeInstance
from hoa_ledger.models.payment_allocation import AllocationKind, PaymentAllocation
from hoa_ledger.models.unit_credit_balance import UnitCreditBalance
from hoa_ledger.services.allocation_service import AllocationService, allocate_oldest_first
from hoa_ledger.services.amounts import ZERO, apply_payment, to_money
from hoa_ledger.services.audit_service import AuditService
from hoa_ledger.services.directory_service import CommunityDirectory
from hoa_ledger.services.errors import ValidationError
from hoa_ledger.services.locale_service import format_amount
from hoa_ledger.services.localizer import t
from hoa_ledger.services.notification_service import Notifier
from hoa_ledger.services.outbox import Outbox
from hoa_ledger.services.unit_of_work import atomic

logger = logging.getLogger(__name__)


class CreditService:
    """Credit balance operations for housing units."""

    def __init__(self, db: Session, notifier: Notifier | None = None):
        self.db = db
        self.notifier = notifier
        self.directory = CommunityDirectory(db)
        self.allocations = AllocationService(db)

    def _balance_row(self, unit_id: int) -> UnitCreditBalance | None:
        stmt = select(UnitCreditBalance).where(UnitCreditBalance.unit_id == unit_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_credit(self, unit_id: int) -> Decimal:
        """Available credit of a unit (zero when it never had any)."""
        row = self._balance_row(unit_id)
        return to_money(row.amount) if row else ZERO

    def add_credit(self, unit_id: int, amount: Decimal, note: str | None = None) -> UnitCreditBalance:
        """Increase a unit's credit inside the caller's transaction (no commit)."""
        amount = to_money(amount)
        if amount <= ZERO:
            raise ValidationError("Credit amount must be positive")
        row = self._balance_row(unit_id)
        if row is None:
            row = UnitCreditBalance(unit_id=unit_id, amount=ZERO)
            self.db.add(row)
        row.amount = to_money(row.amount) + amount
        if note:
            row.notes = f"{row.notes}\n{note}" if row.notes else note
        self.db.flush()
        logger.info("Unit %s credited %s (%s)", unit_id, amount, note or "no note")
        return row

    async def apply_credit(
        self,
        unit_id: int,
        instance_ids: Sequence[int] | None = None,
        allocated_by: int | None = None,
    ) -> list[PaymentAllocation]:
        """Spend a unit's credit on its outstanding charges, oldest due date first.

        Args:
            unit_id: Unit whose credit is spent
            instance_ids: Optional subset of instances to pay
            allocated_by: Administrator applying the credit

        Returns:
            Credit allocations created (already applied)

        Raises:
            ValidationError: If the unit has no credit or nothing to pay
        """
        self.directory.get_unit(unit_id)
        row = self._balance_row(unit_id)
        if row is None or to_money(row.amount) <= ZERO:
            raise ValidationError(f"Unit {unit_id} has no credit balance", code="no_credit")

        outstanding = self.allocations.outstanding_instances(unit_id, instance_ids)
        if not outstanding:
            raise ValidationError(
                f"Unit {unit_id} has no outstanding charges", code="nothing_to_pay"
            )

        plan = allocate_oldest_first(outstanding, row.amount)
        now = datetime.now(timezone.utc)
        outbox = Outbox()

        with atomic(self.db, f"apply credit of unit {unit_id}"):
            rows = []
            for item in plan.items:
                instance = self.db.get(ChargeInstance, item.instance_id, populate_existing=True)
                apply_payment(instance, item.amount, now)
                allocation = PaymentAllocation(
                    receipt_id=None,
                    instance_id=instance.id,
                    amount=item.amount,
                    kind=AllocationKind.CREDIT,
                    allocated_by=allocated_by,
                    applied_at=now,
                )
                self.db.add(allocation)
                rows.append(allocation)
            row.amount = plan.remainder
            AuditService.log(
                self.db,
                "unit_credit_balance",
                row.id,
                "apply",
                actor_id=allocated_by,
                changes={"unit_id": unit_id, "applied": plan.allocated, "remaining": plan.remainder},
            )
            outbox.add(
                self.directory.owner_of_record(unit_id),
                t("credit.applied_title"),
                t(
                    "credit.applied_message",
                    amount=format_amount(plan.allocated),
                    count=len(rows),
                    remaining=format_amount(plan.remainder),
                ),
                type="credit_applied",
                unit_id=unit_id,
            )

        logger.info(
            "Applied credit %s of unit %s to %d charge(s)", plan.allocated, unit_id, len(rows)
        )
        await outbox.dispatch(self.notifier)
        return rows

    async def transfer_credit(
        self,
        source_unit_id: int,
        target_unit_id: int,
        amount: Decimal,
        reason: str | None = None,
        actor_id: int | None = None,
    ) -> tuple[Decimal, Decimal]:
        """Move credit between units (administrator action).

        Returns:
            Remaining credit of the source and new credit of the target

        Raises:
            ValidationError: Same unit, non-positive amount or insufficient credit
        """
        if source_unit_id == target_unit_id:
            raise ValidationError("Source and target unit must differ")
        amount = to_money(amount)
        if amount <= ZERO:
            raise ValidationError("Transfer amount must be positive")
        self.directory.get_unit(source_unit_id)
        target_unit = self.directory.get_unit(target_unit_id)

        source = self._balance_row(source_unit_id)
        available = to_money(source.amount) if source else ZERO
        if amount > available:
            raise ValidationError(
                f"Unit {source_unit_id} has only {available} of credit", code="insufficient_credit"
            )

        outbox = Outbox()
        note = f"Transfer {amount} from unit {source_unit_id}: {reason or '-'}"
        with atomic(self.db, "credit transfer"):
            source.amount = available - amount
            source.notes = f"{source.notes}\n{note}" if source.notes else note
            target = self.add_credit(target_unit_id, amount, note)
            AuditService.log(
                self.db,
                "unit_credit_balance",
                source.id,
                "transfer",
                actor_id=actor_id,
                changes={
                    "source_unit_id": source_unit_id,
                    "target_unit_id": target_unit_id,
                    "amount": amount,
                    "reason": reason,
                },
            )
            outbox.add(
                self.directory.owner_of_record(target_unit_id),
                t("credit.transferred_title"),
                t("credit.transferred_message", amount=format_amount(amount), unit=target_unit.label),
                type="credit_transferred",
                unit_id=target_unit_id,
            )
            remaining, received = to_money(source.amount), to_money(target.amount)

        await outbox.dispatch(self.notifier)
        return remaining, received


__all__ = ["CreditService"]
