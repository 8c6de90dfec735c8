"""Payment receipt workflow: submission, review and administrator-entered payments.

State machine: pending -> approved | rejected. Approval is one transaction
covering allocation rows, instance balances, credit, receipt status and the
official document; resident notifications go out only after the commit.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable, Iterator, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from hoa_ledger.config import get_settings
from hoa_ledger.models.charge_instance import ChargeInstance
from hoa_ledger.models.payment_allocation import AllocationKind, PaymentAllocation
from hoa_ledger.models.payment_receipt import (
    PaymentMethod,
    PaymentReceipt,
    ReceiptSource,
    ReceiptStatus,
)
from hoa_ledger.services.allocation_service import AllocationItem, AllocationService
from hoa_ledger.services.amounts import ZERO, amounts_match, apply_payment, to_money
from hoa_ledger.services.audit_service import AuditService
from hoa_ledger.services.credit_service import CreditService
from hoa_ledger.services.directory_service import CommunityDirectory
from hoa_ledger.services.document_service import (
    ReceiptDocument,
    ReceiptDocumentGenerator,
    TextReceiptGenerator,
)
from hoa_ledger.services.errors import ConflictError, NotFoundError, ValidationError
from hoa_ledger.services.locale_service import format_amount
from hoa_ledger.services.localizer import t
from hoa_ledger.services.notification_service import Notifier
from hoa_ledger.services.outbox import Outbox
from hoa_ledger.services.unit_of_work import atomic

logger = logging.getLogger(__name__)


def generate_folio(db: Session, prefix: str = "CP", today: date | None = None) -> str:
    """Next folio of the day: PREFIX-YYMMDD-NNNN (e.g. CP-240131-0007)."""
    today = today or date.today()
    stem = f"{prefix}-{today:%y%m%d}-"
    count = db.execute(
        select(func.count(PaymentReceipt.id)).where(PaymentReceipt.folio.like(f"{stem}%"))
    ).scalar_one()
    return f"{stem}{count + 1:04d}"


@dataclass
class ReceiptStats:
    count_by_status: dict[str, int] = field(default_factory=dict)
    total_by_status: dict[str, Decimal] = field(default_factory=dict)
    total_by_method: dict[str, Decimal] = field(default_factory=dict)


class ReceiptService:
    """Service for the payment receipt lifecycle."""

    def __init__(
        self,
        db: Session,
        notifier: Notifier | None = None,
        document_generator: ReceiptDocumentGenerator | None = None,
    ):
        self.db = db
        self.notifier = notifier
        if document_generator is None:
            settings = get_settings()
            document_generator = TextReceiptGenerator(
                settings.receipts_dir, settings.receipts_base_url
            )
        self.document_generator = document_generator
        self.directory = CommunityDirectory(db)
        self.allocations = AllocationService(db)
        self.credits = CreditService(db, notifier)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_receipt(self, receipt_id: int) -> PaymentReceipt:
        receipt = self.db.get(PaymentReceipt, receipt_id)
        if receipt is None:
            raise NotFoundError("PaymentReceipt", receipt_id)
        return receipt

    def list_receipts(
        self, status: ReceiptStatus | None = None, unit_id: int | None = None
    ) -> list[PaymentReceipt]:
        stmt = select(PaymentReceipt)
        if status is not None:
            stmt = stmt.where(PaymentReceipt.status == status)
        if unit_id is not None:
            stmt = stmt.where(PaymentReceipt.unit_id == unit_id)
        stmt = stmt.order_by(PaymentReceipt.created_at, PaymentReceipt.id)
        return list(self.db.execute(stmt).scalars().all())

    def receipt_stats(self) -> ReceiptStats:
        """Receipt counts and totals per status, approved totals per method."""
        stats = ReceiptStats()
        rows = self.db.execute(
            select(
                PaymentReceipt.status,
                func.count(PaymentReceipt.id),
                func.coalesce(func.sum(PaymentReceipt.total_amount), 0),
            ).group_by(PaymentReceipt.status)
        ).all()
        for status, count, total in rows:
            stats.count_by_status[status.value] = count
            stats.total_by_status[status.value] = to_money(total)

        rows = self.db.execute(
            select(
                PaymentReceipt.method,
                func.coalesce(func.sum(PaymentReceipt.total_amount), 0),
            )
            .where(PaymentReceipt.status == ReceiptStatus.APPROVED)
            .group_by(PaymentReceipt.method)
        ).all()
        for method, total in rows:
            stats.total_by_method[method.value] = to_money(total)
        return stats

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit_receipt(
        self,
        resident_id: int,
        instance_id: int,
        amount: Decimal,
        payment_date: date,
        method: PaymentMethod,
        *,
        bank_name: str | None = None,
        reference_number: str | None = None,
        destination_account: str | None = None,
        evidence_url: str | None = None,
        notes: str | None = None,
    ) -> PaymentReceipt:
        """Record a resident-reported payment for one of the resident's charges.

        Raises:
            NotFoundError: Unknown charge instance
            ValidationError: Resident does not live in the unit, closed
                instance, non-positive amount or amount above the balance
        """
        amount = to_money(amount)
        if amount <= ZERO:
            raise ValidationError("Payment amount must be positive")
        instance = self.db.get(ChargeInstance, instance_id)
        if instance is None:
            raise NotFoundError("ChargeInstance", instance_id)
        if not self.directory.is_active_resident(resident_id, instance.unit_id):
            raise ValidationError(
                f"User {resident_id} is not an active resident of unit {instance.unit_id}",
                code="not_a_resident",
            )
        if not instance.is_open:
            raise ValidationError(
                f"Charge instance {instance.id} is {instance.status.value}", code="instance_closed"
            )
        if amount > to_money(instance.balance):
            raise ValidationError(
                f"Payment {amount} exceeds balance {instance.balance}",
                code="allocation_exceeds_balance",
            )

        outbox = Outbox()
        with atomic(self.db, "submit receipt"):
            receipt = PaymentReceipt(
                folio=generate_folio(self.db, get_settings().folio_prefix),
                resident_id=resident_id,
                unit_id=instance.unit_id,
                charge_instance_id=instance.id,
                total_amount=amount,
                credited_amount=ZERO,
                payment_date=payment_date,
                method=PaymentMethod(method),
                bank_name=bank_name,
                reference_number=reference_number,
                destination_account=destination_account,
                evidence_url=evidence_url,
                notes=notes,
                source=ReceiptSource.RESIDENT,
                status=ReceiptStatus.PENDING,
            )
            self.db.add(receipt)
            self.db.flush()
            for admin in self.directory.administrators():
                outbox.add(
                    admin.id,
                    t("receipts.submitted_title"),
                    t(
                        "receipts.submitted_message",
                        folio=receipt.folio,
                        unit=instance.unit.label,
                        amount=format_amount(amount),
                    ),
                    type="receipt_submitted",
                    receipt_id=receipt.id,
                )

        logger.info(
            "Receipt %s submitted by user %s for instance %s", receipt.folio, resident_id, instance.id
        )
        await outbox.dispatch(self.notifier)
        return receipt

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def _ensure_pending(self, receipt: PaymentReceipt) -> None:
        if receipt.status != ReceiptStatus.PENDING:
            raise ConflictError(
                f"Receipt {receipt.folio} is already {receipt.status.value}",
                code="receipt_decided",
            )

    def _prepare_allocations(
        self,
        receipt: PaymentReceipt,
        items: Sequence[AllocationItem | dict] | None,
        allocated_by: int | None,
    ) -> list[PaymentAllocation]:
        """Load or create the receipt's allocation rows and set its credited amount."""
        total = to_money(receipt.total_amount)

        if items is not None:
            validated = self.allocations.validate_manual(receipt.unit_id, items)
            rows = self.allocations.replace_allocations(
                receipt, validated, AllocationKind.MANUAL, allocated_by
            )
            allocated = to_money(sum((row.amount for row in rows), ZERO))
            if receipt.source == ReceiptSource.ADMIN and allocated < total:
                receipt.credited_amount = to_money(total - allocated)
            return rows

        if receipt.allocations:
            return list(receipt.allocations)

        if receipt.charge_instance_id is not None:
            item = AllocationItem(receipt.charge_instance_id, total)
            return self.allocations.replace_allocations(
                receipt, [item], AllocationKind.MANUAL, allocated_by
            )

        plan = self.allocations.plan_automatic(receipt.unit_id, total)
        receipt.credited_amount = plan.remainder
        return self.allocations.replace_allocations(
            receipt, plan.items, AllocationKind.AUTOMATIC, allocated_by
        )

    @contextmanager
    def _approval(self, label: str) -> Iterator[list[ReceiptDocument]]:
        """Transaction whose staged documents are published on commit, discarded on rollback."""
        staged: list[ReceiptDocument] = []
        try:
            with atomic(self.db, label):
                yield staged
        except Exception:
            for document in staged:
                self.document_generator.discard(document)
            raise
        for document in staged:
            try:
                self.document_generator.publish(document)
            except OSError as e:
                logger.error(
                    "Receipt document %s committed but not published: %s",
                    document.filename,
                    e,
                    exc_info=True,
                )

    def _approve(
        self,
        receipt: PaymentReceipt,
        approver_id: int,
        items: Sequence[AllocationItem | dict] | None,
        comments: str | None,
        outbox: Outbox,
        staged: list[ReceiptDocument],
    ) -> list[PaymentAllocation]:
        """Approval steps inside the caller's transaction."""
        now = datetime.now(timezone.utc)
        rows = self._prepare_allocations(receipt, items, approver_id)

        allocated = to_money(sum((row.amount for row in rows), ZERO))
        credited = to_money(receipt.credited_amount)
        if not amounts_match(allocated + credited, receipt.total_amount):
            raise ValidationError(
                f"Allocations ({allocated}) plus credit ({credited}) do not match "
                f"receipt total ({receipt.total_amount})",
                code="allocation_mismatch",
            )

        for row in rows:
            # Re-read right before mutating to pick up concurrent approvals
            instance = self.db.get(ChargeInstance, row.instance_id, populate_existing=True)
            if instance is None:
                raise NotFoundError("ChargeInstance", row.instance_id)
            if instance.unit_id != receipt.unit_id:
                raise ValidationError(
                    f"Charge instance {instance.id} does not belong to unit {receipt.unit_id}",
                    code="foreign_instance",
                )
            apply_payment(instance, row.amount, now)
            row.applied_at = now

        if credited > ZERO:
            self.credits.add_credit(receipt.unit_id, credited, f"Receipt {receipt.folio}")

        receipt.status = ReceiptStatus.APPROVED
        receipt.reviewed_by = approver_id
        receipt.reviewed_at = now
        receipt.review_comments = comments
        self.db.flush()

        document = self.document_generator.generate(receipt, rows)
        staged.append(document)
        receipt.document_url = document.url
        receipt.document_filename = document.filename

        AuditService.log(
            self.db,
            "payment_receipt",
            receipt.id,
            "approve",
            actor_id=approver_id,
            changes={
                "total": receipt.total_amount,
                "allocations": [{"instance_id": r.instance_id, "amount": r.amount} for r in rows],
                "credited": credited,
            },
        )

        if credited > ZERO:
            message = t(
                "receipts.approved_credit_message",
                folio=receipt.folio,
                amount=format_amount(receipt.total_amount),
                credit=format_amount(credited),
            )
        else:
            message = t(
                "receipts.approved_message",
                folio=receipt.folio,
                amount=format_amount(receipt.total_amount),
            )
        outbox.add(
            receipt.resident_id,
            t("receipts.approved_title"),
            message,
            type="receipt_approved",
            receipt_id=receipt.id,
            document_url=document.url,
        )
        return rows

    async def approve_receipt(
        self,
        receipt_id: int,
        approver_id: int,
        allocations: Iterable[AllocationItem | dict] | None = None,
        comments: str | None = None,
    ) -> PaymentReceipt:
        """Approve a pending receipt and apply its allocations to the ledger.

        Args:
            receipt_id: Receipt to approve
            approver_id: Administrator approving
            allocations: Optional explicit allocations replacing stored ones
            comments: Optional review comments

        Raises:
            NotFoundError: Unknown receipt or instance
            ConflictError: Receipt already approved or rejected
            ValidationError: Allocation sum mismatch or allocation above a balance
            TransactionAbortError: Document generation or another unexpected failure
        """
        receipt = self.get_receipt(receipt_id)
        self._ensure_pending(receipt)
        items = list(allocations) if allocations is not None else None

        outbox = Outbox()
        with self._approval(f"approve receipt {receipt.folio}") as staged:
            rows = self._approve(receipt, approver_id, items, comments, outbox, staged)

        logger.info(
            "Receipt %s approved by user %s: %d allocation(s), credited %s",
            receipt.folio,
            approver_id,
            len(rows),
            receipt.credited_amount,
        )
        await outbox.dispatch(self.notifier)
        return receipt

    async def reject_receipt(self, receipt_id: int, reviewer_id: int, reason: str) -> PaymentReceipt:
        """Reject a pending receipt; balances are untouched.

        Raises:
            ValidationError: Empty reason
            ConflictError: Receipt already decided
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A rejection reason is required", code="reason_required")
        receipt = self.get_receipt(receipt_id)
        self._ensure_pending(receipt)

        outbox = Outbox()
        with atomic(self.db, f"reject receipt {receipt.folio}"):
            receipt.status = ReceiptStatus.REJECTED
            receipt.rejection_reason = reason
            receipt.reviewed_by = reviewer_id
            receipt.reviewed_at = datetime.now(timezone.utc)
            AuditService.log(
                self.db,
                "payment_receipt",
                receipt.id,
                "reject",
                actor_id=reviewer_id,
                changes={"reason": reason},
            )
            outbox.add(
                receipt.resident_id,
                t("receipts.rejected_title"),
                t(
                    "receipts.rejected_message",
                    folio=receipt.folio,
                    amount=format_amount(receipt.total_amount),
                    reason=reason,
                ),
                type="receipt_rejected",
                receipt_id=receipt.id,
            )

        logger.info("Receipt %s rejected by user %s", receipt.folio, reviewer_id)
        await outbox.dispatch(self.notifier)
        return receipt

    # ------------------------------------------------------------------
    # Administrator payments
    # ------------------------------------------------------------------

    async def record_manual_payment(
        self,
        unit_id: int,
        amount: Decimal,
        payment_date: date,
        method: PaymentMethod,
        recorded_by: int,
        *,
        allocations: Iterable[AllocationItem | dict] | None = None,
        bank_name: str | None = None,
        reference_number: str | None = None,
        destination_account: str | None = None,
        notes: str | None = None,
    ) -> PaymentReceipt:
        """Register a payment received by the administration, already approved.

        Without explicit allocations the amount is spread oldest-due-first.
        Any amount not allocated is added to the unit credit balance.

        Raises:
            NotFoundError: Unknown unit
            ValidationError: Invalid amount or allocations
        """
        amount = to_money(amount)
        if amount <= ZERO:
            raise ValidationError("Payment amount must be positive")
        unit = self.directory.get_unit(unit_id)
        items = list(allocations) if allocations is not None else None
        if items is not None:
            validated = self.allocations.validate_manual(unit_id, items)
            allocated = to_money(sum((item.amount for item in validated), ZERO))
            if allocated > amount:
                raise ValidationError(
                    f"Allocations ({allocated}) exceed payment amount ({amount})",
                    code="allocation_mismatch",
                )
            items = validated

        outbox = Outbox()
        with self._approval(f"manual payment for unit {unit_id}") as staged:
            receipt = PaymentReceipt(
                folio=generate_folio(self.db, get_settings().folio_prefix),
                resident_id=self.directory.owner_of_record(unit_id),
                unit_id=unit_id,
                charge_instance_id=None,
                total_amount=amount,
                credited_amount=ZERO,
                payment_date=payment_date,
                method=PaymentMethod(method),
                bank_name=bank_name,
                reference_number=reference_number,
                destination_account=destination_account,
                notes=notes,
                source=ReceiptSource.ADMIN,
                status=ReceiptStatus.PENDING,
            )
            self.db.add(receipt)
            self.db.flush()
            self._approve(receipt, recorded_by, items, notes, outbox, staged)
            # The resident hears about a recorded payment, not a review decision
            outbox.clear()
            outbox.add(
                receipt.resident_id,
                t("receipts.recorded_title"),
                t(
                    "receipts.recorded_message",
                    amount=format_amount(amount),
                    unit=unit.label,
                    folio=receipt.folio,
                ),
                type="payment_recorded",
                receipt_id=receipt.id,
                document_url=receipt.document_url,
            )

        logger.info(
            "Manual payment %s of %s recorded for unit %s by user %s (credited %s)",
            receipt.folio,
            amount,
            unit_id,
            recorded_by,
            receipt.credited_amount,
        )
        await outbox.dispatch(self.notifier)
        return receipt


__all__ = ["ReceiptService", "ReceiptStats", "generate_folio"]
