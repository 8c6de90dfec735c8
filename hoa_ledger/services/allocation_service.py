"""Allocation service for distributing a payment across charge instances.

Supports allocation strategies:
- MANUAL: caller chooses {instance_id, amount} pairs, validated against the
  paying unit and each instance's current balance
- OLDEST_FIRST: outstanding instances ordered by due date receive
  min(remaining, balance) until the amount is exhausted; the remainder is
  returned so the caller can credit it to the unit
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from hoa_ledger.models.charge_instance import ChargeInstance, InstanceStatus
from hoa_ledger.models.payment_allocation import AllocationKind, PaymentAllocation
from hoa_ledger.models.payment_receipt import PaymentReceipt, ReceiptStatus
from hoa_ledger.services.amounts import ZERO, to_money
from hoa_ledger.services.errors import ConflictError, NotFoundError, ValidationError
from hoa_ledger.services.unit_of_work import atomic


class Outstanding(Protocol):
    id: int
    balance: Decimal
    due_date: date


@dataclass(frozen=True)
class AllocationItem:
    """Amount of a payment destined to one charge instance."""

    instance_id: int
    amount: Decimal


@dataclass
class AllocationPlan:
    items: list[AllocationItem] = field(default_factory=list)
    remainder: Decimal = ZERO

    @property
    def allocated(self) -> Decimal:
        return to_money(sum((item.amount for item in self.items), ZERO))


def allocate_oldest_first(outstanding: Sequence[Outstanding], amount: Decimal) -> AllocationPlan:
    """Spread an amount over outstanding instances, oldest due date first.

    Ensures: sum(items) + remainder == amount (no money created or lost)

    Args:
        outstanding: Instances with id, balance and due_date (any order)
        amount: Amount to distribute

    Returns:
        AllocationPlan with one item per instance touched and the unallocated remainder
    """
    remaining = to_money(amount)
    if remaining < ZERO:
        raise ValidationError("Amount to allocate cannot be negative")

    plan = AllocationPlan()
    for instance in sorted(outstanding, key=lambda i: (i.due_date, i.id)):
        if remaining <= ZERO:
            break
        balance = to_money(instance.balance)
        if balance <= ZERO:
            continue
        applied = min(remaining, balance)
        plan.items.append(AllocationItem(instance.id, applied))
        remaining = to_money(remaining - applied)

    plan.remainder = remaining
    return plan


def normalize_items(items: Iterable[AllocationItem | dict]) -> list[AllocationItem]:
    """Accept AllocationItems or {"instance_id", "amount"} dicts."""
    normalized = []
    for item in items:
        if isinstance(item, dict):
            try:
                item = AllocationItem(int(item["instance_id"]), to_money(item["amount"]))
            except (KeyError, TypeError, ValueError, ArithmeticError) as e:
                raise ValidationError(f"Malformed allocation {item!r}") from e
        else:
            item = AllocationItem(item.instance_id, to_money(item.amount))
        normalized.append(item)
    return normalized


class AllocationService:
    """Payment allocation over a unit's charge instances."""

    def __init__(self, db: Session):
        self.db = db

    def outstanding_instances(
        self, unit_id: int, instance_ids: Sequence[int] | None = None
    ) -> list[ChargeInstance]:
        """Open instances of a unit with a positive balance, oldest due date first."""
        stmt = select(ChargeInstance).where(
            ChargeInstance.unit_id == unit_id,
            ChargeInstance.status.in_([InstanceStatus.PENDING, InstanceStatus.OVERDUE]),
            ChargeInstance.balance > 0,
        )
        if instance_ids is not None:
            stmt = stmt.where(ChargeInstance.id.in_(list(instance_ids)))
        stmt = stmt.order_by(ChargeInstance.due_date, ChargeInstance.id)
        return list(self.db.execute(stmt).scalars().all())

    def plan_automatic(
        self, unit_id: int, amount: Decimal, instance_ids: Sequence[int] | None = None
    ) -> AllocationPlan:
        return allocate_oldest_first(self.outstanding_instances(unit_id, instance_ids), amount)

    def validate_manual(
        self, unit_id: int, items: Iterable[AllocationItem | dict]
    ) -> list[AllocationItem]:
        """Validate caller-chosen allocations against the paying unit.

        Raises:
            ValidationError: Empty list, non-positive or duplicate entries, an
                instance of another unit, a closed instance, or an amount above
                the instance's current balance
            NotFoundError: If an instance does not exist
        """
        normalized = normalize_items(items)
        if not normalized:
            raise ValidationError("At least one allocation is required")

        seen: set[int] = set()
        for item in normalized:
            if item.amount <= ZERO:
                raise ValidationError(
                    f"Allocation for charge instance {item.instance_id} must be positive"
                )
            if item.instance_id in seen:
                raise ValidationError(f"Charge instance {item.instance_id} allocated twice")
            seen.add(item.instance_id)

            instance = self.db.get(ChargeInstance, item.instance_id)
            if instance is None:
                raise NotFoundError("ChargeInstance", item.instance_id)
            if instance.unit_id != unit_id:
                raise ValidationError(
                    f"Charge instance {instance.id} does not belong to unit {unit_id}",
                    code="foreign_instance",
                )
            if not instance.is_open:
                raise ValidationError(
                    f"Charge instance {instance.id} is {instance.status.value}",
                    code="instance_closed",
                )
            if item.amount > to_money(instance.balance):
                raise ValidationError(
                    f"Allocation {item.amount} exceeds balance {instance.balance} "
                    f"of charge instance {instance.id}",
                    code="allocation_exceeds_balance",
                )
        return normalized

    def replace_allocations(
        self,
        receipt: PaymentReceipt,
        items: Sequence[AllocationItem],
        kind: AllocationKind,
        allocated_by: int | None,
    ) -> list[PaymentAllocation]:
        """Swap the receipt's unapplied allocation rows for new ones (no commit)."""
        receipt.allocations.clear()
        rows = [
            PaymentAllocation(
                instance_id=item.instance_id,
                amount=item.amount,
                kind=kind,
                allocated_by=allocated_by,
            )
            for item in items
        ]
        receipt.allocations.extend(rows)
        self.db.flush()
        return rows

    def allocate_receipt(
        self,
        receipt_id: int,
        items: Iterable[AllocationItem | dict],
        allocated_by: int | None = None,
    ) -> list[PaymentAllocation]:
        """Store manual allocations on a pending receipt; balances change on approval.

        Raises:
            NotFoundError: If the receipt does not exist
            ConflictError: If the receipt was already decided
            ValidationError: If an allocation is invalid or the sum exceeds the total
        """
        receipt = self.db.get(PaymentReceipt, receipt_id)
        if receipt is None:
            raise NotFoundError("PaymentReceipt", receipt_id)
        if receipt.status != ReceiptStatus.PENDING:
            raise ConflictError(
                f"Receipt {receipt.folio} is already {receipt.status.value}",
                code="receipt_decided",
            )

        validated = self.validate_manual(receipt.unit_id, items)
        allocated = to_money(sum((item.amount for item in validated), ZERO))
        if allocated > to_money(receipt.total_amount):
            raise ValidationError(
                f"Allocations ({allocated}) exceed receipt total ({receipt.total_amount})",
                code="allocation_mismatch",
            )

        with atomic(self.db, f"allocate receipt {receipt.folio}"):
            rows = self.replace_allocations(receipt, validated, AllocationKind.MANUAL, allocated_by)
        return rows


__all__ = [
    "AllocationItem",
    "AllocationPlan",
    "AllocationService",
    "allocate_oldest_first",
    "normalize_items",
]
