"""Payment allocation ORM model."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Numeric
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hoa_ledger.models import Base, BaseModel


class AllocationKind(str, Enum):
    """How the allocation was decided."""

    AUTOMATIC = "automatic"
    """Oldest-due-first over the unit's outstanding instances"""

    MANUAL = "manual"
    """Chosen by the resident or an administrator"""

    CREDIT = "credit"
    """Paid from the unit credit balance, no receipt"""


class PaymentAllocation(Base, BaseModel):
    """Portion of a payment applied to one charge instance.

    applied_at stays empty until the amount has actually been subtracted
    from the instance balance (receipt approval or credit application).
    """

    __tablename__ = "payment_allocations"

    receipt_id: Mapped[int | None] = mapped_column(
        ForeignKey("payment_receipts.id"), nullable=True, comment="Null for credit applications"
    )
    instance_id: Mapped[int] = mapped_column(ForeignKey("charge_instances.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    kind: Mapped[AllocationKind] = mapped_column(nullable=False)
    allocated_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_allocations_receipt", "receipt_id"),
        Index("idx_allocations_instance", "instance_id"),
    )

    receipt: Mapped[Optional["PaymentReceipt"]] = relationship(  # noqa: F821
        "PaymentReceipt", back_populates="allocations"
    )
    instance: Mapped["ChargeInstance"] = relationship(  # noqa: F821
        "ChargeInstance", back_populates="allocations"
    )

    def __repr__(self) -> str:
        return (
            f"<PaymentAllocation(id={self.id}, receipt_id={self.receipt_id}, "
            f"instance_id={self.instance_id}, amount={self.amount}, kind={self.kind})>"
        )


__all__ = ["PaymentAllocation", "AllocationKind"]
