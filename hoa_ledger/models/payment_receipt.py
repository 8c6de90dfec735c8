"""Payment receipt ORM model: a reported payment awaiting review."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Date, DateTime, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hoa_ledger.models import Base, BaseModel


class ReceiptStatus(str, Enum):
    """Review state; only pending receipts can be decided."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PaymentMethod(str, Enum):
    TRANSFER = "transfer"
    DEPOSIT = "deposit"
    CASH = "cash"
    CARD = "card"
    CHECK = "check"


class ReceiptSource(str, Enum):
    """Who reported the payment."""

    RESIDENT = "resident"
    """Uploaded by a resident for one charge instance"""

    ADMIN = "admin"
    """Recorded by an administrator for a unit"""


class PaymentReceipt(Base, BaseModel):
    """
    Proof of a payment made by (or on behalf of) a unit.

    Resident receipts target one charge instance. Administrator receipts target
    the unit and are spread over its outstanding instances; any excess is kept
    in credited_amount and moved to the unit's credit balance on approval.
    """

    __tablename__ = "payment_receipts"

    folio: Mapped[str] = mapped_column(
        String(32), nullable=False, unique=True, comment="Human-facing receipt number"
    )
    resident_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id"), nullable=True, comment="Resident the receipt belongs to"
    )
    unit_id: Mapped[int] = mapped_column(ForeignKey("units.id"), nullable=False)
    charge_instance_id: Mapped[int | None] = mapped_column(
        ForeignKey("charge_instances.id"),
        nullable=True,
        comment="Target instance of a resident receipt",
    )

    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    credited_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Part of the total sent to the unit credit balance",
    )
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    method: Mapped[PaymentMethod] = mapped_column(nullable=False)

    # Bank metadata
    bank_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    destination_account: Mapped[str | None] = mapped_column(String(100), nullable=True)
    evidence_url: Mapped[str | None] = mapped_column(
        String(500), nullable=True, comment="Uploaded proof of payment"
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    source: Mapped[ReceiptSource] = mapped_column(nullable=False, default=ReceiptSource.RESIDENT)
    status: Mapped[ReceiptStatus] = mapped_column(
        nullable=False, default=ReceiptStatus.PENDING, index=True
    )

    # Review
    reviewed_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    review_comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Official receipt, set only on approval
    document_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    document_filename: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __table_args__ = (Index("idx_receipts_unit_status", "unit_id", "status"),)

    unit: Mapped["Unit"] = relationship("Unit")  # noqa: F821
    resident: Mapped[Optional["User"]] = relationship(  # noqa: F821
        "User", foreign_keys=[resident_id]
    )
    charge_instance: Mapped[Optional["ChargeInstance"]] = relationship(  # noqa: F821
        "ChargeInstance"
    )
    allocations: Mapped[list["PaymentAllocation"]] = relationship(  # noqa: F821
        "PaymentAllocation",
        back_populates="receipt",
        order_by="PaymentAllocation.id",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return (
            f"<PaymentReceipt(id={self.id}, folio={self.folio}, unit_id={self.unit_id}, "
            f"total_amount={self.total_amount}, status={self.status})>"
        )


__all__ = ["PaymentReceipt", "ReceiptStatus", "PaymentMethod", "ReceiptSource"]
