"""Charge instance ORM model: the per-unit billable obligation."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import Date, DateTime, ForeignKey, Index, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hoa_ledger.models import Base, BaseModel


class InstanceStatus(str, Enum):
    """Payment status of a charge instance."""

    PENDING = "pending"
    """Balance outstanding, not yet due"""

    OVERDUE = "overdue"
    """Balance outstanding after the due date"""

    PAID = "paid"
    """Balance settled (terminal)"""

    CANCELLED = "cancelled"
    """Template cancelled (terminal)"""


class ChargeInstance(Base, BaseModel):
    """
    One unit's share of a charge template.

    Monetary fields are maintained by the ledger services through the pure
    functions in hoa_ledger.services.amounts:

    - final_amount = max(0, amount - discount_amount - amount * discount_percentage / 100)
    - balance = final_amount + surcharge_amount - paid_amount, never negative
    - status is paid exactly when balance reaches zero
    """

    __tablename__ = "charge_instances"

    template_id: Mapped[int] = mapped_column(ForeignKey("charge_templates.id"), nullable=False)
    unit_id: Mapped[int] = mapped_column(ForeignKey("units.id"), nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, comment="Gross amount")
    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0.00"), comment="Sum of fixed discounts"
    )
    discount_percentage: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=Decimal("0.00"), comment="Sum of percentage discounts"
    )
    final_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, comment="Amount after discounts"
    )
    surcharge_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0.00"), comment="Late fees applied"
    )
    paid_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0.00"), comment="Approved allocations"
    )
    balance: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, comment="Outstanding balance"
    )

    due_date: Mapped[date] = mapped_column(
        Date, nullable=False, comment="Copy of the template due date for ordering"
    )
    status: Mapped[InstanceStatus] = mapped_column(nullable=False, default=InstanceStatus.PENDING)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("template_id", "unit_id", name="uq_charge_instances_template_unit"),
        Index("idx_instances_unit_status_due", "unit_id", "status", "due_date"),
        Index("idx_instances_status_due", "status", "due_date"),
    )

    template: Mapped["ChargeTemplate"] = relationship(  # noqa: F821
        "ChargeTemplate", back_populates="instances"
    )
    unit: Mapped["Unit"] = relationship("Unit")  # noqa: F821
    discounts: Mapped[list["Discount"]] = relationship(  # noqa: F821
        "Discount", back_populates="instance", order_by="Discount.id"
    )
    allocations: Mapped[list["PaymentAllocation"]] = relationship(  # noqa: F821
        "PaymentAllocation", back_populates="instance"
    )
    surcharge_applications: Mapped[list["SurchargeApplication"]] = relationship(  # noqa: F821
        "SurchargeApplication", back_populates="instance"
    )

    @property
    def is_open(self) -> bool:
        """Instance can still receive payments and surcharges."""
        return self.status in (InstanceStatus.PENDING, InstanceStatus.OVERDUE)

    def __repr__(self) -> str:
        return (
            f"<ChargeInstance(id={self.id}, template_id={self.template_id}, unit_id={self.unit_id}, "
            f"final_amount={self.final_amount}, balance={self.balance}, status={self.status})>"
        )


__all__ = ["ChargeInstance", "InstanceStatus"]
