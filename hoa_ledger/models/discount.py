"""Discount ORM model."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hoa_ledger.models import Base, BaseModel


class DiscountType(str, Enum):
    """How a discount value is interpreted."""

    FIXED = "fixed"
    """Value is subtracted from the gross amount"""

    PERCENTAGE = "percentage"
    """Value is a percentage of the gross amount"""


class Discount(Base, BaseModel):
    """A discount granted on one charge instance."""

    __tablename__ = "discounts"

    instance_id: Mapped[int] = mapped_column(
        ForeignKey("charge_instances.id"), nullable=False, index=True
    )
    discount_type: Mapped[DiscountType] = mapped_column(nullable=False)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    applied_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    applied_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    instance: Mapped["ChargeInstance"] = relationship(  # noqa: F821
        "ChargeInstance", back_populates="discounts"
    )

    def __repr__(self) -> str:
        return (
            f"<Discount(id={self.id}, instance_id={self.instance_id}, "
            f"type={self.discount_type}, value={self.value})>"
        )


__all__ = ["Discount", "DiscountType"]
