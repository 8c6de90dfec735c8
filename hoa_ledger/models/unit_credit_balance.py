"""Unit credit balance ORM model."""

from decimal import Decimal

from sqlalchemy import ForeignKey, Numeric, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hoa_ledger.models import Base, BaseModel


class UnitCreditBalance(Base, BaseModel):
    """Running surplus of a unit, fed by payments that exceed its outstanding charges."""

    __tablename__ = "unit_credit_balances"

    unit_id: Mapped[int] = mapped_column(ForeignKey("units.id"), nullable=False, unique=True)
    amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0.00"), comment="Available credit"
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True, comment="Movement history")

    unit: Mapped["Unit"] = relationship("Unit")  # noqa: F821

    def __repr__(self) -> str:
        return f"<UnitCreditBalance(unit_id={self.unit_id}, amount={self.amount})>"


__all__ = ["UnitCreditBalance"]
