"""Housing unit ORM model."""

from sqlalchemy import Boolean, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hoa_ledger.models import Base, BaseModel


class Unit(Base, BaseModel):
    """A house or apartment that receives charges."""

    __tablename__ = "units"

    street_id: Mapped[int] = mapped_column(
        ForeignKey("streets.id"), nullable=False, comment="Street or tower of the unit"
    )
    number: Mapped[str] = mapped_column(String(20), nullable=False, comment="House/apartment number")
    letter: Mapped[str | None] = mapped_column(
        String(5), nullable=True, comment="Optional letter suffix (12-A)"
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False, comment="Inactive units receive no charges"
    )

    __table_args__ = (
        Index("idx_units_street_active", "street_id", "is_active"),
        Index("idx_units_address", "street_id", "number", "letter", unique=True),
    )

    street: Mapped["Street"] = relationship("Street", back_populates="units")  # noqa: F821
    residents: Mapped[list["Resident"]] = relationship(  # noqa: F821
        "Resident", back_populates="unit"
    )

    @property
    def label(self) -> str:
        """Human-readable address, e.g. "Calle Roble 12-A"."""
        suffix = f"-{self.letter}" if self.letter else ""
        street = self.street.name if self.street else ""
        return f"{street} {self.number}{suffix}".strip()

    def __repr__(self) -> str:
        return f"<Unit(id={self.id}, street_id={self.street_id}, number={self.number})>"


__all__ = ["Unit"]
