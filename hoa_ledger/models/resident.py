"""Resident ORM model linking users to housing units."""

from sqlalchemy import Boolean, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hoa_ledger.models import Base, BaseModel


class Resident(Base, BaseModel):
    """Occupancy of a unit by a user.

    A unit may have several active residents; at most one should be flagged
    primary. The primary active resident is the unit's owner of record.
    """

    __tablename__ = "residents"

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    unit_id: Mapped[int] = mapped_column(ForeignKey("units.id"), nullable=False)
    is_primary: Mapped[bool] = mapped_column(
        default=False, nullable=False, comment="Owner of record for the unit"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index("idx_residents_unit_active", "unit_id", "is_active"),
        Index("idx_residents_user", "user_id"),
    )

    user: Mapped["User"] = relationship("User", back_populates="residencies")  # noqa: F821
    unit: Mapped["Unit"] = relationship("Unit", back_populates="residents")  # noqa: F821

    def __repr__(self) -> str:
        return (
            f"<Resident(id={self.id}, user_id={self.user_id}, unit_id={self.unit_id}, "
            f"is_primary={self.is_primary}, is_active={self.is_active})>"
        )


__all__ = ["Resident"]
