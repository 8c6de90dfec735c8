"""Street/tower ORM model grouping housing units."""

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hoa_ledger.models import Base, BaseModel


class Street(Base, BaseModel):
    """A street (houses) or tower (apartments) inside the community."""

    __tablename__ = "streets"

    name: Mapped[str] = mapped_column(
        String(100), nullable=False, unique=True, comment="Street or tower name"
    )
    is_tower: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False, comment="True for apartment towers"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    units: Mapped[list["Unit"]] = relationship("Unit", back_populates="street")  # noqa: F821

    def __repr__(self) -> str:
        return f"<Street(id={self.id}, name={self.name}, is_tower={self.is_tower})>"


__all__ = ["Street"]
