"""User ORM model for residents and administrators."""

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hoa_ledger.models import Base, BaseModel


class User(Base, BaseModel):
    """
    Person known to the community directory.

    Role flags are independent:
    - is_active: user may receive notifications and act in the portal
    - is_administrator: can approve receipts, record payments and receives batch reports
    """

    __tablename__ = "users"

    name: Mapped[str] = mapped_column(String(255), nullable=False, comment="Full name")
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, comment="Contact email")
    telegram_id: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
        comment="Telegram chat id used for notifications",
    )
    is_administrator: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False, comment="Community administrator"
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False, comment="Inactive users are never notified"
    )

    __table_args__ = (
        Index("idx_users_telegram_id", "telegram_id"),
        Index("idx_users_admin_active", "is_administrator", "is_active"),
    )

    residencies: Mapped[list["Resident"]] = relationship(  # noqa: F821
        "Resident", back_populates="user"
    )

    def __repr__(self) -> str:
        return (
            f"<User(id={self.id}, name={self.name}, telegram_id={self.telegram_id}, "
            f"is_active={self.is_active}, is_administrator={self.is_administrator})>"
        )


__all__ = ["User"]
