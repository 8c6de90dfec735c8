"""Surcharge application ORM model."""

from datetime import date
from decimal import Decimal

from sqlalchemy import Date, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hoa_ledger.models import Base, BaseModel


class SurchargeApplication(Base, BaseModel):
    """A late fee added to one instance by one policy.

    Also the witness used to decide whether a policy already ran for an
    instance within its frequency window.
    """

    __tablename__ = "surcharge_applications"

    policy_id: Mapped[int] = mapped_column(ForeignKey("surcharge_policies.id"), nullable=False)
    instance_id: Mapped[int] = mapped_column(ForeignKey("charge_instances.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    applied_on: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    applied_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    __table_args__ = (
        Index("idx_surcharge_apps_policy_instance", "policy_id", "instance_id", "applied_on"),
    )

    policy: Mapped["SurchargePolicy"] = relationship(  # noqa: F821
        "SurchargePolicy", back_populates="applications"
    )
    instance: Mapped["ChargeInstance"] = relationship(  # noqa: F821
        "ChargeInstance", back_populates="surcharge_applications"
    )

    def __repr__(self) -> str:
        return (
            f"<SurchargeApplication(id={self.id}, policy_id={self.policy_id}, "
            f"instance_id={self.instance_id}, amount={self.amount}, applied_on={self.applied_on})>"
        )


__all__ = ["SurchargeApplication"]
