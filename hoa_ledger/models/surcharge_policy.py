"""Surcharge policy and filter ORM models."""

from datetime import date
from decimal import Decimal
from enum import Enum

from sqlalchemy import JSON, Boolean, Date, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hoa_ledger.models import Base, BaseModel


class SurchargeKind(str, Enum):
    """How the surcharge amount is computed."""

    FIXED = "fixed"
    """Literal value"""

    PCT_ORIGINAL = "pct_original"
    """Percentage of the instance final amount"""

    PCT_BALANCE = "pct_balance"
    """Percentage of the current outstanding balance"""

    PCT_RUNNING_TOTAL = "pct_running_total"
    """Percentage of the running total; computed on the final amount"""


class FilterKind(str, Enum):
    """Closed set of eligibility predicates a policy can combine."""

    NAME_CONTAINS = "name_contains"
    """Template name contains the value (case-insensitive)"""

    CATEGORY_EQUALS = "category_equals"
    """Template category equals the value"""

    DAYS_OVERDUE_GT = "days_overdue_gt"
    """Days past the due date is greater than the value"""


class SurchargePolicy(Base, BaseModel):
    """
    Late-payment fee rule evaluated against overdue charge instances.

    A recurring policy may hit the same instance again every frequency_days;
    a non-recurring policy hits each instance at most once.
    """

    __tablename__ = "surcharge_policies"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    kind: Mapped[SurchargeKind] = mapped_column(nullable=False)
    value: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, comment="Amount or percentage depending on kind"
    )
    min_debt: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Balance must exceed this threshold",
    )
    categories: Mapped[list[str] | None] = mapped_column(
        JSON, nullable=True, comment="Charge categories in scope; null means all"
    )

    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    frequency_days: Mapped[int | None] = mapped_column(nullable=True)
    valid_from: Mapped[date] = mapped_column(Date, nullable=False)
    valid_until: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    filters: Mapped[list["SurchargeFilter"]] = relationship(
        "SurchargeFilter",
        back_populates="policy",
        cascade="all, delete-orphan",
        order_by="SurchargeFilter.id",
    )
    applications: Mapped[list["SurchargeApplication"]] = relationship(  # noqa: F821
        "SurchargeApplication", back_populates="policy"
    )

    def is_valid_on(self, day: date) -> bool:
        """Validity window includes the given day."""
        if day < self.valid_from:
            return False
        return self.valid_until is None or day <= self.valid_until

    def __repr__(self) -> str:
        return (
            f"<SurchargePolicy(id={self.id}, name={self.name}, kind={self.kind}, "
            f"value={self.value}, is_active={self.is_active})>"
        )


class SurchargeFilter(Base, BaseModel):
    """One AND-composed eligibility predicate of a policy."""

    __tablename__ = "surcharge_filters"

    policy_id: Mapped[int] = mapped_column(
        ForeignKey("surcharge_policies.id"), nullable=False, index=True
    )
    kind: Mapped[FilterKind] = mapped_column(nullable=False)
    value: Mapped[str] = mapped_column(String(200), nullable=False)

    policy: Mapped["SurchargePolicy"] = relationship("SurchargePolicy", back_populates="filters")

    def __repr__(self) -> str:
        return f"<SurchargeFilter(id={self.id}, kind={self.kind}, value={self.value})>"


__all__ = ["SurchargePolicy", "SurchargeFilter", "SurchargeKind", "FilterKind"]
