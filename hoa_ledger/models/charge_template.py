"""Charge template ORM model: a billing campaign before per-unit fan-out."""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Date, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hoa_ledger.models import Base, BaseModel


class ChargeCategory(str, Enum):
    """Kind of obligation; surcharge policies may be scoped by category."""

    MAINTENANCE = "maintenance"
    """Ordinary periodic maintenance fee"""

    EXTRAORDINARY = "extraordinary"
    """One-off assessment (repairs, improvements)"""

    FINE = "fine"
    """Penalty for a rules violation"""


class RecurrencePeriod(str, Enum):
    """Calendar period between two cycles of a recurring charge."""

    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    BIMONTHLY = "bimonthly"
    QUARTERLY = "quarterly"
    SEMIANNUAL = "semiannual"
    ANNUAL = "annual"


class ChargeScope(str, Enum):
    """How the set of charged units is resolved."""

    ALL = "all"
    """Every active unit"""

    UNITS = "units"
    """Explicit list of unit ids"""

    STREETS = "streets"
    """Every active unit of the listed streets/towers"""


class TemplateStatus(str, Enum):
    """Lifecycle of a template; only active templates are regenerated."""

    ACTIVE = "active"
    PENDING = "pending"
    CANCELLED = "cancelled"


class ChargeTemplate(Base, BaseModel):
    """
    Definition of a charge fanned out to one ChargeInstance per unit.

    Recurring templates keep their first due date in anchor_due_date and count
    generated cycles, so every cycle due date is computed from the anchor
    (Jan 31 -> Feb 29 -> Mar 31) instead of from the previous cycle.
    Cycles created by regeneration point back to their root template through
    parent_template_id and are never regenerated themselves.
    """

    __tablename__ = "charge_templates"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[ChargeCategory] = mapped_column(
        nullable=False, default=ChargeCategory.MAINTENANCE, comment="Charge category"
    )
    base_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, comment="Gross amount charged to every unit"
    )
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Recurrence
    recurrence: Mapped[RecurrencePeriod | None] = mapped_column(
        nullable=True, comment="Null for one-off charges"
    )
    next_generation_date: Mapped[date | None] = mapped_column(
        Date, nullable=True, comment="Date on which the next cycle is generated"
    )
    anchor_due_date: Mapped[date | None] = mapped_column(
        Date, nullable=True, comment="Due date of the first cycle"
    )
    cycles_generated: Mapped[int] = mapped_column(
        default=0, nullable=False, comment="Cycles produced by regeneration"
    )
    parent_template_id: Mapped[int | None] = mapped_column(
        ForeignKey("charge_templates.id"),
        nullable=True,
        comment="Root recurring template this cycle was generated from",
    )

    # Scope
    scope: Mapped[ChargeScope] = mapped_column(nullable=False, default=ChargeScope.ALL)
    scope_ids: Mapped[list[int] | None] = mapped_column(
        JSON, nullable=True, comment="Unit or street ids as requested at creation"
    )

    status: Mapped[TemplateStatus] = mapped_column(
        nullable=False, default=TemplateStatus.ACTIVE, index=True
    )
    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    __table_args__ = (
        Index("idx_templates_regeneration", "status", "next_generation_date"),
        Index("idx_templates_parent", "parent_template_id"),
    )

    instances: Mapped[list["ChargeInstance"]] = relationship(  # noqa: F821
        "ChargeInstance", back_populates="template", order_by="ChargeInstance.id"
    )
    parent: Mapped[Optional["ChargeTemplate"]] = relationship(
        "ChargeTemplate", remote_side="ChargeTemplate.id"
    )

    @property
    def is_recurring(self) -> bool:
        return self.recurrence is not None

    def __repr__(self) -> str:
        return (
            f"<ChargeTemplate(id={self.id}, name={self.name}, base_amount={self.base_amount}, "
            f"due_date={self.due_date}, recurrence={self.recurrence}, status={self.status})>"
        )


__all__ = [
    "ChargeTemplate",
    "ChargeCategory",
    "RecurrencePeriod",
    "ChargeScope",
    "TemplateStatus",
]
