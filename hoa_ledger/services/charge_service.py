"""Charge issuance: templates fanned out to per-unit charge instances."""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from hoa_ledger.models.charge_instance import ChargeInstance, InstanceStatus
from hoa_ledger.models.charge_template import (
    ChargeCategory,
    ChargeScope,
    ChargeTemplate,
    RecurrencePeriod,
    TemplateStatus,
)
from hoa_ledger.models.discount import Discount, DiscountType
from hoa_ledger.models.unit import Unit
from hoa_ledger.services.amounts import ZERO, recalculate, to_money
from hoa_ledger.services.audit_service import AuditService
from hoa_ledger.services.directory_service import CommunityDirectory
from hoa_ledger.services.errors import ConflictError, NotFoundError, ValidationError
from hoa_ledger.services.locale_service import format_amount, format_day
from hoa_ledger.services.localizer import t
from hoa_ledger.services.notification_service import Notifier
from hoa_ledger.services.outbox import Outbox
from hoa_ledger.services.recurrence import cycle_due_date, generation_date_after
from hoa_ledger.services.unit_of_work import atomic

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscountSpec:
    """Discount requested at charge creation or afterwards."""

    discount_type: DiscountType
    value: Decimal
    name: str | None = None
    reason: str | None = None


@dataclass
class TemplateSummary:
    template_id: int
    instance_count: int = 0
    total_billed: Decimal = ZERO
    total_paid: Decimal = ZERO
    total_outstanding: Decimal = ZERO
    by_status: dict[str, int] = field(default_factory=dict)


class ChargeService:
    """Service for creating and administering charges."""

    def __init__(self, db: Session, notifier: Notifier | None = None):
        self.db = db
        self.notifier = notifier
        self.directory = CommunityDirectory(db)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_template(self, template_id: int) -> ChargeTemplate:
        template = self.db.get(ChargeTemplate, template_id)
        if template is None:
            raise NotFoundError("ChargeTemplate", template_id)
        return template

    def get_instance(self, instance_id: int) -> ChargeInstance:
        instance = self.db.get(ChargeInstance, instance_id)
        if instance is None:
            raise NotFoundError("ChargeInstance", instance_id)
        return instance

    def list_templates(
        self,
        status: TemplateStatus | None = None,
        category: ChargeCategory | None = None,
        recurrence: RecurrencePeriod | None = None,
    ) -> list[ChargeTemplate]:
        stmt = select(ChargeTemplate)
        if status is not None:
            stmt = stmt.where(ChargeTemplate.status == status)
        if category is not None:
            stmt = stmt.where(ChargeTemplate.category == category)
        if recurrence is not None:
            stmt = stmt.where(ChargeTemplate.recurrence == recurrence)
        stmt = stmt.order_by(ChargeTemplate.due_date.desc(), ChargeTemplate.id.desc())
        return list(self.db.execute(stmt).scalars().all())

    def unit_instances(self, unit_id: int, open_only: bool = False) -> list[ChargeInstance]:
        stmt = select(ChargeInstance).where(ChargeInstance.unit_id == unit_id)
        if open_only:
            stmt = stmt.where(
                ChargeInstance.status.in_([InstanceStatus.PENDING, InstanceStatus.OVERDUE])
            )
        stmt = stmt.order_by(ChargeInstance.due_date, ChargeInstance.id)
        return list(self.db.execute(stmt).scalars().all())

    def template_summary(self, template_id: int) -> TemplateSummary:
        """Totals and status breakdown of a template's instances."""
        template = self.get_template(template_id)
        summary = TemplateSummary(template_id=template.id)
        for instance in template.instances:
            summary.instance_count += 1
            summary.by_status[instance.status.value] = (
                summary.by_status.get(instance.status.value, 0) + 1
            )
            if instance.status == InstanceStatus.CANCELLED:
                continue
            summary.total_billed += to_money(instance.final_amount) + to_money(
                instance.surcharge_amount
            )
            summary.total_paid += to_money(instance.paid_amount)
            summary.total_outstanding += to_money(instance.balance)
        return summary

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def resolve_scope(self, scope: ChargeScope, scope_ids: Sequence[int] | None) -> list[Unit]:
        """Resolve a scope descriptor to the concrete list of units to charge.

        Raises:
            ValidationError: Unknown ids, inactive units or an empty result
        """
        scope = ChargeScope(scope)
        if scope == ChargeScope.ALL:
            units = self.directory.active_units()
        elif scope == ChargeScope.UNITS:
            units = self.directory.units_by_ids(list(scope_ids or []))
        else:
            units = self.directory.units_for_streets(list(scope_ids or []))
        if not units:
            raise ValidationError("Charge scope resolves to no active units", code="empty_scope")
        return units

    def _validate_discounts(self, discounts: Iterable[DiscountSpec]) -> list[DiscountSpec]:
        validated = []
        total_pct = ZERO
        for spec in discounts:
            value = to_money(spec.value)
            if value <= ZERO:
                raise ValidationError("Discount value must be positive")
            if DiscountType(spec.discount_type) == DiscountType.PERCENTAGE:
                total_pct += value
                if total_pct > Decimal("100"):
                    raise ValidationError("Percentage discounts cannot exceed 100%")
            validated.append(
                DiscountSpec(DiscountType(spec.discount_type), value, spec.name, spec.reason)
            )
        return validated

    def fan_out(
        self,
        template: ChargeTemplate,
        units: Sequence[Unit],
        discounts: Sequence[DiscountSpec] = (),
        applied_by: int | None = None,
    ) -> list[ChargeInstance]:
        """Create one instance per unit for a flushed template (no commit)."""
        instances = []
        amount = to_money(template.base_amount)
        for unit in units:
            instance = ChargeInstance(
                template=template,
                unit=unit,
                amount=amount,
                discount_amount=ZERO,
                discount_percentage=ZERO,
                final_amount=amount,
                surcharge_amount=ZERO,
                paid_amount=ZERO,
                balance=amount,
                due_date=template.due_date,
                status=InstanceStatus.PENDING,
            )
            for spec in discounts:
                self._add_discount(instance, spec, applied_by)
            recalculate(instance)
            self.db.add(instance)
            instances.append(instance)
        self.db.flush()
        return instances

    def _add_discount(
        self, instance: ChargeInstance, spec: DiscountSpec, applied_by: int | None
    ) -> Discount:
        if spec.discount_type == DiscountType.FIXED:
            instance.discount_amount = to_money(instance.discount_amount) + spec.value
        else:
            instance.discount_percentage = to_money(instance.discount_percentage) + spec.value
        discount = Discount(
            discount_type=spec.discount_type,
            name=spec.name,
            value=spec.value,
            reason=spec.reason,
            applied_by=applied_by,
            applied_at=datetime.now(timezone.utc),
        )
        instance.discounts.append(discount)
        return discount

    def queue_issue_notifications(
        self, outbox: Outbox, template: ChargeTemplate, instances: Sequence[ChargeInstance]
    ) -> None:
        """Queue a notice for every active resident of every charged unit."""
        for instance in instances:
            for user_id in self.directory.resident_user_ids(instance.unit_id):
                outbox.add(
                    user_id,
                    t("charges.issued_title", name=template.name),
                    t(
                        "charges.issued_message",
                        name=template.name,
                        unit=instance.unit.label,
                        amount=format_amount(instance.final_amount),
                        due_date=format_day(instance.due_date),
                    ),
                    type="charge_issued",
                    template_id=template.id,
                    instance_id=instance.id,
                )

    async def issue_charge(
        self,
        name: str,
        amount: Decimal,
        due_date: date,
        *,
        issue_date: date | None = None,
        category: ChargeCategory = ChargeCategory.MAINTENANCE,
        scope: ChargeScope = ChargeScope.ALL,
        scope_ids: Sequence[int] | None = None,
        recurrence: RecurrencePeriod | None = None,
        description: str | None = None,
        discounts: Sequence[DiscountSpec] = (),
        created_by: int | None = None,
    ) -> ChargeTemplate:
        """Create a charge template and one instance per unit in scope.

        Template and instances are committed together or not at all. Residents
        are notified after the commit; notification failures are only logged.

        Raises:
            ValidationError: Invalid fields, unknown scope ids or empty scope
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Charge name is required")
        amount = to_money(amount)
        if amount <= ZERO:
            raise ValidationError("Charge amount must be positive")
        issue_date = issue_date or date.today()
        if due_date < issue_date:
            raise ValidationError("Due date cannot be before the issue date")
        recurrence = RecurrencePeriod(recurrence) if recurrence is not None else None
        validated_discounts = self._validate_discounts(discounts)
        units = self.resolve_scope(scope, scope_ids)

        outbox = Outbox()
        with atomic(self.db, f"issue charge '{name}'"):
            template = ChargeTemplate(
                name=name,
                description=description,
                category=ChargeCategory(category),
                base_amount=amount,
                issue_date=issue_date,
                due_date=due_date,
                recurrence=recurrence,
                anchor_due_date=due_date if recurrence else None,
                next_generation_date=(
                    generation_date_after(due_date, recurrence, 0) if recurrence else None
                ),
                cycles_generated=0,
                scope=ChargeScope(scope),
                scope_ids=sorted(set(scope_ids)) if scope_ids else None,
                status=TemplateStatus.ACTIVE,
                created_by=created_by,
            )
            self.db.add(template)
            self.db.flush()
            instances = self.fan_out(template, units, validated_discounts, created_by)
            AuditService.log(
                self.db,
                "charge_template",
                template.id,
                "create",
                actor_id=created_by,
                changes={"amount": amount, "units": len(instances), "scope": template.scope},
            )
            self.queue_issue_notifications(outbox, template, instances)

        logger.info(
            "Issued charge template %s '%s' to %d unit(s)", template.id, name, len(instances)
        )
        await outbox.dispatch(self.notifier)
        return template

    # ------------------------------------------------------------------
    # Regeneration
    # ------------------------------------------------------------------

    def latest_cycle(self, root: ChargeTemplate) -> ChargeTemplate:
        """Most recent cycle of a recurring template (the root itself before any cycle)."""
        stmt = (
            select(ChargeTemplate)
            .where(ChargeTemplate.parent_template_id == root.id)
            .order_by(ChargeTemplate.due_date.desc(), ChargeTemplate.id.desc())
            .limit(1)
        )
        return self.db.execute(stmt).scalar_one_or_none() or root

    def resolve_cycle_units(self, root: ChargeTemplate) -> list[Unit]:
        """Units for the next cycle.

        `all` is queried again; explicit unit and street scopes are derived
        from the previous cycle's instances so they never need re-specifying.
        """
        if root.scope == ChargeScope.ALL:
            return self.resolve_scope(ChargeScope.ALL, None)

        previous = self.latest_cycle(root)
        unit_ids = sorted({instance.unit_id for instance in previous.instances})
        if not unit_ids:
            raise ValidationError(
                f"Previous cycle of template {root.id} has no instances", code="empty_scope"
            )
        units = list(
            self.db.execute(select(Unit).where(Unit.id.in_(unit_ids)).order_by(Unit.id))
            .scalars()
            .all()
        )
        if root.scope == ChargeScope.STREETS:
            street_ids = sorted({unit.street_id for unit in units})
            units = self.directory.units_for_streets(street_ids)
        else:
            units = [unit for unit in units if unit.is_active]
        if not units:
            raise ValidationError(
                f"Template {root.id} scope resolves to no active units", code="empty_scope"
            )
        return units

    def regenerate(self, root: ChargeTemplate, today: date, outbox: Outbox) -> list[ChargeTemplate]:
        """Generate every cycle of a recurring template that is due by `today` (no commit).

        Each cycle is a new template (parent_template_id = root) with its own
        fan-out, issued on its scheduled generation date and due one period
        later. The root's next_generation_date always ends strictly after today.
        """
        if root.recurrence is None or root.next_generation_date is None:
            raise ValidationError(f"Template {root.id} is not recurring")
        anchor = root.anchor_due_date or root.due_date

        created = []
        while root.next_generation_date <= today:
            cycle = root.cycles_generated + 1
            issued = root.next_generation_date
            due = cycle_due_date(anchor, root.recurrence, cycle)
            units = self.resolve_cycle_units(root)

            template = ChargeTemplate(
                name=root.name,
                description=root.description,
                category=root.category,
                base_amount=root.base_amount,
                issue_date=issued,
                due_date=due,
                recurrence=root.recurrence,
                next_generation_date=None,
                anchor_due_date=None,
                cycles_generated=0,
                parent_template_id=root.id,
                scope=root.scope,
                scope_ids=root.scope_ids,
                status=TemplateStatus.ACTIVE,
                created_by=root.created_by,
            )
            self.db.add(template)
            self.db.flush()
            instances = self.fan_out(template, units)
            self.queue_issue_notifications(outbox, template, instances)

            root.cycles_generated = cycle
            root.next_generation_date = generation_date_after(anchor, root.recurrence, cycle)
            self.db.flush()
            created.append(template)
            logger.info(
                "Generated cycle %d of template %s: due %s, %d unit(s), next generation %s",
                cycle,
                root.id,
                due,
                len(instances),
                root.next_generation_date,
            )
        return created

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def apply_discount(
        self,
        instance_id: int,
        discount_type: DiscountType,
        value: Decimal,
        name: str | None = None,
        reason: str | None = None,
        applied_by: int | None = None,
    ) -> ChargeInstance:
        """Grant a discount on one instance and recompute its final amount and balance.

        Raises:
            NotFoundError: Unknown instance
            ValidationError: Closed instance, non-positive value, percentages
                above 100% or a balance that would become negative
        """
        instance = self.get_instance(instance_id)
        if not instance.is_open:
            raise ValidationError(
                f"Charge instance {instance.id} is {instance.status.value}",
                code="instance_closed",
            )
        spec = self._validate_discounts([DiscountSpec(discount_type, value, name, reason)])[0]
        if spec.discount_type == DiscountType.PERCENTAGE and (
            to_money(instance.discount_percentage) + spec.value > Decimal("100")
        ):
            raise ValidationError("Percentage discounts cannot exceed 100%")

        with atomic(self.db, f"discount on instance {instance.id}"):
            self._add_discount(instance, spec, applied_by)
            recalculate(instance)
            AuditService.log(
                self.db,
                "charge_instance",
                instance.id,
                "discount",
                actor_id=applied_by,
                changes={
                    "type": spec.discount_type,
                    "value": spec.value,
                    "final_amount": instance.final_amount,
                    "balance": instance.balance,
                },
            )
        logger.info(
            "Discount %s %s applied to charge instance %s",
            spec.discount_type.value,
            spec.value,
            instance_id,
        )
        return instance

    def update_template(
        self,
        template_id: int,
        *,
        amount: Decimal | None = None,
        due_date: date | None = None,
        status: TemplateStatus | None = None,
        name: str | None = None,
        description: str | None = None,
        actor_id: int | None = None,
        today: date | None = None,
    ) -> ChargeTemplate:
        """Administrator edit of a template and its instances.

        Raises:
            ConflictError: Template cancelled, or amount change once payments
                or surcharges exist on any instance
            ValidationError: Invalid values
        """
        template = self.get_template(template_id)
        if template.status == TemplateStatus.CANCELLED:
            raise ConflictError(f"Template {template.id} is cancelled", code="template_cancelled")
        if status is not None and TemplateStatus(status) == TemplateStatus.CANCELLED:
            return self.cancel_template(template_id, actor_id=actor_id)

        today = today or date.today()
        changes: dict = {}
        live = [i for i in template.instances if i.status != InstanceStatus.CANCELLED]

        if amount is not None:
            amount = to_money(amount)
            if amount <= ZERO:
                raise ValidationError("Charge amount must be positive")
            touched = [
                i.id
                for i in live
                if to_money(i.paid_amount) > ZERO or to_money(i.surcharge_amount) > ZERO
            ]
            if touched:
                raise ConflictError(
                    f"Amount of template {template.id} cannot change: instances {touched} "
                    "have payments or surcharges",
                    code="template_has_movements",
                )
        if due_date is not None and due_date < template.issue_date:
            raise ValidationError("Due date cannot be before the issue date")
        if name is not None and not name.strip():
            raise ValidationError("Charge name is required")

        with atomic(self.db, f"update template {template.id}"):
            if amount is not None and amount != to_money(template.base_amount):
                changes["amount"] = {"old": template.base_amount, "new": amount}
                template.base_amount = amount
                for instance in live:
                    instance.amount = amount
                    recalculate(instance)
            if due_date is not None and due_date != template.due_date:
                changes["due_date"] = {"old": template.due_date, "new": due_date}
                template.due_date = due_date
                if template.recurrence and template.parent_template_id is None:
                    template.anchor_due_date = due_date
                    template.next_generation_date = generation_date_after(
                        due_date, template.recurrence, template.cycles_generated
                    )
                for instance in live:
                    instance.due_date = due_date
                    if instance.status == InstanceStatus.OVERDUE and due_date >= today:
                        instance.status = InstanceStatus.PENDING
            if status is not None and TemplateStatus(status) != template.status:
                changes["status"] = {"old": template.status, "new": TemplateStatus(status)}
                template.status = TemplateStatus(status)
            if name is not None and name.strip() != template.name:
                changes["name"] = name.strip()
                template.name = name.strip()
            if description is not None:
                template.description = description
            AuditService.log(
                self.db, "charge_template", template.id, "update", actor_id=actor_id, changes=changes
            )
        logger.info("Template %s updated: %s", template.id, sorted(changes))
        return template

    def cancel_template(self, template_id: int, actor_id: int | None = None) -> ChargeTemplate:
        """Cancel a template and its open instances; nothing is deleted.

        Raises:
            ConflictError: If any instance already received payments
        """
        template = self.get_template(template_id)
        if template.status == TemplateStatus.CANCELLED:
            raise ConflictError(
                f"Template {template.id} is already cancelled", code="template_cancelled"
            )
        paid = [i.id for i in template.instances if to_money(i.paid_amount) > ZERO]
        if paid:
            raise ConflictError(
                f"Template {template.id} has applied payments on instances {paid}",
                code="template_has_payments",
            )

        with atomic(self.db, f"cancel template {template.id}"):
            template.status = TemplateStatus.CANCELLED
            template.next_generation_date = None
            cancelled = 0
            for instance in template.instances:
                if instance.is_open:
                    instance.status = InstanceStatus.CANCELLED
                    cancelled += 1
            AuditService.log(
                self.db,
                "charge_template",
                template.id,
                "cancel",
                actor_id=actor_id,
                changes={"instances_cancelled": cancelled},
            )
        logger.info("Template %s cancelled (%d instance(s))", template.id, cancelled)
        return template

    def mark_overdue(self, today: date | None = None) -> int:
        """Flip pending instances past their due date with a balance to overdue."""
        today = today or date.today()
        stmt = select(ChargeInstance).where(
            ChargeInstance.status == InstanceStatus.PENDING,
            ChargeInstance.due_date < today,
            ChargeInstance.balance > 0,
        )
        with atomic(self.db, "mark overdue"):
            instances = self.db.execute(stmt).scalars().all()
            for instance in instances:
                instance.status = InstanceStatus.OVERDUE
        if instances:
            logger.info("Marked %d charge instance(s) overdue as of %s", len(instances), today)
        return len(instances)

    async def notify_template(self, template_id: int) -> int:
        """Remind residents of every unpaid instance of a template.

        Returns:
            Number of notifications delivered
        """
        template = self.get_template(template_id)
        outbox = Outbox()
        for instance in template.instances:
            if not instance.is_open:
                continue
            for user_id in self.directory.resident_user_ids(instance.unit_id):
                outbox.add(
                    user_id,
                    t("charges.reminder_title", name=template.name),
                    t(
                        "charges.reminder_message",
                        name=template.name,
                        unit=instance.unit.label,
                        balance=format_amount(instance.balance),
                        due_date=format_day(instance.due_date),
                    ),
                    type="charge_reminder",
                    template_id=template.id,
                    instance_id=instance.id,
                )
        return await outbox.dispatch(self.notifier)

    def count_active_recurring(self) -> int:
        stmt = select(func.count(ChargeTemplate.id)).where(
            ChargeTemplate.recurrence.is_not(None),
            ChargeTemplate.parent_template_id.is_(None),
            ChargeTemplate.status == TemplateStatus.ACTIVE,
        )
        return self.db.execute(stmt).scalar_one()


__all__ = ["ChargeService", "DiscountSpec", "TemplateSummary"]
