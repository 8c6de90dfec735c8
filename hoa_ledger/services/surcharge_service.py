"""Surcharge engine: late-payment fees on overdue charge instances.

An instance is eligible for a policy when it is overdue, still owes money,
owes more than the policy's minimum debt, belongs to a category in the
policy scope and satisfies every policy filter. Each application is its own
transaction; a failing instance never stops the rest of the run.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Iterable, Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from hoa_ledger.config import get_settings
from hoa_ledger.models.charge_instance import ChargeInstance, InstanceStatus
from hoa_ledger.models.charge_template import ChargeCategory
from hoa_ledger.models.surcharge_application import SurchargeApplication
from hoa_ledger.models.surcharge_policy import (
    FilterKind,
    SurchargeFilter,
    SurchargeKind,
    SurchargePolicy,
)
from hoa_ledger.services.amounts import ZERO, apply_surcharge, percentage_of, to_money
from hoa_ledger.services.audit_service import AuditService
from hoa_ledger.services.batch import BatchReport
from hoa_ledger.services.directory_service import CommunityDirectory
from hoa_ledger.services.errors import (
    ConflictError,
    LedgerError,
    NotFoundError,
    ValidationError,
)
from hoa_ledger.services.locale_service import format_amount
from hoa_ledger.services.localizer import t
from hoa_ledger.services.notification_service import Notifier
from hoa_ledger.services.outbox import Outbox
from hoa_ledger.services.unit_of_work import atomic

logger = logging.getLogger(__name__)


class FilterLike(Protocol):
    kind: FilterKind
    value: str


def days_overdue(instance: ChargeInstance, today: date) -> int:
    """Whole days elapsed since the due date (0 when not yet due)."""
    return max(0, (today - instance.due_date).days)


def _name_contains(value: str, instance: ChargeInstance, today: date) -> bool:
    return value.casefold() in instance.template.name.casefold()


def _category_equals(value: str, instance: ChargeInstance, today: date) -> bool:
    return instance.template.category == ChargeCategory(value)


def _days_overdue_gt(value: str, instance: ChargeInstance, today: date) -> bool:
    return days_overdue(instance, today) > int(value)


FILTER_MATCHERS: dict[FilterKind, Callable[[str, ChargeInstance, date], bool]] = {
    FilterKind.NAME_CONTAINS: _name_contains,
    FilterKind.CATEGORY_EQUALS: _category_equals,
    FilterKind.DAYS_OVERDUE_GT: _days_overdue_gt,
}


def filter_matches(flt: FilterLike, instance: ChargeInstance, today: date) -> bool:
    """Evaluate one filter against an instance."""
    return FILTER_MATCHERS[FilterKind(flt.kind)](flt.value, instance, today)


def validate_filter(kind: FilterKind, value: Any) -> tuple[FilterKind, str]:
    """Normalize a filter definition.

    Raises:
        ValidationError: Unknown kind or a value the kind cannot evaluate
    """
    try:
        kind = FilterKind(kind)
    except ValueError as e:
        raise ValidationError(f"Unknown surcharge filter kind {kind!r}") from e
    value = str(value).strip() if value is not None else ""
    if not value:
        raise ValidationError(f"Filter {kind.value} needs a value")
    if kind == FilterKind.DAYS_OVERDUE_GT:
        if not value.isdigit():
            raise ValidationError("days_overdue_gt needs a non-negative whole number of days")
    elif kind == FilterKind.CATEGORY_EQUALS:
        try:
            ChargeCategory(value)
        except ValueError as e:
            raise ValidationError(f"Unknown charge category {value!r}") from e
    return kind, value


def is_eligible(policy: SurchargePolicy, instance: ChargeInstance, today: date) -> bool:
    """All eligibility conditions of a policy hold for the instance."""
    if instance.status != InstanceStatus.OVERDUE:
        return False
    balance = to_money(instance.balance)
    if balance <= ZERO or balance <= to_money(policy.min_debt):
        return False
    if policy.categories and instance.template.category.value not in policy.categories:
        return False
    return all(filter_matches(flt, instance, today) for flt in policy.filters)


def compute_surcharge(policy: SurchargePolicy, instance: ChargeInstance) -> Decimal:
    """Surcharge amount of a policy for an instance.

    pct_running_total uses the final amount, like pct_original; prior
    surcharges are not compounded.
    """
    kind = SurchargeKind(policy.kind)
    if kind == SurchargeKind.FIXED:
        return to_money(policy.value)
    if kind == SurchargeKind.PCT_BALANCE:
        return percentage_of(instance.balance, policy.value)
    return percentage_of(instance.final_amount, policy.value)


class SurchargeService:
    """Service for surcharge policies and their application."""

    def __init__(self, db: Session, notifier: Notifier | None = None):
        self.db = db
        self.notifier = notifier
        self.directory = CommunityDirectory(db)

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    def get_policy(self, policy_id: int) -> SurchargePolicy:
        policy = self.db.get(SurchargePolicy, policy_id)
        if policy is None:
            raise NotFoundError("SurchargePolicy", policy_id)
        return policy

    def list_policies(self, active_only: bool = False) -> list[SurchargePolicy]:
        stmt = select(SurchargePolicy)
        if active_only:
            stmt = stmt.where(SurchargePolicy.is_active.is_(True))
        return list(self.db.execute(stmt.order_by(SurchargePolicy.id)).scalars().all())

    def _validate_policy_fields(
        self,
        kind: SurchargeKind,
        value: Decimal,
        min_debt: Decimal,
        is_recurring: bool,
        frequency_days: int | None,
        valid_from: date,
        valid_until: date | None,
        categories: Iterable[str] | None,
    ) -> list[str] | None:
        if to_money(value) <= ZERO:
            raise ValidationError("Surcharge value must be positive")
        if kind != SurchargeKind.FIXED and to_money(value) > Decimal("100"):
            raise ValidationError("Surcharge percentage cannot exceed 100")
        if to_money(min_debt) < ZERO:
            raise ValidationError("Minimum debt cannot be negative")
        if is_recurring and (frequency_days is None or frequency_days < 1):
            raise ValidationError("Recurring policies need a frequency of at least one day")
        if valid_until is not None and valid_until < valid_from:
            raise ValidationError("Validity window ends before it starts")
        if not categories:
            return None
        try:
            return sorted({ChargeCategory(c).value for c in categories})
        except ValueError as e:
            raise ValidationError(f"Unknown charge category in {list(categories)}") from e

    async def create_policy(
        self,
        name: str,
        kind: SurchargeKind,
        value: Decimal,
        *,
        min_debt: Decimal = ZERO,
        categories: Iterable[str] | None = None,
        filters: Iterable[tuple[FilterKind, Any]] = (),
        is_recurring: bool = False,
        frequency_days: int | None = None,
        valid_from: date | None = None,
        valid_until: date | None = None,
        description: str | None = None,
        created_by: int | None = None,
        apply_now: bool = False,
        today: date | None = None,
    ) -> tuple[SurchargePolicy, BatchReport | None]:
        """Create a policy, optionally applying it right away.

        Returns:
            The policy and, when apply_now is set, the report of the immediate run
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Policy name is required")
        kind = SurchargeKind(kind)
        today = today or date.today()
        valid_from = valid_from or today
        scoped = self._validate_policy_fields(
            kind, value, min_debt, is_recurring, frequency_days, valid_from, valid_until, categories
        )
        normalized_filters = [validate_filter(k, v) for k, v in filters]

        with atomic(self.db, f"create surcharge policy '{name}'"):
            policy = SurchargePolicy(
                name=name,
                description=description,
                kind=kind,
                value=to_money(value),
                min_debt=to_money(min_debt),
                categories=scoped,
                is_recurring=is_recurring,
                frequency_days=frequency_days if is_recurring else None,
                valid_from=valid_from,
                valid_until=valid_until,
                is_active=True,
                created_by=created_by,
            )
            policy.filters = [SurchargeFilter(kind=k, value=v) for k, v in normalized_filters]
            self.db.add(policy)
            self.db.flush()
            AuditService.log(
                self.db,
                "surcharge_policy",
                policy.id,
                "create",
                actor_id=created_by,
                changes={"kind": kind, "value": policy.value, "filters": normalized_filters},
            )
        logger.info("Surcharge policy %s '%s' created", policy.id, name)

        report = None
        if apply_now and policy.is_valid_on(today):
            report = await self.apply_policy(policy, today, applied_by=created_by)
        return policy, report

    def update_policy(
        self,
        policy_id: int,
        *,
        name: str | None = None,
        description: str | None = None,
        value: Decimal | None = None,
        min_debt: Decimal | None = None,
        categories: Iterable[str] | None = None,
        filters: Iterable[tuple[FilterKind, Any]] | None = None,
        is_recurring: bool | None = None,
        frequency_days: int | None = None,
        valid_from: date | None = None,
        valid_until: date | None = None,
        actor_id: int | None = None,
    ) -> SurchargePolicy:
        """Edit a policy; filters, when given, replace the existing ones."""
        policy = self.get_policy(policy_id)
        if name is not None and not name.strip():
            raise ValidationError("Policy name is required")
        new_recurring = policy.is_recurring if is_recurring is None else is_recurring
        new_frequency = frequency_days if frequency_days is not None else policy.frequency_days
        new_from = valid_from or policy.valid_from
        new_until = valid_until if valid_until is not None else policy.valid_until
        scoped = self._validate_policy_fields(
            policy.kind,
            value if value is not None else policy.value,
            min_debt if min_debt is not None else policy.min_debt,
            new_recurring,
            new_frequency,
            new_from,
            new_until,
            categories if categories is not None else policy.categories,
        )
        normalized_filters = (
            [validate_filter(k, v) for k, v in filters] if filters is not None else None
        )

        with atomic(self.db, f"update surcharge policy {policy.id}"):
            if name is not None:
                policy.name = name.strip()
            if description is not None:
                policy.description = description
            if value is not None:
                policy.value = to_money(value)
            if min_debt is not None:
                policy.min_debt = to_money(min_debt)
            policy.categories = scoped
            policy.is_recurring = new_recurring
            policy.frequency_days = new_frequency if new_recurring else None
            policy.valid_from = new_from
            policy.valid_until = new_until
            if normalized_filters is not None:
                policy.filters = [SurchargeFilter(kind=k, value=v) for k, v in normalized_filters]
            AuditService.log(self.db, "surcharge_policy", policy.id, "update", actor_id=actor_id)
        return policy

    def set_policy_active(
        self, policy_id: int, is_active: bool, actor_id: int | None = None
    ) -> SurchargePolicy:
        policy = self.get_policy(policy_id)
        with atomic(self.db, f"toggle surcharge policy {policy.id}"):
            policy.is_active = is_active
            AuditService.log(
                self.db,
                "surcharge_policy",
                policy.id,
                "activate" if is_active else "deactivate",
                actor_id=actor_id,
            )
        logger.info("Surcharge policy %s %s", policy.id, "activated" if is_active else "deactivated")
        return policy

    def delete_policy(self, policy_id: int, actor_id: int | None = None) -> None:
        """Delete a policy that never produced an application.

        Raises:
            ConflictError: If the policy already has applications (deactivate it instead)
        """
        policy = self.get_policy(policy_id)
        applied = self.db.execute(
            select(func.count(SurchargeApplication.id)).where(
                SurchargeApplication.policy_id == policy.id
            )
        ).scalar_one()
        if applied:
            raise ConflictError(
                f"Policy {policy.id} has {applied} application(s); deactivate it instead",
                code="policy_has_applications",
            )
        with atomic(self.db, f"delete surcharge policy {policy.id}"):
            AuditService.log(self.db, "surcharge_policy", policy.id, "delete", actor_id=actor_id)
            self.db.delete(policy)

    def policy_stats(self, policy_id: int) -> dict[str, Any]:
        policy = self.get_policy(policy_id)
        count, total, instances, last = self.db.execute(
            select(
                func.count(SurchargeApplication.id),
                func.coalesce(func.sum(SurchargeApplication.amount), 0),
                func.count(func.distinct(SurchargeApplication.instance_id)),
                func.max(SurchargeApplication.applied_on),
            ).where(SurchargeApplication.policy_id == policy.id)
        ).one()
        return {
            "policy_id": policy.id,
            "applications": count,
            "total_amount": to_money(total),
            "instances": instances,
            "last_applied_on": last,
        }

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    def last_application_on(self, policy_id: int, instance_id: int | None = None) -> date | None:
        stmt = select(func.max(SurchargeApplication.applied_on)).where(
            SurchargeApplication.policy_id == policy_id
        )
        if instance_id is not None:
            stmt = stmt.where(SurchargeApplication.instance_id == instance_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def policy_is_due(self, policy: SurchargePolicy, today: date) -> bool:
        """Policy should run today: active, in its window and, if recurring, out of its quiet period."""
        if not policy.is_active or not policy.is_valid_on(today):
            return False
        if not policy.is_recurring:
            return True
        last = self.last_application_on(policy.id)
        return last is None or (today - last).days >= (policy.frequency_days or 0)

    def due_policies(self, today: date) -> list[SurchargePolicy]:
        return [p for p in self.list_policies(active_only=True) if self.policy_is_due(p, today)]

    def already_applied(self, policy: SurchargePolicy, instance_id: int, today: date) -> bool:
        """The policy already charged this instance within its current window."""
        last = self.last_application_on(policy.id, instance_id)
        if last is None:
            return False
        if not policy.is_recurring:
            return True
        return (today - last).days < (policy.frequency_days or 0)

    def candidate_instances(self, policy: SurchargePolicy) -> list[ChargeInstance]:
        stmt = select(ChargeInstance).where(
            ChargeInstance.status == InstanceStatus.OVERDUE,
            ChargeInstance.balance > to_money(policy.min_debt),
        )
        return list(self.db.execute(stmt.order_by(ChargeInstance.id)).scalars().all())

    def _apply_to_instance(
        self,
        policy: SurchargePolicy,
        instance_id: int,
        today: date,
        applied_by: int | None,
        outbox: Outbox,
    ) -> SurchargeApplication | None:
        """Apply a policy to one instance inside the caller's transaction."""
        instance = self.db.get(ChargeInstance, instance_id, populate_existing=True)
        if instance is None or not is_eligible(policy, instance, today):
            return None
        amount = compute_surcharge(policy, instance)
        if amount <= ZERO:
            return None

        apply_surcharge(instance, amount)
        application = SurchargeApplication(
            policy_id=policy.id,
            instance_id=instance.id,
            amount=amount,
            applied_on=today,
            reason=f"{policy.name}: {days_overdue(instance, today)} day(s) overdue",
            applied_by=applied_by,
        )
        self.db.add(application)
        self.db.flush()
        outbox.add(
            self.directory.owner_of_record(instance.unit_id),
            t("surcharges.applied_title", policy=policy.name),
            t(
                "surcharges.applied_message",
                amount=format_amount(amount),
                name=instance.template.name,
                unit=instance.unit.label,
                balance=format_amount(instance.balance),
            ),
            type="surcharge_applied",
            instance_id=instance.id,
            policy_id=policy.id,
        )
        return application

    async def apply_policy(
        self,
        policy: SurchargePolicy,
        today: date | None = None,
        applied_by: int | None = None,
    ) -> BatchReport:
        """Apply a policy to every eligible instance, one transaction per instance."""
        today = today or date.today()
        if applied_by is None:
            applied_by = get_settings().system_user_id
        report = BatchReport(job=f"surcharge:{policy.id}", run_date=today)
        outbox = Outbox()
        policy_id, policy_name = policy.id, policy.name

        for instance in self.candidate_instances(policy):
            instance_id = instance.id
            try:
                if self.already_applied(policy, instance_id, today):
                    report.skipped += 1
                    continue
                with atomic(self.db, f"surcharge {policy_name} on instance {instance_id}"):
                    application = self._apply_to_instance(
                        policy, instance_id, today, applied_by, outbox
                    )
            except Exception as e:
                self.db.rollback()
                report.add_failure(instance_id, f"{policy_name} / instance {instance_id}", e)
                logger.error(
                    "Surcharge policy %s failed on instance %s: %s",
                    policy_id,
                    instance_id,
                    e,
                    exc_info=not isinstance(e, LedgerError),
                )
                continue
            if application is None:
                report.skipped += 1
            else:
                report.add_success(f"{policy_name}: instance {instance_id} +{application.amount}")

        logger.info(
            "Surcharge policy %s applied to %d instance(s), %d skipped, %d failed",
            policy_id,
            report.success_count,
            report.skipped,
            report.failure_count,
        )
        await outbox.dispatch(self.notifier)
        return report

    def applications_on(self, day: date) -> int:
        stmt = select(func.count(SurchargeApplication.id)).where(
            SurchargeApplication.applied_on == day
        )
        return self.db.execute(stmt).scalar_one()


__all__ = [
    "SurchargeService",
    "FILTER_MATCHERS",
    "filter_matches",
    "validate_filter",
    "is_eligible",
    "compute_surcharge",
    "days_overdue",
]
