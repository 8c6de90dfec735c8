"""Money arithmetic for charge instances.

All derived monetary fields of a ChargeInstance are produced here, by explicit
calls from the mutating service, never as a save side effect:

- compute_final_amount: gross amount minus fixed and percentage discounts
- compute_balance: final amount plus surcharges minus approved payments
- refresh_status: paid exactly when the balance reaches zero
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from hoa_ledger.models.charge_instance import ChargeInstance, InstanceStatus
from hoa_ledger.services.errors import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
# Tolerance used when comparing sums of allocations against receipt totals
MONEY_EPSILON = Decimal("0.01")


def to_money(value: Decimal | int | float | str | None) -> Decimal:
    """Convert a value to a Decimal rounded half-up to cents."""
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def percentage_of(base: Decimal, percentage: Decimal | int | float | str) -> Decimal:
    """Return base * percentage / 100 rounded to cents."""
    return to_money(to_money(base) * Decimal(str(percentage)) / Decimal("100"))


def compute_final_amount(
    amount: Decimal,
    fixed_discount: Decimal = ZERO,
    discount_percentage: Decimal = ZERO,
) -> Decimal:
    """Amount due after discounts, floored at zero.

    final = max(0, amount - fixed_discount - amount * discount_percentage / 100)
    """
    gross = to_money(amount)
    reduction = to_money(fixed_discount) + percentage_of(gross, discount_percentage)
    return max(ZERO, to_money(gross - reduction))


def compute_balance(
    final_amount: Decimal,
    surcharge_amount: Decimal = ZERO,
    paid_amount: Decimal = ZERO,
) -> Decimal:
    """Outstanding balance. May be negative: callers reject such states."""
    return to_money(to_money(final_amount) + to_money(surcharge_amount) - to_money(paid_amount))


def amounts_match(left: Decimal, right: Decimal) -> bool:
    """Two money amounts are equal within MONEY_EPSILON."""
    return abs(to_money(left) - to_money(right)) <= MONEY_EPSILON


def refresh_status(instance: ChargeInstance, now: datetime | None = None) -> None:
    """Align status with the balance: paid when settled, open otherwise."""
    if instance.status == InstanceStatus.CANCELLED:
        return
    if instance.balance <= ZERO:
        if instance.status != InstanceStatus.PAID:
            instance.status = InstanceStatus.PAID
            instance.paid_at = now or datetime.now(timezone.utc)
    elif instance.status == InstanceStatus.PAID:
        instance.status = InstanceStatus.PENDING
        instance.paid_at = None


def recalculate(instance: ChargeInstance, now: datetime | None = None) -> None:
    """Recompute final amount, balance and status of an instance in place.

    Raises:
        ValidationError: If the resulting balance would be negative
    """
    final_amount = compute_final_amount(
        instance.amount, instance.discount_amount, instance.discount_percentage
    )
    balance = compute_balance(final_amount, instance.surcharge_amount, instance.paid_amount)
    if balance < ZERO:
        raise ValidationError(
            f"Charge instance {instance.id} balance would become negative ({balance})",
            code="negative_balance",
        )
    instance.final_amount = final_amount
    instance.balance = balance
    refresh_status(instance, now)


def apply_payment(instance: ChargeInstance, amount: Decimal, now: datetime | None = None) -> None:
    """Subtract an approved payment from an instance.

    Raises:
        ValidationError: If the instance is closed or the amount exceeds its balance
    """
    amount = to_money(amount)
    if amount <= ZERO:
        raise ValidationError("Payment amount must be positive")
    if not instance.is_open:
        raise ValidationError(
            f"Charge instance {instance.id} is {instance.status.value} and cannot receive payments",
            code="instance_closed",
        )
    if amount > to_money(instance.balance):
        raise ValidationError(
            f"Allocation {amount} exceeds balance {instance.balance} of charge instance {instance.id}",
            code="allocation_exceeds_balance",
        )
    instance.paid_amount = to_money(instance.paid_amount) + amount
    recalculate(instance, now)


def apply_surcharge(instance: ChargeInstance, amount: Decimal) -> None:
    """Add a late fee to an instance."""
    amount = to_money(amount)
    if amount <= ZERO:
        raise ValidationError("Surcharge amount must be positive")
    instance.surcharge_amount = to_money(instance.surcharge_amount) + amount
    recalculate(instance)


__all__ = [
    "CENT",
    "ZERO",
    "MONEY_EPSILON",
    "to_money",
    "percentage_of",
    "compute_final_amount",
    "compute_balance",
    "amounts_match",
    "refresh_status",
    "recalculate",
    "apply_payment",
    "apply_surcharge",
]
