"""Unit tests for charge instance money arithmetic."""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from hoa_ledger.models.charge_instance import InstanceStatus
from hoa_ledger.services.amounts import (
    amounts_match,
    apply_payment,
    apply_surcharge,
    compute_balance,
    compute_final_amount,
    percentage_of,
    recalculate,
    to_money,
)
from hoa_ledger.services.errors import ValidationError


def make_instance(amount="500.00", status=InstanceStatus.PENDING, **overrides):
    """Plain object with the fields the arithmetic reads and writes."""
    fields = {
        "id": 1,
        "amount": Decimal(amount),
        "discount_amount": Decimal("0.00"),
        "discount_percentage": Decimal("0.00"),
        "final_amount": Decimal(amount),
        "surcharge_amount": Decimal("0.00"),
        "paid_amount": Decimal("0.00"),
        "balance": Decimal(amount),
        "status": status,
        "paid_at": None,
    }
    fields.update(overrides)
    instance = SimpleNamespace(**fields)
    instance.is_open = instance.status in (InstanceStatus.PENDING, InstanceStatus.OVERDUE)
    return instance


@pytest.mark.unit
class TestMoney:
    def test_to_money_rounds_half_up(self):
        assert to_money("10.005") == Decimal("10.01")
        assert to_money(Decimal("10.004")) == Decimal("10.00")

    def test_to_money_none_is_zero(self):
        assert to_money(None) == Decimal("0.00")

    def test_percentage_of(self):
        assert percentage_of(Decimal("200"), Decimal("5")) == Decimal("10.00")
        assert percentage_of(Decimal("333.33"), 10) == Decimal("33.33")

    def test_amounts_match_within_one_cent(self):
        assert amounts_match(Decimal("100.00"), Decimal("100.01"))
        assert not amounts_match(Decimal("100.00"), Decimal("100.02"))


@pytest.mark.unit
class TestFinalAmount:
    """final = max(0, amount - fixed - amount * pct / 100)"""

    def test_no_discounts(self):
        assert compute_final_amount(Decimal("500")) == Decimal("500.00")

    def test_fixed_and_percentage(self):
        result = compute_final_amount(Decimal("500"), Decimal("50"), Decimal("10"))
        assert result == Decimal("400.00")

    def test_floored_at_zero(self):
        assert compute_final_amount(Decimal("100"), Decimal("80"), Decimal("50")) == Decimal("0.00")

    def test_full_percentage_discount(self):
        assert compute_final_amount(Decimal("100"), discount_percentage=Decimal("100")) == Decimal(
            "0.00"
        )


@pytest.mark.unit
class TestBalance:
    def test_balance_formula(self):
        assert compute_balance(Decimal("500"), Decimal("25"), Decimal("300")) == Decimal("225.00")

    def test_balance_can_be_negative_for_callers_to_reject(self):
        assert compute_balance(Decimal("100"), Decimal("0"), Decimal("150")) == Decimal("-50.00")


@pytest.mark.unit
class TestRecalculate:
    def test_recalculate_applies_discounts(self):
        instance = make_instance(discount_amount=Decimal("100.00"))
        recalculate(instance)
        assert instance.final_amount == Decimal("400.00")
        assert instance.balance == Decimal("400.00")
        assert instance.status == InstanceStatus.PENDING

    def test_recalculate_rejects_negative_balance(self):
        instance = make_instance(paid_amount=Decimal("500.00"), discount_amount=Decimal("10.00"))
        with pytest.raises(ValidationError) as exc:
            recalculate(instance)
        assert exc.value.code == "negative_balance"
        assert instance.balance == Decimal("500.00")

    def test_zero_balance_flips_to_paid(self):
        instance = make_instance(discount_percentage=Decimal("100.00"))
        recalculate(instance)
        assert instance.balance == Decimal("0.00")
        assert instance.status == InstanceStatus.PAID
        assert instance.paid_at is not None


@pytest.mark.unit
class TestApplyPayment:
    def test_partial_payment(self):
        instance = make_instance()
        apply_payment(instance, Decimal("200"))
        assert instance.paid_amount == Decimal("200.00")
        assert instance.balance == Decimal("300.00")
        assert instance.status == InstanceStatus.PENDING

    def test_exact_payment_marks_paid(self):
        instance = make_instance(status=InstanceStatus.OVERDUE)
        apply_payment(instance, Decimal("500"))
        assert instance.balance == Decimal("0.00")
        assert instance.status == InstanceStatus.PAID

    def test_payment_above_balance_rejected(self):
        instance = make_instance()
        with pytest.raises(ValidationError) as exc:
            apply_payment(instance, Decimal("500.01"))
        assert exc.value.code == "allocation_exceeds_balance"
        assert instance.paid_amount == Decimal("0.00")

    def test_payment_on_closed_instance_rejected(self):
        instance = make_instance(status=InstanceStatus.CANCELLED)
        with pytest.raises(ValidationError) as exc:
            apply_payment(instance, Decimal("10"))
        assert exc.value.code == "instance_closed"

    def test_non_positive_payment_rejected(self):
        with pytest.raises(ValidationError):
            apply_payment(make_instance(), Decimal("0"))


@pytest.mark.unit
class TestApplySurcharge:
    def test_surcharge_increases_balance(self):
        instance = make_instance("200.00", status=InstanceStatus.OVERDUE)
        apply_surcharge(instance, Decimal("10"))
        assert instance.surcharge_amount == Decimal("10.00")
        assert instance.balance == Decimal("210.00")
        assert instance.final_amount == Decimal("200.00")

    def test_non_positive_surcharge_rejected(self):
        with pytest.raises(ValidationError):
            apply_surcharge(make_instance(), Decimal("-1"))
