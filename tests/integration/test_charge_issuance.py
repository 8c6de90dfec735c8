"""Integration tests for charge issuance, discounts and template administration."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from hoa_ledger.models import (
    AuditLog,
    ChargeCategory,
    ChargeInstance,
    ChargeScope,
    ChargeTemplate,
    DiscountType,
    InstanceStatus,
    PaymentMethod,
    RecurrencePeriod,
    TemplateStatus,
)
from hoa_ledger.services.charge_service import ChargeService, DiscountSpec
from hoa_ledger.services.errors import ConflictError, ValidationError
from hoa_ledger.services.receipt_service import ReceiptService

JAN_1 = date(2024, 1, 1)
JAN_31 = date(2024, 1, 31)


def count(db_session, model) -> int:
    return db_session.execute(select(func.count(model.id))).scalar_one()


@pytest.mark.integration
class TestIssueCharge:
    @pytest.mark.asyncio
    async def test_scope_all_fans_out_to_every_active_unit(self, db_session, make_units):
        """Mantenimiento Enero, 500, scope all, 10 units: ten instances of 500."""
        make_units(10)
        service = ChargeService(db_session)

        template = await service.issue_charge(
            "Mantenimiento Enero", Decimal("500"), JAN_31, issue_date=JAN_1
        )

        assert template.status == TemplateStatus.ACTIVE
        assert len(template.instances) == 10
        for instance in template.instances:
            assert instance.final_amount == Decimal("500.00")
            assert instance.balance == Decimal("500.00")
            assert instance.status == InstanceStatus.PENDING
            assert instance.due_date == JAN_31

    @pytest.mark.asyncio
    async def test_inactive_units_are_not_charged(self, db_session, make_units):
        units = make_units(3)
        units[1].is_active = False
        db_session.commit()

        template = await ChargeService(db_session).issue_charge(
            "Mantenimiento", Decimal("300"), JAN_31, issue_date=JAN_1
        )

        assert sorted(i.unit_id for i in template.instances) == [units[0].id, units[2].id]

    @pytest.mark.asyncio
    async def test_scope_units(self, db_session, community):
        chosen = [community.units[0].id, community.units[3].id]
        template = await ChargeService(db_session).issue_charge(
            "Multa", Decimal("150"), JAN_31, issue_date=JAN_1,
            scope=ChargeScope.UNITS, scope_ids=chosen,
        )
        assert sorted(i.unit_id for i in template.instances) == sorted(chosen)
        assert template.scope_ids == sorted(chosen)

    @pytest.mark.asyncio
    async def test_scope_streets(self, db_session, community):
        roble = community.streets[0]
        template = await ChargeService(db_session).issue_charge(
            "Pintura de fachada", Decimal("800"), JAN_31, issue_date=JAN_1,
            scope=ChargeScope.STREETS, scope_ids=[roble.id],
        )
        assert len(template.instances) == 3
        assert {i.unit.street_id for i in template.instances} == {roble.id}

    @pytest.mark.asyncio
    async def test_unknown_scope_ids_create_nothing(self, db_session, community):
        with pytest.raises(ValidationError) as exc:
            await ChargeService(db_session).issue_charge(
                "Multa", Decimal("150"), JAN_31, issue_date=JAN_1,
                scope=ChargeScope.UNITS, scope_ids=[community.units[0].id, 999],
            )
        assert exc.value.code == "unknown_units"
        assert count(db_session, ChargeTemplate) == 0
        assert count(db_session, ChargeInstance) == 0

    @pytest.mark.asyncio
    async def test_empty_scope_rejected(self, db_session, community):
        with pytest.raises(ValidationError):
            await ChargeService(db_session).issue_charge(
                "Multa", Decimal("150"), JAN_31, issue_date=JAN_1,
                scope=ChargeScope.STREETS, scope_ids=[],
            )

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "name,amount,due",
        [
            ("", Decimal("100"), JAN_31),
            ("Cuota", Decimal("0"), JAN_31),
            ("Cuota", Decimal("100"), date(2023, 12, 31)),
        ],
    )
    async def test_invalid_fields_rejected(self, db_session, community, name, amount, due):
        with pytest.raises(ValidationError):
            await ChargeService(db_session).issue_charge(name, amount, due, issue_date=JAN_1)
        assert count(db_session, ChargeTemplate) == 0

    @pytest.mark.asyncio
    async def test_residents_are_notified_after_commit(self, db_session, community, notifier):
        await ChargeService(db_session, notifier).issue_charge(
            "Mantenimiento", Decimal("500"), JAN_31, issue_date=JAN_1
        )
        issued = notifier.of_type("charge_issued")
        assert sorted(item[0] for item in issued) == sorted(u.id for u in community.residents)
        assert community.admin.id not in [item[0] for item in issued]

    @pytest.mark.asyncio
    async def test_notification_failure_keeps_the_charge(
        self, db_session, community, failing_notifier
    ):
        template = await ChargeService(db_session, failing_notifier).issue_charge(
            "Mantenimiento", Decimal("500"), JAN_31, issue_date=JAN_1
        )
        assert template.id is not None
        assert count(db_session, ChargeInstance) == 4

    @pytest.mark.asyncio
    async def test_creation_is_audited(self, db_session, community):
        template = await ChargeService(db_session).issue_charge(
            "Mantenimiento", Decimal("500"), JAN_31, issue_date=JAN_1,
            created_by=community.admin.id,
        )
        audit = db_session.execute(select(AuditLog)).scalar_one()
        assert (audit.entity_type, audit.entity_id, audit.action) == (
            "charge_template", template.id, "create"
        )
        assert audit.changes["units"] == 4


@pytest.mark.integration
class TestDiscounts:
    @pytest.mark.asyncio
    async def test_discounts_at_creation(self, db_session, community):
        template = await ChargeService(db_session).issue_charge(
            "Mantenimiento", Decimal("500"), JAN_31, issue_date=JAN_1,
            scope=ChargeScope.UNITS, scope_ids=[community.units[0].id],
            discounts=[
                DiscountSpec(DiscountType.FIXED, Decimal("50"), "Pronto pago"),
                DiscountSpec(DiscountType.PERCENTAGE, Decimal("10"), "Adulto mayor"),
            ],
        )
        instance = template.instances[0]
        assert instance.final_amount == Decimal("400.00")
        assert instance.balance == Decimal("400.00")
        assert len(instance.discounts) == 2

    @pytest.mark.asyncio
    async def test_discount_after_creation(self, db_session, community):
        service = ChargeService(db_session)
        template = await service.issue_charge(
            "Mantenimiento", Decimal("500"), JAN_31, issue_date=JAN_1
        )
        instance = template.instances[0]

        service.apply_discount(instance.id, DiscountType.PERCENTAGE, Decimal("20"), "Convenio")

        db_session.expire_all()
        instance = service.get_instance(instance.id)
        assert instance.final_amount == Decimal("400.00")
        assert instance.balance == Decimal("400.00")
        assert instance.discount_percentage == Decimal("20.00")

    @pytest.mark.asyncio
    async def test_percentages_above_100_rejected(self, db_session, community):
        service = ChargeService(db_session)
        template = await service.issue_charge(
            "Mantenimiento", Decimal("500"), JAN_31, issue_date=JAN_1,
            discounts=[DiscountSpec(DiscountType.PERCENTAGE, Decimal("60"))],
        )
        with pytest.raises(ValidationError):
            service.apply_discount(
                template.instances[0].id, DiscountType.PERCENTAGE, Decimal("50")
            )

    @pytest.mark.asyncio
    async def test_discount_cannot_make_balance_negative(
        self, db_session, community, receipt_generator
    ):
        service = ChargeService(db_session)
        template = await service.issue_charge(
            "Mantenimiento", Decimal("500"), JAN_31, issue_date=JAN_1,
            scope=ChargeScope.UNITS, scope_ids=[community.units[0].id],
        )
        instance = template.instances[0]
        await ReceiptService(db_session, None, receipt_generator).record_manual_payment(
            community.units[0].id, Decimal("450"), JAN_31, PaymentMethod.CASH,
            community.admin.id,
        )

        with pytest.raises(ValidationError) as exc:
            service.apply_discount(instance.id, DiscountType.FIXED, Decimal("100"))

        assert exc.value.code == "negative_balance"
        db_session.expire_all()
        instance = service.get_instance(instance.id)
        assert instance.balance == Decimal("50.00")
        assert instance.discounts == []


@pytest.mark.integration
class TestTemplateAdministration:
    @pytest.mark.asyncio
    async def test_listing_filters(self, db_session, community):
        service = ChargeService(db_session)
        monthly = await service.issue_charge(
            "Mantenimiento", Decimal("500"), JAN_31, issue_date=JAN_1,
            recurrence=RecurrencePeriod.MONTHLY,
        )
        fine = await service.issue_charge(
            "Multa", Decimal("300"), date(2024, 2, 15), issue_date=JAN_1,
            category=ChargeCategory.FINE,
            scope=ChargeScope.UNITS, scope_ids=[community.units[0].id],
        )

        assert [t.id for t in service.list_templates()] == [fine.id, monthly.id]
        assert [t.id for t in service.list_templates(category=ChargeCategory.FINE)] == [fine.id]
        assert [
            t.id for t in service.list_templates(recurrence=RecurrencePeriod.MONTHLY)
        ] == [monthly.id]
        assert service.list_templates(status=TemplateStatus.CANCELLED) == []

        unit_id = community.units[0].id
        instances = service.unit_instances(unit_id)
        assert [i.template_id for i in instances] == [monthly.id, fine.id]
        service.cancel_template(fine.id)
        assert [i.template_id for i in service.unit_instances(unit_id, open_only=True)] == [
            monthly.id
        ]

    @pytest.mark.asyncio
    async def test_amount_update_propagates_to_instances(self, db_session, community):
        service = ChargeService(db_session)
        template = await service.issue_charge(
            "Mantenimiento", Decimal("500"), JAN_31, issue_date=JAN_1
        )

        service.update_template(template.id, amount=Decimal("550"), actor_id=community.admin.id)

        db_session.expire_all()
        assert {i.balance for i in service.get_template(template.id).instances} == {
            Decimal("550.00")
        }

    @pytest.mark.asyncio
    async def test_amount_update_blocked_after_payment(
        self, db_session, community, receipt_generator
    ):
        service = ChargeService(db_session)
        template = await service.issue_charge(
            "Mantenimiento", Decimal("500"), JAN_31, issue_date=JAN_1
        )
        await ReceiptService(db_session, None, receipt_generator).record_manual_payment(
            community.units[0].id, Decimal("100"), JAN_31, PaymentMethod.CASH,
            community.admin.id,
        )
        with pytest.raises(ConflictError):
            service.update_template(template.id, amount=Decimal("550"))

    @pytest.mark.asyncio
    async def test_due_date_update_moves_instances(self, db_session, community):
        service = ChargeService(db_session)
        template = await service.issue_charge(
            "Mantenimiento", Decimal("500"), JAN_31, issue_date=JAN_1
        )
        service.update_template(template.id, due_date=date(2024, 2, 15))
        db_session.expire_all()
        assert {i.due_date for i in service.get_template(template.id).instances} == {
            date(2024, 2, 15)
        }

    @pytest.mark.asyncio
    async def test_cancel_closes_open_instances(self, db_session, community):
        service = ChargeService(db_session)
        template = await service.issue_charge(
            "Mantenimiento", Decimal("500"), JAN_31, issue_date=JAN_1
        )

        service.cancel_template(template.id, actor_id=community.admin.id)

        db_session.expire_all()
        template = service.get_template(template.id)
        assert template.status == TemplateStatus.CANCELLED
        assert {i.status for i in template.instances} == {InstanceStatus.CANCELLED}
        assert count(db_session, ChargeInstance) == 4

    @pytest.mark.asyncio
    async def test_cancel_with_payments_conflicts(self, db_session, community, receipt_generator):
        service = ChargeService(db_session)
        template = await service.issue_charge(
            "Mantenimiento", Decimal("500"), JAN_31, issue_date=JAN_1
        )
        await ReceiptService(db_session, None, receipt_generator).record_manual_payment(
            community.units[2].id, Decimal("500"), JAN_31, PaymentMethod.TRANSFER,
            community.admin.id,
        )

        with pytest.raises(ConflictError) as exc:
            service.cancel_template(template.id)

        assert exc.value.code == "template_has_payments"
        db_session.expire_all()
        assert service.get_template(template.id).status == TemplateStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_mark_overdue(self, db_session, community):
        service = ChargeService(db_session)
        template = await service.issue_charge(
            "Mantenimiento", Decimal("500"), JAN_31, issue_date=JAN_1
        )

        assert service.mark_overdue(JAN_31) == 0
        assert service.mark_overdue(date(2024, 2, 1)) == 4
        assert service.mark_overdue(date(2024, 2, 2)) == 0
        db_session.expire_all()
        assert {i.status for i in service.get_template(template.id).instances} == {
            InstanceStatus.OVERDUE
        }

    @pytest.mark.asyncio
    async def test_template_summary(self, db_session, community, receipt_generator):
        service = ChargeService(db_session)
        template = await service.issue_charge(
            "Mantenimiento", Decimal("500"), JAN_31, issue_date=JAN_1
        )
        await ReceiptService(db_session, None, receipt_generator).record_manual_payment(
            community.units[0].id, Decimal("500"), JAN_31, PaymentMethod.CASH,
            community.admin.id,
        )

        summary = service.template_summary(template.id)

        assert summary.instance_count == 4
        assert summary.total_billed == Decimal("2000.00")
        assert summary.total_paid == Decimal("500.00")
        assert summary.total_outstanding == Decimal("1500.00")
        assert summary.by_status == {"paid": 1, "pending": 3}

    @pytest.mark.asyncio
    async def test_reminders_go_to_units_with_balance(
        self, db_session, community, notifier, receipt_generator
    ):
        service = ChargeService(db_session, notifier)
        template = await service.issue_charge(
            "Mantenimiento", Decimal("500"), JAN_31, issue_date=JAN_1
        )
        await ReceiptService(db_session, None, receipt_generator).record_manual_payment(
            community.units[0].id, Decimal("500"), JAN_31, PaymentMethod.CASH,
            community.admin.id,
        )

        delivered = await service.notify_template(template.id)

        assert delivered == 3
        reminded = {item[0] for item in notifier.of_type("charge_reminder")}
        assert community.residents[0].id not in reminded
