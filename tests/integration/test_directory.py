"""Integration tests for directory lookups, audit entries and receipt documents."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from hoa_ledger.models import (
    AuditLog,
    ChargeScope,
    PaymentMethod,
    Resident,
    SurchargeKind,
    User,
)
from hoa_ledger.services.audit_service import AuditService
from hoa_ledger.services.charge_service import ChargeService
from hoa_ledger.services.directory_service import CommunityDirectory
from hoa_ledger.services.errors import NotFoundError, ValidationError
from hoa_ledger.services.receipt_service import ReceiptService


@pytest.mark.integration
class TestCommunityDirectory:
    def test_owner_of_record_prefers_primary(self, db_session, community):
        unit = community.units[0]
        tenant = User(name="Inquilino", telegram_id="555")
        db_session.add_all([tenant, Resident(user=tenant, unit=unit, is_primary=False)])
        db_session.commit()
        directory = CommunityDirectory(db_session)

        assert directory.owner_of_record(unit.id) == community.residents[0].id
        assert directory.resident_user_ids(unit.id) == [community.residents[0].id, tenant.id]

    def test_owner_falls_back_to_first_active_resident(self, db_session, community):
        unit = community.units[0]
        first = User(name="Inquilino A", telegram_id="556")
        second = User(name="Inquilino B", telegram_id="557")
        db_session.add_all([first, second])
        db_session.flush()
        db_session.add_all([
            Resident(user=first, unit=unit, is_primary=False),
            Resident(user=second, unit=unit, is_primary=False),
        ])
        community.residents[0].is_active = False
        db_session.commit()

        directory = CommunityDirectory(db_session)

        assert directory.owner_of_record(unit.id) == first.id
        assert not directory.is_active_resident(community.residents[0].id, unit.id)

    def test_empty_unit_has_no_owner(self, db_session, make_units):
        [unit] = make_units(1)
        assert CommunityDirectory(db_session).owner_of_record(unit.id) is None

    def test_explicit_unit_list_errors(self, db_session, community):
        directory = CommunityDirectory(db_session)
        community.units[2].is_active = False
        db_session.commit()

        with pytest.raises(ValidationError) as exc:
            directory.units_by_ids([community.units[0].id, 999])
        assert exc.value.code == "unknown_units"
        with pytest.raises(ValidationError) as exc:
            directory.units_by_ids([community.units[2].id])
        assert exc.value.code == "inactive_units"
        with pytest.raises(ValidationError) as exc:
            directory.units_for_streets([999])
        assert exc.value.code == "unknown_streets"

    def test_street_units_skip_inactive(self, db_session, community):
        community.units[1].is_active = False
        db_session.commit()

        units = CommunityDirectory(db_session).units_for_streets([community.streets[0].id])

        assert [u.label for u in units] == ["Roble 1", "Roble 3"]

    def test_lookups(self, db_session, community):
        directory = CommunityDirectory(db_session)
        assert [u.id for u in directory.administrators()] == [community.admin.id]
        assert directory.telegram_chat_id(community.residents[0].id) == "100"
        assert directory.telegram_chat_id(999) is None
        with pytest.raises(NotFoundError):
            directory.get_unit(999)


@pytest.mark.integration
class TestAuditService:
    def test_changes_are_stored_as_json(self, db_session, community):
        AuditService.log(
            db_session,
            "surcharge_policy",
            1,
            "create",
            actor_id=community.admin.id,
            changes={
                "kind": SurchargeKind.FIXED,
                "value": Decimal("25.00"),
                "filters": [("a", 1)],
            },
        )
        db_session.commit()

        entry = db_session.execute(select(AuditLog)).scalar_one()
        assert entry.changes == {"kind": "fixed", "value": "25.00", "filters": [["a", 1]]}
        assert entry.actor_id == community.admin.id


@pytest.mark.integration
class TestReceiptDocument:
    @pytest.mark.asyncio
    async def test_document_lists_allocations_and_credit(
        self, db_session, community, receipt_generator
    ):
        unit = community.units[0]
        await ChargeService(db_session).issue_charge(
            "Mantenimiento Enero", Decimal("400"), date(2024, 1, 31), issue_date=date(2024, 1, 1),
            scope=ChargeScope.UNITS, scope_ids=[unit.id],
        )

        receipt = await ReceiptService(db_session, None, receipt_generator).record_manual_payment(
            unit.id, Decimal("450"), date(2024, 1, 20), PaymentMethod.TRANSFER,
            community.admin.id, reference_number="REF-77",
        )

        text = (receipt_generator.output_dir / receipt.document_filename).read_text(
            encoding="utf-8"
        )
        assert receipt.folio in text
        assert "Roble 1" in text
        assert "Mantenimiento Enero" in text
        assert "REF-77" in text
        assert "Residente 1" in text
