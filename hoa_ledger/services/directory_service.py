"""Read-only lookups over the community directory (streets, units, residents)."""

from sqlalchemy import select
from sqlalchemy.orm import Session

from hoa_ledger.models.resident import Resident
from hoa_ledger.models.street import Street
from hoa_ledger.models.unit import Unit
from hoa_ledger.models.user import User
from hoa_ledger.services.errors import NotFoundError, ValidationError


class CommunityDirectory:
    """Unit and resident queries used by the ledger services.

    Owner of record: the unit's primary active resident; when no active
    resident is flagged primary, the active resident registered first
    (lowest resident id). Only users that are themselves active count.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_unit(self, unit_id: int) -> Unit:
        unit = self.db.get(Unit, unit_id)
        if unit is None:
            raise NotFoundError("Unit", unit_id)
        return unit

    def active_units(self) -> list[Unit]:
        """Every active unit, ordered by id."""
        stmt = select(Unit).where(Unit.is_active.is_(True)).order_by(Unit.id)
        return list(self.db.execute(stmt).scalars().all())

    def units_by_ids(self, unit_ids: list[int]) -> list[Unit]:
        """Resolve an explicit unit list.

        Raises:
            ValidationError: If any id is unknown or refers to an inactive unit
        """
        wanted = sorted(set(unit_ids))
        if not wanted:
            raise ValidationError("Unit list is empty", code="empty_scope")
        units = (
            self.db.execute(select(Unit).where(Unit.id.in_(wanted)).order_by(Unit.id))
            .scalars()
            .all()
        )
        found = {unit.id for unit in units}
        unknown = [unit_id for unit_id in wanted if unit_id not in found]
        if unknown:
            raise ValidationError(f"Unknown unit ids: {unknown}", code="unknown_units")
        inactive = [unit.id for unit in units if not unit.is_active]
        if inactive:
            raise ValidationError(f"Inactive unit ids: {inactive}", code="inactive_units")
        return list(units)

    def units_for_streets(self, street_ids: list[int]) -> list[Unit]:
        """Every active unit of the given streets/towers.

        Raises:
            ValidationError: If any street id is unknown
        """
        wanted = sorted(set(street_ids))
        if not wanted:
            raise ValidationError("Street list is empty", code="empty_scope")
        found = set(
            self.db.execute(select(Street.id).where(Street.id.in_(wanted))).scalars().all()
        )
        unknown = [street_id for street_id in wanted if street_id not in found]
        if unknown:
            raise ValidationError(f"Unknown street ids: {unknown}", code="unknown_streets")
        stmt = (
            select(Unit)
            .where(Unit.street_id.in_(wanted), Unit.is_active.is_(True))
            .order_by(Unit.id)
        )
        return list(self.db.execute(stmt).scalars().all())

    def active_residents(self, unit_id: int) -> list[Resident]:
        """Active residents of a unit whose user is active, primary first."""
        stmt = (
            select(Resident)
            .join(User, Resident.user_id == User.id)
            .where(
                Resident.unit_id == unit_id,
                Resident.is_active.is_(True),
                User.is_active.is_(True),
            )
            .order_by(Resident.is_primary.desc(), Resident.id)
        )
        return list(self.db.execute(stmt).scalars().all())

    def resident_user_ids(self, unit_id: int) -> list[int]:
        return [resident.user_id for resident in self.active_residents(unit_id)]

    def owner_of_record(self, unit_id: int) -> int | None:
        """User id of the unit's owner of record, or None for an empty unit."""
        residents = self.active_residents(unit_id)
        return residents[0].user_id if residents else None

    def is_active_resident(self, user_id: int, unit_id: int) -> bool:
        return user_id in self.resident_user_ids(unit_id)

    def administrators(self) -> list[User]:
        stmt = (
            select(User)
            .where(User.is_administrator.is_(True), User.is_active.is_(True))
            .order_by(User.id)
        )
        return list(self.db.execute(stmt).scalars().all())

    def telegram_chat_id(self, user_id: int) -> str | None:
        user = self.db.get(User, user_id)
        if user is None or not user.is_active:
            return None
        return user.telegram_id


__all__ = ["CommunityDirectory"]
