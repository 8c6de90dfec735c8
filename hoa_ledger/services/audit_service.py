"""Audit service for logging administrative ledger actions."""

from enum import Enum
from typing import Any

from sqlalchemy.orm import Session

from hoa_ledger.models.audit_log import AuditLog


class AuditService:
    """Service for audit log operations."""

    @staticmethod
    def log(
        db: Session,
        entity_type: str,
        entity_id: int,
        action: str,
        actor_id: int | None = None,
        changes: dict[str, Any] | None = None,
    ) -> AuditLog:
        """Add an audit log entry to the current transaction.

        Args:
            db: Database session
            entity_type: Type of entity ("charge_template", "payment_receipt", etc.)
            entity_id: Primary key of the entity
            action: Action performed ("create", "approve", etc.)
            actor_id: User (admin) who performed the action (optional)
            changes: Optional JSON snapshot of changed fields; Decimals are stored as strings

        Returns:
            Created AuditLog object
        """
        audit = AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            changes=_jsonable(changes) if changes is not None else None,
        )
        db.add(audit)
        return audit


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


__all__ = ["AuditService"]
