"""SQLAlchemy base model with common fields and model exports."""

from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

# Base class for all models
Base = declarative_base()


class BaseModel:
    """Base model with common timestamp fields."""

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


# Import models to register them with Base (after Base is defined)
# This must be after Base declaration to avoid circular imports
from hoa_ledger.models.audit_log import AuditLog  # noqa: E402
from hoa_ledger.models.charge_instance import ChargeInstance, InstanceStatus  # noqa: E402
from hoa_ledger.models.charge_template import (  # noqa: E402
    ChargeCategory,
    ChargeScope,
    ChargeTemplate,
    RecurrencePeriod,
    TemplateStatus,
)
from hoa_ledger.models.discount import Discount, DiscountType  # noqa: E402
from hoa_ledger.models.payment_allocation import AllocationKind, PaymentAllocation  # noqa: E402
from hoa_ledger.models.payment_receipt import (  # noqa: E402
    PaymentMethod,
    PaymentReceipt,
    ReceiptSource,
    ReceiptStatus,
)
from hoa_ledger.models.resident import Resident  # noqa: E402
from hoa_ledger.models.street import Street  # noqa: E402
from hoa_ledger.models.surcharge_application import SurchargeApplication  # noqa: E402
from hoa_ledger.models.surcharge_policy import (  # noqa: E402
    FilterKind,
    SurchargeFilter,
    SurchargeKind,
    SurchargePolicy,
)
from hoa_ledger.models.unit import Unit  # noqa: E402
from hoa_ledger.models.unit_credit_balance import UnitCreditBalance  # noqa: E402
from hoa_ledger.models.user import User  # noqa: E402

__all__ = [
    "Base",
    "BaseModel",
    "AuditLog",
    "User",
    "Street",
    "Unit",
    "Resident",
    "ChargeTemplate",
    "ChargeCategory",
    "ChargeScope",
    "RecurrencePeriod",
    "TemplateStatus",
    "ChargeInstance",
    "InstanceStatus",
    "Discount",
    "DiscountType",
    "PaymentReceipt",
    "PaymentMethod",
    "ReceiptSource",
    "ReceiptStatus",
    "PaymentAllocation",
    "AllocationKind",
    "UnitCreditBalance",
    "SurchargePolicy",
    "SurchargeFilter",
    "SurchargeKind",
    "FilterKind",
    "SurchargeApplication",
]
