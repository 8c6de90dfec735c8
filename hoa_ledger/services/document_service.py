"""Official receipt generation.

The approval workflow calls the generator inside its transaction: if the
document cannot be produced, the approval is rolled back. Documents are
staged under a temporary name and only published once the approval has
committed; a rolled back approval discards its staged document.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol, Sequence

from hoa_ledger.models.payment_allocation import PaymentAllocation
from hoa_ledger.models.payment_receipt import PaymentReceipt
from hoa_ledger.services.amounts import ZERO
from hoa_ledger.services.locale_service import format_amount, format_day
from hoa_ledger.services.localizer import t

logger = logging.getLogger(__name__)

STAGING_SUFFIX = ".part"


@dataclass(frozen=True)
class ReceiptDocument:
    url: str
    filename: str
    staged_path: Path | None = None


class ReceiptDocumentGenerator(Protocol):
    """Produces the official artifact of an approved receipt."""

    def generate(
        self, receipt: PaymentReceipt, allocations: Sequence[PaymentAllocation]
    ) -> ReceiptDocument: ...

    def publish(self, document: ReceiptDocument) -> None: ...

    def discard(self, document: ReceiptDocument) -> None: ...


class TextReceiptGenerator:
    """Writes a plain-text official receipt named after the folio."""

    def __init__(self, output_dir: str | Path, base_url: str = "/receipts"):
        self.output_dir = Path(output_dir)
        self.base_url = base_url.rstrip("/")

    def render(self, receipt: PaymentReceipt, allocations: Sequence[PaymentAllocation]) -> str:
        lines = [
            t("documents.title"),
            t("documents.folio", folio=receipt.folio),
            t("documents.unit", unit=receipt.unit.label if receipt.unit else receipt.unit_id),
        ]
        if receipt.resident is not None:
            lines.append(t("documents.resident", resident=receipt.resident.name))
        lines.append(t("documents.payment_date", date=format_day(receipt.payment_date)))
        lines.append(t("documents.method", method=receipt.method.value))
        if receipt.reference_number:
            lines.append(t("documents.reference", reference=receipt.reference_number))

        lines.append("")
        lines.append(t("documents.allocations"))
        for allocation in allocations:
            instance = allocation.instance
            lines.append(
                t(
                    "documents.allocation_line",
                    name=instance.template.name,
                    due_date=format_day(instance.due_date),
                    amount=format_amount(allocation.amount),
                )
            )
        if receipt.credited_amount and receipt.credited_amount > ZERO:
            lines.append(t("documents.credit_line", amount=format_amount(receipt.credited_amount)))

        lines.append("")
        lines.append(t("documents.total", amount=format_amount(receipt.total_amount)))
        reviewed_at = receipt.reviewed_at or datetime.now(timezone.utc)
        lines.append(t("documents.approved_by", date=format_day(reviewed_at.date())))
        return "\n".join(lines) + "\n"

    def generate(
        self, receipt: PaymentReceipt, allocations: Sequence[PaymentAllocation]
    ) -> ReceiptDocument:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        filename = f"{receipt.folio}.txt"
        staged_path = self.output_dir / f"{filename}{STAGING_SUFFIX}"
        staged_path.write_text(self.render(receipt, allocations), encoding="utf-8")
        logger.debug("Official receipt %s staged at %s", receipt.folio, staged_path)
        return ReceiptDocument(
            url=f"{self.base_url}/{filename}", filename=filename, staged_path=staged_path
        )

    def publish(self, document: ReceiptDocument) -> None:
        """Move a staged document to its final name."""
        if document.staged_path is None:
            return
        document.staged_path.replace(self.output_dir / document.filename)
        logger.info("Official receipt %s written to %s", document.filename, self.output_dir)

    def discard(self, document: ReceiptDocument) -> None:
        """Remove a staged document whose approval did not commit."""
        if document.staged_path is None:
            return
        document.staged_path.unlink(missing_ok=True)
        logger.info("Discarded staged receipt %s", document.filename)


__all__ = ["ReceiptDocument", "ReceiptDocumentGenerator", "TextReceiptGenerator"]
