"""Ledger error hierarchy.

Every error carries a machine-readable code and the HTTP status it maps to,
so API handlers can render any ledger failure without inspecting its type.
"""


class LedgerError(Exception):
    """Base ledger error."""

    def __init__(self, message: str, code: str = "ledger_error", http_status: int = 400):
        self.message = message
        self.code = code
        self.http_status = http_status
        super().__init__(message)


class ValidationError(LedgerError):
    """Malformed input: bad scope, allocation mismatch, missing reason."""

    def __init__(self, message: str, code: str = "validation_error"):
        super().__init__(message, code, 400)


class NotFoundError(LedgerError):
    """Referenced template, instance, receipt or policy does not exist."""

    def __init__(self, entity: str, entity_id: int | str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found", "not_found", 404)


class ConflictError(LedgerError):
    """Operation conflicts with the current state of an entity."""

    def __init__(self, message: str, code: str = "conflict"):
        super().__init__(message, code, 409)


class TransactionAbortError(LedgerError):
    """Unexpected failure inside a multi-entity transaction; everything was rolled back."""

    def __init__(self, message: str, cause: BaseException | None = None):
        self.cause = cause
        super().__init__(message, "transaction_aborted", 500)


class BatchItemError(LedgerError):
    """Failure of one item inside a batch run; collected, never raised by the batch."""

    def __init__(self, item_id: int, item_name: str, error: BaseException):
        self.item_id = item_id
        self.item_name = item_name
        self.error = error
        super().__init__(f"{item_name} ({item_id}): {error}", "batch_item_failed", 500)


__all__ = [
    "LedgerError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "TransactionAbortError",
    "BatchItemError",
]
