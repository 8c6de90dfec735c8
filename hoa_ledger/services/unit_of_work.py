"""Unit of work for multi-entity ledger mutations.

Every mutation that touches more than one row runs inside `atomic`: the
session commits when the block exits normally and rolls back on any error.
Ledger errors propagate unchanged; anything else is wrapped in
TransactionAbortError so callers deal with a single error family.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from sqlalchemy.orm import Session

from hoa_ledger.services.errors import LedgerError, TransactionAbortError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@contextmanager
def atomic(db: Session, label: str = "ledger operation") -> Iterator[Session]:
    """Run the block as one transaction on the given session.

    Raises:
        LedgerError: Re-raised unchanged after rollback
        TransactionAbortError: For any other failure, after rollback
    """
    try:
        yield db
        db.commit()
    except LedgerError as e:
        db.rollback()
        logger.info("%s rolled back: %s", label, e.message)
        raise
    except Exception as e:
        db.rollback()
        logger.error("%s aborted: %s", label, e, exc_info=True)
        raise TransactionAbortError(f"{label} aborted: {e}", cause=e) from e


def run_atomic(db: Session, work: Callable[[Session], T], label: str = "ledger operation") -> T:
    """Call work(db) inside a transaction and return its result."""
    with atomic(db, label):
        return work(db)


__all__ = ["atomic", "run_atomic"]
