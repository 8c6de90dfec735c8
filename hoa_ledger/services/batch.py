"""Result of a batch run (charge regeneration or surcharge application)."""

from dataclasses import dataclass, field
from datetime import date

from hoa_ledger.services.errors import BatchItemError


@dataclass
class BatchReport:
    """Outcome of one batch run; failures never abort the run."""

    job: str
    run_date: date
    succeeded: list[str] = field(default_factory=list)
    skipped: int = 0
    failures: list[BatchItemError] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures

    def add_success(self, description: str) -> None:
        self.succeeded.append(description)

    def add_failure(self, item_id: int, item_name: str, error: BaseException) -> BatchItemError:
        failure = BatchItemError(item_id, item_name, error)
        self.failures.append(failure)
        return failure

    def merge(self, other: "BatchReport") -> None:
        self.succeeded.extend(other.succeeded)
        self.skipped += other.skipped
        self.failures.extend(other.failures)

    def to_dict(self) -> dict:
        return {
            "job": self.job,
            "run_date": self.run_date.isoformat(),
            "succeeded": self.success_count,
            "skipped": self.skipped,
            "failed": self.failure_count,
            "items": list(self.succeeded),
            "failures": [
                {"item_id": f.item_id, "item_name": f.item_name, "error": str(f.error)}
                for f in self.failures
            ],
        }


__all__ = ["BatchReport"]
