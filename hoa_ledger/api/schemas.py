"""Request and response schemas of the admin API."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class ErrorBody(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: ErrorBody


class HealthResponse(BaseModel):
    status: str
    version: str


class BatchFailureResponse(BaseModel):
    item_id: int
    item_name: str
    error: str


class BatchReportResponse(BaseModel):
    """Outcome of one batch run."""

    model_config = ConfigDict(from_attributes=True)

    job: str
    run_date: date
    succeeded: int
    skipped: int
    failed: int
    items: list[str]
    """Description of every item processed successfully."""

    failures: list[BatchFailureResponse]


class RegenerationStatusResponse(BaseModel):
    active_recurring: int
    due_today: int
    next_generation_date: date | None = None


class SurchargeStatusResponse(BaseModel):
    active_policies: int
    due_today: int
    applications_today: int
    overdue_instances: int


class JobsStatusResponse(BaseModel):
    run_date: date
    regeneration: RegenerationStatusResponse
    surcharges: SurchargeStatusResponse


class PolicyStatsResponse(BaseModel):
    policy_id: int
    applications: int
    total_amount: Decimal
    instances: int
    last_applied_on: date | None = None


__all__ = [
    "ErrorBody",
    "ErrorResponse",
    "HealthResponse",
    "BatchFailureResponse",
    "BatchReportResponse",
    "RegenerationStatusResponse",
    "SurchargeStatusResponse",
    "JobsStatusResponse",
    "PolicyStatsResponse",
]
