"""Admin HTTP triggers for the ledger batch jobs.

Run with:
    hoa-ledger-api
    uvicorn hoa_ledger.api.jobs:app
"""

import logging
from contextlib import asynccontextmanager
from datetime import date

import uvicorn
from fastapi import Depends, FastAPI, Query, Request
from sqlalchemy.orm import Session

from hoa_ledger.api.errors import register_error_handlers
from hoa_ledger.api.schemas import (
    BatchReportResponse,
    HealthResponse,
    JobsStatusResponse,
    PolicyStatsResponse,
)
from hoa_ledger.config import get_settings
from hoa_ledger.services import SessionLocal, get_db
from hoa_ledger.services.notification_service import Notifier, build_notifier
from hoa_ledger.services.scheduler import RecurrenceScheduler
from hoa_ledger.services.surcharge_service import SurchargeService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the notifier with the app and stop it on shutdown."""
    notifier = build_notifier(get_settings(), SessionLocal)
    await notifier.start()
    app.state.notifier = notifier
    logger.info("Ledger jobs API started")
    try:
        yield
    finally:
        try:
            await notifier.stop()
        except Exception as e:
            logger.error("Error stopping notifier: %s", e, exc_info=True)
        logger.info("Ledger jobs API stopped")


_settings = get_settings()
app = FastAPI(
    title=_settings.api_title,
    description="Charge regeneration and surcharge batch triggers",
    version=_settings.api_version,
    lifespan=lifespan,
)
register_error_handlers(app)


def get_notifier(request: Request) -> Notifier | None:
    return getattr(request.app.state, "notifier", None)


def get_scheduler(
    db: Session = Depends(get_db),  # noqa: B008
    notifier: Notifier | None = Depends(get_notifier),  # noqa: B008
) -> RecurrenceScheduler:
    return RecurrenceScheduler(db, notifier)


@app.get("/health")
async def health_check() -> HealthResponse:
    """Health check endpoint for monitoring."""
    return HealthResponse(status="ok", version=_settings.api_version)


@app.post("/jobs/regenerate")
async def trigger_regeneration(
    run_date: date | None = Query(None, description="Run as of this date (default today)"),  # noqa: B008
    scheduler: RecurrenceScheduler = Depends(get_scheduler),  # noqa: B008
) -> BatchReportResponse:
    """Generate every due cycle of the active recurring charges."""
    report = await scheduler.run_charge_regeneration(run_date or date.today())
    return BatchReportResponse.model_validate(report.to_dict())


@app.post("/jobs/surcharges")
async def trigger_surcharges(
    run_date: date | None = Query(None, description="Run as of this date (default today)"),  # noqa: B008
    scheduler: RecurrenceScheduler = Depends(get_scheduler),  # noqa: B008
) -> BatchReportResponse:
    """Mark overdue charges and apply the surcharge policies due today."""
    report = await scheduler.run_surcharge_batch(run_date or date.today())
    return BatchReportResponse.model_validate(report.to_dict())


@app.get("/jobs/status")
async def jobs_status(
    run_date: date | None = Query(None),  # noqa: B008
    scheduler: RecurrenceScheduler = Depends(get_scheduler),  # noqa: B008
) -> JobsStatusResponse:
    run_date = run_date or date.today()
    return JobsStatusResponse.model_validate(
        {
            "run_date": run_date,
            "regeneration": scheduler.regeneration_status(run_date),
            "surcharges": scheduler.surcharge_status(run_date),
        }
    )


@app.get("/jobs/policies/{policy_id}")
async def policy_stats(
    policy_id: int,
    db: Session = Depends(get_db),  # noqa: B008
) -> PolicyStatsResponse:
    """Application totals of one surcharge policy."""
    return PolicyStatsResponse.model_validate(SurchargeService(db).policy_stats(policy_id))


def serve() -> None:
    """Console script entry point: run the admin API under uvicorn."""
    settings = get_settings()
    logger.info("Starting Uvicorn server on %s:%s...", settings.api_host, settings.api_port)
    config = uvicorn.Config(
        app=app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
    uvicorn.Server(config).run()


__all__ = ["app", "get_notifier", "serve"]
