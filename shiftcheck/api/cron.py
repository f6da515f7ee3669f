"""
Trial sweep endpoints.

WHAT: REST endpoints an external scheduler calls once a day:
1. GET /cron/trial-expiring - Send trial ending reminders (09:00 UTC)
2. GET /cron/trial-expired - Cancel trials that ended yesterday (10:00 UTC)

WHY: Hosted cron services trigger jobs by HTTP GET. The endpoints only run
the sweeps; all per-item failures are counted in the results.

SECURITY:
- Authorization: Bearer <CRON_SECRET> required
- Fail closed: 500 when CRON_SECRET is not configured
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from shiftcheck.core.deps import get_db, verify_cron_secret
from shiftcheck.schemas.billing import (
    SweepFailureResponse,
    TrialExpiredResultsSchema,
    TrialExpiredSweepResponse,
    TrialExpiringResultsSchema,
    TrialExpiringSweepResponse,
)
from shiftcheck.services.trial_sweeps import TrialSweepService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/cron",
    tags=["Cron"],
    dependencies=[Depends(verify_cron_secret)],
)


def _failure_response() -> JSONResponse:
    return JSONResponse(status_code=500, content=SweepFailureResponse().model_dump())


@router.get(
    "/trial-expiring",
    response_model=TrialExpiringSweepResponse,
    responses={500: {"model": SweepFailureResponse}},
    summary="Send trial ending reminders",
)
async def trial_expiring(db: AsyncSession = Depends(get_db)):
    """
    Remind owners whose trial ends in TRIAL_REMINDER_DAYS days.

    Returns:
        Sweep counters {processed, sent, errors}
    """
    logger.info("Running trial-expiring sweep")
    try:
        results = await TrialSweepService(db).run_trial_expiring_sweep()
    except Exception as e:
        await db.rollback()
        logger.exception(f"Trial-expiring sweep failed: {e}")
        return _failure_response()

    return TrialExpiringSweepResponse(
        success=True,
        message=f"Processed {results.processed} expiring trials",
        results=TrialExpiringResultsSchema.model_validate(results),
    )


@router.get(
    "/trial-expired",
    response_model=TrialExpiredSweepResponse,
    responses={500: {"model": SweepFailureResponse}},
    summary="Cancel expired trials",
)
async def trial_expired(db: AsyncSession = Depends(get_db)):
    """
    Cancel trials that ended yesterday, deactivate restaurants, notify owners.

    Returns:
        Sweep counters {processed, emailsSent, subscriptionsUpdated,
        restaurantsDeactivated, errors}
    """
    logger.info("Running trial-expired sweep")
    try:
        results = await TrialSweepService(db).run_trial_expired_sweep()
    except Exception as e:
        await db.rollback()
        logger.exception(f"Trial-expired sweep failed: {e}")
        return _failure_response()

    return TrialExpiredSweepResponse(
        success=True,
        message=f"Processed {results.processed} expired trials",
        results=TrialExpiredResultsSchema.model_validate(results),
    )
