"""
Background Job Scheduler.

WHAT: Configures and manages APScheduler for the daily trial sweeps.

WHY: Deployments without an external cron can run the sweeps in-process:
1. Trial-expiring reminders at TRIAL_EXPIRING_CRON_HOUR (09:00 UTC)
2. Trial-expired cancellations at TRIAL_EXPIRED_CRON_HOUR (10:00 UTC)

HOW: Uses APScheduler with AsyncIOScheduler and cron triggers. Disabled
unless SWEEP_SCHEDULER_ENABLED is set. Like the HTTP sweep endpoints, the
jobs refuse to run when CRON_SECRET is not configured.

Example:
    # In main.py startup:
    from shiftcheck.services.scheduler import start_scheduler, shutdown_scheduler

    @app.on_event("startup")
    async def startup():
        await start_scheduler()
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.triggers.cron import CronTrigger

from shiftcheck.core.config import settings
from shiftcheck.db.session import AsyncSessionLocal
from shiftcheck.services.trial_sweeps import (
    TrialExpiredResults,
    TrialExpiringResults,
    TrialSweepService,
)


logger = logging.getLogger(__name__)


TRIAL_EXPIRING_JOB_ID = "trial_expiring_sweep"
TRIAL_EXPIRED_JOB_ID = "trial_expired_sweep"

# Global scheduler instance
_scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> Optional[AsyncIOScheduler]:
    """Get the global scheduler instance."""
    return _scheduler


# ============================================================================
# Jobs
# ============================================================================


async def run_trial_expiring_job() -> Optional[TrialExpiringResults]:
    """
    Scheduled trial-expiring sweep on a fresh session.

    Returns:
        Sweep counters, or None if the sweep failed
    """
    async with AsyncSessionLocal() as session:
        try:
            return await TrialSweepService(session).run_trial_expiring_sweep()
        except Exception as e:
            await session.rollback()
            logger.exception(f"Scheduled trial-expiring sweep failed: {e}")
            return None


async def run_trial_expired_job() -> Optional[TrialExpiredResults]:
    """
    Scheduled trial-expired sweep on a fresh session.

    Returns:
        Sweep counters, or None if the sweep failed
    """
    async with AsyncSessionLocal() as session:
        try:
            return await TrialSweepService(session).run_trial_expired_sweep()
        except Exception as e:
            await session.rollback()
            logger.exception(f"Scheduled trial-expired sweep failed: {e}")
            return None


# ============================================================================
# Lifecycle
# ============================================================================


async def start_scheduler() -> None:
    """
    Start the background job scheduler.

    WHAT: Initializes APScheduler with the sweep jobs.

    HOW:
    1. Skips entirely unless SWEEP_SCHEDULER_ENABLED
    2. Creates AsyncIOScheduler with memory job store
    3. Registers the sweep jobs (only when CRON_SECRET is configured)
    4. Starts the scheduler

    Note: Call this from FastAPI startup event.
    """
    global _scheduler

    if not settings.SWEEP_SCHEDULER_ENABLED:
        logger.info("Sweep scheduler disabled (SWEEP_SCHEDULER_ENABLED is false)")
        return

    if _scheduler is not None and _scheduler.running:
        logger.warning("Scheduler already running")
        return

    jobstores = {
        "default": MemoryJobStore()
    }

    executors = {
        "default": AsyncIOExecutor()
    }

    job_defaults = {
        "coalesce": True,  # Combine multiple missed runs into one
        "max_instances": 1,  # Only one instance of each job at a time
        "misfire_grace_time": 300,
    }

    _scheduler = AsyncIOScheduler(
        jobstores=jobstores,
        executors=executors,
        job_defaults=job_defaults,
        timezone="UTC",
    )

    _register_sweep_jobs()

    _scheduler.start()
    logger.info(f"Scheduler started with {len(_scheduler.get_jobs())} jobs")


def _register_sweep_jobs() -> None:
    """
    Register the daily sweep jobs.

    WHY: Fail closed: the sweeps cancel subscriptions, so they are never
    scheduled on a deployment that has not configured the sweep secret.
    """
    if _scheduler is None:
        logger.error("Cannot register jobs: scheduler not initialized")
        return

    if not settings.cron_secret_configured:
        logger.error("CRON_SECRET not configured - sweep jobs not scheduled")
        return

    _scheduler.add_job(
        func=run_trial_expiring_job,
        trigger=CronTrigger(hour=settings.TRIAL_EXPIRING_CRON_HOUR, minute=0, timezone="UTC"),
        id=TRIAL_EXPIRING_JOB_ID,
        name="Trial Expiring Sweep",
        replace_existing=True,
    )
    _scheduler.add_job(
        func=run_trial_expired_job,
        trigger=CronTrigger(hour=settings.TRIAL_EXPIRED_CRON_HOUR, minute=0, timezone="UTC"),
        id=TRIAL_EXPIRED_JOB_ID,
        name="Trial Expired Sweep",
        replace_existing=True,
    )

    logger.info(
        f"Registered sweep jobs (trial-expiring {settings.TRIAL_EXPIRING_CRON_HOUR:02d}:00 UTC, "
        f"trial-expired {settings.TRIAL_EXPIRED_CRON_HOUR:02d}:00 UTC)"
    )


async def shutdown_scheduler() -> None:
    """
    Shut down the background job scheduler.

    Note: Call this from FastAPI shutdown event.
    """
    global _scheduler

    if _scheduler is None:
        logger.info("Scheduler not running")
        return

    if _scheduler.running:
        logger.info("Shutting down scheduler...")
        _scheduler.shutdown(wait=True)

    _scheduler = None
    logger.info("Scheduler shut down successfully")


def get_scheduler_status() -> dict:
    """
    Get scheduler status information.

    WHY: Enables health checks and monitoring.

    Returns:
        Dict with scheduler status and job details
    """
    if _scheduler is None:
        return {
            "running": False,
            "jobs": [],
            "message": "Scheduler not initialized",
        }

    jobs = []
    for job in _scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run_time": str(job.next_run_time) if job.next_run_time else None,
            "trigger": str(job.trigger),
        })

    return {
        "running": _scheduler.running,
        "jobs": jobs,
        "message": "Scheduler is running" if _scheduler.running else "Scheduler is paused",
    }
