"""
Sweep Scheduler Tests.

WHAT: Unit tests for the in-process APScheduler setup and jobs.

WHY: The scheduler is an alternative trigger for the sweeps. It must stay
off unless enabled, refuse to schedule without the sweep secret, and keep
a failing sweep from crashing the scheduler.
"""

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, MagicMock, patch

from shiftcheck.core.config import settings
from shiftcheck.services import scheduler as scheduler_module
from shiftcheck.services.scheduler import (
    TRIAL_EXPIRED_JOB_ID,
    TRIAL_EXPIRING_JOB_ID,
    get_scheduler,
    get_scheduler_status,
    run_trial_expiring_job,
    run_trial_expired_job,
    shutdown_scheduler,
    start_scheduler,
)
from shiftcheck.services.trial_sweeps import TrialExpiringResults


@pytest_asyncio.fixture(autouse=True)
async def reset_scheduler():
    """Make sure no scheduler leaks between tests."""
    yield
    await shutdown_scheduler()


class _SessionContext:
    """Async context manager standing in for AsyncSessionLocal()."""

    def __init__(self, session):
        self.session = session

    async def __aenter__(self):
        return self.session

    async def __aexit__(self, *exc):
        return False


@pytest.mark.asyncio
class TestStartScheduler:
    """Tests for scheduler lifecycle."""

    async def test_disabled_by_default(self):
        """Nothing starts unless SWEEP_SCHEDULER_ENABLED is set."""
        await start_scheduler()

        assert get_scheduler() is None
        assert get_scheduler_status()["running"] is False

    async def test_registers_sweep_jobs(self, monkeypatch, cron_secret):
        """Both sweeps are scheduled at their configured UTC hours."""
        monkeypatch.setattr(settings, "SWEEP_SCHEDULER_ENABLED", True)

        await start_scheduler()

        status = get_scheduler_status()
        assert status["running"] is True
        job_ids = {job["id"] for job in status["jobs"]}
        assert job_ids == {TRIAL_EXPIRING_JOB_ID, TRIAL_EXPIRED_JOB_ID}
        expiring = get_scheduler().get_job(TRIAL_EXPIRING_JOB_ID)
        assert "hour='9'" in str(expiring.trigger)

    async def test_no_jobs_without_secret(self, monkeypatch):
        """
        Test that the sweeps are not scheduled without CRON_SECRET.

        WHY: Same fail-closed rule as the HTTP sweep endpoints.
        """
        monkeypatch.setattr(settings, "SWEEP_SCHEDULER_ENABLED", True)

        await start_scheduler()

        assert get_scheduler_status()["jobs"] == []

    async def test_shutdown(self, monkeypatch, cron_secret):
        """Shutdown clears the global scheduler."""
        monkeypatch.setattr(settings, "SWEEP_SCHEDULER_ENABLED", True)
        await start_scheduler()

        await shutdown_scheduler()

        assert get_scheduler() is None


@pytest.mark.asyncio
class TestJobs:
    """Tests for the scheduled job wrappers."""

    async def test_job_returns_results(self):
        """A successful sweep returns its counters."""
        session = MagicMock()
        session.rollback = AsyncMock()
        expected = TrialExpiringResults(processed=2, sent=2)

        with patch.object(scheduler_module, "AsyncSessionLocal", return_value=_SessionContext(session)), \
                patch.object(
                    scheduler_module.TrialSweepService,
                    "run_trial_expiring_sweep",
                    AsyncMock(return_value=expected),
                ):
            result = await run_trial_expiring_job()

        assert result == expected

    async def test_job_failure_is_contained(self):
        """
        Test that a raising sweep is logged and rolled back.

        WHY: An exception escaping a job would only be logged by APScheduler
        without the rollback.
        """
        session = MagicMock()
        session.rollback = AsyncMock()

        with patch.object(scheduler_module, "AsyncSessionLocal", return_value=_SessionContext(session)), \
                patch.object(
                    scheduler_module.TrialSweepService,
                    "run_trial_expired_sweep",
                    AsyncMock(side_effect=RuntimeError("connection refused")),
                ):
            result = await run_trial_expired_job()

        assert result is None
        session.rollback.assert_awaited_once()
