"""
Integration tests for the trial sweep endpoints.

WHY: The sweeps are triggered by an external scheduler over HTTP. These
tests cover authentication (fail closed), the result shape the scheduler
reads, and the failure body.
"""

from datetime import timedelta

import pytest
from unittest.mock import AsyncMock, patch
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from shiftcheck.dao.restaurant import RestaurantDAO
from shiftcheck.models.base import utcnow
from shiftcheck.services.trial_sweeps import TrialSweepService
from tests.factories import OwnerFactory, RestaurantFactory, SubscriptionFactory

EXPIRING_URL = "/api/cron/trial-expiring"
EXPIRED_URL = "/api/cron/trial-expired"


def _auth(secret: str) -> dict:
    return {"Authorization": f"Bearer {secret}"}


class TestCronAuthentication:
    """Bearer secret checks."""

    @pytest.mark.asyncio
    async def test_fails_closed_without_configured_secret(self, client: AsyncClient):
        """
        Test that an unconfigured secret rejects every call.

        WHY: A deployment that forgot CRON_SECRET must not expose the sweeps.
        """
        response = await client.get(EXPIRED_URL, headers=_auth("anything"))

        assert response.status_code == 500
        assert response.json()["error"] == "ConfigurationError"

    @pytest.mark.asyncio
    async def test_missing_token(self, client: AsyncClient, cron_secret):
        """Calls without a bearer token get 401."""
        response = await client.get(EXPIRING_URL)

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_wrong_token(self, client: AsyncClient, cron_secret):
        """Calls with the wrong secret get 401."""
        response = await client.get(EXPIRING_URL, headers=_auth("wrong-secret"))

        assert response.status_code == 401
        assert response.json()["message"] == "Unauthorized"

    @pytest.mark.asyncio
    async def test_post_not_allowed(self, client: AsyncClient, cron_secret):
        """Sweeps are triggered with GET only."""
        response = await client.post(EXPIRING_URL, headers=_auth(cron_secret))

        assert response.status_code == 405


class TestTrialExpiringEndpoint:
    """GET /cron/trial-expiring."""

    @pytest.mark.asyncio
    async def test_reports_results(
        self, client: AsyncClient, db_session: AsyncSession, cron_secret
    ):
        """One trial ending in seven days yields one reminder."""
        owner = await OwnerFactory.create(db_session)
        await SubscriptionFactory.create(
            db_session, owner, current_period_end=utcnow() + timedelta(days=7)
        )

        response = await client.get(EXPIRING_URL, headers=_auth(cron_secret))

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Processed 1 expiring trials",
            "results": {"processed": 1, "sent": 1, "errors": 0},
        }

    @pytest.mark.asyncio
    async def test_sweep_failure(self, client: AsyncClient, cron_secret):
        """A sweep that raises returns the generic failure body."""
        with patch.object(
            TrialSweepService,
            "run_trial_expiring_sweep",
            AsyncMock(side_effect=RuntimeError("connection refused")),
        ):
            response = await client.get(EXPIRING_URL, headers=_auth(cron_secret))

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Cron job failed"}


class TestTrialExpiredEndpoint:
    """GET /cron/trial-expired."""

    @pytest.mark.asyncio
    async def test_reports_camel_case_results(
        self, client: AsyncClient, db_session: AsyncSession, cron_secret
    ):
        """
        Test the result keys the scheduler reads.

        WHY: Counters are serialized in camelCase (emailsSent, ...).
        """
        owner = await OwnerFactory.create(db_session)
        await RestaurantFactory.create_batch(db_session, owner, 2)
        await SubscriptionFactory.create(
            db_session, owner, current_period_end=utcnow() - timedelta(days=1)
        )

        response = await client.get(EXPIRED_URL, headers=_auth(cron_secret))

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["message"] == "Processed 1 expired trials"
        assert data["results"] == {
            "processed": 1,
            "emailsSent": 1,
            "subscriptionsUpdated": 1,
            "restaurantsDeactivated": 1,
            "errors": 0,
        }
        assert await RestaurantDAO(db_session).count_active(owner.id) == 0

    @pytest.mark.asyncio
    async def test_empty_cohort(self, client: AsyncClient, cron_secret):
        """No expired trials yields zero counters."""
        response = await client.get(EXPIRED_URL, headers=_auth(cron_secret))

        assert response.status_code == 200
        assert response.json()["results"]["processed"] == 0
