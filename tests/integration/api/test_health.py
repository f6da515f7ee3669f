"""Integration tests for the health endpoint."""

import pytest
from httpx import AsyncClient

from shiftcheck.core.config import settings


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    """Liveness reports version and an idle scheduler."""
    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["version"] == settings.VERSION
    assert data["scheduler"]["running"] is False
