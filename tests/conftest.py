"""
Pytest configuration and fixtures.

WHY: Fixtures provide reusable test setup/teardown logic, reducing
duplication and ensuring consistent test environments.
"""

import os

# Settings are read at import time; required values must exist first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_shiftcheck")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ.pop("CRON_SECRET", None)
os.environ.pop("BREVO_API_KEY", None)

import pytest
import pytest_asyncio
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from httpx import AsyncClient

from shiftcheck.main import app
from shiftcheck.models.base import Base
from shiftcheck.db.session import get_db
from shiftcheck.services import email as email_module
from shiftcheck.services import idempotency as idempotency_module


# Test database URL
# WHY: Using SQLite for tests eliminates external database dependencies
# and makes tests faster. For integration tests, use PostgreSQL.
TEST_ASYNC_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

CRON_TEST_SECRET = "cron-test-secret"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """
    Create a test database engine.

    WHY: Function scope ensures each test gets a fresh database state.
    StaticPool keeps the single in-memory database alive across the
    commits the services perform.
    """
    engine = create_async_engine(
        TEST_ASYNC_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables after test
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """
    Create a test database session.

    Yields:
        AsyncSession: Database session for the test
    """
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """
    Create a test HTTP client.

    WHY: AsyncClient allows testing FastAPI endpoints without running
    a real server, making tests faster and more reliable.

    Yields:
        AsyncClient: HTTP client for making test requests
    """
    from httpx import ASGITransport

    async def override_get_db():
        """Override database dependency with test session."""
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def cron_secret(monkeypatch) -> str:
    """
    Configure the sweep secret for a test.

    Returns:
        The secret to send as the bearer token
    """
    from shiftcheck.core.config import settings

    monkeypatch.setattr(settings, "CRON_SECRET", CRON_TEST_SECRET)
    return CRON_TEST_SECRET


@pytest.fixture(autouse=True)
def reset_idempotency_guard():
    """
    Reset the process-wide idempotency guard before each test.

    WHY: The guard is a module-level singleton; event IDs remembered by one
    test would turn another test's delivery into a duplicate.
    """
    idempotency_module._idempotency_guard = None
    yield
    idempotency_module._idempotency_guard = None


@pytest.fixture(autouse=True)
def use_mock_email_provider(monkeypatch):
    """
    Use mock email provider for all tests.

    WHY: Tests should not send real emails. The mock provider:
    - Tracks sent emails for verification in tests
    - Is always "configured" so it gets used
    - Doesn't require API keys
    """
    from shiftcheck.core import config

    email_module.MockEmailProvider.clear_sent_emails()
    monkeypatch.setattr(config.settings, "BREVO_API_KEY", None)
    email_module._email_service = None

    yield

    email_module._email_service = None
    email_module.MockEmailProvider.clear_sent_emails()
