"""
Tests for custom exception hierarchy.

WHY: Comprehensive exception testing ensures:
1. Exceptions serialize correctly without leaking secrets
2. HTTP status codes map correctly (400 signature, 401 cron, 500 config)
3. Context data is properly filtered
4. Exception handlers work as expected
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from shiftcheck.core.exceptions import (
    AppException,
    AuthenticationError,
    WebhookSignatureError,
    BusinessRuleViolation,
    InvalidStateTransitionError,
    StripeError,
    EmailServiceError,
    ConfigurationError,
)
from shiftcheck.core.exception_handlers import app_exception_handler


class TestAppException:
    """Test base AppException class."""

    def test_default_message(self):
        """Verify default message is used when none provided."""
        exc = AppException()
        assert exc.message == "An unexpected error occurred"
        assert exc.status_code == 500

    def test_custom_status_code(self):
        """Verify custom status code overrides class default."""
        exc = AppException(status_code=418)
        assert exc.status_code == 418

    def test_to_dict_basic(self):
        """Verify exception serializes to dict correctly."""
        exc = AppException(message="Test error", owner_id=123)
        result = exc.to_dict()

        assert result["error"] == "AppException"
        assert result["message"] == "Test error"
        assert result["status_code"] == 500
        assert result["details"] == {"owner_id": 123}

    def test_to_dict_filters_sensitive_data(self):
        """Verify secrets and signatures never reach the response body."""
        exc = AppException(
            message="Test error",
            customer_id="cus_123",
            secret="whsec_abc",
            signature="t=1,v1=deadbeef",
            api_key="xkeysib-123",
        )
        result = exc.to_dict()

        assert "secret" not in result["details"]
        assert "signature" not in result["details"]
        assert "api_key" not in result["details"]
        assert result["details"]["customer_id"] == "cus_123"

    def test_to_dict_no_context(self):
        """Verify to_dict works with no context data."""
        assert AppException(message="Test error").to_dict()["details"] is None


class TestStatusCodes:
    """Status codes the billing endpoints rely on."""

    @pytest.mark.parametrize(
        "exc_class,status_code",
        [
            (AuthenticationError, 401),
            (WebhookSignatureError, 400),
            (BusinessRuleViolation, 422),
            (InvalidStateTransitionError, 400),
            (StripeError, 502),
            (EmailServiceError, 502),
            (ConfigurationError, 500),
        ],
    )
    def test_status_code(self, exc_class, status_code):
        """Verify each exception maps to its HTTP status."""
        assert exc_class().status_code == status_code

    def test_invalid_transition_carries_statuses(self):
        """Verify transition errors keep both ends for logging."""
        exc = InvalidStateTransitionError(from_status="canceled", to_status="active")
        assert exc.to_dict()["details"] == {"from_status": "canceled", "to_status": "active"}

    def test_webhook_signature_default_message(self):
        """Verify the default signature message matches the endpoint contract."""
        assert WebhookSignatureError().message == "Invalid signature"


class TestExceptionHandlerIntegration:
    """Test exception handler integration with FastAPI."""

    @pytest.fixture
    def app(self):
        """Create test FastAPI app with exception handlers."""
        app = FastAPI()
        app.add_exception_handler(AppException, app_exception_handler)

        @app.get("/test-auth-error")
        async def test_auth_error():
            raise AuthenticationError()

        @app.get("/test-config-error")
        async def test_config_error():
            raise ConfigurationError(secret="must-not-leak")

        return app

    @pytest.fixture
    def client(self, app):
        """Create test client."""
        return TestClient(app)

    def test_exception_handler_returns_json(self, client):
        """Verify exception handler returns JSON response."""
        response = client.get("/test-auth-error")

        assert response.status_code == 401
        assert response.headers["content-type"] == "application/json"

        data = response.json()
        assert data["error"] == "AuthenticationError"
        assert data["message"] == "Unauthorized"

    def test_exception_handler_filters_sensitive_data(self, client):
        """Verify exception handler filters secrets from the response."""
        response = client.get("/test-config-error")

        assert response.status_code == 500
        assert "must-not-leak" not in response.text
