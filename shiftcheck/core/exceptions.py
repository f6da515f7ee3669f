"""
Custom exception hierarchy for structured error handling.

WHY: Custom exceptions provide:
1. Consistent error handling across the API
2. HTTP status code mapping for FastAPI
3. Structured error responses with contextual data
4. No secrets in error messages (webhook secrets, cron secrets, API keys)

Only authentication and configuration failures are meant to reach the
caller of the billing endpoints. Resolution, side-effect and batch-item
failures are logged and absorbed by the services that raise them.
"""

from typing import Any, Dict, Optional


class AppException(Exception):
    """
    Base exception class for all application exceptions.

    WHY: Centralizing exception handling in a base class ensures consistent
    error responses and HTTP status code mapping.

    All custom exceptions should inherit from this class.
    """

    status_code: int = 500
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        """
        Initialize exception with message and context.

        Args:
            message: Human-readable error message
            status_code: HTTP status code (overrides class default)
            **context: Additional context for debugging (filtered in to_dict)
        """
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize exception to dictionary for JSON response.

        Returns:
            Dictionary with error details (sensitive fields filtered out)
        """
        sensitive_fields = {"password", "token", "secret", "key", "api_key", "signature"}
        filtered_context = {
            k: v for k, v in self.context.items() if k.lower() not in sensitive_fields
        }

        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": filtered_context if filtered_context else None,
        }


# ============================================================================
# Authentication Exceptions
# ============================================================================


class AuthenticationError(AppException):
    """
    Raised when a caller cannot be authenticated.

    WHY: Sweep endpoints are triggered by a scheduler holding a shared
    bearer secret. A missing or wrong secret must stop processing before
    any query runs.

    HTTP Status: 401 Unauthorized
    """

    status_code = 401
    default_message = "Unauthorized"


class WebhookSignatureError(AppException):
    """
    Raised when a webhook payload fails signature verification.

    WHY: The payment provider expects a 4xx for forged or corrupted
    deliveries. Nothing is processed and nothing is remembered.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Invalid signature"


# ============================================================================
# Business Logic Exceptions
# ============================================================================


class BusinessRuleViolation(AppException):
    """
    Raised when a business rule is violated.

    HTTP Status: 422 Unprocessable Entity
    """

    status_code = 422
    default_message = "Business rule violation"


class InvalidStateTransitionError(BusinessRuleViolation):
    """
    Raised when a subscription status change is not in the transition table.

    WHY: Only raised in strict mode. By default unexpected transitions
    are logged and applied, since the payment provider is the source of truth.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Invalid state transition"


# ============================================================================
# External Service Exceptions
# ============================================================================


class ExternalServiceError(AppException):
    """
    Base exception for external service failures.

    HTTP Status: 502 Bad Gateway
    """

    status_code = 502
    default_message = "External service error"


class StripeError(ExternalServiceError):
    """
    Raised when Stripe API calls fail.

    HTTP Status: 502 Bad Gateway
    """

    default_message = "Payment processing error"


class EmailServiceError(ExternalServiceError):
    """
    Represents a failed notification send.

    WHY: EmailService wraps provider exceptions in it to log them, then
    returns an unsuccessful EmailResult. The dispatcher raises it from an
    email action whose result was unsuccessful, so the action is recorded
    as failed in its DispatchReport.

    HTTP Status: 502 Bad Gateway
    """

    default_message = "Email service error"


# ============================================================================
# Configuration Exceptions
# ============================================================================


class ConfigurationError(AppException):
    """
    Raised when a required server-side setting is missing.

    WHY: Jobs guarded by a shared secret must fail closed rather than
    run unauthenticated when the secret is not configured.

    HTTP Status: 500 Internal Server Error
    """

    status_code = 500
    default_message = "Server configuration error"

