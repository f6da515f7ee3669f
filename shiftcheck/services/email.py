"""
Email service for sending billing notifications.

WHAT: This service provides a unified interface for sending transactional
emails through Brevo templates, with a mock provider for development.

WHY: Owners must hear about every billing milestone:
1. Subscription confirmed - checkout succeeded
2. Trial ending - reminder a week before the trial converts or lapses
3. Trial expired - restaurants were switched off
4. Payment failed - card needs updating
5. Subscription cancelled - access ended

HOW: Uses the Brevo transactional email API. Templates live in Brevo and
are addressed by numeric ID; we only send the template parameters. The
service abstracts provider details and provides:
- One send method per notification kind
- Retry with backoff on transient provider failures
- Results instead of exceptions (notifications are best-effort)

Design decisions:
- Provider abstraction: Easy to switch providers or mock in tests
- Server-side templates: Copy changes need no deploy
- Fail-safe: Email failures never break billing state changes
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List

import httpx

from shiftcheck.core.config import settings
from shiftcheck.core.exceptions import EmailServiceError
from shiftcheck.core.retry import RetryConfig, with_retry

logger = logging.getLogger(__name__)


# ============================================================================
# Email Types
# ============================================================================


class EmailType(str, Enum):
    """
    Types of billing emails.

    WHY: Each type maps to one Brevo template ID.
    """

    SUBSCRIPTION_CONFIRMED = "subscription_confirmed"
    TRIAL_ENDING = "trial_ending"
    TRIAL_EXPIRED = "trial_expired"
    PAYMENT_FAILED = "payment_failed"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"


def template_id_for(email_type: EmailType) -> int:
    """Brevo template ID configured for an email type."""
    return {
        EmailType.SUBSCRIPTION_CONFIRMED: settings.BREVO_TEMPLATE_SUBSCRIPTION_CONFIRMED,
        EmailType.TRIAL_ENDING: settings.BREVO_TEMPLATE_TRIAL_ENDING,
        EmailType.TRIAL_EXPIRED: settings.BREVO_TEMPLATE_TRIAL_EXPIRED,
        EmailType.PAYMENT_FAILED: settings.BREVO_TEMPLATE_PAYMENT_FAILED,
        EmailType.SUBSCRIPTION_CANCELLED: settings.BREVO_TEMPLATE_SUBSCRIPTION_CANCELLED,
    }[email_type]


@dataclass
class EmailMessage:
    """
    Represents a templated email to be sent.

    WHAT: Recipient, template and template parameters.
    """

    to_email: str
    """Recipient email address."""

    email_type: EmailType
    """Type of email, selects the template."""

    to_name: Optional[str] = None
    """Recipient display name (defaults to the address)."""

    params: Dict[str, Any] = field(default_factory=dict)
    """Template parameters (firstName, planName, ...)."""


@dataclass
class EmailResult:
    """
    Result of an email send operation.

    WHY: Provides feedback on email send status for logging and for the
    sweep counters, without forcing callers to catch exceptions.
    """

    success: bool
    """Whether email was sent successfully."""

    message_id: Optional[str] = None
    """Provider message ID for tracking."""

    error: Optional[str] = None
    """Error message if send failed."""

    provider: Optional[str] = None
    """Which provider was used."""


# ============================================================================
# Email Provider Interface
# ============================================================================


class EmailProvider(ABC):
    """
    Abstract base class for email providers.

    WHY: Provider abstraction allows testing with mock providers and
    switching vendors without touching the billing services.
    """

    @abstractmethod
    async def send(self, message: EmailMessage) -> EmailResult:
        """
        Send an email message.

        Args:
            message: The email message to send

        Returns:
            EmailResult with success status and provider details
        """
        pass

    @abstractmethod
    def is_configured(self) -> bool:
        """
        Check if this provider is properly configured.

        Returns:
            True if API keys/credentials are present
        """
        pass


class BrevoProvider(EmailProvider):
    """
    Brevo (formerly Sendinblue) transactional email provider.

    HOW: POSTs {templateId, to, sender, params} to the SMTP email endpoint
    with the `api-key` header. Non-2xx responses become HTTPStatusError so
    the retry policy can tell 429/5xx apart from permanent rejections.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        retry_config: Optional[RetryConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize Brevo provider.

        Args:
            api_key: Brevo API key (defaults to settings)
            api_url: Endpoint URL (defaults to settings)
            retry_config: Retry policy (defaults to settings)
            transport: Optional httpx transport (tests)
        """
        self._api_key = api_key or settings.BREVO_API_KEY
        self._api_url = api_url or settings.BREVO_API_URL
        self._retry_config = retry_config or RetryConfig(
            max_retries=settings.RETRY_MAX_RETRIES,
            initial_delay=settings.RETRY_INITIAL_DELAY_SECONDS,
        )
        self._transport = transport

    def is_configured(self) -> bool:
        """Check if Brevo API key is configured."""
        return bool(self._api_key)

    def build_payload(self, message: EmailMessage) -> Dict[str, Any]:
        """
        Build the Brevo request body.

        WHY: Every template receives supportEmail and dashboardLink;
        message params override them.
        """
        params = {
            "supportEmail": settings.SUPPORT_EMAIL,
            "dashboardLink": settings.DASHBOARD_URL,
            **message.params,
        }
        return {
            "templateId": template_id_for(message.email_type),
            "to": [{"email": message.to_email, "name": message.to_name or message.to_email}],
            "sender": {
                "email": settings.BREVO_SENDER_EMAIL,
                "name": settings.BREVO_SENDER_NAME,
            },
            "params": params,
        }

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        async with httpx.AsyncClient(transport=self._transport) as client:
            response = await client.post(
                self._api_url,
                headers={
                    "accept": "application/json",
                    "content-type": "application/json",
                    "api-key": self._api_key,
                },
                json=payload,
                timeout=30.0,
            )
            response.raise_for_status()
            return response.json()

    async def send(self, message: EmailMessage) -> EmailResult:
        """
        Send email via Brevo API.

        Args:
            message: Email message to send

        Returns:
            EmailResult with send status
        """
        if not self.is_configured():
            return EmailResult(
                success=False,
                error="Brevo API key not configured",
                provider="brevo",
            )

        payload = self.build_payload(message)
        result = await with_retry(lambda: self._post(payload), self._retry_config)

        if result.success:
            return EmailResult(
                success=True,
                message_id=(result.data or {}).get("messageId"),
                provider="brevo",
            )

        error = result.error
        if isinstance(error, httpx.HTTPStatusError):
            detail = f"Brevo API error: {error.response.status_code} - {error.response.text}"
        else:
            detail = str(error)

        logger.error(
            f"Brevo send failed after {result.attempts} attempts: {detail}",
            extra={"attempts": result.attempts, "email_type": message.email_type.value},
        )
        return EmailResult(success=False, error=detail, provider="brevo")


class MockEmailProvider(EmailProvider):
    """
    Mock email provider for testing and development.

    WHY: Allows testing email flows without sending real emails.
    Logs emails instead of sending them.
    """

    sent_emails: List[EmailMessage] = []
    """Class-level list to track sent emails for testing."""

    def is_configured(self) -> bool:
        """Mock provider is always configured."""
        return True

    async def send(self, message: EmailMessage) -> EmailResult:
        """
        Mock send - logs email instead of sending.

        Args:
            message: Email message to "send"

        Returns:
            Always returns success
        """
        logger.info(
            f"[MOCK EMAIL] To: {message.to_email}, "
            f"Type: {message.email_type.value}, "
            f"Params: {message.params}"
        )

        MockEmailProvider.sent_emails.append(message)

        return EmailResult(
            success=True,
            message_id=f"mock-{datetime.utcnow().timestamp()}",
            provider="mock",
        )

    @classmethod
    def clear_sent_emails(cls):
        """Clear sent emails list (for test cleanup)."""
        cls.sent_emails = []


# ============================================================================
# Email Service
# ============================================================================


class EmailService:
    """
    High-level email service for billing notifications.

    WHAT: One method per notification kind, each returning an EmailResult.

    WHY: Centralizes email logic:
    - Template parameter naming
    - Provider abstraction
    - Error handling and logging

    None of the send methods raise; failures are reported in the result.
    """

    def __init__(self, provider: Optional[EmailProvider] = None):
        """
        Initialize email service.

        Args:
            provider: Email provider to use (auto-detected if not provided)
        """
        if provider:
            self._provider = provider
        elif settings.BREVO_API_KEY:
            self._provider = BrevoProvider()
        else:
            # Use mock provider in development/testing
            logger.warning("No email provider configured, using mock provider")
            self._provider = MockEmailProvider()

    @property
    def provider(self) -> EmailProvider:
        """Provider used for sending."""
        return self._provider

    async def send_email(self, message: EmailMessage) -> EmailResult:
        """
        Send an email message.

        WHAT: Sends an email using the configured provider.

        WHY: Central entry point for all email sending ensures consistent
        error handling and logging of all emails.

        Args:
            message: Email message to send

        Returns:
            EmailResult with send status
        """
        logger.info(
            f"Sending {message.email_type.value} email to {message.to_email}",
            extra={
                "email_type": message.email_type.value,
                "to": message.to_email,
            },
        )

        try:
            result = await self._provider.send(message)
        except Exception as e:
            error = EmailServiceError(message=str(e), email_type=message.email_type.value)
            logger.error(
                f"Email provider raised: {error.message}",
                extra={"email_type": message.email_type.value, "to": message.to_email},
            )
            return EmailResult(success=False, error=error.message)

        if result.success:
            logger.info(
                f"Email sent successfully: {result.message_id}",
                extra={
                    "message_id": result.message_id,
                    "provider": result.provider,
                },
            )
        else:
            logger.error(
                f"Email send failed: {result.error}",
                extra={
                    "email_type": message.email_type.value,
                    "to": message.to_email,
                    "error": result.error,
                },
            )

        return result

    async def send_subscription_confirmed_email(
        self,
        to: str,
        first_name: str,
        plan_name: str,
        restaurant_count: int,
    ) -> EmailResult:
        """
        Send subscription confirmation after checkout.

        Args:
            to: Recipient email address
            first_name: Owner's first name (or greeting fallback)
            plan_name: Display name of the plan ("Grow")
            restaurant_count: Purchased restaurant capacity

        Returns:
            EmailResult with send status
        """
        return await self.send_email(
            EmailMessage(
                to_email=to,
                to_name=first_name,
                email_type=EmailType.SUBSCRIPTION_CONFIRMED,
                params={
                    "firstName": first_name,
                    "planName": plan_name,
                    "restaurantCount": restaurant_count,
                },
            )
        )

    async def send_subscription_cancelled_email(self, to: str, first_name: str) -> EmailResult:
        """Send notice that the subscription was cancelled."""
        return await self.send_email(
            EmailMessage(
                to_email=to,
                to_name=first_name,
                email_type=EmailType.SUBSCRIPTION_CANCELLED,
                params={"firstName": first_name},
            )
        )

    async def send_payment_failed_email(
        self, to: str, first_name: str, amount: str
    ) -> EmailResult:
        """
        Send notice that an invoice payment failed.

        Args:
            to: Recipient email address
            first_name: Owner's first name
            amount: Formatted amount ("$49.00") or "your subscription"
        """
        return await self.send_email(
            EmailMessage(
                to_email=to,
                to_name=first_name,
                email_type=EmailType.PAYMENT_FAILED,
                params={"firstName": first_name, "amount": amount},
            )
        )

    async def send_trial_ending_email(
        self, to: str, first_name: str, trial_end_date: str
    ) -> EmailResult:
        """
        Send trial ending reminder.

        Args:
            to: Recipient email address
            first_name: Owner's first name
            trial_end_date: Long-form date ("Monday, January 5, 2026")
        """
        return await self.send_email(
            EmailMessage(
                to_email=to,
                to_name=first_name,
                email_type=EmailType.TRIAL_ENDING,
                params={"firstName": first_name, "trialEndDate": trial_end_date},
            )
        )

    async def send_trial_expired_email(self, to: str, first_name: str) -> EmailResult:
        """Send notice that the trial expired and restaurants were deactivated."""
        return await self.send_email(
            EmailMessage(
                to_email=to,
                to_name=first_name,
                email_type=EmailType.TRIAL_EXPIRED,
                params={"firstName": first_name},
            )
        )


# ============================================================================
# Module-level convenience functions
# ============================================================================


_email_service: Optional[EmailService] = None


def get_email_service() -> EmailService:
    """
    Get or create the global email service instance.

    WHY: Singleton pattern ensures consistent configuration
    and resource sharing across the application.

    Returns:
        EmailService instance
    """
    global _email_service

    if _email_service is None:
        _email_service = EmailService()

    return _email_service
