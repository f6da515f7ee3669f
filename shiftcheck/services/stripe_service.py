"""
Stripe service for subscription webhook processing.

WHAT: Provides the narrow Stripe surface the billing engine needs:
webhook signature verification and customer lookup.

WHY: Stripe is the source of truth for billing. Every state change we
record starts as a signed webhook event, and owner resolution sometimes
needs the customer's email from Stripe.

HOW: Uses the Stripe Python SDK with:
- stripe.Webhook.construct_event for HMAC-SHA256 signature verification
  against the exact raw request bytes
- stripe.Customer.retrieve run in a worker thread (the SDK is blocking),
  wrapped in the retry primitive for transient failures

Design decisions:
- Verified payloads are decoded as plain dicts so handlers never depend
  on SDK object behavior
- Service class pattern: Testable with mocked Stripe SDK
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any

import stripe

from shiftcheck.core.config import settings
from shiftcheck.core.exceptions import StripeError, WebhookSignatureError
from shiftcheck.core.retry import RetryConfig, is_retryable_error, with_retry

logger = logging.getLogger(__name__)


# ============================================================================
# Stripe Configuration
# ============================================================================


def configure_stripe() -> None:
    """
    Configure Stripe SDK with API key from settings.

    WHY: Must be called before any Stripe API operations.
    Centralized configuration ensures consistent setup.
    """
    stripe.api_key = settings.STRIPE_SECRET_KEY
    stripe.api_version = settings.STRIPE_API_VERSION  # Pin API version for stability


# Initialize Stripe on module load
configure_stripe()


# ============================================================================
# Data Classes
# ============================================================================


@dataclass
class StripeCustomer:
    """
    Represents a Stripe customer.

    WHY: Owner resolution only needs the ID and email.
    """

    id: str
    """Stripe customer ID (cus_xxx)."""

    email: Optional[str] = None
    """Customer email address."""

    name: Optional[str] = None
    """Customer name."""


@dataclass
class WebhookEvent:
    """
    Represents a verified Stripe webhook event.

    WHAT: Data container for webhook event data.

    WHY: Structured event data for type-safe webhook handling. Only the
    ID outlives the request (in the idempotency guard).
    """

    id: str
    """Event ID (evt_xxx)."""

    type: str
    """Event type (e.g., customer.subscription.created)."""

    data: Dict[str, Any] = field(default_factory=dict)
    """Event data object (subscription, invoice, ...)."""

    created: int = 0
    """Unix timestamp when event was created."""


def _is_retryable_stripe_error(error: BaseException, attempt: Optional[int] = None) -> bool:
    """
    Transient-error policy for Stripe calls.

    WHY: The SDK reports network failures as APIConnectionError without a
    status code; everything else is classified by the default policy.
    """
    if isinstance(error, stripe.APIConnectionError):
        return True
    return is_retryable_error(error, attempt)


# ============================================================================
# Stripe Service
# ============================================================================


class StripeService:
    """
    Service for Stripe operations used by the billing engine.

    WHAT: Verifies webhook deliveries and looks up customers.

    HOW: Uses Stripe Python SDK with proper error handling
    and logging for all operations.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        """
        Initialize Stripe service.

        Args:
            api_key: Optional Stripe API key (defaults to settings)
            webhook_secret: Optional webhook signing secret (defaults to settings)
            retry_config: Retry policy for API calls (defaults to settings)
        """
        if api_key:
            stripe.api_key = api_key
        self._webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET
        self._retry_config = retry_config or RetryConfig(
            max_retries=settings.RETRY_MAX_RETRIES,
            initial_delay=settings.RETRY_INITIAL_DELAY_SECONDS,
            should_retry=_is_retryable_stripe_error,
        )

    # ========================================================================
    # Webhook Handling
    # ========================================================================

    def verify_webhook_signature(
        self,
        payload: bytes,
        signature: Optional[str],
    ) -> WebhookEvent:
        """
        Verify Stripe webhook signature and parse event.

        WHAT: Validates that the delivery came from Stripe.

        WHY: Prevents webhook forgery. Verification must use the exact
        bytes received; re-serialized JSON would not match the signature.

        HOW: stripe.Webhook.construct_event checks the HMAC-SHA256 signature
        and timestamp tolerance; the payload is then decoded as plain JSON.

        Args:
            payload: Raw request body bytes
            signature: Stripe-Signature header value

        Returns:
            WebhookEvent with verified event data

        Raises:
            WebhookSignatureError: If the header is missing, the signature
                does not verify, or the payload is not valid JSON
        """
        if not signature:
            logger.warning("Webhook rejected: missing Stripe-Signature header")
            raise WebhookSignatureError(message="Missing Stripe-Signature header")

        try:
            stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Webhook signature verification failed: {e}")
            raise WebhookSignatureError()
        except ValueError as e:
            logger.warning(f"Webhook payload could not be parsed: {e}")
            raise WebhookSignatureError(message="Invalid payload")

        event = json.loads(payload)
        data = event.get("data") or {}

        webhook_event = WebhookEvent(
            id=event["id"],
            type=event["type"],
            data=data.get("object") or {},
            created=event.get("created") or 0,
        )

        logger.info(
            f"Verified webhook event {webhook_event.id} type {webhook_event.type}",
            extra={
                "event_id": webhook_event.id,
                "event_type": webhook_event.type,
            },
        )

        return webhook_event

    # ========================================================================
    # Customer Lookup
    # ========================================================================

    async def retrieve_customer(self, customer_id: str) -> Optional[StripeCustomer]:
        """
        Retrieve a customer from Stripe.

        WHAT: Fetches the customer record to learn its email.

        HOW: The blocking SDK call runs in a worker thread and is retried
        on transient failures (network errors, 429, 5xx).

        Args:
            customer_id: Stripe customer ID (cus_xxx)

        Returns:
            StripeCustomer, or None if the customer was deleted

        Raises:
            StripeError: If the lookup still fails after retries
        """
        result = await with_retry(
            lambda: asyncio.to_thread(stripe.Customer.retrieve, customer_id),
            self._retry_config,
        )

        if not result.success:
            logger.error(
                f"Failed to retrieve Stripe customer {customer_id} "
                f"after {result.attempts} attempts: {result.error}",
                extra={"customer_id": customer_id, "attempts": result.attempts},
            )
            raise StripeError(
                message="Failed to retrieve customer",
                customer_id=customer_id,
                stripe_error=str(result.error),
            )

        customer = result.data
        if getattr(customer, "deleted", False):
            logger.warning(
                f"Stripe customer {customer_id} is deleted",
                extra={"customer_id": customer_id},
            )
            return None

        return StripeCustomer(
            id=customer.id,
            email=getattr(customer, "email", None),
            name=getattr(customer, "name", None),
        )


# ============================================================================
# Module-level convenience functions
# ============================================================================


_stripe_service: Optional[StripeService] = None


def get_stripe_service() -> StripeService:
    """
    Get or create the global Stripe service instance.

    WHY: Singleton pattern ensures consistent configuration
    and resource sharing across the application.

    Returns:
        StripeService instance
    """
    global _stripe_service

    if _stripe_service is None:
        _stripe_service = StripeService()

    return _stripe_service
