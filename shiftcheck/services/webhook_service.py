"""
Stripe webhook ingestion service.

WHAT: Verifies a Stripe delivery, drops redeliveries, and routes the event
to the reconciler (state) and the dispatcher (side effects).

WHY: Webhooks are the source of truth for subscription state:
- customer.subscription.created: New subscription, confirmation email
- customer.subscription.updated: Status, plan or period changes
- customer.subscription.deleted: Canceled, restaurants switched off
- invoice.payment_succeeded / invoice.payment_failed: Payment status
- customer.subscription.trial_will_end: Reminder email

HOW:
1. Signature verification against the raw bytes (hard gate)
2. Idempotency guard; the event ID is remembered before dispatch
3. Owner resolution, state change and commit
4. Side effects through the dispatcher

Once the signature and the duplicate check pass, processing failures are
logged and absorbed so Stripe stops redelivering; they are reported in the
WebhookProcessingResult for logs and tests.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from shiftcheck.dao.owner import OwnerDAO
from shiftcheck.models.base import from_unix_timestamp
from shiftcheck.models.subscription import SubscriptionStatus
from shiftcheck.services.idempotency import IdempotencyGuard, get_idempotency_guard
from shiftcheck.services.lifecycle_dispatcher import (
    DispatchReport,
    LifecycleDispatcher,
    OwnerContact,
)
from shiftcheck.services.stripe_service import StripeService, WebhookEvent, get_stripe_service
from shiftcheck.services.subscription_reconciler import SubscriptionReconciler

logger = logging.getLogger(__name__)


class LifecycleTransition(str, Enum):
    """Subscription lifecycle transitions signalled by Stripe events."""

    CREATED = "created"
    UPDATED = "updated"
    CANCELED = "canceled"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    TRIAL_WILL_END = "trial_will_end"


EVENT_TRANSITIONS = {
    "customer.subscription.created": LifecycleTransition.CREATED,
    "customer.subscription.updated": LifecycleTransition.UPDATED,
    "customer.subscription.deleted": LifecycleTransition.CANCELED,
    "invoice.payment_succeeded": LifecycleTransition.PAYMENT_SUCCEEDED,
    "invoice.payment_failed": LifecycleTransition.PAYMENT_FAILED,
    "customer.subscription.trial_will_end": LifecycleTransition.TRIAL_WILL_END,
}


def classify_event(event_type: str) -> Optional[LifecycleTransition]:
    """Lifecycle transition for a Stripe event type, or None if not handled."""
    return EVENT_TRANSITIONS.get(event_type)


def invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    """
    Subscription ID an invoice belongs to.

    WHY: Newer Stripe API versions moved it under parent.subscription_details.
    """
    subscription_id = invoice.get("subscription")
    if subscription_id:
        return subscription_id
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return details.get("subscription")


@dataclass
class WebhookProcessingResult:
    """Outcome of processing one verified event."""

    event_id: str
    event_type: str
    duplicate: bool = False
    transition: Optional[LifecycleTransition] = None
    handled: bool = False
    errors: List[str] = field(default_factory=list)


class WebhookService:
    """
    Service for Stripe webhook ingestion.

    WHAT: Gatekeeping (signature, duplicates) and per-event routing.

    HOW: Built per request on the request's session; the idempotency
    guard is process-wide.
    """

    def __init__(
        self,
        db: AsyncSession,
        stripe_service: Optional[StripeService] = None,
        guard: Optional[IdempotencyGuard] = None,
        reconciler: Optional[SubscriptionReconciler] = None,
        dispatcher: Optional[LifecycleDispatcher] = None,
    ):
        """
        Initialize webhook service.

        Args:
            db: Async database session
            stripe_service: Stripe collaborator (defaults to the global one)
            guard: Idempotency guard (defaults to the global one)
            reconciler: Subscription reconciler (built on db if not provided)
            dispatcher: Side-effect dispatcher (built on db if not provided)
        """
        self.db = db
        self.stripe_service = stripe_service or get_stripe_service()
        self.guard = guard if guard is not None else get_idempotency_guard()
        self.reconciler = reconciler or SubscriptionReconciler(
            db, stripe_service=self.stripe_service
        )
        self.dispatcher = dispatcher or LifecycleDispatcher(db)
        self.owner_dao = OwnerDAO(db)

        self._handlers: Dict[
            LifecycleTransition,
            Callable[[Dict[str, Any], WebhookProcessingResult], Awaitable[bool]],
        ] = {
            LifecycleTransition.CREATED: self._handle_subscription_created,
            LifecycleTransition.UPDATED: self._handle_subscription_updated,
            LifecycleTransition.CANCELED: self._handle_subscription_deleted,
            LifecycleTransition.PAYMENT_SUCCEEDED: self._handle_payment_succeeded,
            LifecycleTransition.PAYMENT_FAILED: self._handle_payment_failed,
            LifecycleTransition.TRIAL_WILL_END: self._handle_trial_will_end,
        }

    # ========================================================================
    # Entry Points
    # ========================================================================

    async def process(
        self, payload: bytes, signature: Optional[str]
    ) -> WebhookProcessingResult:
        """
        Verify and process one webhook delivery.

        Args:
            payload: Raw request body bytes
            signature: Stripe-Signature header value

        Returns:
            WebhookProcessingResult

        Raises:
            WebhookSignatureError: If verification fails (nothing is changed)
        """
        event = self.stripe_service.verify_webhook_signature(payload, signature)
        return await self.handle_event(event)

    async def handle_event(self, event: WebhookEvent) -> WebhookProcessingResult:
        """
        Process a verified event.

        Args:
            event: Verified webhook event

        Returns:
            WebhookProcessingResult (never raises for processing failures)
        """
        log_extra = {"event_id": event.id, "event_type": event.type}
        result = WebhookProcessingResult(event_id=event.id, event_type=event.type)

        if self.guard.seen(event.id):
            logger.warning(f"Duplicate webhook event {event.id} ignored", extra=log_extra)
            result.duplicate = True
            return result

        self.guard.remember(event.id)

        transition = classify_event(event.type)
        if transition is None:
            logger.info(f"Unhandled webhook event type: {event.type}", extra=log_extra)
            return result

        result.transition = transition
        logger.info(
            f"Processing webhook {event.type} as {transition.value}",
            extra={**log_extra, "transition": transition.value},
        )

        try:
            result.handled = await self._handlers[transition](event.data, result)
        except Exception as e:
            await self.db.rollback()
            logger.exception(
                f"Error processing webhook {event.type}: {e}",
                extra={**log_extra, "transition": transition.value},
            )
            result.errors.append(str(e))

        return result

    # ========================================================================
    # Helpers
    # ========================================================================

    async def _resolve_owner(
        self, customer_id: Optional[str], result: WebhookProcessingResult
    ) -> Optional[OwnerContact]:
        owner_id = await self.reconciler.resolve_owner_id(customer_id)
        owner = await self.owner_dao.get_by_id(owner_id) if owner_id is not None else None
        if owner is None:
            logger.error(
                f"No owner found for customer {customer_id}, dropping {result.event_type}",
                extra={
                    "event_id": result.event_id,
                    "event_type": result.event_type,
                    "customer_id": customer_id,
                },
            )
            result.errors.append(f"No owner found for customer {customer_id}")
            return None
        return OwnerContact.from_owner(owner)

    @staticmethod
    def _record_report(report: DispatchReport, result: WebhookProcessingResult) -> None:
        for failed in report.failed:
            result.errors.append(f"{failed.action}: {failed.detail}")

    # ========================================================================
    # Handlers
    # ========================================================================

    async def _handle_subscription_created(
        self, subscription_data: Dict[str, Any], result: WebhookProcessingResult
    ) -> bool:
        owner = await self._resolve_owner(subscription_data.get("customer"), result)
        if owner is None:
            return False

        subscription = await self.reconciler.upsert_from_provider(owner.id, subscription_data)
        await self.db.commit()

        report = await self.dispatcher.on_subscription_created(owner, subscription)
        self._record_report(report, result)
        return True

    async def _handle_subscription_updated(
        self, subscription_data: Dict[str, Any], result: WebhookProcessingResult
    ) -> bool:
        owner = await self._resolve_owner(subscription_data.get("customer"), result)
        if owner is None:
            return False

        await self.reconciler.upsert_from_provider(owner.id, subscription_data)
        await self.db.commit()
        return True

    async def _handle_subscription_deleted(
        self, subscription_data: Dict[str, Any], result: WebhookProcessingResult
    ) -> bool:
        owner = await self._resolve_owner(subscription_data.get("customer"), result)
        if owner is None:
            return False

        await self.reconciler.set_status(subscription_data["id"], SubscriptionStatus.CANCELED)
        await self.db.commit()

        report = await self.dispatcher.on_subscription_canceled(owner)
        self._record_report(report, result)
        return True

    async def _handle_invoice_status(
        self,
        invoice: Dict[str, Any],
        status: SubscriptionStatus,
        result: WebhookProcessingResult,
    ) -> Optional[OwnerContact]:
        subscription_id = invoice_subscription_id(invoice)
        if not subscription_id:
            logger.info(
                f"Invoice {invoice.get('id')} has no subscription, ignoring",
                extra={"event_id": result.event_id, "invoice_id": invoice.get("id")},
            )
            return None

        owner = await self._resolve_owner(invoice.get("customer"), result)
        if owner is None:
            return None

        await self.reconciler.set_status(subscription_id, status)
        await self.db.commit()
        return owner

    async def _handle_payment_succeeded(
        self, invoice: Dict[str, Any], result: WebhookProcessingResult
    ) -> bool:
        owner = await self._handle_invoice_status(invoice, SubscriptionStatus.ACTIVE, result)
        return owner is not None

    async def _handle_payment_failed(
        self, invoice: Dict[str, Any], result: WebhookProcessingResult
    ) -> bool:
        owner = await self._handle_invoice_status(invoice, SubscriptionStatus.PAST_DUE, result)
        if owner is None:
            return False

        report = await self.dispatcher.on_payment_failed(owner, invoice.get("amount_due"))
        self._record_report(report, result)
        return True

    async def _handle_trial_will_end(
        self, subscription_data: Dict[str, Any], result: WebhookProcessingResult
    ) -> bool:
        owner = await self._resolve_owner(subscription_data.get("customer"), result)
        if owner is None:
            return False

        trial_end = from_unix_timestamp(subscription_data.get("trial_end"))
        if trial_end is None:
            logger.warning(
                f"trial_will_end for {subscription_data.get('id')} without trial_end",
                extra={"event_id": result.event_id},
            )
            result.errors.append("Missing trial_end")
            return False

        report = await self.dispatcher.on_trial_will_end(owner, trial_end)
        self._record_report(report, result)
        return True
