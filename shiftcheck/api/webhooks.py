"""
Stripe webhook endpoint.

WHAT: POST /webhooks/stripe - Handle Stripe subscription and invoice events

WHY: Webhooks are the source of truth for subscription state. Stripe
retries any delivery that does not get a 2xx, so:
- Deliveries that fail verification get 400 and change nothing
- Verified deliveries always get 200, even if processing fails downstream
  (failures are logged for follow-up instead of looping redeliveries)

SECURITY:
- Signature verified against the exact raw body before anything else
- No authentication beyond the signature (Stripe cannot send tokens)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from shiftcheck.core.deps import get_db
from shiftcheck.middleware.request_context import get_request_id
from shiftcheck.schemas.billing import WebhookResponse
from shiftcheck.services.webhook_service import WebhookService

logger = logging.getLogger(__name__)

# Separate router for webhooks (no auth required)
router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post(
    "/stripe",
    response_model=WebhookResponse,
    response_model_exclude_none=True,
    summary="Stripe billing webhook",
    description="Handles Stripe subscription and invoice webhooks.",
)
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
) -> WebhookResponse:
    """
    Handle Stripe billing webhooks.

    Events:
    - customer.subscription.created / updated / deleted / trial_will_end
    - invoice.payment_succeeded / invoice.payment_failed

    Returns:
        {"received": true}, plus "duplicate": true for redeliveries

    Raises:
        WebhookSignatureError: Missing or invalid signature (400)
    """
    # Raw bytes; re-serialized JSON would not match the signature
    payload = await request.body()

    service = WebhookService(db)
    result = await service.process(payload, stripe_signature)

    logger.info(
        f"Webhook {result.event_type} acknowledged",
        extra={
            "event_id": result.event_id,
            "event_type": result.event_type,
            "request_id": get_request_id(),
            "duplicate": result.duplicate,
            "handled": result.handled,
            "errors": len(result.errors),
        },
    )

    if result.duplicate:
        return WebhookResponse(received=True, duplicate=True)
    return WebhookResponse(received=True)
