"""
Billing endpoint schemas.

WHAT: Pydantic response schemas for the webhook and sweep endpoints.

WHY: Schemas provide:
1. Type-safe response handling
2. OpenAPI documentation generation
3. Stable JSON key names for the scheduler that calls the sweeps

HOW: Uses Pydantic v2 with Field aliases; sweep counters serialize with
camelCase keys (emailsSent, subscriptionsUpdated, ...).
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Webhooks
# ============================================================================


class WebhookResponse(BaseModel):
    """
    Response for webhook processing.

    WHY: Confirms receipt to Stripe. `duplicate` is only present for
    redeliveries of an already processed event.
    """

    received: bool = True
    duplicate: Optional[bool] = None


# ============================================================================
# Sweeps
# ============================================================================


class TrialExpiringResultsSchema(BaseModel):
    """Counters of the trial-expiring sweep."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    processed: int = 0
    sent: int = 0
    errors: int = 0


class TrialExpiredResultsSchema(BaseModel):
    """Counters of the trial-expired sweep."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    processed: int = 0
    emails_sent: int = Field(default=0, alias="emailsSent")
    subscriptions_updated: int = Field(default=0, alias="subscriptionsUpdated")
    restaurants_deactivated: int = Field(default=0, alias="restaurantsDeactivated")
    errors: int = 0


class TrialExpiringSweepResponse(BaseModel):
    """Response of GET /cron/trial-expiring."""

    success: bool = True
    message: str
    results: TrialExpiringResultsSchema


class TrialExpiredSweepResponse(BaseModel):
    """Response of GET /cron/trial-expired."""

    success: bool = True
    message: str
    results: TrialExpiredResultsSchema


class SweepFailureResponse(BaseModel):
    """Body returned when a sweep raises."""

    success: bool = False
    error: str = "Cron job failed"
