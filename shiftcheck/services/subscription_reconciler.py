"""
Subscription reconciler.

WHAT: Folds Stripe subscription objects and status signals into the local
Subscription table, and resolves which owner a Stripe customer belongs to.

WHY: Stripe is the source of truth for billing, but the product reads
subscription state from our database on every request. The reconciler is
the only writer of subscription rows, so every state change goes through
the same mapping and transition rules.

HOW:
- Owner resolution: existing subscription row for the customer, else the
  Stripe customer's email matched against owners (case-insensitive)
- Upsert: insert by Stripe subscription ID, or update the mutable fields
  of the existing row (never its owner)
- Status changes are checked against STATUS_TRANSITIONS; unexpected ones
  are logged and applied, or rejected when strict mode is on
- After an upsert, owners above capacity are logged (restaurants are
  only switched off on cancellation or trial expiry)

The reconciler flushes but never commits; callers own the transaction.
"""

import logging
from typing import Optional, Dict, Any

from sqlalchemy.ext.asyncio import AsyncSession

from shiftcheck.core.config import settings
from shiftcheck.core.exceptions import InvalidStateTransitionError, StripeError
from shiftcheck.dao.owner import OwnerDAO
from shiftcheck.dao.restaurant import RestaurantDAO
from shiftcheck.dao.subscription import SubscriptionDAO
from shiftcheck.models.base import from_unix_timestamp
from shiftcheck.models.subscription import (
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
    is_allowed_transition,
)
from shiftcheck.services.stripe_service import StripeService, get_stripe_service

logger = logging.getLogger(__name__)


# Stripe status vocabulary folded into our closed set
# WHY: incomplete/unpaid/paused all mean "payment needs attention" and keep
# the owner in the grace state; incomplete_expired never became a paid
# subscription and is terminal.
STRIPE_STATUS_MAP = {
    "trialing": SubscriptionStatus.TRIALING,
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "paused": SubscriptionStatus.PAST_DUE,
    "incomplete_expired": SubscriptionStatus.CANCELED,
}

DEFAULT_PLAN = SubscriptionPlan.GROW


def map_stripe_status(stripe_status: Optional[str]) -> SubscriptionStatus:
    """
    Map a Stripe subscription status onto SubscriptionStatus.

    Unknown values are treated as past_due so access is kept but flagged.
    """
    status = STRIPE_STATUS_MAP.get(stripe_status or "")
    if status is None:
        logger.warning(
            f"Unknown Stripe subscription status {stripe_status!r}, treating as past_due",
            extra={"stripe_status": stripe_status},
        )
        return SubscriptionStatus.PAST_DUE
    return status


def parse_plan(metadata: Optional[Dict[str, Any]]) -> SubscriptionPlan:
    """Plan from subscription metadata `plan_id`, defaulting to Grow."""
    plan_id = (metadata or {}).get("plan_id")
    try:
        return SubscriptionPlan(plan_id)
    except ValueError:
        if plan_id:
            logger.warning(f"Unknown plan_id {plan_id!r} in subscription metadata, using grow")
        return DEFAULT_PLAN


def _first_item(stripe_subscription: Dict[str, Any]) -> Dict[str, Any]:
    items = (stripe_subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def parse_capacity(stripe_subscription: Dict[str, Any]) -> int:
    """
    Max active restaurants for a subscription.

    Order: purchased item quantity, metadata `restaurant_count`, then 1.
    Upgrades only change the item quantity, so the checkout metadata can
    be stale. Unparseable or non-positive values fall back to 1.
    """
    raw = _first_item(stripe_subscription).get("quantity")
    if raw in (None, ""):
        raw = (stripe_subscription.get("metadata") or {}).get("restaurant_count")

    try:
        capacity = int(str(raw).strip()) if raw is not None else 1
    except ValueError:
        logger.warning(f"Unparseable restaurant_count {raw!r}, using 1")
        return 1

    return capacity if capacity >= 1 else 1


def _period_bound(stripe_subscription: Dict[str, Any], key: str) -> Optional[int]:
    """
    Billing period timestamp from the subscription or its first item.

    WHY: Newer Stripe API versions report the period on subscription items
    instead of the subscription itself.
    """
    return stripe_subscription.get(key) or _first_item(stripe_subscription).get(key)


class SubscriptionReconciler:
    """
    Service that keeps Subscription rows in line with Stripe.

    WHAT: Owner resolution, upserts from Stripe objects, status changes.

    HOW: Built per request/sweep on the caller's session, like the other
    DB-backed services.
    """

    def __init__(
        self,
        db: AsyncSession,
        stripe_service: Optional[StripeService] = None,
        strict_transitions: Optional[bool] = None,
    ):
        """
        Initialize reconciler.

        Args:
            db: Async database session
            stripe_service: Stripe collaborator (defaults to the global one)
            strict_transitions: Reject unexpected transitions (defaults to settings)
        """
        self.db = db
        self.dao = SubscriptionDAO(db)
        self.owner_dao = OwnerDAO(db)
        self.restaurant_dao = RestaurantDAO(db)
        self._stripe_service = stripe_service
        self.strict_transitions = (
            settings.STRICT_STATUS_TRANSITIONS if strict_transitions is None else strict_transitions
        )

    @property
    def stripe_service(self) -> StripeService:
        if self._stripe_service is None:
            self._stripe_service = get_stripe_service()
        return self._stripe_service

    # ========================================================================
    # Owner Resolution
    # ========================================================================

    async def resolve_owner_id(self, customer_id: Optional[str]) -> Optional[int]:
        """
        Find the owner behind a Stripe customer.

        WHAT: Subscription row for the customer first, then the customer's
        email looked up in Stripe and matched to an owner.

        Args:
            customer_id: Stripe customer ID (cus_xxx)

        Returns:
            Owner ID, or None when the customer cannot be matched
        """
        if not customer_id:
            return None

        existing = await self.dao.get_by_stripe_customer_id(customer_id)
        if existing is not None:
            return existing.owner_id

        try:
            customer = await self.stripe_service.retrieve_customer(customer_id)
        except StripeError as e:
            logger.error(
                f"Could not resolve owner for customer {customer_id}: {e.message}",
                extra={"customer_id": customer_id},
            )
            return None

        if customer is None or not customer.email:
            logger.warning(
                f"Stripe customer {customer_id} has no usable email",
                extra={"customer_id": customer_id},
            )
            return None

        owner = await self.owner_dao.get_by_email(customer.email)
        if owner is None:
            logger.warning(
                f"No owner matches email of Stripe customer {customer_id}",
                extra={"customer_id": customer_id},
            )
            return None

        return owner.id

    # ========================================================================
    # Upsert
    # ========================================================================

    async def upsert_from_provider(
        self,
        owner_id: int,
        stripe_subscription: Dict[str, Any],
    ) -> Subscription:
        """
        Insert or update the row for a Stripe subscription object.

        WHAT: Maps plan, capacity, status and period fields; then logs a
        warning if the owner has more active restaurants than capacity.

        WHY: created and updated events carry the full subscription object,
        so both are handled as an upsert keyed by the Stripe subscription ID.

        Args:
            owner_id: Resolved owner (only used when inserting)
            stripe_subscription: Stripe subscription object from webhook

        Returns:
            The inserted or updated Subscription

        Raises:
            InvalidStateTransitionError: In strict mode, for an unexpected
                status change on an existing row
        """
        stripe_subscription_id = stripe_subscription["id"]
        fields = {
            "stripe_customer_id": stripe_subscription.get("customer"),
            "plan_type": parse_plan(stripe_subscription.get("metadata")),
            "status": map_stripe_status(stripe_subscription.get("status")),
            "current_period_start": from_unix_timestamp(
                _period_bound(stripe_subscription, "current_period_start")
            ),
            "current_period_end": from_unix_timestamp(
                _period_bound(stripe_subscription, "current_period_end")
            ),
            "trial_end": from_unix_timestamp(stripe_subscription.get("trial_end")),
            "max_active_restaurants": parse_capacity(stripe_subscription),
        }

        subscription = await self.dao.get_by_stripe_subscription_id(stripe_subscription_id)

        if subscription is None:
            subscription = await self.dao.create(
                owner_id=owner_id,
                stripe_subscription_id=stripe_subscription_id,
                **fields,
            )
            logger.info(
                f"Created subscription {stripe_subscription_id} for owner {owner_id}",
                extra={
                    "stripe_subscription_id": stripe_subscription_id,
                    "owner_id": owner_id,
                    "status": subscription.status.value,
                    "plan_type": subscription.plan_type.value,
                },
            )
        else:
            self._check_transition(subscription, fields["status"])
            if not fields["stripe_customer_id"]:
                fields.pop("stripe_customer_id")
            subscription = await self.dao.update_fields(subscription, **fields)
            logger.info(
                f"Updated subscription {stripe_subscription_id}",
                extra={
                    "stripe_subscription_id": stripe_subscription_id,
                    "owner_id": subscription.owner_id,
                    "status": subscription.status.value,
                },
            )

        await self._report_over_capacity(subscription)
        return subscription

    async def _report_over_capacity(self, subscription: Subscription) -> int:
        """
        Log owners with more active restaurants than they pay for.

        Restaurants are only switched off on cancellation or trial expiry;
        choosing which ones to keep belongs to the owner's account settings.
        """
        active = await self.restaurant_dao.count_active(subscription.owner_id)
        if active > subscription.max_active_restaurants:
            logger.warning(
                f"Owner {subscription.owner_id} has {active} active restaurants, "
                f"capacity is {subscription.max_active_restaurants}",
                extra={
                    "owner_id": subscription.owner_id,
                    "active_restaurants": active,
                    "max_active_restaurants": subscription.max_active_restaurants,
                },
            )
        return active

    # ========================================================================
    # Status Changes
    # ========================================================================

    def _check_transition(self, subscription: Subscription, target: SubscriptionStatus) -> None:
        current = SubscriptionStatus(subscription.status)
        if is_allowed_transition(current, target):
            return

        logger.warning(
            f"Unexpected subscription transition {current.value} -> {target.value} "
            f"for {subscription.stripe_subscription_id}",
            extra={
                "stripe_subscription_id": subscription.stripe_subscription_id,
                "from_status": current.value,
                "to_status": target.value,
                "strict": self.strict_transitions,
            },
        )
        if self.strict_transitions:
            raise InvalidStateTransitionError(
                from_status=current.value,
                to_status=target.value,
            )

    async def _apply_status(
        self, subscription: Subscription, status: SubscriptionStatus
    ) -> Subscription:
        self._check_transition(subscription, status)
        previous = subscription.status
        subscription = await self.dao.update_fields(subscription, status=status)
        logger.info(
            f"Subscription {subscription.stripe_subscription_id} status "
            f"{previous.value} -> {status.value}",
            extra={
                "stripe_subscription_id": subscription.stripe_subscription_id,
                "owner_id": subscription.owner_id,
                "status": status.value,
            },
        )
        return subscription

    async def set_status(
        self, stripe_subscription_id: str, status: SubscriptionStatus
    ) -> Optional[Subscription]:
        """
        Set the status of the row for a Stripe subscription ID.

        Args:
            stripe_subscription_id: Stripe subscription ID (sub_xxx)
            status: Target status

        Returns:
            Updated Subscription, or None if no row exists

        Raises:
            InvalidStateTransitionError: In strict mode, for an unexpected change
        """
        subscription = await self.dao.get_by_stripe_subscription_id(stripe_subscription_id)
        if subscription is None:
            logger.warning(
                f"Status change for unknown subscription {stripe_subscription_id}",
                extra={"stripe_subscription_id": stripe_subscription_id, "status": status.value},
            )
            return None
        return await self._apply_status(subscription, status)

    async def set_status_by_id(
        self, subscription_id: int, status: SubscriptionStatus
    ) -> Optional[Subscription]:
        """Set the status of a subscription by primary key (used by sweeps)."""
        subscription = await self.dao.get_by_id(subscription_id)
        if subscription is None:
            logger.warning(
                f"Status change for unknown subscription id {subscription_id}",
                extra={"subscription_id": subscription_id, "status": status.value},
            )
            return None
        return await self._apply_status(subscription, status)
