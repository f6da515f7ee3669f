"""
Subscription model for restaurant-owner billing.

WHY: Subscriptions are the durable mirror of Stripe billing state:
1. Owners subscribe to a plan (Free Starter, Grow, Expand)
2. The plan carries a capacity (max active restaurants)
3. Stripe handles billing, we track subscription state
4. Webhook events and daily sweeps keep the status in sync

ARCHITECTURE:
- Rows are never hard-deleted; canceled subscriptions stay as history
- Status is a closed set; Stripe's wider status vocabulary is folded into it
  by the reconciler
- Transitions are checked against STATUS_TRANSITIONS before being applied
"""

import enum

from sqlalchemy import (
    Column,
    Integer,
    String,
    Enum,
    ForeignKey,
    DateTime,
    CheckConstraint,
)
from sqlalchemy.orm import relationship

from shiftcheck.models.base import Base, TimestampMixin, PrimaryKeyMixin


class SubscriptionPlan(str, enum.Enum):
    """
    Available subscription plans.

    Plans:
    - FREE_STARTER: Single restaurant, no payment required
    - GROW: Default paid plan
    - EXPAND: Multi-location plan
    """

    FREE_STARTER = "free_starter"
    GROW = "grow"
    EXPAND = "expand"

    @property
    def display_name(self) -> str:
        """Title-cased plan name used in notifications (e.g. "Free Starter")."""
        return self.value.replace("_", " ").title()


class SubscriptionStatus(str, enum.Enum):
    """
    Subscription status values.

    Statuses:
    - TRIALING: Free trial period
    - ACTIVE: Payment successful, full access
    - PAST_DUE: Payment failed, grace period
    - CANCELED: Canceled or trial expired (terminal)
    """

    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


# Allowed status transitions (self-transitions are re-deliveries)
STATUS_TRANSITIONS = {
    SubscriptionStatus.TRIALING: frozenset(
        {
            SubscriptionStatus.TRIALING,
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.PAST_DUE,
            SubscriptionStatus.CANCELED,
        }
    ),
    SubscriptionStatus.ACTIVE: frozenset(
        {
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.PAST_DUE,
            SubscriptionStatus.CANCELED,
        }
    ),
    SubscriptionStatus.PAST_DUE: frozenset(
        {
            SubscriptionStatus.PAST_DUE,
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.CANCELED,
        }
    ),
    SubscriptionStatus.CANCELED: frozenset({SubscriptionStatus.CANCELED}),
}


def is_allowed_transition(current: SubscriptionStatus, target: SubscriptionStatus) -> bool:
    """Check whether moving from current to target status is expected."""
    return target in STATUS_TRANSITIONS.get(current, frozenset())


class Subscription(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Subscription model for tracking owner billing.

    RELATIONS:
    - Many-to-one with Owner (an owner may accumulate canceled rows)
    - Linked to Stripe via stripe_subscription_id (unique)

    LIFECYCLE:
    1. Checkout completes -> customer.subscription.created -> row inserted
    2. Stripe webhooks update status and billing period
    3. Trial-expired sweep cancels trials Stripe never converted
    """

    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint(
            "max_active_restaurants >= 1",
            name="ck_subscriptions_max_active_restaurants_positive",
        ),
    )

    owner_id = Column(
        Integer,
        ForeignKey("owners.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Stripe identifiers
    stripe_subscription_id = Column(String(255), unique=True, nullable=False, index=True)
    stripe_customer_id = Column(String(255), nullable=False, index=True)

    plan_type = Column(
        Enum(
            SubscriptionPlan,
            name="subscription_plan",
            values_callable=lambda enum_cls: [e.value for e in enum_cls],
        ),
        nullable=False,
        default=SubscriptionPlan.GROW,
    )
    status = Column(
        Enum(
            SubscriptionStatus,
            name="subscription_status",
            values_callable=lambda enum_cls: [e.value for e in enum_cls],
        ),
        nullable=False,
        default=SubscriptionStatus.TRIALING,
        index=True,
    )

    # Billing period
    # WHY: For trialing subscriptions current_period_end is the trial end,
    # which is what the sweeps select on
    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True, index=True)
    trial_end = Column(DateTime, nullable=True)

    max_active_restaurants = Column(Integer, nullable=False, default=1)

    owner = relationship("Owner", back_populates="subscriptions")

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Subscription(id={self.id}, owner_id={self.owner_id}, "
            f"plan={self.plan_type}, status={self.status})>"
        )

    @property
    def is_trialing(self) -> bool:
        """Check if subscription is in its trial period."""
        return self.status == SubscriptionStatus.TRIALING

    @property
    def is_canceled(self) -> bool:
        """Check if subscription reached the terminal state."""
        return self.status == SubscriptionStatus.CANCELED
