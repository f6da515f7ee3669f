"""
Subscription Data Access Object (DAO).

WHAT: DAO for managing subscription records in the database.

WHY: Subscriptions are looked up three ways:
1. By Stripe subscription ID when a webhook arrives
2. By Stripe customer ID to find the owner behind an event
3. By trial end window for the daily sweeps

HOW: Extends BaseDAO with those queries. Sweep queries eagerly load the
owner because every sweep item sends an email to the owner.
"""

from datetime import datetime
from typing import Optional, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from shiftcheck.dao.base import BaseDAO
from shiftcheck.models.subscription import Subscription, SubscriptionStatus


class SubscriptionDAO(BaseDAO[Subscription]):
    """
    Data Access Object for Subscription model.

    WHAT: Handles all database operations for subscriptions.

    WHY: Centralizes subscription queries for webhook reconciliation
    and the trial sweeps.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize SubscriptionDAO.

        Args:
            session: Async database session
        """
        super().__init__(Subscription, session)

    async def get_by_stripe_subscription_id(
        self, stripe_subscription_id: str
    ) -> Optional[Subscription]:
        """
        Get subscription by Stripe subscription ID.

        WHY: Essential for webhook processing. When Stripe sends events,
        we need to find the corresponding subscription in our database.

        Args:
            stripe_subscription_id: Stripe subscription ID (sub_xxx)

        Returns:
            Subscription if found, None otherwise
        """
        result = await self.session.execute(
            select(Subscription).where(
                Subscription.stripe_subscription_id == stripe_subscription_id
            )
        )
        return result.scalar_one_or_none()

    async def get_by_stripe_customer_id(
        self, stripe_customer_id: str
    ) -> Optional[Subscription]:
        """
        Get the most recent subscription for a Stripe customer.

        WHY: A customer can accumulate several subscriptions over time
        (cancel, resubscribe); all of them belong to the same owner.

        Args:
            stripe_customer_id: Stripe customer ID (cus_xxx)

        Returns:
            Newest matching subscription, or None
        """
        result = await self.session.execute(
            select(Subscription)
            .where(Subscription.stripe_customer_id == stripe_customer_id)
            .order_by(Subscription.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_trialing_ending_between(
        self, start: datetime, end: datetime
    ) -> List[Subscription]:
        """
        Get trialing subscriptions whose current period ends in [start, end].

        WHAT: Candidate cohort for the trial-expiring and trial-expired sweeps.

        HOW: Both bounds inclusive; owner joined in the same query.

        Args:
            start: Window start (naive UTC)
            end: Window end (naive UTC), inclusive

        Returns:
            Matching subscriptions ordered by ID
        """
        result = await self.session.execute(
            select(Subscription)
            .options(joinedload(Subscription.owner))
            .where(
                Subscription.status == SubscriptionStatus.TRIALING,
                Subscription.current_period_end >= start,
                Subscription.current_period_end <= end,
            )
            .order_by(Subscription.id)
        )
        return list(result.scalars().unique().all())
