"""
Trial expiration sweeps.

WHAT: Two daily batch jobs over trialing subscriptions:
1. Trial expiring: remind owners whose trial ends in TRIAL_REMINDER_DAYS
2. Trial expired: cancel trials that ended yesterday, switch off the
   owner's restaurants and notify the owner

WHY: Stripe sends trial_will_end only once and only for subscriptions it
manages; the sweeps make sure every trialing account gets the reminder and
that lapsed trials stop running shift checks.

HOW: Each sweep selects one UTC calendar day of current_period_end values
(a bounded window, so a later run never reprocesses an earlier cohort) and
processes items sequentially on one session. Every item and every step is
isolated: a failure is logged, counted and rolled back, and the sweep moves
on. At most one error is counted per item.

The sweep cohort is snapshotted into plain values up front because a
rollback expires every ORM instance loaded in the session.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from shiftcheck.core.config import settings
from shiftcheck.dao.subscription import SubscriptionDAO
from shiftcheck.models.base import utcnow
from shiftcheck.models.subscription import Subscription, SubscriptionStatus
from shiftcheck.services.lifecycle_dispatcher import LifecycleDispatcher, OwnerContact
from shiftcheck.services.subscription_reconciler import SubscriptionReconciler

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================


@dataclass
class TrialExpiringResults:
    """Counters reported by the trial-expiring sweep."""

    processed: int = 0
    sent: int = 0
    errors: int = 0


@dataclass
class TrialExpiredResults:
    """Counters reported by the trial-expired sweep."""

    processed: int = 0
    emails_sent: int = 0
    subscriptions_updated: int = 0
    restaurants_deactivated: int = 0
    errors: int = 0


@dataclass(frozen=True)
class SweepItem:
    """Plain-value snapshot of one subscription in a sweep cohort."""

    subscription_id: int
    stripe_subscription_id: str
    current_period_end: Optional[datetime]
    owner: Optional[OwnerContact]

    @classmethod
    def from_subscription(cls, subscription: Subscription) -> "SweepItem":
        owner = subscription.owner
        return cls(
            subscription_id=subscription.id,
            stripe_subscription_id=subscription.stripe_subscription_id,
            current_period_end=subscription.current_period_end,
            owner=OwnerContact.from_owner(owner) if owner is not None else None,
        )


def day_window(now: datetime, offset_days: int) -> Tuple[datetime, datetime]:
    """
    UTC calendar day `offset_days` away from `now`, as inclusive bounds.

    Args:
        now: Reference time (naive UTC, or aware in any zone)
        offset_days: Day offset (+7 for a week ahead, -1 for yesterday)

    Returns:
        (start of day, last microsecond of day) as naive UTC datetimes
    """
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc).replace(tzinfo=None)
    day = (now + timedelta(days=offset_days)).date()
    start = datetime.combine(day, time.min)
    end = start + timedelta(days=1) - timedelta(microseconds=1)
    return start, end


# ============================================================================
# Sweep Service
# ============================================================================


class TrialSweepService:
    """
    Service running the trial sweeps.

    WHAT: Selects the cohort, drives reconciler and dispatcher per item,
    and aggregates counters.
    """

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: Optional[LifecycleDispatcher] = None,
        reconciler: Optional[SubscriptionReconciler] = None,
    ):
        """
        Initialize sweep service.

        Args:
            db: Async database session shared by all items
            dispatcher: Side-effect dispatcher (built on db if not provided)
            reconciler: Subscription reconciler (built on db if not provided)
        """
        self.db = db
        self.dao = SubscriptionDAO(db)
        self.dispatcher = dispatcher or LifecycleDispatcher(db)
        self.reconciler = reconciler or SubscriptionReconciler(db)

    async def _load_cohort(self, start: datetime, end: datetime) -> List[SweepItem]:
        subscriptions = await self.dao.get_trialing_ending_between(start, end)
        return [SweepItem.from_subscription(s) for s in subscriptions]

    # ========================================================================
    # Trial Expiring
    # ========================================================================

    async def run_trial_expiring_sweep(
        self,
        now: Optional[datetime] = None,
        days_ahead: Optional[int] = None,
    ) -> TrialExpiringResults:
        """
        Send trial ending reminders for trials ending `days_ahead` days out.

        Args:
            now: Reference time (defaults to current UTC time)
            days_ahead: Day offset (defaults to TRIAL_REMINDER_DAYS)

        Returns:
            TrialExpiringResults

        Raises:
            Exception: Only if the cohort query itself fails
        """
        now = now or utcnow()
        days_ahead = settings.TRIAL_REMINDER_DAYS if days_ahead is None else days_ahead
        start, end = day_window(now, days_ahead)
        cohort = await self._load_cohort(start, end)

        logger.info(
            f"Trial-expiring sweep found {len(cohort)} trials ending {start.date()}",
            extra={"window_start": start.isoformat(), "cohort_size": len(cohort)},
        )

        results = TrialExpiringResults()
        for item in cohort:
            results.processed += 1
            log_extra = {
                "subscription_id": item.subscription_id,
                "owner_id": item.owner.id if item.owner else None,
            }

            if item.owner is None or not item.owner.email:
                logger.error(
                    f"No owner email for trialing subscription {item.subscription_id}",
                    extra=log_extra,
                )
                results.errors += 1
                continue

            try:
                await self.dispatcher.send_trial_ending(item.owner, item.current_period_end)
                results.sent += 1
            except Exception as e:
                logger.error(
                    f"Trial ending email failed for subscription {item.subscription_id}: {e}",
                    extra=log_extra,
                )
                results.errors += 1

        logger.info(
            f"Trial-expiring sweep completed: {results}",
            extra={"processed": results.processed, "sent": results.sent, "errors": results.errors},
        )
        return results

    # ========================================================================
    # Trial Expired
    # ========================================================================

    async def _cancel_subscription(self, item: SweepItem) -> bool:
        try:
            await self.reconciler.set_status_by_id(
                item.subscription_id, SubscriptionStatus.CANCELED
            )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(
                f"Failed to cancel expired trial {item.subscription_id}: {e}",
                extra={"subscription_id": item.subscription_id},
            )
            return False
        return True

    async def run_trial_expired_sweep(self, now: Optional[datetime] = None) -> TrialExpiredResults:
        """
        Cancel trials whose period ended yesterday (UTC).

        Per item, three independent steps: status -> canceled, deactivate
        the owner's restaurants, send the trial expired email.

        Args:
            now: Reference time (defaults to current UTC time)

        Returns:
            TrialExpiredResults

        Raises:
            Exception: Only if the cohort query itself fails
        """
        now = now or utcnow()
        start, end = day_window(now, -1)
        cohort = await self._load_cohort(start, end)

        logger.info(
            f"Trial-expired sweep found {len(cohort)} trials ended {start.date()}",
            extra={"window_start": start.isoformat(), "cohort_size": len(cohort)},
        )

        results = TrialExpiredResults()
        for item in cohort:
            results.processed += 1
            errored = False

            if await self._cancel_subscription(item):
                results.subscriptions_updated += 1
            else:
                errored = True

            if item.owner is not None:
                report = await self.dispatcher.on_trial_expired(item.owner)

                deactivation = report.get("deactivate_restaurants")
                if deactivation is not None and deactivation.success:
                    results.restaurants_deactivated += 1
                else:
                    errored = True

                email = report.get("send_trial_expired")
                if email is not None:
                    if email.success:
                        results.emails_sent += 1
                    else:
                        errored = True

            if errored:
                results.errors += 1

        logger.info(
            f"Trial-expired sweep completed: {results}",
            extra={
                "processed": results.processed,
                "emails_sent": results.emails_sent,
                "subscriptions_updated": results.subscriptions_updated,
                "restaurants_deactivated": results.restaurants_deactivated,
                "errors": results.errors,
            },
        )
        return results
