"""
Lifecycle side-effect dispatcher.

WHAT: Runs the side effects that follow a subscription lifecycle
transition: owner notifications and restaurant deactivation.

WHY: Side effects are kept apart from state reconciliation so that:
1. A failed email never rolls back a billing state change
2. One failed action never prevents its siblings from running
3. Every action outcome is logged and reported individually

HOW: Each transition entry point builds a set of named actions and runs
them concurrently with asyncio.gather. Each action's outcome is captured
as an ActionResult; exceptions are converted, never propagated. Only the
deactivation action touches the database session, so concurrent actions
never share it.

The dispatcher never modifies Subscription rows.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from shiftcheck.core.exceptions import EmailServiceError
from shiftcheck.dao.restaurant import RestaurantDAO
from shiftcheck.models.owner import Owner
from shiftcheck.models.subscription import Subscription, SubscriptionPlan
from shiftcheck.services.email import EmailResult, EmailService, get_email_service

logger = logging.getLogger(__name__)


PAYMENT_AMOUNT_FALLBACK = "your subscription"


# ============================================================================
# Formatting Helpers
# ============================================================================


def format_amount(cents: Optional[int]) -> str:
    """
    Format an amount in cents as dollars ("$12.34").

    Missing or zero amounts read as "your subscription" in the email copy.
    """
    if not cents:
        return PAYMENT_AMOUNT_FALLBACK
    return f"${cents / 100:.2f}"


def format_long_date(value: datetime) -> str:
    """Format a date as "Monday, January 5, 2026"."""
    return f"{value:%A}, {value:%B} {value.day}, {value.year}"


# ============================================================================
# Data Classes
# ============================================================================


@dataclass(frozen=True)
class OwnerContact:
    """
    Snapshot of the owner fields side effects need.

    WHY: A failed action rolls back the session, which expires loaded ORM
    instances; actions therefore work from plain values, never from
    Owner rows that might lazy-load.
    """

    id: int
    email: Optional[str]
    first_name: Optional[str] = None

    @classmethod
    def from_owner(cls, owner: Owner) -> "OwnerContact":
        return cls(id=owner.id, email=owner.email, first_name=owner.first_name)


def greeting_name(owner: OwnerContact) -> str:
    """Owner's first name, or "there"."""
    return owner.first_name or "there"


@dataclass
class ActionResult:
    """Outcome of one side-effect action."""

    action: str
    success: bool
    detail: Optional[str] = None
    data: Any = None


@dataclass
class DispatchReport:
    """
    Outcomes of all actions run for one transition.

    WHY: Callers (sweeps, webhook logging, tests) inspect outcomes per
    action instead of relying on exceptions.
    """

    transition: str
    results: List[ActionResult] = field(default_factory=list)

    @property
    def all_succeeded(self) -> bool:
        return all(r.success for r in self.results)

    @property
    def failed(self) -> List[ActionResult]:
        return [r for r in self.results if not r.success]

    def get(self, action: str) -> Optional[ActionResult]:
        """Result of a named action, if it ran."""
        for result in self.results:
            if result.action == action:
                return result
        return None


# ============================================================================
# Dispatcher
# ============================================================================


class LifecycleDispatcher:
    """
    Dispatcher for lifecycle side effects.

    WHAT: Transition entry points (on_*) and the individual actions they
    compose. Actions raise on failure; entry points never raise.
    """

    def __init__(self, db: AsyncSession, email_service: Optional[EmailService] = None):
        """
        Initialize dispatcher.

        Args:
            db: Async database session (used only for deactivation)
            email_service: Email collaborator (defaults to the global one)
        """
        self.db = db
        self.restaurant_dao = RestaurantDAO(db)
        self.email_service = email_service or get_email_service()

    # ========================================================================
    # Actions
    # ========================================================================

    @staticmethod
    def _require_sent(action: str, result: EmailResult) -> EmailResult:
        if not result.success:
            raise EmailServiceError(message=result.error or f"{action} failed", action=action)
        return result

    async def send_subscription_confirmed(
        self, owner: OwnerContact, plan: SubscriptionPlan, restaurant_count: int
    ) -> EmailResult:
        result = await self.email_service.send_subscription_confirmed_email(
            owner.email, greeting_name(owner), plan.display_name, restaurant_count
        )
        return self._require_sent("send_subscription_confirmed", result)

    async def send_subscription_cancelled(self, owner: OwnerContact) -> EmailResult:
        result = await self.email_service.send_subscription_cancelled_email(
            owner.email, greeting_name(owner)
        )
        return self._require_sent("send_subscription_cancelled", result)

    async def send_payment_failed(self, owner: OwnerContact, amount_due: Optional[int]) -> EmailResult:
        result = await self.email_service.send_payment_failed_email(
            owner.email, greeting_name(owner), format_amount(amount_due)
        )
        return self._require_sent("send_payment_failed", result)

    async def send_trial_ending(self, owner: OwnerContact, trial_end: datetime) -> EmailResult:
        result = await self.email_service.send_trial_ending_email(
            owner.email, greeting_name(owner), format_long_date(trial_end)
        )
        return self._require_sent("send_trial_ending", result)

    async def send_trial_expired(self, owner: OwnerContact) -> EmailResult:
        result = await self.email_service.send_trial_expired_email(
            owner.email, greeting_name(owner)
        )
        return self._require_sent("send_trial_expired", result)

    async def deactivate_restaurants(self, owner_id: int) -> int:
        """
        Deactivate all of an owner's restaurants and commit.

        Returns:
            Number of restaurants deactivated

        Raises:
            Exception: Any database error, after rolling back
        """
        try:
            count = await self.restaurant_dao.deactivate_all_for_owner(owner_id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            f"Deactivated {count} restaurants for owner {owner_id}",
            extra={"owner_id": owner_id, "deactivated": count},
        )
        return count

    # ========================================================================
    # Dispatch
    # ========================================================================

    async def _run_action(
        self, transition: str, action: str, operation: Callable[[], Awaitable[Any]]
    ) -> ActionResult:
        try:
            data = await operation()
        except Exception as e:
            logger.error(
                f"Lifecycle action {action} failed for {transition}: {e}",
                extra={"transition": transition, "action": action},
            )
            return ActionResult(action=action, success=False, detail=str(e))

        logger.info(
            f"Lifecycle action {action} succeeded for {transition}",
            extra={"transition": transition, "action": action},
        )
        return ActionResult(action=action, success=True, data=data)

    async def dispatch(
        self, transition: str, actions: Dict[str, Callable[[], Awaitable[Any]]]
    ) -> DispatchReport:
        """
        Run named actions concurrently and collect their outcomes.

        Args:
            transition: Transition name for logging
            actions: Action name -> zero-argument coroutine factory

        Returns:
            DispatchReport with one ActionResult per action
        """
        results = await asyncio.gather(
            *(self._run_action(transition, name, op) for name, op in actions.items())
        )
        return DispatchReport(transition=transition, results=list(results))

    def _email_actions(
        self, owner: OwnerContact, transition: str, actions: Dict[str, Callable[[], Awaitable[Any]]]
    ) -> Dict[str, Callable[[], Awaitable[Any]]]:
        """Drop email actions when the owner has no address."""
        if owner.email:
            return actions
        logger.warning(
            f"Owner {owner.id} has no email, skipping {transition} notification",
            extra={"owner_id": owner.id, "transition": transition},
        )
        return {}

    # ========================================================================
    # Transition Entry Points
    # ========================================================================

    async def on_subscription_created(
        self, owner: OwnerContact, subscription: Subscription
    ) -> DispatchReport:
        """Confirmation email with plan name and restaurant capacity."""
        plan = SubscriptionPlan(subscription.plan_type)
        restaurant_count = subscription.max_active_restaurants
        actions = self._email_actions(
            owner,
            "created",
            {
                "send_subscription_confirmed": lambda: self.send_subscription_confirmed(
                    owner, plan, restaurant_count
                ),
            },
        )
        return await self.dispatch("created", actions)

    async def on_subscription_canceled(self, owner: OwnerContact) -> DispatchReport:
        """Deactivate all restaurants and send the cancellation email."""
        actions: Dict[str, Callable[[], Awaitable[Any]]] = {
            "deactivate_restaurants": lambda: self.deactivate_restaurants(owner.id),
        }
        actions.update(
            self._email_actions(
                owner,
                "canceled",
                {"send_subscription_cancelled": lambda: self.send_subscription_cancelled(owner)},
            )
        )
        return await self.dispatch("canceled", actions)

    async def on_payment_failed(self, owner: OwnerContact, amount_due: Optional[int]) -> DispatchReport:
        """Payment failed email with the formatted amount due."""
        actions = self._email_actions(
            owner,
            "payment_failed",
            {"send_payment_failed": lambda: self.send_payment_failed(owner, amount_due)},
        )
        return await self.dispatch("payment_failed", actions)

    async def on_trial_will_end(self, owner: OwnerContact, trial_end: datetime) -> DispatchReport:
        """Trial ending reminder with the long-form end date."""
        actions = self._email_actions(
            owner,
            "trial_will_end",
            {"send_trial_ending": lambda: self.send_trial_ending(owner, trial_end)},
        )
        return await self.dispatch("trial_will_end", actions)

    async def on_trial_expired(self, owner: OwnerContact) -> DispatchReport:
        """Deactivate all restaurants and send the trial expired email."""
        actions: Dict[str, Callable[[], Awaitable[Any]]] = {
            "deactivate_restaurants": lambda: self.deactivate_restaurants(owner.id),
        }
        actions.update(
            self._email_actions(
                owner,
                "trial_expired",
                {"send_trial_expired": lambda: self.send_trial_expired(owner)},
            )
        )
        return await self.dispatch("trial_expired", actions)
