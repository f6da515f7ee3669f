"""
Subscription Reconciler Tests.

WHAT: Unit tests for status mapping, metadata parsing, owner resolution,
upserts and status changes.

WHY: The reconciler is the only writer of subscription rows. These tests
ensure:
- Stripe statuses fold into the four local statuses
- Capacity follows the purchased quantity and falls back safely
- Owners are resolved from local rows first, then by Stripe email
- Unexpected transitions are applied (lenient) or rejected (strict)
"""

from datetime import datetime

import pytest
from unittest.mock import AsyncMock, MagicMock
from sqlalchemy.ext.asyncio import AsyncSession

from shiftcheck.core.exceptions import InvalidStateTransitionError, StripeError
from shiftcheck.dao.restaurant import RestaurantDAO
from shiftcheck.models.subscription import SubscriptionPlan, SubscriptionStatus
from shiftcheck.services.stripe_service import StripeCustomer
from shiftcheck.services.subscription_reconciler import (
    SubscriptionReconciler,
    map_stripe_status,
    parse_capacity,
    parse_plan,
)
from tests.factories import (
    OwnerFactory,
    RestaurantFactory,
    SubscriptionFactory,
    stripe_subscription_payload,
)


@pytest.fixture
def mock_stripe_service():
    """Stripe collaborator with a mocked customer lookup."""
    service = MagicMock()
    service.retrieve_customer = AsyncMock(return_value=None)
    return service


class TestMapping:
    """Tests for the pure mapping helpers."""

    @pytest.mark.parametrize(
        "stripe_status,expected",
        [
            ("trialing", SubscriptionStatus.TRIALING),
            ("active", SubscriptionStatus.ACTIVE),
            ("past_due", SubscriptionStatus.PAST_DUE),
            ("canceled", SubscriptionStatus.CANCELED),
            ("unpaid", SubscriptionStatus.PAST_DUE),
            ("incomplete", SubscriptionStatus.PAST_DUE),
            ("incomplete_expired", SubscriptionStatus.CANCELED),
            ("something_new", SubscriptionStatus.PAST_DUE),
            (None, SubscriptionStatus.PAST_DUE),
        ],
    )
    def test_map_stripe_status(self, stripe_status, expected):
        """Stripe's status vocabulary folds into the closed local set."""
        assert map_stripe_status(stripe_status) == expected

    def test_parse_plan(self):
        """Known plan IDs map; missing or unknown ones default to Grow."""
        assert parse_plan({"plan_id": "expand"}) == SubscriptionPlan.EXPAND
        assert parse_plan({"plan_id": "free_starter"}) == SubscriptionPlan.FREE_STARTER
        assert parse_plan({"plan_id": "platinum"}) == SubscriptionPlan.GROW
        assert parse_plan(None) == SubscriptionPlan.GROW

    @pytest.mark.parametrize(
        "restaurant_count,quantity,expected",
        [
            ("1", 3, 3),
            ("5", 2, 2),
            (None, 4, 4),
            ("3", None, 3),
            (None, None, 1),
            ("abc", None, 1),
            ("0", None, 1),
            (None, 0, 1),
            ("-2", None, 1),
        ],
    )
    def test_parse_capacity(self, restaurant_count, quantity, expected):
        """
        Test capacity precedence.

        WHY: Upgrades only change the item quantity, so the purchased
        quantity wins over the restaurant_count set at checkout.
        """
        payload = stripe_subscription_payload(restaurant_count=restaurant_count, quantity=quantity)
        assert parse_capacity(payload) == expected


@pytest.mark.asyncio
class TestResolveOwner:
    """Tests for owner resolution."""

    async def test_from_existing_subscription(self, db_session: AsyncSession, mock_stripe_service):
        """
        A customer with a local row resolves without calling Stripe.

        WHY: Stripe lookups are slow and rate-limited.
        """
        owner = await OwnerFactory.create(db_session)
        await SubscriptionFactory.create(db_session, owner, stripe_customer_id="cus_known")

        reconciler = SubscriptionReconciler(db_session, stripe_service=mock_stripe_service)

        assert await reconciler.resolve_owner_id("cus_known") == owner.id
        mock_stripe_service.retrieve_customer.assert_not_awaited()

    async def test_from_stripe_email(self, db_session: AsyncSession, mock_stripe_service):
        """A new customer resolves through its Stripe email."""
        owner = await OwnerFactory.create(db_session, email="maria@bistro.com")
        mock_stripe_service.retrieve_customer.return_value = StripeCustomer(
            id="cus_new", email="Maria@Bistro.com"
        )

        reconciler = SubscriptionReconciler(db_session, stripe_service=mock_stripe_service)

        assert await reconciler.resolve_owner_id("cus_new") == owner.id

    async def test_unresolvable(self, db_session: AsyncSession, mock_stripe_service):
        """No row, no matching email, or a Stripe failure yields None."""
        reconciler = SubscriptionReconciler(db_session, stripe_service=mock_stripe_service)

        assert await reconciler.resolve_owner_id(None) is None

        mock_stripe_service.retrieve_customer.return_value = StripeCustomer(
            id="cus_x", email="stranger@example.com"
        )
        assert await reconciler.resolve_owner_id("cus_x") is None

        mock_stripe_service.retrieve_customer.side_effect = StripeError()
        assert await reconciler.resolve_owner_id("cus_y") is None


@pytest.mark.asyncio
class TestUpsert:
    """Tests for upsert_from_provider."""

    async def test_creates_row(self, db_session: AsyncSession, mock_stripe_service):
        """A new Stripe subscription inserts a mapped row."""
        owner = await OwnerFactory.create(db_session)
        reconciler = SubscriptionReconciler(db_session, stripe_service=mock_stripe_service)

        subscription = await reconciler.upsert_from_provider(
            owner.id, stripe_subscription_payload(plan_id="expand", restaurant_count="3")
        )

        assert subscription.owner_id == owner.id
        assert subscription.stripe_subscription_id == "sub_123"
        assert subscription.stripe_customer_id == "cus_123"
        assert subscription.plan_type == SubscriptionPlan.EXPAND
        assert subscription.status == SubscriptionStatus.TRIALING
        assert subscription.max_active_restaurants == 3
        assert subscription.current_period_start == datetime(2026, 1, 5)
        assert subscription.current_period_end == datetime(2026, 1, 19)
        assert subscription.trial_end == datetime(2026, 1, 19)

    async def test_updates_existing_row(self, db_session: AsyncSession, mock_stripe_service):
        """
        An update changes mutable fields but never the owner.

        WHY: The row is keyed by Stripe subscription ID; ownership is
        fixed at creation.
        """
        owner = await OwnerFactory.create(db_session)
        other = await OwnerFactory.create(db_session)
        existing = await SubscriptionFactory.create(
            db_session, owner, stripe_subscription_id="sub_123"
        )
        reconciler = SubscriptionReconciler(db_session, stripe_service=mock_stripe_service)

        updated = await reconciler.upsert_from_provider(
            other.id, stripe_subscription_payload(status="active", restaurant_count="2")
        )

        assert updated.id == existing.id
        assert updated.owner_id == owner.id
        assert updated.status == SubscriptionStatus.ACTIVE
        assert updated.max_active_restaurants == 2

    async def test_quantity_upgrade_keeps_paid_restaurants(
        self, db_session: AsyncSession, mock_stripe_service
    ):
        """
        Test an upgrade where the checkout metadata is stale.

        WHY: The owner paid for three restaurants; an ordinary update must
        not switch any of them off.
        """
        owner = await OwnerFactory.create(db_session)
        await RestaurantFactory.create_batch(db_session, owner, 3)
        await SubscriptionFactory.create(
            db_session, owner, stripe_subscription_id="sub_123", status=SubscriptionStatus.ACTIVE
        )
        reconciler = SubscriptionReconciler(db_session, stripe_service=mock_stripe_service)

        subscription = await reconciler.upsert_from_provider(
            owner.id,
            stripe_subscription_payload(status="active", restaurant_count="1", quantity=3),
        )

        assert subscription.max_active_restaurants == 3
        assert await RestaurantDAO(db_session).count_active(owner.id) == 3

    async def test_over_capacity_is_logged_not_enforced(
        self, db_session: AsyncSession, mock_stripe_service, caplog
    ):
        """
        Test a downgrade below the active restaurant count.

        WHY: Restaurants are only switched off on cancellation or trial
        expiry; an over-capacity owner is reported for follow-up.
        """
        owner = await OwnerFactory.create(db_session)
        await RestaurantFactory.create_batch(db_session, owner, 3)
        reconciler = SubscriptionReconciler(db_session, stripe_service=mock_stripe_service)

        with caplog.at_level("WARNING", logger="shiftcheck.services.subscription_reconciler"):
            await reconciler.upsert_from_provider(
                owner.id, stripe_subscription_payload(restaurant_count=None, quantity=1)
            )

        assert await RestaurantDAO(db_session).count_active(owner.id) == 3
        assert "has 3 active restaurants, capacity is 1" in caplog.text

    async def test_period_from_items(self, db_session: AsyncSession, mock_stripe_service):
        """Newer API versions report the billing period on the item."""
        owner = await OwnerFactory.create(db_session)
        payload = stripe_subscription_payload()
        del payload["current_period_start"]
        del payload["current_period_end"]
        payload["items"]["data"][0].update(
            current_period_start=1767571200, current_period_end=1768780800
        )
        reconciler = SubscriptionReconciler(db_session, stripe_service=mock_stripe_service)

        subscription = await reconciler.upsert_from_provider(owner.id, payload)

        assert subscription.current_period_end == datetime(2026, 1, 19)


@pytest.mark.asyncio
class TestStatusChanges:
    """Tests for set_status and transition checks."""

    async def test_set_status(self, db_session: AsyncSession, mock_stripe_service):
        """A known subscription moves to the target status."""
        owner = await OwnerFactory.create(db_session)
        await SubscriptionFactory.create(db_session, owner, stripe_subscription_id="sub_s")
        reconciler = SubscriptionReconciler(db_session, stripe_service=mock_stripe_service)

        updated = await reconciler.set_status("sub_s", SubscriptionStatus.ACTIVE)

        assert updated.status == SubscriptionStatus.ACTIVE

    async def test_unknown_subscription(self, db_session: AsyncSession, mock_stripe_service):
        """Status changes for unknown subscriptions are ignored."""
        reconciler = SubscriptionReconciler(db_session, stripe_service=mock_stripe_service)

        assert await reconciler.set_status("sub_none", SubscriptionStatus.ACTIVE) is None
        assert await reconciler.set_status_by_id(999, SubscriptionStatus.CANCELED) is None

    async def test_lenient_applies_unexpected_transition(
        self, db_session: AsyncSession, mock_stripe_service
    ):
        """By default canceled -> active is logged and applied."""
        owner = await OwnerFactory.create(db_session)
        await SubscriptionFactory.create(
            db_session, owner, stripe_subscription_id="sub_c", status=SubscriptionStatus.CANCELED
        )
        reconciler = SubscriptionReconciler(
            db_session, stripe_service=mock_stripe_service, strict_transitions=False
        )

        updated = await reconciler.set_status("sub_c", SubscriptionStatus.ACTIVE)

        assert updated.status == SubscriptionStatus.ACTIVE

    async def test_strict_rejects_unexpected_transition(
        self, db_session: AsyncSession, mock_stripe_service
    ):
        """In strict mode canceled -> active raises and changes nothing."""
        owner = await OwnerFactory.create(db_session)
        subscription = await SubscriptionFactory.create(
            db_session, owner, stripe_subscription_id="sub_c", status=SubscriptionStatus.CANCELED
        )
        reconciler = SubscriptionReconciler(
            db_session, stripe_service=mock_stripe_service, strict_transitions=True
        )

        with pytest.raises(InvalidStateTransitionError):
            await reconciler.set_status("sub_c", SubscriptionStatus.ACTIVE)

        assert subscription.status == SubscriptionStatus.CANCELED
