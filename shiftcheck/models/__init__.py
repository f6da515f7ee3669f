"""
Database models package.

WHY: Centralizing model imports ensures Alembic can discover all models
for migration generation and makes it easier to import models elsewhere.
"""

from shiftcheck.models.base import Base, TimestampMixin, PrimaryKeyMixin
from shiftcheck.models.owner import Owner
from shiftcheck.models.restaurant import Restaurant
from shiftcheck.models.subscription import (
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
    STATUS_TRANSITIONS,
    is_allowed_transition,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "PrimaryKeyMixin",
    "Owner",
    "Restaurant",
    "Subscription",
    "SubscriptionPlan",
    "SubscriptionStatus",
    "STATUS_TRANSITIONS",
    "is_allowed_transition",
]
