"""
Data Access Object (DAO) package.

WHY: DAOs provide a clean separation between database operations and business logic,
making the codebase more testable and maintainable.
"""

from shiftcheck.dao.base import BaseDAO
from shiftcheck.dao.owner import OwnerDAO
from shiftcheck.dao.restaurant import RestaurantDAO
from shiftcheck.dao.subscription import SubscriptionDAO

__all__ = [
    "BaseDAO",
    "OwnerDAO",
    "RestaurantDAO",
    "SubscriptionDAO",
]
