"""
Restaurant Data Access Object (DAO).

WHAT: Active counts and bulk deactivation for an owner's restaurants.

WHY: Cancellation and trial expiry switch off every restaurant an owner
has in a single UPDATE, so a partial deactivation cannot be observed by
concurrent readers.
"""

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from shiftcheck.dao.base import BaseDAO
from shiftcheck.models.base import utcnow
from shiftcheck.models.restaurant import Restaurant


class RestaurantDAO(BaseDAO[Restaurant]):
    """Data Access Object for Restaurant model."""

    def __init__(self, session: AsyncSession):
        super().__init__(Restaurant, session)

    async def count_active(self, owner_id: int) -> int:
        """Count an owner's active restaurants."""
        result = await self.session.execute(
            select(func.count())
            .select_from(Restaurant)
            .where(Restaurant.owner_id == owner_id, Restaurant.is_active.is_(True))
        )
        return result.scalar_one()

    async def deactivate_all_for_owner(self, owner_id: int) -> int:
        """
        Deactivate every active restaurant of an owner.

        Args:
            owner_id: Owner whose restaurants are switched off

        Returns:
            Number of restaurants that changed state
        """
        result = await self.session.execute(
            update(Restaurant)
            .where(Restaurant.owner_id == owner_id, Restaurant.is_active.is_(True))
            .values(is_active=False, updated_at=utcnow())
        )
        return result.rowcount or 0

