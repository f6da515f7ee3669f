"""
Owner Data Access Object (DAO).

WHAT: Read access to restaurant owners.

WHY: Webhook processing needs to match a Stripe customer to an owner by
email when no subscription row links them yet.
"""

from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from shiftcheck.dao.base import BaseDAO
from shiftcheck.models.owner import Owner


class OwnerDAO(BaseDAO[Owner]):
    """Data Access Object for Owner model."""

    def __init__(self, session: AsyncSession):
        super().__init__(Owner, session)

    async def get_by_email(self, email: str) -> Optional[Owner]:
        """
        Get owner by email, ignoring case.

        WHY: Stripe keeps the email as typed at checkout, which may differ
        in case from the one stored at signup.

        Args:
            email: Email address to look up

        Returns:
            Owner if found, None otherwise
        """
        normalized = email.strip().lower()
        if not normalized:
            return None

        result = await self.session.execute(
            select(Owner).where(func.lower(Owner.email) == normalized).limit(1)
        )
        return result.scalar_one_or_none()
