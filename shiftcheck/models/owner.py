"""
Owner model.

WHY: Owners hold the billing relationship for one or more restaurants.
The billing engine only reads owners: to address notifications and to
match a payment-provider customer to an account by email.
"""

from sqlalchemy import Column, String
from sqlalchemy.orm import relationship

from shiftcheck.models.base import Base, TimestampMixin, PrimaryKeyMixin


class Owner(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Owner model representing the account that pays for restaurants.

    RELATIONS:
    - One-to-many with Restaurant
    - One-to-many with Subscription (historical canceled rows are kept)
    """

    __tablename__ = "owners"

    email = Column(String(255), unique=True, index=True, nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)

    restaurants = relationship("Restaurant", back_populates="owner")
    subscriptions = relationship("Subscription", back_populates="owner")

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Owner(id={self.id}, email={self.email})>"

