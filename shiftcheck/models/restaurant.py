"""
Restaurant model.

WHY: The active flag decides whether a restaurant can run shift checks.
Activation is handled by account management; the billing engine only
switches restaurants off when their owner stops paying (cancellation,
trial expiry).
"""

from sqlalchemy import Column, Integer, String, ForeignKey, Boolean
from sqlalchemy.orm import relationship

from shiftcheck.models.base import Base, TimestampMixin, PrimaryKeyMixin


class Restaurant(Base, PrimaryKeyMixin, TimestampMixin):
    """Restaurant owned by an Owner."""

    __tablename__ = "restaurants"

    owner_id = Column(
        Integer,
        ForeignKey("owners.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    owner = relationship("Owner", back_populates="restaurants")

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Restaurant(id={self.id}, owner_id={self.owner_id}, "
            f"is_active={self.is_active})>"
        )
