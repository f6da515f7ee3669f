"""Database package"""

from shiftcheck.db.session import AsyncSessionLocal, engine, get_db
from shiftcheck.models.base import Base

__all__ = ["Base", "AsyncSessionLocal", "engine", "get_db"]
