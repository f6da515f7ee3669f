"""
FastAPI dependencies shared by the billing endpoints.

WHY: Dependencies provide reusable request-level checks that can be
injected into route handlers, so every sweep endpoint authenticates the
same way.
"""

import hmac
import logging
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from shiftcheck.core.config import settings
from shiftcheck.core.exceptions import AuthenticationError, ConfigurationError
from shiftcheck.db.session import get_db

logger = logging.getLogger(__name__)


# HTTP Bearer token security scheme
# WHY: auto_error=False so a missing header maps to our 401 body rather
# than FastAPI's default 403
cron_security = HTTPBearer(auto_error=False)


async def verify_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(cron_security),
) -> None:
    """
    Require `Authorization: Bearer <CRON_SECRET>` on sweep endpoints.

    WHY: Sweeps cancel subscriptions and deactivate restaurants. If the
    secret is not configured the endpoints fail closed instead of running
    unauthenticated.

    Raises:
        ConfigurationError: CRON_SECRET is not set (500)
        AuthenticationError: Header missing or secret mismatch (401)
    """
    if not settings.cron_secret_configured:
        logger.error("CRON_SECRET not configured - rejecting sweep request")
        raise ConfigurationError()

    supplied = credentials.credentials if credentials else ""
    if not hmac.compare_digest(supplied.encode(), settings.CRON_SECRET.encode()):
        logger.warning("Unauthorized sweep request")
        raise AuthenticationError()


__all__ = ["get_db", "verify_cron_secret"]
