"""
Webhook idempotency guard.

WHAT: Remembers recently processed Stripe event IDs so redeliveries of the
same event are acknowledged without running side effects twice.

WHY: Stripe delivers at least once. Without a guard a retried
customer.subscription.created would send a second confirmation email.

HOW: Insertion-ordered dict used as an ordered set. When an insert pushes
the size past max_size, the oldest half is evicted in one pass, so the
newest IDs always survive and memory stays bounded.

LIMITATION: The guard is process-local and in-memory. Multiple workers or
a restart lose the record; a redelivery after that is processed again.
"""

import logging
from typing import Dict, Optional

from shiftcheck.core.config import settings

logger = logging.getLogger(__name__)


class IdempotencyGuard:
    """
    Bounded set of seen event IDs with oldest-half eviction.

    Not locked: all access happens on the event loop thread.
    """

    def __init__(self, max_size: int = 1000):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._seen: Dict[str, None] = {}

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, event_id: str) -> bool:
        return event_id in self._seen

    def seen(self, event_id: str) -> bool:
        """Check whether an event ID was already remembered."""
        return event_id in self._seen

    def remember(self, event_id: str) -> None:
        """
        Record an event ID, evicting the oldest half when over capacity.

        Args:
            event_id: Stripe event ID (evt_xxx)
        """
        if event_id in self._seen:
            return

        self._seen[event_id] = None

        if len(self._seen) > self.max_size:
            evict = len(self._seen) // 2
            for old_id in list(self._seen)[:evict]:
                del self._seen[old_id]
            logger.info(
                f"Idempotency guard evicted {evict} oldest event IDs",
                extra={"evicted": evict, "remaining": len(self._seen)},
            )

    def clear(self) -> None:
        """Forget all event IDs (for test cleanup)."""
        self._seen.clear()


# ============================================================================
# Module-level convenience functions
# ============================================================================


_idempotency_guard: Optional[IdempotencyGuard] = None


def get_idempotency_guard() -> IdempotencyGuard:
    """
    Get or create the process-wide idempotency guard.

    Returns:
        IdempotencyGuard sized from settings
    """
    global _idempotency_guard

    if _idempotency_guard is None:
        _idempotency_guard = IdempotencyGuard(max_size=settings.WEBHOOK_IDEMPOTENCY_CACHE_SIZE)

    return _idempotency_guard
