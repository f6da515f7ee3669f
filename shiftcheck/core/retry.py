"""
Retry with exponential backoff for transient failures.

WHAT: A generic async retry loop plus a default transient-error classifier.

WHY: Outbound calls (email provider, Stripe customer lookups) fail
intermittently with timeouts, resets and 5xx/429 responses. Retrying those
a few times with growing delays hides most blips, while permanent errors
(bad request, validation, business errors) fail fast on the first attempt.

HOW: with_retry() runs an awaitable factory. On exception it asks
should_retry(error, attempt); if retryable and retries remain it reports
the attempt to an optional on_retry observer, sleeps
initial_delay * 2 ** (attempt - 1) seconds and tries again. It never raises
the wrapped error; the caller inspects the returned RetryResult.

Example:
    result = await with_retry(lambda: client.post(url, json=payload))
    if not result.success:
        logger.error(f"Gave up after {result.attempts} attempts: {result.error}")
"""

import asyncio
import errno
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")


RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503})
RETRYABLE_ERROR_CODES = frozenset({"ECONNRESET", "ETIMEDOUT"})
RETRYABLE_ERRNOS = frozenset({errno.ECONNRESET, errno.ETIMEDOUT})
RETRYABLE_MESSAGE_MARKERS = ("network", "timeout", "connection")


# ============================================================================
# Transient Error Classification
# ============================================================================


def _extract_status(error: BaseException) -> Optional[int]:
    """
    Pull an HTTP-style status code off an error, if it carries one.

    Looks at httpx response errors first, then the attribute names used by
    common SDKs (status_code, status, http_status).
    """
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code

    for attr in ("status_code", "status", "http_status"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value

    return None


def is_retryable_error(error: BaseException, attempt: Optional[int] = None) -> bool:
    """
    Decide whether an error is transient and worth retrying.

    Retryable:
    - status 408, 429, 500, 502, 503
    - httpx transport errors (connect/read failures, timeouts)
    - ConnectionError / TimeoutError, including ConnectionResetError
    - error code or errno ECONNRESET / ETIMEDOUT
    - message containing "network", "timeout" or "connection"

    Everything else, including any other status code, is permanent.

    Args:
        error: The exception raised by the wrapped operation
        attempt: Attempt number that failed (unused by the default policy)

    Returns:
        True if the operation should be retried
    """
    status = _extract_status(error)
    if status is not None:
        return status in RETRYABLE_STATUS_CODES

    if isinstance(error, (httpx.TransportError, ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True

    code = getattr(error, "code", None)
    if isinstance(code, str) and code.upper() in RETRYABLE_ERROR_CODES:
        return True

    if getattr(error, "errno", None) in RETRYABLE_ERRNOS:
        return True

    message = str(error).lower()
    return any(marker in message for marker in RETRYABLE_MESSAGE_MARKERS)


def compute_backoff_delay(attempt: int, initial_delay: float) -> float:
    """Delay before retrying after the given (1-based) failed attempt."""
    return initial_delay * (2 ** (attempt - 1))


# ============================================================================
# Data Classes
# ============================================================================


@dataclass
class RetryConfig:
    """
    Retry policy for with_retry().

    WHY: Dataclass so callers can share one policy and override
    individual fields with dataclasses.replace().
    """

    max_retries: int = 3
    """Retries after the initial attempt (total attempts <= max_retries + 1)."""

    initial_delay: float = 1.0
    """Delay in seconds before the first retry; doubles on each retry."""

    should_retry: Callable[[BaseException, int], bool] = is_retryable_error
    """Classifier called with (error, attempt)."""

    on_retry: Optional[Callable[[BaseException, int, float], None]] = None
    """Observer called with (error, attempt, delay) before each sleep."""

    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    """Sleep function, replaceable in tests."""


@dataclass
class RetryResult(Generic[T]):
    """
    Outcome of a retried operation.

    WHY: Returning a result instead of raising lets best-effort callers
    (notifications) log and continue without try/except around every call.
    """

    success: bool
    attempts: int
    data: Optional[T] = None
    error: Optional[BaseException] = None


# ============================================================================
# Retry Loop
# ============================================================================


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
    **overrides: Any,
) -> RetryResult[T]:
    """
    Run an async operation, retrying transient failures with backoff.

    Args:
        operation: Zero-argument callable returning an awaitable
        config: Retry policy (defaults to RetryConfig())
        **overrides: Individual RetryConfig fields to override

    Returns:
        RetryResult with the data on success, or the last error and the
        number of attempts actually made on failure
    """
    policy = config or RetryConfig()
    if overrides:
        policy = replace(policy, **overrides)

    attempt = 0
    last_error: Optional[BaseException] = None

    while True:
        attempt += 1
        try:
            data = await operation()
            return RetryResult(success=True, attempts=attempt, data=data)
        except Exception as e:
            last_error = e

            if attempt > policy.max_retries or not policy.should_retry(e, attempt):
                break

            delay = compute_backoff_delay(attempt, policy.initial_delay)

            if policy.on_retry is not None:
                policy.on_retry(e, attempt, delay)

            logger.warning(
                f"Attempt {attempt} failed, retrying in {delay:.2f}s: {e}",
                extra={"attempt": attempt, "delay": delay},
            )
            await policy.sleep(delay)

    return RetryResult(success=False, attempts=attempt, error=last_error)
