"""Error classification and retry logic for store operations.

Classifies store errors for the operator (transient, permanent, permission
denied), produces user-facing messages and provides backoff retry for the
initial connection.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorCategory(Enum):
    """Classification of store errors."""

    TRANSIENT = "transient"  # Network issues, timeouts - safe to re-run
    PERMANENT = "permanent"  # Syntax errors, missing relations - don't retry
    PERMISSION_DENIED = "permission_denied"  # Needs a grant change, never retried


# SQLSTATE for insufficient_privilege
PERMISSION_DENIED_CODE = "42501"

PERMISSION_DENIED_PATTERNS = (
    re.compile(r"permission denied", re.IGNORECASE),
    re.compile(r"insufficient privilege", re.IGNORECASE),
)

# Fixed remediation shown alongside a permission error. Contains no secrets.
PERMISSION_DENIED_HINT = (
    "Permission denied. Add your user id to admin_users and create admin "
    "SELECT policies for orders, addresses and order_items."
)

# Exception type names that are transient
TRANSIENT_ERROR_TYPES = (
    "ConnectionRefusedError",
    "ConnectionResetError",
    "TimeoutError",
    "OSError",
    "ConnectionDoesNotExistError",
    "InterfaceError",
    "TooManyConnectionsError",
)

# Error messages indicating transient issues
TRANSIENT_ERROR_MESSAGES = (
    "connection is closed",
    "connection was closed",
    "timeout",
    "network",
    "connection refused",
    "connection reset",
    "broken pipe",
    "no route to host",
    "connection timed out",
    "pool is closed",
    "cannot perform operation",
)

# Error messages indicating permanent failures
PERMANENT_ERROR_MESSAGES = (
    "authentication failed",
    "password authentication failed",
    "syntax error",
    "does not exist",
    "invalid input",
)


def error_code(exception: BaseException) -> Optional[str]:
    """Return the store error code, from ``code`` or asyncpg's ``sqlstate``."""
    code = getattr(exception, "code", None) or getattr(exception, "sqlstate", None)
    return str(code) if code is not None else None


def is_permission_denied(exception: BaseException) -> bool:
    """Check whether an error is an access-control failure.

    Matches the insufficient_privilege code or a message saying permission
    was denied or privileges were insufficient.
    """
    if error_code(exception) == PERMISSION_DENIED_CODE:
        return True
    message = str(getattr(exception, "message", None) or exception)
    return any(pattern.search(message) for pattern in PERMISSION_DENIED_PATTERNS)


def classify_error(exception: BaseException) -> ErrorCategory:
    """Classify an exception for retry and reporting decisions.

    Args:
        exception: The exception to classify

    Returns:
        ErrorCategory for the exception
    """
    if is_permission_denied(exception):
        return ErrorCategory.PERMISSION_DENIED

    error_type = type(exception).__name__
    error_msg = str(exception).lower()

    for transient_type in TRANSIENT_ERROR_TYPES:
        if transient_type in error_type:
            return ErrorCategory.TRANSIENT

    for indicator in TRANSIENT_ERROR_MESSAGES:
        if indicator in error_msg:
            return ErrorCategory.TRANSIENT

    for indicator in PERMANENT_ERROR_MESSAGES:
        if indicator in error_msg:
            return ErrorCategory.PERMANENT

    # Unknown errors are treated as transient so the operator can re-run
    logger.warning(f"Unknown error type {error_type}: {exception}")
    return ErrorCategory.TRANSIENT


def get_user_message(exception: BaseException) -> str:
    """Get an operator-facing message for an exception.

    Args:
        exception: The exception to describe

    Returns:
        Human-readable error message
    """
    message = str(getattr(exception, "message", None) or exception)
    category = classify_error(exception)

    if category == ErrorCategory.PERMISSION_DENIED:
        return message or "Permission denied."

    lowered = message.lower()
    if "timeout" in lowered or "timed out" in lowered:
        return "The server took too long to respond. Please refresh to try again."

    if any(x in lowered for x in ("connection", "network", "refused", "reset")):
        return "Unable to reach the order database. Please check your connection and refresh."

    if category == ErrorCategory.PERMANENT:
        return f"Failed to fetch orders: {message}"

    return message or "Failed to fetch orders."


@dataclass(frozen=True)
class FeedError:
    """An error surfaced to the operator, with an optional fixed hint."""

    category: ErrorCategory
    message: str
    hint: Optional[str] = None

    @property
    def is_permission_denied(self) -> bool:
        return self.category == ErrorCategory.PERMISSION_DENIED

    @property
    def is_retryable(self) -> bool:
        return self.category == ErrorCategory.TRANSIENT

    @classmethod
    def from_exception(cls, exception: BaseException) -> "FeedError":
        category = classify_error(exception)
        hint = PERMISSION_DENIED_HINT if category == ErrorCategory.PERMISSION_DENIED else None
        return cls(category=category, message=get_user_message(exception), hint=hint)


async def with_retry(
    operation: Callable[[], T],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 10.0,
    backoff_factor: float = 2.0,
    on_retry: Optional[Callable[[int, float, Exception], None]] = None,
) -> T:
    """Execute an async operation with exponential backoff retry.

    Only transient errors are retried; permanent and permission errors are
    raised immediately.

    Args:
        operation: Async callable to execute
        max_retries: Maximum number of retry attempts (default: 3)
        initial_delay: Initial delay between retries in seconds (default: 1.0)
        max_delay: Maximum delay between retries in seconds (default: 10.0)
        backoff_factor: Multiplier for delay after each retry (default: 2.0)
        on_retry: Optional callback(attempt, delay, error) called before each retry

    Returns:
        Result of the operation

    Raises:
        Exception: The last exception if all retries fail, or immediately
                   for non-transient errors
    """
    delay = initial_delay

    for attempt in range(max_retries + 1):
        try:
            return await operation()
        except Exception as e:
            category = classify_error(e)

            if category != ErrorCategory.TRANSIENT:
                logger.error(f"Non-transient error (no retry): {e}")
                raise

            if attempt >= max_retries:
                logger.error(f"Max retries ({max_retries}) exceeded: {e}")
                raise

            logger.warning(
                f"Transient error (attempt {attempt + 1}/{max_retries + 1}), "
                f"retrying in {delay:.1f}s: {e}"
            )

            if on_retry:
                on_retry(attempt + 1, delay, e)

            await asyncio.sleep(delay)
            delay = min(delay * backoff_factor, max_delay)

    raise RuntimeError("Retry loop completed without result or exception")


def backoff_delays(
    attempts: int,
    initial_delay: float = 1.0,
    max_delay: float = 16.0,
    backoff_factor: float = 2.0,
) -> list[float]:
    """Delays for a sequence of reconnect attempts: 1s, 2s, 4s ... capped."""
    return [min(initial_delay * (backoff_factor ** i), max_delay) for i in range(attempts)]

