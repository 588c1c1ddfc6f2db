"""
Retry policy and error classification for persistence access.

Delay computation is deterministic and kept apart from the sleep call so the
backoff schedule can be asserted exactly in tests.
"""
import asyncio
from dataclasses import dataclass

from sqlalchemy import exc as sa_exc

# Substrings seen in driver/pool errors when the database is unreachable or
# the connection was dropped underneath us.
RETRYABLE_MESSAGES = (
    "can't reach database server",
    "could not connect to server",
    "connection refused",
    "connection reset",
    "connection terminated",
    "connection is closed",
    "server closed the connection",
    "not yet connected",
    "socket timeout",
    "timed out",
    "timeout",
    "too many connections",
)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay_ms: float = 100
    max_delay_ms: float = 2000
    backoff_factor: float = 2.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("delays must be non-negative")
        if self.backoff_factor < 1:
            raise ValueError("backoff_factor must be >= 1")


DEFAULT_RETRY_POLICY = RetryPolicy()


def compute_delay_ms(policy: RetryPolicy, attempt: int) -> float:
    """Backoff delay after the given (1-based) failed attempt."""
    if attempt < 1:
        raise ValueError("attempt is 1-based")
    return min(policy.initial_delay_ms * policy.backoff_factor ** (attempt - 1), policy.max_delay_ms)


def is_retryable_error(error: BaseException) -> bool:
    """
    True for transient infrastructure failures (unreachable, pool timeout,
    dropped connection). Constraint violations and validation errors are
    deterministic and never retried.
    """
    if isinstance(error, (sa_exc.IntegrityError, sa_exc.DataError, sa_exc.ProgrammingError)):
        return False
    if isinstance(error, (ValueError, TypeError, KeyError)):
        return False

    if isinstance(error, (sa_exc.TimeoutError, sa_exc.DisconnectionError)):
        return True
    if isinstance(error, sa_exc.DBAPIError) and error.connection_invalidated:
        return True
    if isinstance(error, sa_exc.OperationalError):
        return True
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True

    message = str(error).lower()
    return any(fragment in message for fragment in RETRYABLE_MESSAGES)


class RetryExhaustedError(Exception):
    """Raised when a guarded operation keeps failing past max_attempts."""

    def __init__(self, operation: str, attempts: int, last_error: BaseException):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation} failed after {attempts} attempt(s): {last_error}"
        )
