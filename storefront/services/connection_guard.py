"""
ConnectionGuard - runs persistence operations inside a retry envelope.

Before every attempt the connection handle is opened if needed and
health-checked; a failed healthcheck triggers a reconnect. Only transient
infrastructure errors (see utils.retry.is_retryable_error) are retried.
Deterministic failures such as constraint violations propagate immediately.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from storefront.database import ConnectionHandle
from storefront.utils.retry import (
    DEFAULT_RETRY_POLICY,
    RetryExhaustedError,
    RetryPolicy,
    compute_delay_ms,
    is_retryable_error,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConnectionGuard:

    def __init__(
        self,
        handle: ConnectionHandle,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.handle = handle
        self.policy = policy or DEFAULT_RETRY_POLICY
        self._sleep = sleep

    async def _ensure_connected(self, name: str, attempt: int) -> None:
        if not self.handle.is_open:
            await self.handle.open()
        if not await self.handle.healthcheck():
            logger.warning(
                "%s: connection unhealthy before attempt %d, reconnecting",
                name, attempt,
                extra={"operation": name, "attempt": attempt},
            )
            await self.handle.reconnect()

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        name: str,
        policy: Optional[RetryPolicy] = None,
    ) -> T:
        """
        Run `operation` until it succeeds, fails with a non-retryable error,
        or exhausts policy.max_attempts (raises RetryExhaustedError).
        """
        policy = policy or self.policy

        for attempt in range(1, policy.max_attempts + 1):
            try:
                await self._ensure_connected(name, attempt)
                result = await operation()
            except Exception as e:
                if not is_retryable_error(e):
                    raise

                if attempt >= policy.max_attempts:
                    logger.error(
                        "%s failed permanently after %d attempt(s): %s",
                        name, attempt, str(e),
                        extra={"operation": name, "attempt": attempt},
                    )
                    raise RetryExhaustedError(name, attempt, e) from e

                delay_ms = compute_delay_ms(policy, attempt)
                logger.warning(
                    "%s failed (attempt %d/%d): %s - retrying in %.0fms",
                    name, attempt, policy.max_attempts, str(e), delay_ms,
                    extra={"operation": name, "attempt": attempt},
                )
                await self._sleep(delay_ms / 1000.0)
                continue

            if attempt > 1:
                logger.info(
                    "%s succeeded on attempt %d", name, attempt,
                    extra={"operation": name, "attempt": attempt},
                )
            return result

        # max_attempts >= 1 guarantees the loop returns or raises
        raise AssertionError("unreachable")

    async def run_in_transaction(
        self,
        work: Callable,
        name: str,
        policy: Optional[RetryPolicy] = None,
    ):
        """
        execute() where each attempt opens a fresh transaction and passes the
        session to `work`. A failed attempt rolls back before the next one.
        """
        async def _attempt():
            async with self.handle.transaction() as session:
                return await work(session)

        return await self.execute(_attempt, name, policy)
