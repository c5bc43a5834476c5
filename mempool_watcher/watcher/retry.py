"""
Resilience around the per-cycle mempool listing.

The listing call is the only one that goes through here. Hash and decode
failures are per-transaction and are never retried in-cycle: the blob stays
out of the cache and shows up again on the next cycle.
"""

import asyncio
import random
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Iterator, Optional, Tuple, Type, TypeVar

import structlog

from mempool_watcher.watcher.config import CircuitBreakerConfig, RetryConfig
from mempool_watcher.watcher.sources.base import SourceError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"  # one trial cycle is allowed through


class CircuitOpenError(SourceError):
    """The node is considered down; the call was not attempted."""

    def __init__(self, retry_after: float):
        super().__init__(f"Circuit breaker is open, next attempt in {retry_after:.1f}s")
        self.retry_after = retry_after


class CircuitBreaker:
    """
    Stops contacting the node after a run of failed listings.

    After ``failure_threshold`` consecutive failures every call is refused
    with CircuitOpenError for ``timeout`` seconds. The first call after that
    is a trial call: ``success_threshold`` successes close the breaker again, any
    failure reopens it. Time is read from ``clock`` (monotonic seconds).
    """

    def __init__(
        self,
        config: CircuitBreakerConfig,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the breaker.

        Args:
            config: Failure and success thresholds and the open timeout
            clock: Monotonic time source in seconds
        """
        self.config = config
        self._clock = clock
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.opened_at: Optional[float] = None
        self.trips = 0

    def retry_after(self) -> float:
        """
        Time left before an open breaker lets a trial call through.

        Returns:
            Seconds until the next trial call, 0.0 unless the breaker is open
        """
        if self.state != CircuitState.OPEN or self.opened_at is None:
            return 0.0
        return max(0.0, self.opened_at + self.config.timeout - self._clock())

    async def call_async(self, func: Callable[[], Awaitable[T]]) -> T:
        """
        Await ``func`` unless the breaker is open.

        Args:
            func: Zero-argument coroutine function making the node call

        Returns:
            Whatever ``func`` returns

        Raises:
            CircuitOpenError: If the breaker is open and the timeout has not elapsed
            Exception: Whatever ``func`` raised, after counting it as a failure
        """
        self._admit()
        try:
            result = await func()
        except Exception:
            self._record_failure()
            raise
        self._record_success()
        return result

    def _admit(self) -> None:
        if self.state != CircuitState.OPEN:
            return
        wait = self.retry_after()
        if wait > 0:
            raise CircuitOpenError(wait)
        self._set_state(CircuitState.HALF_OPEN)

    def _record_success(self) -> None:
        self.failure_count = 0
        if self.state != CircuitState.HALF_OPEN:
            return
        self.success_count += 1
        if self.success_count >= self.config.success_threshold:
            self._set_state(CircuitState.CLOSED)

    def _record_failure(self) -> None:
        self.failure_count += 1
        self.success_count = 0
        if self.state == CircuitState.HALF_OPEN or (
            self.state == CircuitState.CLOSED
            and self.failure_count >= self.config.failure_threshold
        ):
            self._set_state(CircuitState.OPEN)

    def _set_state(self, state: CircuitState) -> None:
        """Switch state, resetting the counters that belong to the new one."""
        previous, self.state = self.state, state
        if state == CircuitState.OPEN:
            self.opened_at = self._clock()
            self.trips += 1
            logger.warning(
                "circuit_breaker.opened",
                previous=previous.value,
                failure_count=self.failure_count,
                retry_after=self.config.timeout,
            )
        elif state == CircuitState.HALF_OPEN:
            self.success_count = 0
            logger.info("circuit_breaker.half_open")
        else:
            self.opened_at = None
            self.failure_count = 0
            self.success_count = 0
            logger.info("circuit_breaker.closed", trips=self.trips)

    def get_state(self) -> dict[str, Any]:
        """
        Snapshot of the breaker for status reporting.

        Returns:
            State name, counters, number of trips and seconds until the next trial call
        """
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "trips": self.trips,
            "retry_after_seconds": round(self.retry_after(), 3),
        }


def backoff_delays(config: RetryConfig) -> Iterator[float]:
    """Yield the sleep before each retry: one value per attempt after the first."""
    for retry in range(config.max_attempts - 1):
        delay = min(config.initial_delay * config.exponential_base**retry, config.max_delay)
        if config.jitter:
            delay *= 0.5 + random.random() / 2
        yield delay


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    config: RetryConfig,
    operation_name: str = "operation",
    retry_on: Tuple[Type[BaseException], ...] = (SourceError,),
) -> T:
    """
    Await ``func`` up to ``config.max_attempts`` times.

    Args:
        func: Zero-argument coroutine function to call
        config: Attempt count and backoff schedule
        operation_name: Name used in log events
        retry_on: Exception types worth another attempt

    Returns:
        Result of the first successful call

    Raises:
        Exception: The first error not in ``retry_on``, or the last one once
            attempts run out
    """
    attempt = 1
    for delay in backoff_delays(config):
        try:
            return await func()
        except retry_on as e:
            logger.warning(
                "retry.attempt_failed",
                operation=operation_name,
                attempt=attempt,
                max_attempts=config.max_attempts,
                delay_seconds=round(delay, 3),
                error=str(e),
            )
        attempt += 1
        await asyncio.sleep(delay)

    try:
        return await func()
    except retry_on as e:
        if config.max_attempts > 1:
            logger.error(
                "retry.exhausted", operation=operation_name, attempts=attempt, error=str(e)
            )
        raise
