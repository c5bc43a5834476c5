"""Tests for retry with backoff and the circuit breaker."""

import asyncio

import pytest

from mempool_watcher.watcher.config import CircuitBreakerConfig, RetryConfig
from mempool_watcher.watcher.retry import (
    CircuitBreaker,
    CircuitOpenError,
    backoff_delays,
    retry_with_backoff,
)
from mempool_watcher.watcher.sources.base import SourceUnreachableError


class TestRetryLogic:
    """Tests for retry with exponential backoff."""

    @pytest.mark.asyncio
    async def test_retry_success_on_first_attempt(self):
        """Test no retry happens when the first attempt succeeds."""
        call_count = 0

        async def operation():
            nonlocal call_count
            call_count += 1
            return "success"

        result = await retry_with_backoff(operation, RetryConfig(max_attempts=3))

        assert result == "success"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_retry_success_after_failures(self):
        """Test node errors are retried until success."""
        call_count = 0

        async def operation():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise SourceUnreachableError("Temporary failure")
            return "success"

        config = RetryConfig(max_attempts=5, initial_delay=0.01, jitter=False)
        result = await retry_with_backoff(operation, config)

        assert result == "success"
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_retry_exhausted(self):
        """Test the last node error propagates once attempts run out."""
        call_count = 0

        async def operation():
            nonlocal call_count
            call_count += 1
            raise SourceUnreachableError("Persistent failure")

        config = RetryConfig(max_attempts=3, initial_delay=0.01)

        with pytest.raises(SourceUnreachableError):
            await retry_with_backoff(operation, config)

        assert call_count == 3

    @pytest.mark.asyncio
    async def test_default_is_single_attempt(self):
        """Test the default policy makes a single attempt."""
        call_count = 0

        async def operation():
            nonlocal call_count
            call_count += 1
            raise SourceUnreachableError("down")

        with pytest.raises(SourceUnreachableError):
            await retry_with_backoff(operation, RetryConfig())

        assert call_count == 1

    @pytest.mark.asyncio
    async def test_non_source_errors_are_not_retried(self):
        """Test unexpected errors are not retried."""
        call_count = 0

        async def operation():
            nonlocal call_count
            call_count += 1
            raise KeyError("bug")

        config = RetryConfig(max_attempts=3, initial_delay=0.01)
        with pytest.raises(KeyError):
            await retry_with_backoff(operation, config)

        assert call_count == 1

    def test_backoff_delays_grow_and_cap(self):
        """Test backoff delays grow exponentially up to the cap."""
        config = RetryConfig(
            max_attempts=5, initial_delay=1.0, exponential_base=2.0, max_delay=3.0, jitter=False
        )

        assert list(backoff_delays(config)) == [1.0, 2.0, 3.0, 3.0]
        assert list(backoff_delays(RetryConfig())) == []


class TestCircuitBreaker:
    """Tests for circuit breaker pattern."""

    @pytest.mark.asyncio
    async def test_circuit_closed_normal_operation(self):
        """Test a closed circuit passes calls through."""
        breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=3, timeout=1.0))

        async def operation():
            return "success"

        assert await breaker.call_async(operation) == "success"
        assert breaker.state.value == "closed"

    @pytest.mark.asyncio
    async def test_circuit_opens_after_failures(self):
        """Test the circuit opens after the failure threshold."""
        breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=3, timeout=1.0))

        async def failing_operation():
            raise SourceUnreachableError("Failure")

        for _ in range(3):
            with pytest.raises(SourceUnreachableError):
                await breaker.call_async(failing_operation)

        assert breaker.state.value == "open"

        with pytest.raises(CircuitOpenError):
            await breaker.call_async(failing_operation)

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self):
        """Test a success resets the consecutive failure count."""
        breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=2, timeout=1.0))

        async def failing():
            raise SourceUnreachableError("Failure")

        async def ok():
            return "ok"

        with pytest.raises(SourceUnreachableError):
            await breaker.call_async(failing)
        await breaker.call_async(ok)
        with pytest.raises(SourceUnreachableError):
            await breaker.call_async(failing)

        assert breaker.state.value == "closed"

    @pytest.mark.asyncio
    async def test_circuit_half_open_recovery(self):
        """Test the circuit closes again after successful trial calls."""
        config = CircuitBreakerConfig(failure_threshold=2, success_threshold=2, timeout=0.1)
        breaker = CircuitBreaker(config)

        call_count = 0

        async def operation():
            nonlocal call_count
            call_count += 1
            if call_count <= 2:
                raise SourceUnreachableError("Failure")
            return "success"

        for _ in range(2):
            with pytest.raises(SourceUnreachableError):
                await breaker.call_async(operation)

        assert breaker.state.value == "open"

        await asyncio.sleep(0.15)

        assert await breaker.call_async(operation) == "success"
        assert breaker.state.value == "half_open"
        assert await breaker.call_async(operation) == "success"
        assert breaker.state.value == "closed"

    @pytest.mark.asyncio
    async def test_open_circuit_reports_time_until_retry(self, clock):
        """Test an open circuit reports when the next trial call is due."""
        breaker = CircuitBreaker(
            CircuitBreakerConfig(failure_threshold=1, timeout=30.0), clock=clock
        )

        async def failing():
            raise SourceUnreachableError("down")

        with pytest.raises(SourceUnreachableError):
            await breaker.call_async(failing)

        clock.advance(10.0)
        with pytest.raises(CircuitOpenError) as excinfo:
            await breaker.call_async(failing)

        assert excinfo.value.retry_after == pytest.approx(20.0)
        assert breaker.get_state()["trips"] == 1

    @pytest.mark.asyncio
    async def test_failed_trial_call_reopens(self, clock):
        """Test a failed trial call reopens the circuit."""
        breaker = CircuitBreaker(
            CircuitBreakerConfig(failure_threshold=1, timeout=5.0), clock=clock
        )

        async def failing():
            raise SourceUnreachableError("down")

        with pytest.raises(SourceUnreachableError):
            await breaker.call_async(failing)
        clock.advance(5.0)
        with pytest.raises(SourceUnreachableError):
            await breaker.call_async(failing)

        assert breaker.state.value == "open"
        assert breaker.get_state()["trips"] == 2
        assert breaker.retry_after() == pytest.approx(5.0)
