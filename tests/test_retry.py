"""
Tests for retry logic and circuit breaker.
"""

import pytest
import time
from intake.retry import (
    exponential_backoff,
    CircuitBreaker,
    CircuitOpenError,
    should_retry_http_status,
    RetryError,
)


class TestExponentialBackoff:
    """Test exponential backoff decorator."""

    def test_success_on_first_try(self):
        """Function that succeeds immediately should not retry."""
        call_count = [0]

        @exponential_backoff(max_retries=3, base_delay=0.1)
        def succeeds():
            call_count[0] += 1
            return "parsed"

        assert succeeds() == "parsed"
        assert call_count[0] == 1

    def test_retry_then_succeed(self):
        """Function that fails then succeeds should retry."""
        call_count = [0]

        @exponential_backoff(max_retries=3, base_delay=0.01)
        def fails_twice():
            call_count[0] += 1
            if call_count[0] < 3:
                raise ConnectionError("Temporary failure")
            return "parsed"

        assert fails_twice() == "parsed"
        assert call_count[0] == 3

    def test_all_retries_exhausted(self):
        """Should raise RetryError chained to the last failure."""
        call_count = [0]

        @exponential_backoff(max_retries=2, base_delay=0.01)
        def always_fails():
            call_count[0] += 1
            raise ValueError("Always fails")

        with pytest.raises(RetryError) as exc_info:
            always_fails()

        assert call_count[0] == 3  # Initial + 2 retries
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.__cause__, ValueError)

    def test_zero_retries(self):
        """max_retries=0 means a single attempt."""
        call_count = [0]

        @exponential_backoff(max_retries=0, base_delay=0.01)
        def always_fails():
            call_count[0] += 1
            raise ConnectionError("down")

        with pytest.raises(RetryError):
            always_fails()
        assert call_count[0] == 1

    def test_only_catches_specified_exceptions(self):
        """Should only retry on specified exception types."""
        call_count = [0]

        @exponential_backoff(
            max_retries=3,
            base_delay=0.01,
            exceptions=(ConnectionError,)
        )
        def raises_value_error():
            call_count[0] += 1
            raise ValueError("Not retryable")

        with pytest.raises(ValueError):
            raises_value_error()

        assert call_count[0] == 1

    def test_exponential_delay(self):
        """Delay should increase exponentially."""
        delays = []

        def on_retry_callback(attempt, exception, delay):
            delays.append(delay)

        @exponential_backoff(
            max_retries=3,
            base_delay=0.01,
            exponential_base=2.0,
            on_retry=on_retry_callback
        )
        def always_fails():
            raise ConnectionError("Test")

        with pytest.raises(RetryError):
            always_fails()

        assert delays == [0.01, 0.02, 0.04]

    def test_max_delay_cap(self):
        """Delay should not exceed max_delay."""
        delays = []

        def on_retry_callback(attempt, exception, delay):
            delays.append(delay)

        @exponential_backoff(
            max_retries=3,
            base_delay=0.01,
            max_delay=0.02,
            exponential_base=3.0,
            on_retry=on_retry_callback
        )
        def always_fails():
            raise ConnectionError("Test")

        with pytest.raises(RetryError):
            always_fails()

        assert all(d <= 0.02 for d in delays)


class TestCircuitBreaker:
    """Test circuit breaker pattern."""

    def test_closed_state_allows_calls(self):
        """Circuit starts closed and allows calls."""
        breaker = CircuitBreaker(failure_threshold=3, recovery_timeout=1)

        assert breaker.call(lambda: "ok") == "ok"
        assert breaker.state == CircuitBreaker.CLOSED

    def test_opens_after_threshold(self):
        """Circuit opens after failure threshold."""
        breaker = CircuitBreaker(failure_threshold=3, recovery_timeout=1)

        def failing_func():
            raise ConnectionError("Test failure")

        for _ in range(3):
            with pytest.raises(ConnectionError):
                breaker.call(failing_func)

        assert breaker.state == CircuitBreaker.OPEN

        with pytest.raises(CircuitOpenError, match="Circuit breaker is OPEN"):
            breaker.call(failing_func)

    def test_failure_in_half_open_reopens(self):
        """A failed trial call sends the circuit straight back to OPEN."""
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=0.1)

        def failing_func():
            raise ConnectionError("Test")

        for _ in range(2):
            with pytest.raises(ConnectionError):
                breaker.call(failing_func)

        time.sleep(0.15)

        with pytest.raises(ConnectionError):
            breaker.call(failing_func)

        assert breaker.state == CircuitBreaker.OPEN

    def test_closes_on_success_in_half_open(self):
        """Successful call in half-open state closes circuit."""
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=0.1)

        call_count = [0]

        def sometimes_fails():
            call_count[0] += 1
            if call_count[0] <= 2:
                raise ConnectionError("Fail")
            return "success"

        for _ in range(2):
            with pytest.raises(ConnectionError):
                breaker.call(sometimes_fails)

        assert breaker.state == CircuitBreaker.OPEN

        time.sleep(0.15)
        assert breaker.call(sometimes_fails) == "success"
        assert breaker.state == CircuitBreaker.CLOSED

    def test_manual_reset(self):
        """Manual reset should close the circuit."""
        breaker = CircuitBreaker(failure_threshold=2)

        def failing_func():
            raise ConnectionError("Test")

        for _ in range(2):
            with pytest.raises(ConnectionError):
                breaker.call(failing_func)

        breaker.reset()
        assert breaker.state == CircuitBreaker.CLOSED
        assert breaker.failure_count == 0


class TestHttpStatus:
    """Test retryable status detection for the extraction service."""

    def test_http_status_retry_logic(self):
        """Should correctly identify retryable HTTP status codes."""
        for code in (408, 429, 500, 502, 503, 504):
            assert should_retry_http_status(code)

        for code in (200, 400, 401, 403, 404, 422):
            assert not should_retry_http_status(code)
