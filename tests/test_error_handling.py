"""Circuit breaker and error reporting helpers."""
from unittest.mock import Mock

import pytest

from metrics_cache.circuit_breaker import CircuitBreaker
from metrics_cache.exceptions import CacheError, ReadFailure, SerializationError, StorageFailure
from metrics_cache.logging_config import configure_logging, log_error


@pytest.fixture
def circuit_breaker(clock):
    """Create a circuit breaker for testing."""
    return CircuitBreaker(
        failure_threshold=3,
        recovery_timeout=1,
        half_open_success_threshold=2,
        clock=clock,
    )


def test_circuit_breaker_functionality(circuit_breaker, clock):
    """Test circuit breaker protecting against cascading failures."""
    failing_func = Mock(side_effect=ConnectionError("rpc down"))
    protected_func = circuit_breaker(failing_func)

    assert circuit_breaker.state == CircuitBreaker.STATE_CLOSED

    for _ in range(3):
        with pytest.raises(ConnectionError):
            protected_func()
    assert circuit_breaker.state == CircuitBreaker.STATE_OPEN

    # Calls are rejected without reaching the source
    with pytest.raises(CircuitBreaker.CircuitBreakerError):
        protected_func()
    assert failing_func.call_count == 3

    clock.advance(1.5)
    failing_func.side_effect = None
    failing_func.return_value = {"ALGO/USDC": {}}

    assert protected_func() == {"ALGO/USDC": {}}
    assert circuit_breaker.state == CircuitBreaker.STATE_HALF_OPEN
    protected_func()
    assert circuit_breaker.state == CircuitBreaker.STATE_CLOSED


def test_half_open_failure_reopens(circuit_breaker, clock):
    failing = Mock(side_effect=TimeoutError("slow node"))
    for _ in range(3):
        with pytest.raises(TimeoutError):
            circuit_breaker.call(failing)

    clock.advance(2)
    with pytest.raises(TimeoutError):
        circuit_breaker.call(failing)
    assert circuit_breaker.state == CircuitBreaker.STATE_OPEN


def test_success_resets_failure_count(circuit_breaker):
    flaky = Mock(side_effect=[ValueError("bad"), ValueError("bad"), "ok", ValueError("bad")])
    for expected in (ValueError, ValueError):
        with pytest.raises(expected):
            circuit_breaker.call(flaky)
    assert circuit_breaker.call(flaky) == "ok"
    with pytest.raises(ValueError):
        circuit_breaker.call(flaky)

    state = circuit_breaker.get_state()
    assert state["state"] == CircuitBreaker.STATE_CLOSED
    assert state["failure_count"] == 1

    circuit_breaker.reset()
    assert circuit_breaker.get_state()["failure_count"] == 0


def test_exception_hierarchy():
    assert issubclass(SerializationError, StorageFailure)
    assert issubclass(StorageFailure, CacheError)
    assert issubclass(ReadFailure, CacheError)

    error = SerializationError("pool:1", "not serializable")
    assert error.key == "pool:1"
    assert "pool:1" in str(error)


def test_log_error():
    logger = Mock()
    log_error(logger, ReadFailure("k", "truncated payload"), {"key": "k"})

    logger.error.assert_called_once_with(
        "error_occurred",
        error_type="ReadFailure",
        error_message="Failed to read 'k': truncated payload",
        key="k",
    )


def test_configure_logging_rejects_unknown_level():
    with pytest.raises(ValueError):
        configure_logging("LOUD")
