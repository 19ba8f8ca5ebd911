"""Circuit breaker guarding calls to the upstream metrics source."""
import functools
import threading
import time
from typing import Any, Callable, Dict

import structlog

logger = structlog.get_logger()


class CircuitBreaker:
    """
    Stops calling a failing metrics source until it has had time to recover.

    Circuit states:
    - CLOSED: calls pass through
    - OPEN: calls are rejected with ``CircuitBreakerError``
    - HALF-OPEN: trial calls decide whether to close or reopen
    """

    STATE_CLOSED = 'closed'
    STATE_OPEN = 'open'
    STATE_HALF_OPEN = 'half-open'

    class CircuitBreakerError(Exception):
        """Raised when a call is rejected because the circuit is open."""
        pass

    def __init__(self, name: str = "metrics-source", failure_threshold: int = 5,
                 recovery_timeout: float = 60, half_open_success_threshold: int = 1,
                 clock: Callable[[], float] = time.time):
        """
        Args:
            name: Label used in log events
            failure_threshold: Consecutive failures before opening the circuit
            recovery_timeout: Seconds to wait before allowing a trial call
            half_open_success_threshold: Trial successes needed to close the circuit
            clock: Time source returning seconds
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_success_threshold = half_open_success_threshold
        self._clock = clock

        self.state = self.STATE_CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time = 0.0
        self._lock = threading.RLock()

    def __call__(self, func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            return self.call(func, *args, **kwargs)
        return wrapper

    def _admit(self) -> None:
        with self._lock:
            if self.state != self.STATE_OPEN:
                return
            elapsed = self._clock() - self.last_failure_time
            if elapsed >= self.recovery_timeout:
                logger.info("circuit_breaker_half_open", breaker=self.name)
                self.state = self.STATE_HALF_OPEN
                self.success_count = 0
                return
            logger.warning("circuit_breaker_open", breaker=self.name,
                           seconds_remaining=self.recovery_timeout - elapsed)
            raise self.CircuitBreakerError(f"Circuit '{self.name}' is open, too many failures")

    def _on_success(self) -> None:
        with self._lock:
            if self.state == self.STATE_HALF_OPEN:
                self.success_count += 1
                if self.success_count >= self.half_open_success_threshold:
                    logger.info("circuit_breaker_closed", breaker=self.name)
                    self.state = self.STATE_CLOSED
                    self.failure_count = 0
            else:
                self.failure_count = 0

    def _on_failure(self, error: Exception) -> None:
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = self._clock()
            if self.state == self.STATE_HALF_OPEN:
                logger.warning("circuit_breaker_recovery_failed", breaker=self.name, error=str(error))
                self.state = self.STATE_OPEN
            elif self.state == self.STATE_CLOSED and self.failure_count >= self.failure_threshold:
                logger.warning("circuit_breaker_tripped", breaker=self.name,
                               failure_count=self.failure_count, error=str(error))
                self.state = self.STATE_OPEN

    def call(self, func: Callable, *args: Any, **kwargs: Any) -> Any:
        """
        Call ``func`` with circuit breaker protection.

        Raises:
            CircuitBreakerError: If the circuit is open
            Exception: Any exception raised by ``func``
        """
        self._admit()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            self._on_failure(e)
            raise
        self._on_success()
        return result

    def reset(self) -> None:
        """Reset the circuit breaker to closed state."""
        with self._lock:
            self.state = self.STATE_CLOSED
            self.failure_count = 0
            self.success_count = 0
            self.last_failure_time = 0.0
            logger.info("circuit_breaker_reset", breaker=self.name)

    def get_state(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'state': self.state,
                'failure_count': self.failure_count,
                'success_count': self.success_count,
                'last_failure_time': self.last_failure_time
            }
