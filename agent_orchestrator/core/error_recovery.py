"""Retry with backoff and per-key circuit breakers for model provider calls."""

import random
import threading
import time
from typing import Any, Callable, Dict, Optional

from .exceptions import CircuitOpenError, WorkflowEngineError
from .logging import get_logger

logger = get_logger(__name__)


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        exponential_base: float = 2.0,
        jitter: bool = True
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter

    def should_retry(self, exception: Exception, attempt: int) -> bool:
        """Only recoverable orchestrator errors are retried."""
        if attempt >= self.max_attempts:
            return False
        return isinstance(exception, WorkflowEngineError) and exception.recoverable

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for the given attempt."""
        delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        delay = min(delay, self.max_delay)

        if self.jitter:
            delay *= (0.5 + random.random() * 0.5)

        return delay


class CircuitBreaker:
    """Closed, open and half-open states guarding one downstream target.

    Shared by every worker thread calling the target, so state changes are
    made under a lock.
    """

    def __init__(self, name: str, failure_threshold: int = 5, recovery_timeout: float = 60.0):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout

        self._failure_count = 0
        self._opened_at: Optional[float] = None
        self._state = "closed"
        self._lock = threading.Lock()

    @property
    def state(self) -> str:
        return self._state

    def before_call(self) -> None:
        """Raise ``CircuitOpenError`` while the breaker is open."""
        with self._lock:
            if self._state != "open":
                return
            remaining = self._opened_at + self.recovery_timeout - time.monotonic()
            if remaining > 0:
                raise CircuitOpenError(
                    f"Circuit breaker for {self.name} is open",
                    retry_after=remaining, context={"circuit": self.name}
                )
            self._state = "half-open"
            logger.info(f"Circuit breaker for {self.name} transitioning to half-open state")

    def record_success(self) -> None:
        with self._lock:
            if self._state == "half-open":
                logger.info(f"Circuit breaker for {self.name} reset to closed state")
            self._state = "closed"
            self._failure_count = 0

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            if self._state == "half-open" or self._failure_count >= self.failure_threshold:
                self._state = "open"
                self._opened_at = time.monotonic()
                logger.warning(
                    f"Circuit breaker for {self.name} opened after {self._failure_count} failures"
                )


class RetryStrategy:
    """Runs calls with retries, keeping one circuit breaker per key."""

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0
    ):
        self.config = config or RetryConfig()
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get_breaker(self, key: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                breaker = CircuitBreaker(key, self.failure_threshold, self.recovery_timeout)
                self._breakers[key] = breaker
            return breaker

    def execute(self, key: str, func: Callable[[], Any]) -> Any:
        """
        Call ``func`` until it succeeds or a failure is not worth retrying.

        Only recoverable failures count against the key's circuit breaker.

        Raises:
            CircuitOpenError: If the breaker for ``key`` is open
            Exception: The last error raised by ``func``
        """
        breaker = self.get_breaker(key)

        for attempt in range(1, self.config.max_attempts + 1):
            breaker.before_call()
            try:
                result = func()
            except Exception as e:
                if isinstance(e, WorkflowEngineError) and e.recoverable:
                    breaker.record_failure()
                if not self.config.should_retry(e, attempt):
                    if attempt > 1:
                        logger.error(f"Call to {key} failed after {attempt} attempts: {str(e)}")
                    raise
                delay = self.config.get_delay(attempt)
                logger.warning(
                    f"Call to {key} failed (attempt {attempt}/{self.config.max_attempts}), "
                    f"retrying in {delay:.2f}s: {str(e)}"
                )
                time.sleep(delay)
                continue

            breaker.record_success()
            return result

    def get_circuit_states(self) -> Dict[str, str]:
        with self._lock:
            return {key: breaker.state for key, breaker in self._breakers.items()}
