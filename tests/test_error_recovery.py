"""Tests for retry and circuit breaker behaviour."""

import pytest

from agent_orchestrator.core.error_recovery import CircuitBreaker, RetryConfig, RetryStrategy
from agent_orchestrator.core.exceptions import (
    CircuitOpenError,
    ConfigurationError,
    ModelProviderError,
)


def flaky(failures, result="ok", status_code=503):
    """Callable failing ``failures`` times before returning ``result``."""
    calls = []

    def call():
        calls.append(len(calls) + 1)
        if len(calls) <= failures:
            raise ModelProviderError("unavailable", status_code=status_code)
        return result

    call.calls = calls
    return call


class TestRetryConfig:

    def test_backoff_grows_and_is_capped(self):
        config = RetryConfig(base_delay=1.0, max_delay=3.0, exponential_base=2.0, jitter=False)

        assert [config.get_delay(attempt) for attempt in (1, 2, 3)] == [1.0, 2.0, 3.0]

    def test_jitter_keeps_delay_within_half_and_full_backoff(self):
        config = RetryConfig(base_delay=2.0, jitter=True)

        assert 1.0 <= config.get_delay(1) <= 2.0

    @pytest.mark.parametrize("status_code,expected", [(None, True), (429, True), (500, True), (503, True),
                                                      (400, False), (401, False), (404, False)])
    def test_only_transient_provider_errors_are_retried(self, status_code, expected):
        error = ModelProviderError("failed", status_code=status_code)

        assert RetryConfig().should_retry(error, attempt=1) is expected

    def test_non_recoverable_errors_are_not_retried(self):
        assert not RetryConfig().should_retry(RuntimeError("bug"), attempt=1)
        assert not RetryConfig().should_retry(ConfigurationError("no key"), attempt=1)

    def test_no_retry_after_last_attempt(self):
        assert not RetryConfig(max_attempts=2).should_retry(ModelProviderError("x"), attempt=2)


class TestRetryStrategy:

    def test_transient_failures_are_retried(self):
        strategy = RetryStrategy(RetryConfig(max_attempts=3, base_delay=0.0))
        call = flaky(failures=2)

        assert strategy.execute("qwen-plus", call) == "ok"
        assert call.calls == [1, 2, 3]
        assert strategy.get_circuit_states() == {"qwen-plus": "closed"}

    def test_last_error_is_raised_when_attempts_run_out(self):
        strategy = RetryStrategy(RetryConfig(max_attempts=2, base_delay=0.0))
        call = flaky(failures=5)

        with pytest.raises(ModelProviderError):
            strategy.execute("qwen-plus", call)
        assert call.calls == [1, 2]

    def test_permanent_failures_do_not_count_against_the_circuit(self):
        strategy = RetryStrategy(RetryConfig(max_attempts=1), failure_threshold=1)

        with pytest.raises(ModelProviderError):
            strategy.execute("qwen-plus", flaky(failures=1, status_code=401))

        assert strategy.get_circuit_states() == {"qwen-plus": "closed"}


class TestCircuitBreaker:

    def test_open_breaker_rejects_calls(self):
        breaker = CircuitBreaker("qwen-max", failure_threshold=2, recovery_timeout=60.0)
        breaker.record_failure()
        breaker.before_call()
        breaker.record_failure()

        with pytest.raises(CircuitOpenError) as exc_info:
            breaker.before_call()

        assert breaker.state == "open"
        assert not exc_info.value.recoverable
        assert exc_info.value.context["circuit"] == "qwen-max"

    def test_half_open_trial_success_closes_the_breaker(self):
        breaker = CircuitBreaker("qwen-max", failure_threshold=1, recovery_timeout=0.0)
        breaker.record_failure()

        breaker.before_call()
        assert breaker.state == "half-open"

        breaker.record_success()
        assert breaker.state == "closed"

    def test_half_open_trial_failure_reopens_the_breaker(self):
        breaker = CircuitBreaker("qwen-max", failure_threshold=3, recovery_timeout=0.0)
        for _ in range(3):
            breaker.record_failure()

        breaker.before_call()
        breaker.record_failure()

        assert breaker.state == "open"
