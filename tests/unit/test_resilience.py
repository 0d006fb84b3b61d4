"""Tests for the circuit breaker state machine."""

from unittest.mock import MagicMock

from logrelay.resilience import CircuitBreaker, CircuitBreakerConfig, CircuitState
from tests.mocks import FakeClock


def make_breaker(clock: FakeClock, **config) -> CircuitBreaker:
    return CircuitBreaker(CircuitBreakerConfig(**config), name="test", clock=clock)


class TestCircuitBreaker:
    """Tests for CircuitBreaker class."""

    def test_initial_state_is_closed(self):
        """Circuit breaker starts in closed state."""
        cb = CircuitBreaker()
        assert cb.state == CircuitState.CLOSED
        assert cb.consecutive_failures == 0
        assert cb.opened_at is None

    def test_allows_requests_when_closed(self):
        """Requests are allowed when circuit is closed."""
        cb = CircuitBreaker()
        assert cb.should_allow_request() is True

    def test_opens_after_failure_threshold(self, clock):
        """Circuit opens after reaching failure threshold."""
        cb = make_breaker(clock, failure_threshold=3)

        cb.record_failure("error 1")
        assert cb.state == CircuitState.CLOSED
        cb.record_failure("error 2")
        assert cb.state == CircuitState.CLOSED
        cb.record_failure("error 3")
        assert cb.state == CircuitState.OPEN
        assert cb.opened_at == clock.now

    def test_blocks_requests_when_open(self, clock):
        """Requests are blocked when circuit is open."""
        cb = make_breaker(clock, failure_threshold=1, reset_timeout=300)

        cb.record_failure("error")
        assert cb.state == CircuitState.OPEN
        assert cb.should_allow_request() is False

    def test_success_resets_failure_count(self, clock):
        """Success resets the consecutive failure counter."""
        cb = make_breaker(clock, failure_threshold=3)

        cb.record_failure("error 1")
        cb.record_failure("error 2")
        cb.record_success()
        assert cb.consecutive_failures == 0

        # Need 3 more failures to open
        cb.record_failure("error 3")
        cb.record_failure("error 4")
        assert cb.state == CircuitState.CLOSED

    def test_stays_open_before_timeout(self, clock):
        """Circuit stays open until the full timeout has elapsed."""
        cb = make_breaker(clock, failure_threshold=1, reset_timeout=1.0)

        cb.record_failure("error")
        clock.advance(0.5)
        assert cb.state == CircuitState.OPEN
        assert cb.should_allow_request() is False

    def test_transitions_to_half_open_after_timeout(self, clock):
        """Circuit transitions to half-open after reset timeout."""
        cb = make_breaker(clock, failure_threshold=1, reset_timeout=1.0)

        cb.record_failure("error")
        assert cb.state == CircuitState.OPEN

        clock.advance(1.0)
        assert cb.state == CircuitState.HALF_OPEN

    def test_half_open_allows_single_probe(self, clock):
        """Half-open state lets exactly one probe through."""
        cb = make_breaker(clock, failure_threshold=1, reset_timeout=1.0)

        cb.record_failure("error")
        clock.advance(1.5)

        assert cb.should_allow_request() is True
        assert cb.should_allow_request() is False

    def test_half_open_closes_on_success(self, clock):
        """Probe success closes the circuit and clears the counter."""
        cb = make_breaker(clock, failure_threshold=2, reset_timeout=1.0)

        cb.record_failure("error")
        cb.record_failure("error")
        clock.advance(1.0)
        assert cb.should_allow_request() is True

        cb.record_success()
        assert cb.state == CircuitState.CLOSED
        assert cb.consecutive_failures == 0
        assert cb.opened_at is None

    def test_half_open_reopens_on_failure(self, clock):
        """Probe failure reopens the circuit and restarts the timeout."""
        cb = make_breaker(clock, failure_threshold=1, reset_timeout=1.0)

        cb.record_failure("error")
        clock.advance(1.0)
        cb.should_allow_request()

        cb.record_failure("another error")
        assert cb.state == CircuitState.OPEN
        assert cb.opened_at == clock.now

        clock.advance(0.9)
        assert cb.state == CircuitState.OPEN
        clock.advance(0.1)
        assert cb.state == CircuitState.HALF_OPEN

    def test_released_trial_slot_goes_to_next_caller(self, clock):
        """A trial request that never completed frees the slot without changing state."""
        cb = make_breaker(clock, failure_threshold=1, reset_timeout=1.0)

        cb.record_failure("error")
        clock.advance(1.0)
        assert cb.should_allow_request() is True
        assert cb.should_allow_request() is False

        cb.release_trial_slot()

        assert cb.state == CircuitState.HALF_OPEN
        assert cb.should_allow_request() is True
        assert cb.should_allow_request() is False

    def test_release_trial_slot_outside_half_open_is_noop(self, clock):
        cb = make_breaker(clock, failure_threshold=1, reset_timeout=1.0)

        cb.release_trial_slot()
        assert cb.state == CircuitState.CLOSED

        cb.record_failure("error")
        opened_at = cb.opened_at
        cb.release_trial_slot()
        assert cb.state == CircuitState.OPEN
        assert cb.opened_at == opened_at
        assert cb.should_allow_request() is False

    def test_disabled_breaker_never_opens(self, clock):
        """A disabled breaker always reports closed."""
        cb = make_breaker(clock, failure_threshold=1, enabled=False)

        for _ in range(10):
            cb.record_failure("error")

        assert cb.state == CircuitState.CLOSED
        assert cb.should_allow_request() is True
        assert cb.consecutive_failures == 10

    def test_reset_clears_state(self, clock):
        """Manual reset clears all state."""
        cb = make_breaker(clock, failure_threshold=1)

        cb.record_failure("error")
        assert cb.state == CircuitState.OPEN

        cb.reset()
        assert cb.state == CircuitState.CLOSED
        assert cb.consecutive_failures == 0
        assert cb.should_allow_request() is True

    def test_state_change_callbacks(self, clock):
        """Callbacks are invoked on state changes."""
        callback = MagicMock()
        cb = make_breaker(clock, failure_threshold=1, reset_timeout=1.0)
        cb.on_state_change(callback)

        cb.record_failure("error")
        callback.assert_called_once_with(CircuitState.CLOSED, CircuitState.OPEN)

        callback.reset_mock()
        clock.advance(1.0)
        cb.should_allow_request()
        callback.assert_called_once_with(CircuitState.OPEN, CircuitState.HALF_OPEN)

    def test_failing_callback_does_not_break_transition(self, clock):
        """A raising callback is logged, not propagated."""
        cb = make_breaker(clock, failure_threshold=1)
        cb.on_state_change(MagicMock(side_effect=RuntimeError("boom")))

        cb.record_failure("error")
        assert cb.state == CircuitState.OPEN

    def test_get_stats(self, clock):
        """Stats include current state and counters."""
        cb = make_breaker(clock, failure_threshold=3, reset_timeout=10.0)

        cb.record_failure("error 1")
        cb.record_failure("error 2")

        stats = cb.get_stats()
        assert stats["state"] == "closed"
        assert stats["consecutive_failures"] == 2
        assert stats["last_error"] == "error 2"
        assert stats["time_until_probe"] == 0.0

        cb.record_failure("error 3")
        clock.advance(4.0)
        stats = cb.get_stats()
        assert stats["state"] == "open"
        assert stats["time_until_probe"] == 6.0
