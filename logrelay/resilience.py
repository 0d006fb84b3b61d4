"""
Per-destination circuit breaker.

The breaker is a pure state machine: it is driven only by
record_success(), record_failure() and its clock, so it can be tested
without any network I/O.

Usage:
    breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=3), name="backup")

    if breaker.should_allow_request():
        ok = await send()
        breaker.record_success() if ok else breaker.record_failure("HTTP 503")
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation, deliveries attempted
    OPEN = "open"  # Failing, deliveries skipped entirely
    HALF_OPEN = "half_open"  # Next delivery is a probe


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Configuration for circuit breaker behavior."""

    failure_threshold: int = 5  # Consecutive failures before opening
    reset_timeout: float = 60.0  # Seconds open before probing
    enabled: bool = True  # Disabled breakers always report CLOSED


class CircuitBreaker:
    """
    Circuit breaker for a single destination.

    States:
        CLOSED: deliveries go through; consecutive failures are counted
        OPEN: deliveries are skipped until reset_timeout has elapsed since opened_at
        HALF_OPEN: one probe delivery is allowed; success closes, failure reopens
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CircuitBreakerConfig()
        self.name = name
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: float | None = None
        self._probe_in_flight = False
        self._last_error: str | None = None
        self._lock = threading.Lock()
        self._state_change_callbacks: list[Callable[[CircuitState, CircuitState], None]] = []

    @property
    def state(self) -> CircuitState:
        """Get current circuit state, checking for timeout transitions."""
        with self._lock:
            return self._current_state()

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._consecutive_failures

    @property
    def opened_at(self) -> float | None:
        with self._lock:
            return self._opened_at

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def _current_state(self) -> CircuitState:
        if not self.config.enabled:
            return CircuitState.CLOSED
        if self._state == CircuitState.OPEN and self._should_attempt_reset():
            self._transition_to(CircuitState.HALF_OPEN)
        return self._state

    def _should_attempt_reset(self) -> bool:
        """Check if enough time has passed since the circuit opened."""
        if self._opened_at is None:
            return True
        return self._clock() - self._opened_at >= self.config.reset_timeout

    def _transition_to(self, new_state: CircuitState):
        """Transition to a new state with logging and callbacks."""
        old_state = self._state
        if old_state == new_state:
            return

        self._state = new_state
        logger.info(f"Circuit breaker '{self.name}' transitioned: {old_state.value} -> {new_state.value}")

        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
        elif new_state == CircuitState.CLOSED:
            self._opened_at = None
        self._probe_in_flight = False

        for callback in self._state_change_callbacks:
            try:
                callback(old_state, new_state)
            except Exception as e:
                logger.warning(f"Circuit breaker callback error: {e}")

    def should_allow_request(self) -> bool:
        """Check if a delivery should be attempted.

        In HALF_OPEN only the first caller gets through, as the probe.
        """
        with self._lock:
            current_state = self._current_state()

            if current_state == CircuitState.CLOSED:
                return True

            if current_state == CircuitState.OPEN:
                return False

            if not self._probe_in_flight:
                self._probe_in_flight = True
                return True

            return False

    def release_trial_slot(self):
        """Give back a HALF_OPEN trial slot whose request never completed.

        The next caller gets the slot; state and opened_at are unchanged.
        """
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._probe_in_flight = False

    def record_success(self):
        """Record a successful delivery."""
        with self._lock:
            self._consecutive_failures = 0
            self._last_error = None
            if self._state != CircuitState.CLOSED:
                self._transition_to(CircuitState.CLOSED)

    def record_failure(self, error: str | None = None):
        """Record a failed delivery."""
        with self._lock:
            self._consecutive_failures += 1
            self._last_error = error

            if not self.config.enabled:
                return

            if self._state == CircuitState.HALF_OPEN:
                # A failed probe reopens the circuit and restarts the timeout
                self._transition_to(CircuitState.OPEN)
            elif (
                self._state == CircuitState.CLOSED
                and self._consecutive_failures >= self.config.failure_threshold
            ):
                self._transition_to(CircuitState.OPEN)
                logger.warning(
                    f"Circuit breaker '{self.name}' opened after {self._consecutive_failures} "
                    f"consecutive failures, probing again in {self.config.reset_timeout:.1f}s"
                )

    def reset(self):
        """Manually reset the circuit breaker to closed state."""
        with self._lock:
            self._transition_to(CircuitState.CLOSED)
            self._consecutive_failures = 0
            self._last_error = None
            self._opened_at = None

    def on_state_change(self, callback: Callable[[CircuitState, CircuitState], None]):
        """Register a callback for state changes."""
        self._state_change_callbacks.append(callback)

    def get_stats(self) -> dict:
        """Get circuit breaker statistics."""
        with self._lock:
            state = self._current_state()
            return {
                "state": state.value,
                "consecutive_failures": self._consecutive_failures,
                "opened_at": self._opened_at,
                "last_error": self._last_error,
                "time_until_probe": max(
                    0.0,
                    self.config.reset_timeout - (self._clock() - (self._opened_at or 0)),
                )
                if state == CircuitState.OPEN
                else 0.0,
            }
