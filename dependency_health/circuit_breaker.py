"""
Dependency Health - Circuit Breaker.

============================================================
STATE MACHINE
============================================================

One breaker per dependency, starting CLOSED.

CLOSED:
- should_execute() is always True
- failure: failure_count += 1, success_count = 0
- success: success_count += 1, failure_count = 0
- opens when failure_count >= failure_threshold
  AND request_count >= volume_threshold

OPEN:
- should_execute() is False until now >= next_attempt_time;
  then the breaker flips to HALF_OPEN and allows the call

HALF_OPEN:
- failure: reopen immediately with a new next_attempt_time
- success: success_count += 1; closes (counters reset) once
  success_count >= success_threshold

request_count counts every recorded outcome and is only zeroed
by reset(). A dependency without traffic never opens.

The breaker answers "should we keep calling it?", not "is it
healthy?". Its thresholds are independent of the status ones.

============================================================
"""

import logging
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from .clock import ClockProtocol, SystemClock
from .config import CircuitBreakerSettings
from .models import CircuitBreakerState, CircuitState


logger = logging.getLogger(__name__)


TransitionCallback = Callable[[str, CircuitState, CircuitState], None]


class CircuitBreaker:
    """
    Circuit breaker of a single dependency.

    Only the dependency's own check task mutates it, so no lock
    is needed.
    """

    def __init__(
        self,
        dependency_id: str,
        settings: Optional[CircuitBreakerSettings] = None,
        clock: Optional[ClockProtocol] = None,
        state: Optional[CircuitBreakerState] = None,
    ) -> None:
        self.dependency_id = dependency_id
        self.settings = settings or CircuitBreakerSettings()
        self.clock = clock or SystemClock()
        self._state = state or CircuitBreakerState()
        self._callbacks: List[TransitionCallback] = []

    # =========================================================
    # PROPERTIES
    # =========================================================

    @property
    def state(self) -> CircuitState:
        return self._state.state

    @property
    def snapshot(self) -> CircuitBreakerState:
        """The underlying mutable state record."""
        return self._state

    @property
    def enabled(self) -> bool:
        return self.settings.enabled

    def on_transition(self, callback: TransitionCallback) -> None:
        """Register a callback for state transitions."""
        self._callbacks.append(callback)

    # =========================================================
    # GATE
    # =========================================================

    def should_execute(self) -> bool:
        """
        Decide whether the dependency may be probed now.

        An OPEN breaker whose recovery timeout elapsed flips to
        HALF_OPEN here and lets this call through.
        """
        if not self.enabled:
            return True

        if self._state.state == CircuitState.CLOSED:
            return True

        if self._state.state == CircuitState.HALF_OPEN:
            return True

        next_attempt = self._state.next_attempt_time
        if next_attempt is not None and self.clock.now() < next_attempt:
            return False

        self._transition(CircuitState.HALF_OPEN)
        return True

    # =========================================================
    # OUTCOMES
    # =========================================================

    def record_success(self) -> None:
        """Record a successful dependency check."""
        if not self.enabled:
            return

        s = self._state
        s.request_count += 1

        if s.state == CircuitState.CLOSED:
            s.success_count += 1
            s.failure_count = 0

        elif s.state == CircuitState.HALF_OPEN:
            s.success_count += 1
            if s.success_count >= self.settings.success_threshold:
                s.failure_count = 0
                s.success_count = 0
                s.next_attempt_time = None
                self._transition(CircuitState.CLOSED)

        else:
            logger.debug(f"[{self.dependency_id}] Success recorded while circuit open, ignored")

    def record_failure(self) -> None:
        """Record a failed dependency check."""
        if not self.enabled:
            return

        s = self._state
        now = self.clock.now()
        s.request_count += 1

        if s.state == CircuitState.CLOSED:
            s.failure_count += 1
            s.success_count = 0
            s.last_failure_time = now
            if (
                s.failure_count >= self.settings.failure_threshold
                and s.request_count >= self.settings.volume_threshold
            ):
                self._open(now)

        elif s.state == CircuitState.HALF_OPEN:
            s.failure_count += 1
            s.success_count = 0
            self._open(now)

        else:
            s.last_failure_time = now
            logger.debug(f"[{self.dependency_id}] Failure recorded while circuit open")

    def record(self, success: bool) -> None:
        if success:
            self.record_success()
        else:
            self.record_failure()

    def reset(self) -> None:
        """Force CLOSED with zeroed counters (manual recovery)."""
        previous = self._state.state
        s = self._state
        s.failure_count = 0
        s.success_count = 0
        s.request_count = 0
        s.last_failure_time = None
        s.next_attempt_time = None
        if previous != CircuitState.CLOSED:
            self._transition(CircuitState.CLOSED)
        logger.info(f"[{self.dependency_id}] Circuit breaker manually reset")

    # =========================================================
    # INTERNALS
    # =========================================================

    def _open(self, now) -> None:
        self._state.last_failure_time = now
        self._state.next_attempt_time = now + timedelta(
            seconds=self.settings.recovery_timeout_seconds
        )
        self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state.state
        if old_state == new_state:
            return
        self._state.state = new_state

        if new_state == CircuitState.OPEN:
            logger.warning(
                f"[{self.dependency_id}] Circuit breaker OPEN "
                f"(failures={self._state.failure_count}, "
                f"requests={self._state.request_count}), "
                f"next attempt at {self._state.next_attempt_time.isoformat()}"
            )
        else:
            logger.info(
                f"[{self.dependency_id}] Circuit breaker "
                f"{old_state.value} -> {new_state.value}"
            )

        for callback in self._callbacks:
            try:
                callback(self.dependency_id, old_state, new_state)
            except Exception as e:
                logger.error(f"[{self.dependency_id}] Transition callback error: {e}")

    def to_dict(self) -> Dict[str, Any]:
        data = self._state.to_dict()
        data["enabled"] = self.enabled
        return data


__all__ = ["CircuitBreaker", "TransitionCallback"]
