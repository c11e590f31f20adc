"""
Dependency Health - Status Aggregator.

============================================================
CONSECUTIVE-OUTCOME STATUS
============================================================

Folds one cycle's endpoint results into a DependencyState.

Skipped cycle (circuit open):
- only last_check_time moves; counters and status unchanged

Successful cycle (every endpoint succeeded):
- consecutive_successes += 1, consecutive_failures = 0
- HEALTHY once consecutive_successes >= healthy_threshold

Failed cycle (any endpoint failed):
- consecutive_failures += 1, consecutive_successes = 0
- last_error = first failing endpoint's error
- UNHEALTHY once consecutive_failures >= unhealthy_threshold
- otherwise HEALTHY falls to DEGRADED; UNKNOWN stays UNKNOWN
  (no healthy baseline yet)

average_response_time_ms is the mean over the cycle's
non-skipped endpoint results.

============================================================
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from .config import StatusThresholds
from .models import CheckResult, DependencyState, HealthStatus, StatusTransition


logger = logging.getLogger(__name__)


class StatusAggregator:
    """
    Applies cycle outcomes to dependency states.

    Stateless apart from the thresholds, so one instance serves
    every dependency.
    """

    def __init__(self, thresholds: Optional[StatusThresholds] = None) -> None:
        self.thresholds = thresholds or StatusThresholds()
        self._transition_callbacks: List[Callable[[StatusTransition], None]] = []

    def on_transition(self, callback: Callable[[StatusTransition], None]) -> None:
        """Register a callback for status transitions."""
        self._transition_callbacks.append(callback)

    def apply(
        self,
        state: DependencyState,
        results: Sequence[CheckResult],
        now: datetime,
        skipped: bool = False,
    ) -> Optional[StatusTransition]:
        """
        Fold one cycle into the state.

        Args:
            state: State to update in place
            results: Endpoint results of the cycle
            now: Cycle time
            skipped: The circuit breaker denied execution

        Returns:
            StatusTransition if the status changed, None otherwise
        """
        state.last_check_time = now
        for result in results:
            state.endpoint_results[result.endpoint] = result

        if skipped:
            return None

        executed = [r for r in results if not r.skipped]
        if executed:
            state.average_response_time_ms = (
                sum(r.response_time_ms for r in executed) / len(executed)
            )

        success = bool(executed) and all(r.success for r in executed)
        previous = state.status
        state.total_checks += 1

        if success:
            state.successful_checks += 1
            state.consecutive_successes += 1
            state.consecutive_failures = 0
            state.last_success_time = now
            state.last_error = None
            if state.consecutive_successes >= self.thresholds.healthy_threshold:
                state.status = HealthStatus.HEALTHY
        else:
            state.consecutive_failures += 1
            state.consecutive_successes = 0
            state.last_error = next(
                (r.error for r in executed if not r.success),
                "No endpoint results",
            )
            if state.consecutive_failures >= self.thresholds.unhealthy_threshold:
                state.status = HealthStatus.UNHEALTHY
            elif previous == HealthStatus.HEALTHY:
                state.status = HealthStatus.DEGRADED

        if state.status == previous:
            return None

        transition = StatusTransition(
            dependency_id=state.dependency_id,
            from_status=previous,
            to_status=state.status,
            timestamp=now,
        )
        self._log_transition(transition, state)

        for callback in self._transition_callbacks:
            try:
                callback(transition)
            except Exception as e:
                logger.error(f"[{state.dependency_id}] Status callback error: {e}")

        return transition

    def _log_transition(self, transition: StatusTransition, state: DependencyState) -> None:
        message = (
            f"[{transition.dependency_id}] Status "
            f"{transition.from_status.value} -> {transition.to_status.value}"
        )
        if transition.is_degradation:
            logger.warning(f"{message} (last error: {state.last_error})")
        else:
            logger.info(message)


__all__ = ["StatusAggregator"]
