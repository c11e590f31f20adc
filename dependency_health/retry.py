"""
Dependency Health - Retry Combinator.

============================================================
RETRY POLICY
============================================================

with_retry() runs an async operation up to max_attempts times:
- The first successful attempt is returned immediately
- Between attempts it waits backoff.delay(attempt)
- It never waits after the final attempt
- After exhaustion the LAST attempt's outcome is returned
  (or its exception re-raised)

An attempt fails when it raises, or when is_failure(result) is
true. The probe executor uses the second form: a failed probe is
a CheckResult, not an exception.

============================================================
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, TypeVar

from .clock import SleepFunc


logger = logging.getLogger(__name__)

T = TypeVar("T")


# ============================================================
# BACKOFF POLICIES
# ============================================================

class BackoffPolicy(ABC):
    """Delay to wait after a failed attempt."""

    @abstractmethod
    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        pass


class LinearBackoff(BackoffPolicy):
    """delay_seconds x attempt: 1s, 2s, 3s ... for delay_seconds=1."""

    def __init__(self, delay_seconds: float):
        self.delay_seconds = delay_seconds

    def delay(self, attempt: int) -> float:
        return self.delay_seconds * attempt

    def __repr__(self) -> str:
        return f"LinearBackoff({self.delay_seconds})"


class NoBackoff(BackoffPolicy):
    """Retry immediately."""

    def delay(self, attempt: int) -> float:
        return 0.0


# ============================================================
# COMBINATOR
# ============================================================

async def with_retry(
    operation: Callable[[int], Awaitable[T]],
    max_attempts: int,
    backoff: BackoffPolicy,
    sleep: Optional[SleepFunc] = None,
    is_failure: Optional[Callable[[T], bool]] = None,
    label: str = "",
) -> T:
    """
    Run `operation(attempt)` with retries.

    Args:
        operation: Async callable receiving the 1-based attempt number
        max_attempts: Total attempts (at least 1)
        backoff: Policy giving the wait after each failed attempt
        sleep: Async sleep used between attempts (asyncio.sleep by default)
        is_failure: Classifies a returned value as a failed attempt
        label: Prefix for log messages

    Returns:
        The first successful result, or the last attempt's result
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    sleep = sleep or asyncio.sleep
    prefix = f"[{label}] " if label else ""

    for attempt in range(1, max_attempts + 1):
        last_attempt = attempt == max_attempts
        try:
            result = await operation(attempt)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if last_attempt:
                raise
            reason = str(e) or e.__class__.__name__
        else:
            if is_failure is None or not is_failure(result):
                return result
            if last_attempt:
                return result
            reason = getattr(result, "error", None) or "failed"

        wait = backoff.delay(attempt)
        logger.debug(
            f"{prefix}Attempt {attempt}/{max_attempts} failed ({reason}), "
            f"retrying in {wait:.2f}s"
        )
        if wait > 0:
            await sleep(wait)

    # Unreachable: the loop always returns or raises on the last attempt
    raise RuntimeError("with_retry exited without a result")


__all__ = [
    "BackoffPolicy",
    "LinearBackoff",
    "NoBackoff",
    "with_retry",
]
