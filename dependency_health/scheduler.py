"""
Dependency Health - Dependency Monitor (Scheduler).

============================================================
CYCLE
============================================================

Every check_interval_seconds:

1. One check task per dependency, all concurrent
   - circuit breaker gate (skip when open)
   - probe every endpoint with retry
   - fold the outcome into the DependencyState
   - record the outcome on the breaker
2. Wait for every task to settle; a task that raises becomes a
   failed outcome for that dependency only
3. Evaluate alert rules (cooldown-gated) and alert on the
   status changes of critical dependencies
4. Build and publish the snapshot, persist it with a TTL

Cycles never overlap: a slow cycle delays the next tick.

============================================================
STATE OWNERSHIP
============================================================

All mutable state lives in an injected MonitorState:
- DependencyState / CircuitBreakerState are written only by
  that dependency's own task
- The cooldown map, recent alerts, metrics and snapshot are
  written only by the post-cycle step
- pending_transitions holds status changes from check_now()
  until the next post-cycle step drains it

============================================================
USAGE
============================================================

```python
monitor = DependencyMonitor(build_default_registry(), MonitorConfig.from_env())
await monitor.start()
...
snapshot = monitor.get_snapshot()
await monitor.stop()
```

============================================================
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

from .aggregator import StatusAggregator
from .alerts import AlertDispatcher
from .circuit_breaker import CircuitBreaker
from .clock import ClockProtocol, SleepFunc, SystemClock
from .config import MonitorConfig
from .http_client import AiohttpClient, HttpClient
from .models import (
    AlertRecord,
    AlertType,
    CheckHistoryEntry,
    CheckResult,
    CircuitBreakerState,
    DependencyDefinition,
    DependencyState,
    StatusTransition,
)
from .notifications import AlertTransport, LoggingAlertTransport
from .probe import ProbeExecutor
from .registry import DependencyRegistry
from .snapshot import CycleMetrics, HealthSnapshot, build_snapshot, dependency_view
from .store import InMemorySnapshotStore, SnapshotStore


logger = logging.getLogger(__name__)


DEPENDENCY_HISTORY_LIMIT = 10


# =============================================================
# STATE CONTAINER
# =============================================================


@dataclass
class MonitorState:
    """
    Every piece of mutable monitor state, owned by one monitor.

    Injected so several monitors can coexist (tests) and so a
    caller can inspect or pre-seed state.
    """
    dependencies: Dict[str, DependencyState] = field(default_factory=dict)
    breakers: Dict[str, CircuitBreakerState] = field(default_factory=dict)
    history: Dict[str, Deque[CheckHistoryEntry]] = field(default_factory=dict)
    cooldowns: Dict[AlertType, datetime] = field(default_factory=dict)
    pending_transitions: List[StatusTransition] = field(default_factory=list)
    recent_alerts: Deque[AlertRecord] = field(default_factory=lambda: deque(maxlen=50))
    metrics: CycleMetrics = field(default_factory=CycleMetrics)
    snapshot: Optional[HealthSnapshot] = None

    @classmethod
    def for_registry(
        cls,
        registry: DependencyRegistry,
        config: Optional[MonitorConfig] = None,
    ) -> "MonitorState":
        state = cls()
        state.ensure(registry, config or MonitorConfig())
        return state

    def ensure(self, registry: DependencyRegistry, config: MonitorConfig) -> None:
        """Create missing entries for every registered dependency."""
        history_size = config.snapshot.history_size
        for definition in registry:
            self.dependencies.setdefault(definition.id, DependencyState(definition.id))
            self.breakers.setdefault(definition.id, CircuitBreakerState())
            self.history.setdefault(definition.id, deque(maxlen=history_size))
        if self.recent_alerts.maxlen != config.alerting.recent_alerts_size:
            self.recent_alerts = deque(
                self.recent_alerts, maxlen=config.alerting.recent_alerts_size
            )


@dataclass
class CheckOutcome:
    """Result of one dependency's check within a cycle."""
    dependency_id: str
    skipped: bool
    success: bool
    results: List[CheckResult]
    transition: Optional[StatusTransition] = None


# =============================================================
# DEPENDENCY MONITOR
# =============================================================


class DependencyMonitor:
    """
    Fixed-interval concurrent health checker.

    Exposes:
    - run_cycle(): one full cycle
    - start() / stop() / run_forever(): the periodic loop
    - check_now(id): on-demand check, respects the circuit breaker
    - reset_circuit_breaker(id): manual recovery
    - get_snapshot() / get_dependency(id) / get_category(name)
    """

    def __init__(
        self,
        registry: DependencyRegistry,
        config: Optional[MonitorConfig] = None,
        http_client: Optional[HttpClient] = None,
        store: Optional[SnapshotStore] = None,
        transport: Optional[AlertTransport] = None,
        clock: Optional[ClockProtocol] = None,
        sleep: Optional[SleepFunc] = None,
        state: Optional[MonitorState] = None,
    ) -> None:
        """
        Initialize the monitor.

        Args:
            registry: Dependencies to check
            config: Monitor configuration
            http_client: HTTP client (an AiohttpClient is created if omitted)
            store: Snapshot store (in-memory if omitted)
            transport: Alert transport (logging if omitted)
            clock: Time source
            sleep: Async sleep for backoff and the interval wait
            state: State container (fresh if omitted)
        """
        self.registry = registry
        self.config = config or MonitorConfig()
        self.clock = clock or SystemClock()
        self._sleep = sleep or self.clock.sleep

        self._owns_http_client = http_client is None
        self.http_client = http_client if http_client is not None else AiohttpClient()
        self.store = store if store is not None else InMemorySnapshotStore(self.clock)
        self.transport = transport if transport is not None else LoggingAlertTransport()

        self.state = state if state is not None else MonitorState()
        self.state.ensure(registry, self.config)

        self.probe_executor = ProbeExecutor(
            self.http_client,
            self.config.probe,
            clock=self.clock,
            sleep=self._sleep,
        )
        self.aggregator = StatusAggregator(self.config.status)
        self.breakers: Dict[str, CircuitBreaker] = {
            definition.id: CircuitBreaker(
                definition.id,
                self.config.circuit_breaker,
                clock=self.clock,
                state=self.state.breakers[definition.id],
            )
            for definition in registry
        }
        self.dispatcher = AlertDispatcher(
            self.config.alerting,
            transport=self.transport,
            cooldowns=self.state.cooldowns,
            recent_alerts=self.state.recent_alerts,
        )

        self._definitions: Dict[str, DependencyDefinition] = {d.id: d for d in registry}
        self._cycle_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._running = False

        logger.info(
            f"DependencyMonitor initialized: {len(registry)} dependencies, "
            f"interval {self.config.check_interval_seconds}s"
        )

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================
    # PER-DEPENDENCY CHECK
    # =========================================================

    async def _check_dependency(self, definition: DependencyDefinition) -> CheckOutcome:
        """Check one dependency; mutates only that dependency's state."""
        state = self.state.dependencies[definition.id]
        breaker = self.breakers[definition.id]

        if not breaker.should_execute():
            now = self.clock.now()
            results = [CheckResult.skipped_result(e.name, now) for e in definition.endpoints]
            self.aggregator.apply(state, results, now, skipped=True)
            self._record_history(definition.id, results, state, skipped=True)
            logger.debug(f"[{definition.id}] Skipped, circuit breaker open")
            return CheckOutcome(definition.id, skipped=True, success=False, results=results)

        try:
            results = await self.probe_executor.probe_dependency(definition)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[{definition.id}] Check raised: {e}", exc_info=True)
            results = [self._error_result(definition, e)]

        success = bool(results) and all(r.success for r in results)
        transition = self.aggregator.apply(state, results, self.clock.now())
        self._record_history(definition.id, results, state, skipped=False)
        # Last, so a crash above records exactly one breaker outcome
        breaker.record(success)

        return CheckOutcome(
            definition.id,
            skipped=False,
            success=success,
            results=results,
            transition=transition,
        )

    def _error_result(self, definition: DependencyDefinition, error: BaseException) -> CheckResult:
        return CheckResult(
            endpoint=definition.endpoints[0].name,
            success=False,
            error=f"Check error: {error}",
            checked_at=self.clock.now(),
        )

    def _record_crash(self, definition: DependencyDefinition, error: BaseException) -> CheckOutcome:
        """Turn a task that raised into a failed outcome for its dependency."""
        logger.error(
            f"[{definition.id}] Check task failed: {error}",
            exc_info=(type(error), error, error.__traceback__),
        )
        result = self._error_result(definition, error)
        transition = None
        try:
            self.breakers[definition.id].record_failure()
            transition = self.aggregator.apply(
                self.state.dependencies[definition.id], [result], self.clock.now()
            )
        except Exception as e:
            logger.error(f"[{definition.id}] Cannot record failed check: {e}")
        return CheckOutcome(
            definition.id,
            skipped=False,
            success=False,
            results=[result],
            transition=transition,
        )

    def _record_history(
        self,
        dependency_id: str,
        results: List[CheckResult],
        state: DependencyState,
        skipped: bool,
    ) -> None:
        executed = [r for r in results if not r.skipped]
        response_time = (
            sum(r.response_time_ms for r in executed) / len(executed) if executed else None
        )
        success = not skipped and bool(executed) and all(r.success for r in executed)
        self.state.history[dependency_id].append(
            CheckHistoryEntry(
                timestamp=state.last_check_time or self.clock.now(),
                success=success,
                skipped=skipped,
                response_time_ms=response_time,
                error=None if success else (
                    results[0].error if skipped and results else state.last_error
                ),
            )
        )

    # =========================================================
    # CYCLE
    # =========================================================

    async def run_cycle(self) -> HealthSnapshot:
        """
        Run one full cycle and publish its snapshot.

        Never raises because of a dependency, an alert transport
        or the snapshot store.
        """
        async with self._cycle_lock:
            started = self.clock.monotonic()
            cycle_time = self.clock.now()
            definitions = list(self.registry)

            raw = await asyncio.gather(
                *(self._check_dependency(d) for d in definitions),
                return_exceptions=True,
            )

            outcomes: List[CheckOutcome] = []
            for definition, outcome in zip(definitions, raw):
                if isinstance(outcome, Exception):
                    outcome = self._record_crash(definition, outcome)
                elif isinstance(outcome, BaseException):
                    raise outcome
                outcomes.append(outcome)

            # Post-cycle step: single writer of shared state
            self._update_metrics(outcomes, cycle_time, started)

            transitions = self.state.pending_transitions + [
                o.transition for o in outcomes if o.transition is not None
            ]
            self.state.pending_transitions = []

            try:
                await self.dispatcher.evaluate(
                    self.state.dependencies,
                    self._definitions,
                    self.clock.now(),
                    transitions=transitions,
                )
            except Exception as e:
                logger.error(f"Alert evaluation failed: {e}", exc_info=True)

            snapshot = self._build_snapshot()
            self.state.snapshot = snapshot
            await self._persist(snapshot)

            logger.info(
                f"Cycle {self.state.metrics.cycle_count} done in "
                f"{self.state.metrics.last_cycle_duration_ms:.0f}ms: "
                f"overall={snapshot.overall_status.value}, "
                f"executed={self.state.metrics.checks_executed}, "
                f"skipped={self.state.metrics.checks_skipped}, "
                f"failed={self.state.metrics.checks_failed}"
            )
            return snapshot

    def _update_metrics(
        self,
        outcomes: List[CheckOutcome],
        cycle_time: datetime,
        started: float,
    ) -> None:
        metrics = self.state.metrics
        executed = [o for o in outcomes if not o.skipped]

        metrics.cycle_count += 1
        metrics.last_cycle_at = cycle_time
        metrics.last_cycle_duration_ms = (self.clock.monotonic() - started) * 1000
        metrics.checks_executed = len(executed)
        metrics.checks_skipped = len(outcomes) - len(executed)
        metrics.checks_failed = sum(1 for o in executed if not o.success)
        metrics.total_checks += len(executed)
        metrics.successful_checks += sum(1 for o in executed if o.success)

        averages = [
            s.average_response_time_ms
            for s in self.state.dependencies.values()
            if s.average_response_time_ms is not None
        ]
        metrics.average_response_time_ms = sum(averages) / len(averages) if averages else None

    def _build_snapshot(self) -> HealthSnapshot:
        return build_snapshot(
            self.registry,
            self.state.dependencies,
            self.state.breakers,
            self.state.metrics,
            self.dispatcher.get_recent(),
            self.clock.now(),
        )

    async def _persist(self, snapshot: HealthSnapshot) -> None:
        settings = self.config.snapshot
        try:
            await self.store.put(settings.key, snapshot.to_dict(), settings.ttl_seconds)
        except Exception as e:
            logger.error(f"Failed to persist snapshot '{settings.key}': {e}")

    # =========================================================
    # LOOP
    # =========================================================

    async def start(self) -> None:
        """Start the periodic loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("DependencyMonitor started")

    async def stop(self) -> None:
        """Stop the loop and release owned resources."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.close()
        logger.info("DependencyMonitor stopped")

    async def run_forever(self) -> None:
        """Start the loop and wait until it is stopped or cancelled."""
        await self.start()
        try:
            if self._task:
                await self._task
        finally:
            await self.stop()

    async def _run_loop(self) -> None:
        interval = self.config.check_interval_seconds
        while self._running:
            started = self.clock.monotonic()
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Monitoring cycle error: {e}", exc_info=True)

            elapsed = self.clock.monotonic() - started
            await self._sleep(max(0.0, interval - elapsed))

    async def close(self) -> None:
        if self._owns_http_client:
            await self.http_client.close()
        try:
            await self.transport.close()
        except Exception as e:
            logger.warning(f"Error closing alert transport: {e}")

    # =========================================================
    # ON-DEMAND OPERATIONS
    # =========================================================

    async def check_now(self, dependency_id: str) -> DependencyState:
        """
        Check one dependency immediately.

        Respects its circuit breaker; raises DependencyNotFoundError.
        Waits for a running cycle to finish first. A status change
        is alerted on by the next cycle.
        """
        definition = self.registry.get(dependency_id)
        async with self._cycle_lock:
            try:
                outcome = await self._check_dependency(definition)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                outcome = self._record_crash(definition, e)
            if outcome.transition is not None:
                self.state.pending_transitions.append(outcome.transition)
        return self.state.dependencies[dependency_id]

    def reset_circuit_breaker(self, dependency_id: str) -> bool:
        """Force a dependency's breaker closed. False if the id is unknown."""
        breaker = self.breakers.get(dependency_id)
        if breaker is None:
            return False
        breaker.reset()
        return True

    # =========================================================
    # QUERIES
    # =========================================================

    def get_snapshot(self) -> HealthSnapshot:
        """
        Latest completed cycle's snapshot.

        Before the first cycle: a cached snapshot loaded by
        load_cached_snapshot(), or the initial unknown states.
        """
        if self.state.snapshot is not None:
            return self.state.snapshot
        return self._build_snapshot()

    def get_dependency(self, dependency_id: str) -> Optional[Dict[str, Any]]:
        """Live view of one dependency with recent history, or None."""
        definition = self._definitions.get(dependency_id)
        if definition is None:
            return None

        view = {"dependency_id": dependency_id}
        view.update(
            dependency_view(
                definition,
                self.state.dependencies[dependency_id],
                self.state.breakers[dependency_id],
            )
        )
        history = list(self.state.history[dependency_id])[-DEPENDENCY_HISTORY_LIMIT:]
        view["history"] = [entry.to_dict() for entry in history]
        return view

    def get_category(self, category: str) -> Optional[Dict[str, Any]]:
        """Category view from the latest snapshot, or None."""
        return self.get_snapshot().category(category)

    async def load_cached_snapshot(self) -> Optional[HealthSnapshot]:
        """
        Read the last persisted snapshot from the store.

        Before the first cycle it also becomes the published snapshot,
        so a restarted process answers from the last known state.
        """
        key = self.config.snapshot.key
        try:
            data = await self.store.get(key)
        except Exception as e:
            logger.warning(f"Failed to read cached snapshot '{key}': {e}")
            return None

        if not data:
            return None

        try:
            snapshot = HealthSnapshot.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed cached snapshot '{key}': {e}")
            return None

        if self.state.snapshot is None:
            self.state.snapshot = snapshot
            logger.info(
                f"Loaded cached snapshot from {snapshot.generated_at}: "
                f"{snapshot.overall_status.value}"
            )
        return snapshot

    def to_dict(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "config": self.config.to_dict(),
            "registry": self.registry.to_dict(),
            "alerts": self.dispatcher.stats(),
        }


__all__ = ["MonitorState", "CheckOutcome", "DependencyMonitor"]
