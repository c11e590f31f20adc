"""
Tests for the dependency monitor (scheduler).

============================================================
PURPOSE
============================================================
End-to-end behaviour of monitoring cycles:
1. Status, breaker and alerts move together across cycles
2. One dependency's failure never affects its siblings
3. Cycles never overlap and keep a fixed cadence
4. Store and transport failures never break a cycle

============================================================
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import aiohttp
import pytest

from dependency_health.config import (
    AlertingConfig,
    AlertRuleSettings,
    CircuitBreakerSettings,
    MonitorConfig,
    ProbeSettings,
    StatusThresholds,
)
from dependency_health.exceptions import DependencyNotFoundError, SnapshotStoreError
from dependency_health.http_client import HttpResponse
from dependency_health.models import AlertType, CircuitState, Criticality, HealthStatus
from dependency_health.registry import DependencyRegistry
from dependency_health.scheduler import DependencyMonitor, MonitorState
from dependency_health.store import InMemorySnapshotStore


BINANCE = "https://binance.test/api/v3/ping"
COINBASE = "https://coinbase.test/time"
KRAKEN = "https://kraken.test/0/public/Time"


# ============================================================
# FIXTURES
# ============================================================

def make_config(**overrides) -> MonitorConfig:
    """Single-attempt probes so cycles map one-to-one onto fetches."""
    values = {
        "check_interval_seconds": 30,
        "probe": ProbeSettings(default_timeout_ms=10000, retry_attempts=1, retry_delay_ms=0),
        "status": StatusThresholds(healthy_threshold=2, unhealthy_threshold=3),
    }
    values.update(overrides)
    return MonitorConfig(**values)


@pytest.fixture
def transport():
    transport = AsyncMock()
    transport.send = AsyncMock()
    transport.close = AsyncMock()
    return transport


@pytest.fixture
def exchanges(make_definition):
    return DependencyRegistry([
        make_definition("binance", BINANCE, criticality=Criticality.CRITICAL, category="exchange"),
        make_definition("coinbase", COINBASE, criticality=Criticality.HIGH, category="exchange"),
        make_definition("kraken", KRAKEN, criticality=Criticality.MEDIUM, category="exchange"),
    ])


@pytest.fixture
def build_monitor(http, clock, transport):
    """Factory wiring a monitor to the fake client, clock and transport."""

    def _build(registry, config=None, **kwargs):
        kwargs.setdefault("transport", transport)
        return DependencyMonitor(
            registry,
            config or make_config(),
            http_client=http,
            clock=clock,
            **kwargs,
        )

    return _build


async def run_cycles(monitor, clock, count, interval=30):
    snapshot = None
    for _ in range(count):
        snapshot = await monitor.run_cycle()
        clock.advance(interval)
    return snapshot


def sent_types(transport):
    return [call.args[0].type for call in transport.send.await_args_list]


# ============================================================
# END-TO-END SCENARIOS
# ============================================================

class TestScenarios:
    """Status, breaker and alert behaviour over several cycles."""

    @pytest.mark.asyncio
    async def test_critical_dependency_down_alerts_once(
        self, build_monitor, make_definition, http, clock, transport
    ):
        registry = DependencyRegistry([
            make_definition("binance", BINANCE, criticality=Criticality.CRITICAL),
        ])
        http.fail(BINANCE)
        monitor = build_monitor(registry)

        statuses = []
        for _ in range(3):
            await monitor.run_cycle()
            statuses.append(monitor.state.dependencies["binance"].status)
            clock.advance(30)

        assert statuses == [HealthStatus.UNKNOWN, HealthStatus.UNKNOWN, HealthStatus.UNHEALTHY]
        assert sent_types(transport) == [
            AlertType.CRITICAL_DEPENDENCY_DOWN,
            AlertType.DEPENDENCY_STATUS_CHANGE,
        ]

        await run_cycles(monitor, clock, 2)
        assert transport.send.await_count == 2

    @pytest.mark.asyncio
    async def test_breaker_stays_closed_below_volume(
        self, build_monitor, make_definition, http, clock
    ):
        """3 successes then 4 failures: 7 requests never reach volume 10."""
        registry = DependencyRegistry([make_definition("kraken", KRAKEN)])
        http.script(
            KRAKEN,
            *([HttpResponse(status=200, body={})] * 3),
            *([aiohttp.ClientConnectionError("refused")] * 4),
        )
        monitor = build_monitor(registry)

        await run_cycles(monitor, clock, 7)

        breaker = monitor.state.breakers["kraken"]
        assert breaker.state == CircuitState.CLOSED
        assert breaker.request_count == 7
        assert breaker.failure_count == 4

    @pytest.mark.asyncio
    async def test_open_breaker_recovery_window(self, build_monitor, make_definition, http, clock):
        config = make_config(
            circuit_breaker=CircuitBreakerSettings(
                failure_threshold=1,
                success_threshold=3,
                recovery_timeout_seconds=60,
                volume_threshold=1,
            ),
        )
        registry = DependencyRegistry([make_definition("coinbase", COINBASE)])
        http.fail(COINBASE)
        monitor = build_monitor(registry, config)

        await monitor.run_cycle()
        opened_at = clock.now()
        breaker = monitor.state.breakers["coinbase"]
        assert breaker.state == CircuitState.OPEN

        clock.advance(59)
        await monitor.run_cycle()
        assert http.calls_to(COINBASE) == 1
        assert monitor.state.metrics.checks_skipped == 1

        clock.advance(2)
        await monitor.run_cycle()
        assert http.calls_to(COINBASE) == 2
        assert breaker.state == CircuitState.OPEN
        assert breaker.next_attempt_time == opened_at + timedelta(seconds=61 + 60)

    @pytest.mark.asyncio
    async def test_skipped_cycle_keeps_status(self, build_monitor, make_definition, http, clock):
        config = make_config(
            circuit_breaker=CircuitBreakerSettings(
                failure_threshold=3,
                recovery_timeout_seconds=300,
                volume_threshold=3,
            ),
        )
        registry = DependencyRegistry([make_definition("kraken", KRAKEN)])
        http.fail(KRAKEN)
        monitor = build_monitor(registry, config)

        await run_cycles(monitor, clock, 3)
        state = monitor.state.dependencies["kraken"]
        assert state.status == HealthStatus.UNHEALTHY
        total_before = state.total_checks

        await monitor.run_cycle()

        assert state.status == HealthStatus.UNHEALTHY
        assert state.total_checks == total_before
        assert state.last_check_time == clock.now()
        history = monitor.get_dependency("kraken")["history"]
        assert history[-1]["skipped"] is True
        assert history[-1]["error"] == "Circuit breaker open"

    @pytest.mark.asyncio
    async def test_performance_alert(self, build_monitor, make_definition, http, transport):
        registry = DependencyRegistry([make_definition("coingecko", "https://coingecko.test/ping")])
        http.ok("https://coingecko.test/ping", {"gecko_says": "(V3) To the Moon!"}, latency_ms=6000)
        monitor = build_monitor(registry)

        await monitor.run_cycle()

        assert sent_types(transport) == [AlertType.PERFORMANCE_DEGRADATION]
        alert = transport.send.await_args.args[0]
        assert alert.payload["dependencies"][0]["response_time_ms"] == pytest.approx(6000.0)


# ============================================================
# STATUS CHANGE ALERTS
# ============================================================

class TestStatusChangeAlerts:
    """Tests for alerts on status changes of critical dependencies."""

    @pytest.mark.asyncio
    async def test_critical_transition_alerted(self, build_monitor, exchanges, http, clock, transport):
        http.ok(BINANCE)
        http.ok(COINBASE)
        http.ok(KRAKEN)
        monitor = build_monitor(exchanges)

        await run_cycles(monitor, clock, 2)

        assert sent_types(transport) == [AlertType.DEPENDENCY_STATUS_CHANGE]
        payload = transport.send.await_args.args[0].payload
        assert payload["dependency_id"] == "binance"
        assert payload["previous_status"] == "unknown"
        assert payload["current_status"] == "healthy"
        assert payload["criticality"] == "critical"
        assert payload["consecutive_failures"] == 0
        assert payload["endpoints"] == [
            {"name": "endpoint_0", "success": True, "response_time_ms": 0.0},
        ]

    @pytest.mark.asyncio
    async def test_every_transition_alerted(self, build_monitor, exchanges, http, clock, transport):
        http.ok(BINANCE)
        monitor = build_monitor(exchanges)
        await run_cycles(monitor, clock, 2)

        http.fail(BINANCE)
        await monitor.run_cycle()

        alert = transport.send.await_args.args[0]
        assert alert.type == AlertType.DEPENDENCY_STATUS_CHANGE
        assert alert.payload["previous_status"] == "healthy"
        assert alert.payload["current_status"] == "degraded"
        assert alert.payload["consecutive_failures"] == 1
        assert sent_types(transport).count(AlertType.DEPENDENCY_STATUS_CHANGE) == 2

    @pytest.mark.asyncio
    async def test_on_demand_transition_alerted_by_next_cycle(
        self, build_monitor, exchanges, http, transport
    ):
        http.ok(BINANCE)
        monitor = build_monitor(exchanges)

        await monitor.check_now("binance")
        await monitor.check_now("binance")

        transport.send.assert_not_awaited()
        assert len(monitor.state.pending_transitions) == 1

        await monitor.run_cycle()

        assert sent_types(transport) == [AlertType.DEPENDENCY_STATUS_CHANGE]
        assert monitor.state.pending_transitions == []

    @pytest.mark.asyncio
    async def test_rule_disabled(self, build_monitor, exchanges, http, clock, transport):
        http.ok(BINANCE)
        config = make_config(
            alerting=AlertingConfig(
                dependency_status_change=AlertRuleSettings(enabled=False, cooldown_seconds=0),
            ),
        )
        monitor = build_monitor(exchanges, config)

        await run_cycles(monitor, clock, 2)

        transport.send.assert_not_awaited()


# ============================================================
# ISOLATION AND CONCURRENCY
# ============================================================

class TestIsolation:
    """Tests for per-dependency isolation and cycle concurrency."""

    @pytest.mark.asyncio
    async def test_crashing_check_only_fails_its_dependency(self, build_monitor, exchanges, http):
        http.ok(BINANCE)
        http.ok(COINBASE)
        http.ok(KRAKEN)
        monitor = build_monitor(exchanges)

        original = monitor._check_dependency

        async def crash_kraken(definition):
            if definition.id == "kraken":
                raise RuntimeError("task crashed")
            return await original(definition)

        monitor._check_dependency = crash_kraken

        snapshot = await monitor.run_cycle()

        kraken = monitor.state.dependencies["kraken"]
        assert kraken.consecutive_failures == 1
        assert kraken.last_error == "Check error: task crashed"
        assert monitor.state.breakers["kraken"].failure_count == 1
        assert monitor.state.dependencies["binance"].consecutive_successes == 1
        assert monitor.state.dependencies["coinbase"].consecutive_successes == 1
        assert snapshot.metrics["checks_failed"] == 1

    @pytest.mark.asyncio
    async def test_bookkeeping_crash_records_one_breaker_outcome(
        self, build_monitor, make_definition, http
    ):
        registry = DependencyRegistry([make_definition("binance", BINANCE)])
        http.ok(BINANCE)
        monitor = build_monitor(registry)

        def broken_history(*args, **kwargs):
            raise RuntimeError("history unavailable")

        monitor._record_history = broken_history

        await monitor.run_cycle()

        breaker = monitor.state.breakers["binance"]
        assert breaker.request_count == 1
        assert breaker.failure_count == 1
        assert monitor.state.dependencies["binance"].last_error == "Check error: history unavailable"

    @pytest.mark.asyncio
    async def test_probe_exception_becomes_failed_check(self, build_monitor, exchanges, http):
        http.ok(BINANCE)
        http.ok(COINBASE)
        http.ok(KRAKEN)
        monitor = build_monitor(exchanges)
        monitor.probe_executor.probe_dependency = AsyncMock(side_effect=ValueError("bad probe"))

        await monitor.run_cycle()

        for state in monitor.state.dependencies.values():
            assert state.last_error == "Check error: bad probe"

    @pytest.mark.asyncio
    async def test_dependencies_checked_concurrently(self, build_monitor, exchanges, http):
        http.ok(BINANCE)
        http.ok(COINBASE)
        http.ok(KRAKEN)
        monitor = build_monitor(exchanges)

        await monitor.run_cycle()

        assert http.max_in_flight == 3

    @pytest.mark.asyncio
    async def test_cycles_never_overlap(self, build_monitor, make_definition, http):
        registry = DependencyRegistry([make_definition("binance", BINANCE)])
        http.ok(BINANCE)
        monitor = build_monitor(registry)

        await asyncio.gather(monitor.run_cycle(), monitor.run_cycle())

        assert http.max_in_flight == 1
        assert monitor.state.metrics.cycle_count == 2
        assert monitor.state.dependencies["binance"].total_checks == 2

    @pytest.mark.asyncio
    async def test_separate_monitors_do_not_share_state(self, build_monitor, exchanges, http, clock):
        http.fail(BINANCE)
        http.ok(COINBASE)
        http.ok(KRAKEN)
        first = build_monitor(exchanges)
        second = build_monitor(exchanges)

        await run_cycles(first, clock, 3)

        assert first.state.dependencies["binance"].status == HealthStatus.UNHEALTHY
        assert second.state.dependencies["binance"].status == HealthStatus.UNKNOWN
        assert second.state.cooldowns == {}


# ============================================================
# LOOP
# ============================================================

class TestLoop:
    """Tests for the periodic loop."""

    @pytest.mark.asyncio
    async def test_waits_interval_minus_cycle_duration(self, make_definition, http, clock, transport):
        registry = DependencyRegistry([make_definition("binance", BINANCE)])
        http.ok(BINANCE, latency_ms=10000)
        sleeps = []

        async def record_sleep(seconds):
            sleeps.append(seconds)
            clock.advance(seconds)
            if len(sleeps) >= 2:
                monitor._running = False

        monitor = DependencyMonitor(
            registry,
            make_config(),
            http_client=http,
            transport=transport,
            clock=clock,
            sleep=record_sleep,
        )
        monitor._running = True

        await monitor._run_loop()

        assert sleeps == [pytest.approx(20.0), pytest.approx(20.0)]
        assert monitor.state.metrics.cycle_count == 2

    @pytest.mark.asyncio
    async def test_slow_cycle_starts_next_immediately(self, make_definition, http, clock, transport):
        registry = DependencyRegistry([make_definition("binance", BINANCE)])
        http.ok(BINANCE, latency_ms=45000)
        sleeps = []

        async def record_sleep(seconds):
            sleeps.append(seconds)
            monitor._running = False

        monitor = DependencyMonitor(
            registry,
            make_config(),
            http_client=http,
            transport=transport,
            clock=clock,
            sleep=record_sleep,
        )
        monitor._running = True

        await monitor._run_loop()

        assert sleeps == [0.0]

    @pytest.mark.asyncio
    async def test_start_and_stop(self, make_definition, http, clock, transport):
        registry = DependencyRegistry([make_definition("binance", BINANCE)])
        http.ok(BINANCE)
        blocker = asyncio.Event()

        async def wait_forever(seconds):
            await blocker.wait()

        monitor = DependencyMonitor(
            registry,
            make_config(),
            http_client=http,
            transport=transport,
            clock=clock,
            sleep=wait_forever,
        )

        await monitor.start()
        assert monitor.is_running
        for _ in range(100):
            await asyncio.sleep(0)
            if monitor.state.metrics.cycle_count:
                break

        await monitor.stop()

        assert not monitor.is_running
        assert monitor.state.metrics.cycle_count == 1
        transport.close.assert_awaited()


# ============================================================
# ON-DEMAND OPERATIONS
# ============================================================

class TestOnDemand:
    """Tests for check_now and reset_circuit_breaker."""

    @pytest.fixture
    def fragile_config(self):
        return make_config(
            circuit_breaker=CircuitBreakerSettings(
                failure_threshold=1,
                recovery_timeout_seconds=60,
                volume_threshold=1,
            ),
        )

    @pytest.mark.asyncio
    async def test_check_now_unknown_id(self, build_monitor, exchanges):
        monitor = build_monitor(exchanges)

        with pytest.raises(DependencyNotFoundError):
            await monitor.check_now("bitfinex")

    @pytest.mark.asyncio
    async def test_check_now_updates_state(self, build_monitor, exchanges, http):
        http.ok(COINBASE)
        monitor = build_monitor(exchanges)

        state = await monitor.check_now("coinbase")

        assert state.consecutive_successes == 1
        assert http.calls_to(COINBASE) == 1
        assert http.calls_to(BINANCE) == 0
        assert monitor.state.metrics.cycle_count == 0

    @pytest.mark.asyncio
    async def test_check_now_respects_open_breaker(
        self, build_monitor, exchanges, http, fragile_config
    ):
        http.fail(BINANCE)
        monitor = build_monitor(exchanges, fragile_config)

        await monitor.check_now("binance")
        assert monitor.state.breakers["binance"].state == CircuitState.OPEN

        state = await monitor.check_now("binance")

        assert http.calls_to(BINANCE) == 1
        assert state.endpoint_results["endpoint_0"].skipped

    @pytest.mark.asyncio
    async def test_reset_circuit_breaker(self, build_monitor, exchanges, http, fragile_config):
        http.fail(BINANCE)
        monitor = build_monitor(exchanges, fragile_config)
        await monitor.check_now("binance")

        assert monitor.reset_circuit_breaker("binance") is True
        assert monitor.state.breakers["binance"].state == CircuitState.CLOSED
        assert monitor.reset_circuit_breaker("bitfinex") is False

        await monitor.check_now("binance")
        assert http.calls_to(BINANCE) == 2


# ============================================================
# QUERIES AND PERSISTENCE
# ============================================================

class TestQueries:
    """Tests for snapshot queries and the snapshot store."""

    @pytest.mark.asyncio
    async def test_snapshot_before_first_cycle(self, build_monitor, exchanges):
        monitor = build_monitor(exchanges)

        snapshot = monitor.get_snapshot()

        assert snapshot.overall_status == HealthStatus.DEGRADED
        assert snapshot.http_status == 503
        assert all(v["status"] == "unknown" for v in snapshot.dependencies.values())

    @pytest.mark.asyncio
    async def test_healthy_snapshot(self, build_monitor, exchanges, http, clock):
        http.ok(BINANCE)
        http.ok(COINBASE)
        http.ok(KRAKEN)
        monitor = build_monitor(exchanges)

        snapshot = await run_cycles(monitor, clock, 2)

        assert snapshot.overall_status == HealthStatus.HEALTHY
        assert snapshot.http_status == 200
        assert monitor.get_snapshot() is snapshot
        assert monitor.get_category("exchange")["status"] == "healthy"
        assert monitor.get_category("price_feed") is None

    @pytest.mark.asyncio
    async def test_history_is_bounded(self, build_monitor, exchanges, http, clock):
        http.ok(BINANCE)
        monitor = build_monitor(exchanges)

        await run_cycles(monitor, clock, 12)

        view = monitor.get_dependency("binance")
        assert view["dependency_id"] == "binance"
        assert view["criticality"] == "critical"
        assert len(view["history"]) == 10
        assert len(monitor.state.history["binance"]) == 12
        assert monitor.get_dependency("bitfinex") is None

    @pytest.mark.asyncio
    async def test_store_failure_does_not_break_cycle(self, build_monitor, exchanges, http):
        http.ok(BINANCE)
        store = AsyncMock()
        store.put = AsyncMock(side_effect=SnapshotStoreError("health_monitor_state", "disk full"))
        monitor = build_monitor(exchanges, store=store)

        snapshot = await monitor.run_cycle()

        assert monitor.get_snapshot() is snapshot
        store.put.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_snapshot_persisted_with_ttl(self, build_monitor, exchanges, http, clock):
        http.ok(BINANCE)
        store = InMemorySnapshotStore(clock)
        monitor = build_monitor(exchanges, store=store)

        await monitor.run_cycle()
        assert (await store.get("health_monitor_state"))["overall_status"] == "degraded"

        clock.advance(3600)
        assert await store.get("health_monitor_state") is None

    @pytest.mark.asyncio
    async def test_empty_injected_store_is_used(self, build_monitor, exchanges, http, clock):
        store = InMemorySnapshotStore(clock)
        assert len(store) == 0

        monitor = build_monitor(exchanges, store=store)
        assert monitor.store is store

        await monitor.run_cycle()
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_warm_start_from_cached_snapshot(self, build_monitor, exchanges, http, clock):
        http.ok(BINANCE)
        http.ok(COINBASE)
        http.ok(KRAKEN)
        store = InMemorySnapshotStore(clock)
        first = build_monitor(exchanges, store=store)
        await run_cycles(first, clock, 2)

        restarted = build_monitor(exchanges, store=store)
        cached = await restarted.load_cached_snapshot()

        assert cached.overall_status == HealthStatus.HEALTHY
        assert restarted.get_snapshot() is cached
        assert restarted.state.dependencies["binance"].status == HealthStatus.UNKNOWN

        await restarted.run_cycle()
        assert restarted.get_snapshot() is not cached

    @pytest.mark.asyncio
    async def test_injected_state_is_used(self, build_monitor, exchanges):
        state = MonitorState.for_registry(exchanges)
        state.dependencies["kraken"].status = HealthStatus.HEALTHY

        monitor = build_monitor(exchanges, state=state)

        assert monitor.state is state
        assert monitor.breakers["kraken"].snapshot is state.breakers["kraken"]
        assert monitor.get_dependency("kraken")["status"] == "healthy"
