"""
Tests for snapshot assembly and reporting.

============================================================
PURPOSE
============================================================
- Overall and category status rules
- HTTP status convention (healthy -> 200, else 503)
- Prometheus exposition and snapshot round trip through dicts

============================================================
"""

import pytest

from dependency_health.models import (
    AlertRecord,
    AlertType,
    CircuitBreakerState,
    CircuitState,
    Criticality,
    DependencyState,
    HealthStatus,
)
from dependency_health.snapshot import (
    CycleMetrics,
    HealthSnapshot,
    build_snapshot,
    derive_category_status,
    derive_overall_status,
    http_status_for,
    render_prometheus,
)


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def definitions(make_definition):
    return [
        make_definition("binance", criticality=Criticality.CRITICAL, category="exchange"),
        make_definition("kraken", criticality=Criticality.MEDIUM, category="exchange"),
        make_definition("coingecko", criticality=Criticality.HIGH, category="price_feed"),
    ]


def states_with(**statuses):
    return {
        dep_id: DependencyState(dependency_id=dep_id, status=status)
        for dep_id, status in statuses.items()
    }


# ============================================================
# STATUS RULES
# ============================================================

class TestOverallStatus:
    """Tests for the overall status rule."""

    def test_all_healthy(self, definitions):
        states = states_with(
            binance=HealthStatus.HEALTHY,
            kraken=HealthStatus.HEALTHY,
            coingecko=HealthStatus.HEALTHY,
        )
        assert derive_overall_status(definitions, states) == HealthStatus.HEALTHY

    def test_critical_unhealthy_wins(self, definitions):
        states = states_with(
            binance=HealthStatus.UNHEALTHY,
            kraken=HealthStatus.DEGRADED,
            coingecko=HealthStatus.HEALTHY,
        )
        assert derive_overall_status(definitions, states) == HealthStatus.UNHEALTHY

    def test_non_critical_unhealthy_is_degraded(self, definitions):
        states = states_with(
            binance=HealthStatus.HEALTHY,
            kraken=HealthStatus.UNHEALTHY,
            coingecko=HealthStatus.HEALTHY,
        )
        assert derive_overall_status(definitions, states) == HealthStatus.DEGRADED

    def test_unknown_is_degraded(self, definitions):
        states = states_with(
            binance=HealthStatus.HEALTHY,
            kraken=HealthStatus.UNKNOWN,
            coingecko=HealthStatus.HEALTHY,
        )
        assert derive_overall_status(definitions, states) == HealthStatus.DEGRADED

    def test_empty_registry_is_degraded(self):
        assert derive_overall_status([], {}) == HealthStatus.DEGRADED


class TestCategoryStatus:
    """Tests for the worst-present category rule."""

    @pytest.mark.parametrize("counts,expected", [
        ({"healthy": 2, "unhealthy": 1}, HealthStatus.UNHEALTHY),
        ({"healthy": 2, "degraded": 1}, HealthStatus.DEGRADED),
        ({"healthy": 1, "unknown": 3}, HealthStatus.HEALTHY),
        ({"unknown": 2}, HealthStatus.UNKNOWN),
    ])
    def test_worst_present(self, counts, expected):
        assert derive_category_status(counts) == expected


class TestHttpStatus:
    """Tests for the HTTP status convention."""

    @pytest.mark.parametrize("status,code", [
        (HealthStatus.HEALTHY, 200),
        (HealthStatus.DEGRADED, 503),
        (HealthStatus.UNHEALTHY, 503),
        (HealthStatus.UNKNOWN, 503),
    ])
    def test_codes(self, status, code):
        assert http_status_for(status) == code


# ============================================================
# SNAPSHOT
# ============================================================

class TestBuildSnapshot:
    """Tests for snapshot assembly."""

    @pytest.fixture
    def snapshot(self, definitions, clock):
        states = states_with(
            binance=HealthStatus.HEALTHY,
            kraken=HealthStatus.DEGRADED,
            coingecko=HealthStatus.HEALTHY,
        )
        states["binance"].average_response_time_ms = 120.5
        breakers = {
            "binance": CircuitBreakerState(),
            "kraken": CircuitBreakerState(state=CircuitState.OPEN),
        }
        alerts = [
            AlertRecord(
                type=AlertType.PERFORMANCE_DEGRADATION,
                timestamp=clock.now(),
                payload={"count": 1, "threshold_ms": 5000, "dependencies": []},
            )
        ]
        return build_snapshot(definitions, states, breakers, CycleMetrics(cycle_count=4), alerts, clock.now())

    def test_overall_and_http_status(self, snapshot):
        assert snapshot.overall_status == HealthStatus.DEGRADED
        assert snapshot.http_status == 503

    def test_category_counts(self, snapshot):
        exchange = snapshot.categories["exchange"]
        assert exchange["healthy"] == 1
        assert exchange["degraded"] == 1
        assert exchange["status"] == "degraded"
        assert snapshot.categories["price_feed"]["status"] == "healthy"

    def test_by_criticality(self, snapshot):
        assert snapshot.by_criticality["critical"] == {"total": 1, "healthy": 1}
        assert snapshot.by_criticality["medium"] == {"total": 1, "healthy": 0}
        assert snapshot.by_criticality["low"] == {"total": 0, "healthy": 0}

    def test_dependency_view(self, snapshot):
        view = snapshot.dependencies["kraken"]
        assert view["category"] == "exchange"
        assert view["critical"] is False
        assert view["circuit_breaker"]["state"] == "open"
        assert snapshot.dependencies["coingecko"]["circuit_breaker"]["state"] == "closed"

    def test_category_view(self, snapshot, clock):
        view = snapshot.category("exchange")

        assert view["status"] == "degraded"
        assert set(view["dependencies"]) == {"binance", "kraken"}
        assert "status" not in view["summary"]
        assert snapshot.category("dex") is None

    def test_metrics_and_alerts(self, snapshot):
        assert snapshot.metrics["cycle_count"] == 4
        assert snapshot.recent_alerts[0]["type"] == "performance_degradation"

    def test_dict_round_trip(self, snapshot):
        restored = HealthSnapshot.from_dict(snapshot.to_dict())

        assert restored.overall_status == snapshot.overall_status
        assert restored.generated_at == snapshot.generated_at
        assert restored.categories == snapshot.categories

    def test_summary(self, snapshot):
        summary = snapshot.summary()
        assert summary["status"] == "degraded"
        assert summary["dependencies"] == 3
        assert summary["categories"] == {"exchange": "degraded", "price_feed": "healthy"}


# ============================================================
# PROMETHEUS
# ============================================================

class TestPrometheus:
    """Tests for the text exposition."""

    @pytest.fixture
    def text(self, definitions, clock):
        states = states_with(
            binance=HealthStatus.HEALTHY,
            kraken=HealthStatus.UNHEALTHY,
            coingecko=HealthStatus.HEALTHY,
        )
        states["binance"].average_response_time_ms = 120.0
        states["kraken"].consecutive_failures = 4
        breakers = {"kraken": CircuitBreakerState(state=CircuitState.HALF_OPEN)}
        snapshot = build_snapshot(definitions, states, breakers, CycleMetrics(), [], clock.now())
        return render_prometheus(snapshot)

    def test_help_and_type_lines(self, text):
        assert "# TYPE dependency_status gauge" in text
        assert "# TYPE dependency_checks_total counter" in text

    def test_status_series(self, text):
        labels = 'dependency="binance",category="exchange",criticality="critical"'
        assert f"dependency_status{{{labels}}} 1" in text
        assert 'dependency_status{dependency="kraken",category="exchange",criticality="medium"} 0' in text

    def test_response_time_omitted_when_unmeasured(self, text):
        assert 'dependency_response_time_ms{dependency="binance"' in text
        assert 'dependency_response_time_ms{dependency="kraken"' not in text

    def test_breaker_and_overall(self, text):
        assert 'circuit_breaker_state{dependency="kraken",category="exchange",criticality="medium"} 2' in text
        assert 'dependency_consecutive_failures{dependency="kraken",category="exchange",criticality="medium"} 4' in text
        assert "health_overall_status 0" in text
        assert text.endswith("\n")

    def test_prefix(self, definitions, clock):
        states = states_with(
            binance=HealthStatus.HEALTHY,
            kraken=HealthStatus.HEALTHY,
            coingecko=HealthStatus.HEALTHY,
        )
        snapshot = build_snapshot(definitions, states, {}, CycleMetrics(), [], clock.now())

        text = render_prometheus(snapshot, prefix="arb_")

        assert "arb_health_overall_status 1" in text
        assert "# TYPE arb_circuit_breaker_state gauge" in text
