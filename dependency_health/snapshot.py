"""
Dependency Health - Snapshot & Reporting.

============================================================
PURPOSE
============================================================
Read-only views of the monitor published after each cycle:

- HealthSnapshot: overall status, per-dependency state and
  circuit breaker, category and criticality summaries, cycle
  metrics, recent alerts
- http_status_for(): healthy -> 200, anything else -> 503
- render_prometheus(): text exposition of the snapshot

OVERALL STATUS:
1. unhealthy if any critical dependency is unhealthy
2. else degraded if any dependency is degraded
3. else healthy if every dependency is healthy
4. else degraded (mixed / unknown)

CATEGORY STATUS:
unhealthy > degraded > healthy > unknown, by presence.

Snapshots are plain data (to_dict / from_dict) so the store can
hold them and a restarted process can serve the last one.

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .clock import from_iso8601, to_iso8601
from .models import (
    AlertRecord,
    CircuitBreakerState,
    CircuitState,
    Criticality,
    DependencyDefinition,
    DependencyState,
    HealthStatus,
)


# =============================================================
# STATUS RULES
# =============================================================


def derive_overall_status(
    definitions: Iterable[DependencyDefinition],
    states: Mapping[str, DependencyState],
) -> HealthStatus:
    """Aggregate health of the whole monitor."""
    pairs = [(d, states[d.id]) for d in definitions if d.id in states]

    if any(d.is_critical and s.status == HealthStatus.UNHEALTHY for d, s in pairs):
        return HealthStatus.UNHEALTHY
    if any(s.status == HealthStatus.DEGRADED for _, s in pairs):
        return HealthStatus.DEGRADED
    if pairs and all(s.status == HealthStatus.HEALTHY for _, s in pairs):
        return HealthStatus.HEALTHY
    return HealthStatus.DEGRADED


def derive_category_status(counts: Mapping[str, int]) -> HealthStatus:
    """Worst status present in a category."""
    for status in (HealthStatus.UNHEALTHY, HealthStatus.DEGRADED, HealthStatus.HEALTHY):
        if counts.get(status.value, 0) > 0:
            return status
    return HealthStatus.UNKNOWN


def http_status_for(status: HealthStatus) -> int:
    """HTTP status convention for health consumers."""
    return 200 if HealthStatus(status) == HealthStatus.HEALTHY else 503


# =============================================================
# CYCLE METRICS
# =============================================================


@dataclass
class CycleMetrics:
    """Counters of the scheduler's cycles."""
    cycle_count: int = 0
    last_cycle_duration_ms: Optional[float] = None
    last_cycle_at: Optional[datetime] = None
    checks_executed: int = 0
    checks_skipped: int = 0
    checks_failed: int = 0
    total_checks: int = 0
    successful_checks: int = 0
    average_response_time_ms: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle_count": self.cycle_count,
            "last_cycle_duration_ms": (
                round(self.last_cycle_duration_ms, 2)
                if self.last_cycle_duration_ms is not None else None
            ),
            "last_cycle_at": to_iso8601(self.last_cycle_at),
            "checks_executed": self.checks_executed,
            "checks_skipped": self.checks_skipped,
            "checks_failed": self.checks_failed,
            "total_checks": self.total_checks,
            "successful_checks": self.successful_checks,
            "average_response_time_ms": (
                round(self.average_response_time_ms, 2)
                if self.average_response_time_ms is not None else None
            ),
        }


# =============================================================
# SNAPSHOT
# =============================================================


@dataclass
class HealthSnapshot:
    """Published view of the monitor after a cycle."""
    overall_status: HealthStatus
    generated_at: datetime
    dependencies: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    categories: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    by_criticality: Dict[str, Dict[str, int]] = field(default_factory=dict)
    metrics: Dict[str, Any] = field(default_factory=dict)
    recent_alerts: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def http_status(self) -> int:
        return http_status_for(self.overall_status)

    def category(self, name: str) -> Optional[Dict[str, Any]]:
        """Category view, or None when no dependency has that category."""
        summary = self.categories.get(name)
        if summary is None:
            return None
        return {
            "category": name,
            "status": summary["status"],
            "summary": {k: v for k, v in summary.items() if k != "status"},
            "dependencies": {
                dep_id: view
                for dep_id, view in self.dependencies.items()
                if view.get("category") == name
            },
            "timestamp": to_iso8601(self.generated_at),
        }

    def summary(self) -> Dict[str, Any]:
        """Short form for liveness probes."""
        return {
            "status": self.overall_status.value,
            "timestamp": to_iso8601(self.generated_at),
            "dependencies": len(self.dependencies),
            "categories": {
                name: summary["status"] for name, summary in self.categories.items()
            },
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_status": self.overall_status.value,
            "generated_at": to_iso8601(self.generated_at),
            "dependencies": self.dependencies,
            "categories": self.categories,
            "by_criticality": self.by_criticality,
            "metrics": self.metrics,
            "recent_alerts": self.recent_alerts,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HealthSnapshot":
        return cls(
            overall_status=HealthStatus(data.get("overall_status", HealthStatus.UNKNOWN.value)),
            generated_at=from_iso8601(data.get("generated_at")),
            dependencies=dict(data.get("dependencies") or {}),
            categories=dict(data.get("categories") or {}),
            by_criticality=dict(data.get("by_criticality") or {}),
            metrics=dict(data.get("metrics") or {}),
            recent_alerts=list(data.get("recent_alerts") or []),
        )


def dependency_view(
    definition: DependencyDefinition,
    state: DependencyState,
    breaker: CircuitBreakerState,
) -> Dict[str, Any]:
    """Per-dependency entry of the snapshot."""
    view = {
        "name": definition.name,
        "category": definition.category,
        "criticality": definition.criticality.value,
        "critical": definition.is_critical,
    }
    view.update(state.to_dict())
    view["circuit_breaker"] = breaker.to_dict()
    return view


def build_snapshot(
    definitions: Iterable[DependencyDefinition],
    states: Mapping[str, DependencyState],
    breakers: Mapping[str, CircuitBreakerState],
    metrics: CycleMetrics,
    recent_alerts: Iterable[AlertRecord],
    now: datetime,
) -> HealthSnapshot:
    """Assemble a snapshot from the monitor state."""
    definitions = list(definitions)

    dependencies: Dict[str, Dict[str, Any]] = {}
    categories: Dict[str, Dict[str, Any]] = {}
    by_criticality: Dict[str, Dict[str, int]] = {
        c.value: {"total": 0, "healthy": 0} for c in Criticality
    }

    for definition in definitions:
        state = states[definition.id]
        breaker = breakers.get(definition.id) or CircuitBreakerState()
        dependencies[definition.id] = dependency_view(definition, state, breaker)

        counts = categories.setdefault(
            definition.category,
            {s.value: 0 for s in HealthStatus},
        )
        counts[state.status.value] += 1

        bucket = by_criticality[definition.criticality.value]
        bucket["total"] += 1
        if state.status == HealthStatus.HEALTHY:
            bucket["healthy"] += 1

    for counts in categories.values():
        counts["status"] = derive_category_status(counts).value

    return HealthSnapshot(
        overall_status=derive_overall_status(definitions, states),
        generated_at=now,
        dependencies=dependencies,
        categories=categories,
        by_criticality=by_criticality,
        metrics=metrics.to_dict(),
        recent_alerts=[a.to_dict() for a in recent_alerts],
    )


# =============================================================
# PROMETHEUS EXPOSITION
# =============================================================


_DEPENDENCY_METRICS = (
    ("dependency_status", "1 if the dependency is healthy, 0 otherwise"),
    ("dependency_response_time_ms", "Average response time of the last check"),
    ("dependency_consecutive_failures", "Consecutive failed checks"),
    ("dependency_checks_total", "Executed checks"),
    ("dependency_successful_checks_total", "Successful checks"),
)


def _escape_label(value: Any) -> str:
    return str(value).replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _metric_value(name: str, view: Dict[str, Any]) -> Optional[float]:
    if name == "dependency_status":
        return 1 if view.get("status") == HealthStatus.HEALTHY.value else 0
    if name == "dependency_response_time_ms":
        return view.get("average_response_time_ms")
    if name == "dependency_consecutive_failures":
        return view.get("consecutive_failures", 0)
    if name == "dependency_checks_total":
        return view.get("total_checks", 0)
    if name == "dependency_successful_checks_total":
        return view.get("successful_checks", 0)
    return None


def render_prometheus(snapshot: HealthSnapshot, prefix: str = "") -> str:
    """
    Prometheus text exposition of a snapshot.

    Dependencies without a measured response time are omitted from
    the response-time series.
    """
    lines: List[str] = []

    def labels_for(dep_id: str, view: Dict[str, Any]) -> str:
        return (
            f'dependency="{_escape_label(dep_id)}",'
            f'category="{_escape_label(view.get("category", ""))}",'
            f'criticality="{_escape_label(view.get("criticality", ""))}"'
        )

    for name, help_text in _DEPENDENCY_METRICS:
        metric = f"{prefix}{name}"
        kind = "counter" if name.endswith("_total") else "gauge"
        lines.append(f"# HELP {metric} {help_text}")
        lines.append(f"# TYPE {metric} {kind}")
        for dep_id, view in snapshot.dependencies.items():
            value = _metric_value(name, view)
            if value is None:
                continue
            lines.append(f"{metric}{{{labels_for(dep_id, view)}}} {value}")

    metric = f"{prefix}circuit_breaker_state"
    lines.append(f"# HELP {metric} Circuit breaker state (0 closed, 1 open, 2 half_open)")
    lines.append(f"# TYPE {metric} gauge")
    for dep_id, view in snapshot.dependencies.items():
        breaker = view.get("circuit_breaker") or {}
        state = CircuitState(breaker.get("state", CircuitState.CLOSED.value))
        lines.append(f"{metric}{{{labels_for(dep_id, view)}}} {state.metric_value}")

    metric = f"{prefix}health_overall_status"
    lines.append(f"# HELP {metric} 1 if the overall status is healthy, 0 otherwise")
    lines.append(f"# TYPE {metric} gauge")
    lines.append(f"{metric} {1 if snapshot.overall_status == HealthStatus.HEALTHY else 0}")

    return "\n".join(lines) + "\n"


__all__ = [
    "CycleMetrics",
    "HealthSnapshot",
    "build_snapshot",
    "dependency_view",
    "derive_overall_status",
    "derive_category_status",
    "http_status_for",
    "render_prometheus",
]
