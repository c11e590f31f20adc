"""
Dependency Health - Data Models.

============================================================
CORE DATA STRUCTURES
============================================================

Configuration (immutable, built at startup):
- EndpointProbe: One HTTP call used to probe a dependency
- DependencyDefinition: Identity, category, criticality, probes

Runtime state (mutable, lives for the process lifetime):
- DependencyState: Health status and counters
- CircuitBreakerState: Breaker state and counters

Ephemeral records:
- CheckResult: Outcome of one endpoint probe in one cycle
- CheckHistoryEntry: Per-dependency outcome kept for reporting
- StatusTransition: Health status change
- AlertRecord: Alert handed to the transport

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .assertions import ResponseAssertion
from .clock import to_iso8601


# =============================================================
# ENUMS
# =============================================================


class Criticality(str, Enum):
    """How much the arbitrage engine relies on a dependency."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class HealthStatus(str, Enum):
    """
    Health status of a dependency.

    - UNKNOWN: Not yet established (initial state)
    - HEALTHY: Reached the consecutive-success threshold
    - DEGRADED: Failing after having been healthy, not yet unhealthy
    - UNHEALTHY: Reached the consecutive-failure threshold
    """
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class CircuitState(str, Enum):
    """
    Circuit breaker states.

    - CLOSED: Probes run normally
    - OPEN: Probes are skipped until the recovery timeout elapses
    - HALF_OPEN: Probes run to test recovery
    """
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    @property
    def metric_value(self) -> int:
        """Numeric encoding used in metrics exposition."""
        return {
            CircuitState.CLOSED: 0,
            CircuitState.OPEN: 1,
            CircuitState.HALF_OPEN: 2,
        }[self]


class AlertType(str, Enum):
    """Alert types. The type doubles as the dedup key."""
    CRITICAL_DEPENDENCY_DOWN = "critical_dependency_down"
    MULTIPLE_DEPENDENCIES_DOWN = "multiple_dependencies_down"
    PERFORMANCE_DEGRADATION = "performance_degradation"
    DEPENDENCY_STATUS_CHANGE = "dependency_status_change"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================
# CONFIGURATION MODELS
# =============================================================


@dataclass(frozen=True)
class EndpointProbe:
    """
    One HTTP call used to probe a dependency.

    body may be a str (sent as-is) or any JSON-serializable value.
    timeout_ms of None means the configured default timeout.
    """
    name: str
    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[Any] = None
    expected_status: int = 200
    assertion: Optional[ResponseAssertion] = None
    timeout_ms: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (headers are not exposed)."""
        data: Dict[str, Any] = {
            "name": self.name,
            "url": self.url,
            "method": self.method,
            "expected_status": self.expected_status,
            "timeout_ms": self.timeout_ms,
        }
        if self.assertion is not None:
            data["assertion"] = self.assertion.describe()
        return data


@dataclass(frozen=True)
class DependencyDefinition:
    """Identity and probes of a monitored dependency."""
    id: str
    name: str
    category: str
    criticality: Criticality
    endpoints: Tuple[EndpointProbe, ...]

    @property
    def is_critical(self) -> bool:
        return self.criticality == Criticality.CRITICAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "criticality": self.criticality.value,
            "endpoints": [e.to_dict() for e in self.endpoints],
        }


# =============================================================
# RUNTIME STATE
# =============================================================


@dataclass
class CheckResult:
    """Outcome of probing one endpoint in one cycle."""
    endpoint: str
    success: bool
    response_time_ms: float = 0.0
    error: Optional[str] = None
    skipped: bool = False
    status_code: Optional[int] = None
    attempts: int = 0
    checked_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def skipped_result(cls, endpoint: str, checked_at: datetime) -> "CheckResult":
        """Result for an endpoint whose probe the circuit breaker denied."""
        return cls(
            endpoint=endpoint,
            success=False,
            error="Circuit breaker open",
            skipped=True,
            checked_at=checked_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "endpoint": self.endpoint,
            "success": self.success,
            "response_time_ms": round(self.response_time_ms, 2),
            "error": self.error,
            "skipped": self.skipped,
            "status_code": self.status_code,
            "attempts": self.attempts,
            "checked_at": to_iso8601(self.checked_at),
        }


@dataclass
class DependencyState:
    """Health status and counters of one dependency."""
    dependency_id: str
    status: HealthStatus = HealthStatus.UNKNOWN
    last_check_time: Optional[datetime] = None
    last_success_time: Optional[datetime] = None
    consecutive_successes: int = 0
    consecutive_failures: int = 0
    average_response_time_ms: Optional[float] = None
    total_checks: int = 0
    successful_checks: int = 0
    last_error: Optional[str] = None

    # Last result per endpoint name
    endpoint_results: Dict[str, CheckResult] = field(default_factory=dict)

    @property
    def success_rate(self) -> Optional[float]:
        """Percentage of successful non-skipped checks."""
        if self.total_checks == 0:
            return None
        return self.successful_checks / self.total_checks * 100

    def to_dict(self) -> Dict[str, Any]:
        rate = self.success_rate
        return {
            "dependency_id": self.dependency_id,
            "status": self.status.value,
            "last_check_time": to_iso8601(self.last_check_time),
            "last_success_time": to_iso8601(self.last_success_time),
            "consecutive_successes": self.consecutive_successes,
            "consecutive_failures": self.consecutive_failures,
            "average_response_time_ms": (
                round(self.average_response_time_ms, 2)
                if self.average_response_time_ms is not None else None
            ),
            "total_checks": self.total_checks,
            "successful_checks": self.successful_checks,
            "success_rate": round(rate, 2) if rate is not None else None,
            "last_error": self.last_error,
            "endpoints": {
                name: result.to_dict()
                for name, result in self.endpoint_results.items()
            },
        }


@dataclass
class CircuitBreakerState:
    """State and counters of one dependency's circuit breaker."""
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    request_count: int = 0
    last_failure_time: Optional[datetime] = None
    next_attempt_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "request_count": self.request_count,
            "last_failure_time": to_iso8601(self.last_failure_time),
            "next_attempt_time": to_iso8601(self.next_attempt_time),
        }


# =============================================================
# EVENTS & RECORDS
# =============================================================


@dataclass
class CheckHistoryEntry:
    """One dependency-level outcome kept in the bounded history."""
    timestamp: datetime
    success: bool
    skipped: bool
    response_time_ms: Optional[float]
    error: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": to_iso8601(self.timestamp),
            "success": self.success,
            "skipped": self.skipped,
            "response_time_ms": (
                round(self.response_time_ms, 2)
                if self.response_time_ms is not None else None
            ),
            "error": self.error,
        }


@dataclass
class StatusTransition:
    """Record of a health status change."""
    dependency_id: str
    from_status: HealthStatus
    to_status: HealthStatus
    timestamp: datetime = field(default_factory=_utcnow)

    @property
    def is_degradation(self) -> bool:
        order = {
            HealthStatus.HEALTHY: 3,
            HealthStatus.DEGRADED: 2,
            HealthStatus.UNKNOWN: 1,
            HealthStatus.UNHEALTHY: 0,
        }
        return order[self.to_status] < order[self.from_status]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dependency_id": self.dependency_id,
            "from_status": self.from_status.value,
            "to_status": self.to_status.value,
            "timestamp": to_iso8601(self.timestamp),
        }


@dataclass
class AlertRecord:
    """
    Alert produced by the dispatcher.

    Never stored long-term; handed to the transport and kept in a
    short in-memory list for the snapshot.
    """
    type: AlertType
    timestamp: datetime
    payload: Dict[str, Any] = field(default_factory=dict)
    source: str = "health_monitor"

    @property
    def dedup_key(self) -> str:
        return self.type.value

    @property
    def dependency_ids(self) -> List[str]:
        return [d["id"] for d in self.payload.get("dependencies", [])]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "timestamp": to_iso8601(self.timestamp),
            "data": self.payload,
            "source": self.source,
        }
