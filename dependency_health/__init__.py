"""
Dependency Health Monitoring Module.

============================================================
EXTERNAL DEPENDENCY HEALTH FOR THE ARBITRAGE ENGINE
============================================================

Continuously probes the services the arbitrage engine relies
on (exchanges, blockchain RPCs, price feeds, DeFi data,
DNS / gateways) and degrades gracefully when they fail.

CORE PHILOSOPHY:
- A failing dependency is data, not a fault of the monitor
- Never cascade load onto a failing service
- Status flips only after consecutive evidence
- Alert once per cooldown, never storm

============================================================
COMPONENTS
============================================================

1. Registry          - Immutable dependency catalog
2. Probe Executor    - HTTP probe with timeout, validation, retry
3. Circuit Breaker   - closed / open / half_open per dependency
4. Status Aggregator - consecutive-success / failure thresholds
5. Alert Dispatcher  - three rules, cooldown per alert type
6. Scheduler         - fixed-interval concurrent cycles, snapshot

============================================================
USAGE
============================================================

```python
from dependency_health import (
    DependencyMonitor,
    MonitorConfig,
    build_default_registry,
)

monitor = DependencyMonitor(build_default_registry(), MonitorConfig.from_env())

snapshot = await monitor.run_cycle()
print(snapshot.overall_status.value)

state = await monitor.check_now("coingecko")
monitor.reset_circuit_breaker("binance")
```

============================================================
"""

from .models import (
    Criticality,
    HealthStatus,
    CircuitState,
    AlertType,
    EndpointProbe,
    DependencyDefinition,
    CheckResult,
    DependencyState,
    CircuitBreakerState,
    CheckHistoryEntry,
    StatusTransition,
    AlertRecord,
)
from .config import (
    MonitorConfig,
    ProbeSettings,
    CircuitBreakerSettings,
    StatusThresholds,
    AlertRuleSettings,
    AlertingConfig,
    SnapshotSettings,
)
from .exceptions import (
    DependencyHealthError,
    DependencyNotFoundError,
    ConfigurationError,
    ProbeError,
    AlertDeliveryError,
    SnapshotStoreError,
)
from .assertions import (
    ResponseAssertion,
    StatusEquals,
    JsonPathEquals,
    JsonPathPredicate,
    AllOf,
    CustomAssertion,
    assertion_from_dict,
)
from .clock import ClockProtocol, SystemClock, MockClock
from .registry import DependencyRegistry
from .catalog import build_default_registry, default_dependencies
from .retry import BackoffPolicy, LinearBackoff, with_retry
from .http_client import HttpClient, HttpResponse, AiohttpClient
from .probe import ProbeExecutor
from .circuit_breaker import CircuitBreaker
from .aggregator import StatusAggregator
from .alerts import AlertDispatcher
from .notifications import (
    AlertTransport,
    LoggingAlertTransport,
    WebhookAlertTransport,
    TelegramAlertTransport,
    CompositeAlertTransport,
)
from .store import SnapshotStore, InMemorySnapshotStore, JsonFileSnapshotStore
from .snapshot import HealthSnapshot, CycleMetrics, http_status_for, render_prometheus
from .scheduler import DependencyMonitor, MonitorState


__all__ = [
    # Models
    "Criticality",
    "HealthStatus",
    "CircuitState",
    "AlertType",
    "EndpointProbe",
    "DependencyDefinition",
    "CheckResult",
    "DependencyState",
    "CircuitBreakerState",
    "CheckHistoryEntry",
    "StatusTransition",
    "AlertRecord",
    # Config
    "MonitorConfig",
    "ProbeSettings",
    "CircuitBreakerSettings",
    "StatusThresholds",
    "AlertRuleSettings",
    "AlertingConfig",
    "SnapshotSettings",
    # Exceptions
    "DependencyHealthError",
    "DependencyNotFoundError",
    "ConfigurationError",
    "ProbeError",
    "AlertDeliveryError",
    "SnapshotStoreError",
    # Assertions
    "ResponseAssertion",
    "StatusEquals",
    "JsonPathEquals",
    "JsonPathPredicate",
    "AllOf",
    "CustomAssertion",
    "assertion_from_dict",
    # Clock
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    # Registry
    "DependencyRegistry",
    "build_default_registry",
    "default_dependencies",
    # Probing
    "BackoffPolicy",
    "LinearBackoff",
    "with_retry",
    "HttpClient",
    "HttpResponse",
    "AiohttpClient",
    "ProbeExecutor",
    # State machines
    "CircuitBreaker",
    "StatusAggregator",
    # Alerts
    "AlertDispatcher",
    "AlertTransport",
    "LoggingAlertTransport",
    "WebhookAlertTransport",
    "TelegramAlertTransport",
    "CompositeAlertTransport",
    # Snapshot
    "SnapshotStore",
    "InMemorySnapshotStore",
    "JsonFileSnapshotStore",
    "HealthSnapshot",
    "CycleMetrics",
    "http_status_for",
    "render_prometheus",
    # Scheduler
    "DependencyMonitor",
    "MonitorState",
]
