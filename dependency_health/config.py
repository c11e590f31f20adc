"""
Dependency Health - Configuration.

============================================================
CONFIGURABLE MONITORING
============================================================

All monitoring parameters are configurable:
- Check interval
- Probe timeout and retry policy
- Status thresholds (consecutive successes / failures)
- Circuit breaker thresholds
- Alert thresholds and cooldowns
- Snapshot key, TTL and history size

Configuration can be loaded from:
- Default values
- Environment variables (a .env file is honoured)
- YAML config file

The circuit breaker thresholds and the status thresholds are
deliberately independent: one decides whether to keep calling a
dependency, the other whether it is healthy.

============================================================
"""

import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Type, TypeVar

import yaml
from dotenv import load_dotenv

from .exceptions import ConfigurationError


logger = logging.getLogger(__name__)

T = TypeVar("T")


def _require_positive(name: str, value: float, allow_zero: bool = False) -> None:
    if value < 0 or (value == 0 and not allow_zero):
        raise ConfigurationError(
            f"{name} must be {'>= 0' if allow_zero else '> 0'}",
            config_key=name,
            expected_value=">= 0" if allow_zero else "> 0",
            actual_value=str(value),
        )


# =============================================================
# PROBES
# =============================================================


@dataclass
class ProbeSettings:
    """Timeout and retry policy for endpoint probes."""
    default_timeout_ms: int = 10000
    retry_attempts: int = 3
    retry_delay_ms: int = 1000  # multiplied by the attempt number

    def __post_init__(self) -> None:
        _require_positive("probe.default_timeout_ms", self.default_timeout_ms)
        _require_positive("probe.retry_attempts", self.retry_attempts)
        _require_positive("probe.retry_delay_ms", self.retry_delay_ms, allow_zero=True)


# =============================================================
# CIRCUIT BREAKER
# =============================================================


@dataclass
class CircuitBreakerSettings:
    """
    Circuit breaker thresholds.

    - Opens when failure_count >= failure_threshold AND
      request_count >= volume_threshold
    - Moves to half_open after recovery_timeout_seconds
    - Closes after success_threshold successes in half_open
    """
    enabled: bool = True
    failure_threshold: int = 5
    success_threshold: int = 3
    recovery_timeout_seconds: float = 30.0
    volume_threshold: int = 10

    def __post_init__(self) -> None:
        _require_positive("circuit_breaker.failure_threshold", self.failure_threshold)
        _require_positive("circuit_breaker.success_threshold", self.success_threshold)
        _require_positive(
            "circuit_breaker.recovery_timeout_seconds",
            self.recovery_timeout_seconds,
            allow_zero=True,
        )
        _require_positive("circuit_breaker.volume_threshold", self.volume_threshold, allow_zero=True)


# =============================================================
# STATUS THRESHOLDS
# =============================================================


@dataclass
class StatusThresholds:
    """Consecutive cycles needed before a status flips."""
    healthy_threshold: int = 2
    unhealthy_threshold: int = 3

    def __post_init__(self) -> None:
        _require_positive("status.healthy_threshold", self.healthy_threshold)
        _require_positive("status.unhealthy_threshold", self.unhealthy_threshold)


# =============================================================
# ALERTING
# =============================================================


@dataclass
class AlertRuleSettings:
    """
    Threshold and cooldown of one alert rule.

    For performance_degradation the threshold is a response time
    in milliseconds; for the other rules it is a dependency count.
    dependency_status_change fires once per transition of a critical
    dependency and ignores the threshold.
    """
    threshold: float = 1
    cooldown_seconds: float = 300
    enabled: bool = True

    def __post_init__(self) -> None:
        _require_positive("alerting.threshold", self.threshold)
        _require_positive("alerting.cooldown_seconds", self.cooldown_seconds, allow_zero=True)


@dataclass
class AlertingConfig:
    """Alert rules evaluated once per cycle."""
    enabled: bool = True
    critical_dependency_down: AlertRuleSettings = field(
        default_factory=lambda: AlertRuleSettings(threshold=1, cooldown_seconds=300)
    )
    multiple_dependencies_down: AlertRuleSettings = field(
        default_factory=lambda: AlertRuleSettings(threshold=3, cooldown_seconds=600)
    )
    performance_degradation: AlertRuleSettings = field(
        default_factory=lambda: AlertRuleSettings(threshold=5000, cooldown_seconds=180)
    )
    dependency_status_change: AlertRuleSettings = field(
        default_factory=lambda: AlertRuleSettings(threshold=1, cooldown_seconds=0)
    )
    recent_alerts_size: int = 50


# =============================================================
# SNAPSHOT
# =============================================================


@dataclass
class SnapshotSettings:
    """Where and for how long the last snapshot is cached."""
    key: str = "health_monitor_state"
    ttl_seconds: int = 3600
    history_size: int = 100

    def __post_init__(self) -> None:
        _require_positive("snapshot.ttl_seconds", self.ttl_seconds)
        _require_positive("snapshot.history_size", self.history_size)


# =============================================================
# MAIN CONFIGURATION
# =============================================================


def _build(cls: Type[T], data: Optional[Dict[str, Any]], section: str) -> T:
    """Instantiate a settings dataclass, ignoring unknown keys."""
    if not data:
        return cls()
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        logger.warning(f"Ignoring unknown keys in '{section}': {sorted(unknown)}")
    return cls(**{k: v for k, v in data.items() if k in known})


def _env(name: str) -> Optional[str]:
    value = os.getenv(name)
    return value if value not in (None, "") else None


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class MonitorConfig:
    """
    Main configuration for the dependency monitor.

    Combines all sub-configurations.
    """
    check_interval_seconds: float = 30.0
    probe: ProbeSettings = field(default_factory=ProbeSettings)
    circuit_breaker: CircuitBreakerSettings = field(default_factory=CircuitBreakerSettings)
    status: StatusThresholds = field(default_factory=StatusThresholds)
    alerting: AlertingConfig = field(default_factory=AlertingConfig)
    snapshot: SnapshotSettings = field(default_factory=SnapshotSettings)

    def __post_init__(self) -> None:
        _require_positive("check_interval_seconds", self.check_interval_seconds)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MonitorConfig":
        """Build configuration from a nested mapping."""
        data = data or {}
        alerting_data = dict(data.get("alerting") or {})
        alerting = AlertingConfig(
            enabled=alerting_data.get("enabled", True),
            recent_alerts_size=alerting_data.get("recent_alerts_size", 50),
        )
        for rule_name in (
            "critical_dependency_down",
            "multiple_dependencies_down",
            "performance_degradation",
            "dependency_status_change",
        ):
            if alerting_data.get(rule_name):
                default = asdict(getattr(alerting, rule_name))
                default.update(alerting_data[rule_name])
                setattr(
                    alerting,
                    rule_name,
                    _build(AlertRuleSettings, default, f"alerting.{rule_name}"),
                )

        return cls(
            check_interval_seconds=data.get("check_interval_seconds", 30.0),
            probe=_build(ProbeSettings, data.get("probe"), "probe"),
            circuit_breaker=_build(
                CircuitBreakerSettings, data.get("circuit_breaker"), "circuit_breaker"
            ),
            status=_build(StatusThresholds, data.get("status"), "status"),
            alerting=alerting,
            snapshot=_build(SnapshotSettings, data.get("snapshot"), "snapshot"),
        )

    @classmethod
    def from_env(cls) -> "MonitorConfig":
        """
        Load configuration from environment variables.

        Environment variables:
        - HEALTH_MONITOR_CHECK_INTERVAL
        - HEALTH_MONITOR_TIMEOUT_MS
        - HEALTH_MONITOR_RETRY_ATTEMPTS
        - HEALTH_MONITOR_RETRY_DELAY_MS
        - HEALTH_MONITOR_HEALTHY_THRESHOLD
        - HEALTH_MONITOR_UNHEALTHY_THRESHOLD
        - HEALTH_MONITOR_CB_ENABLED
        - HEALTH_MONITOR_CB_FAILURE_THRESHOLD
        - HEALTH_MONITOR_CB_SUCCESS_THRESHOLD
        - HEALTH_MONITOR_CB_RECOVERY_TIMEOUT
        - HEALTH_MONITOR_CB_VOLUME_THRESHOLD
        - HEALTH_MONITOR_ALERTING_ENABLED
        - HEALTH_MONITOR_SLOW_RESPONSE_MS
        - HEALTH_MONITOR_SNAPSHOT_TTL
        """
        load_dotenv()
        config = cls()

        try:
            if _env("HEALTH_MONITOR_CHECK_INTERVAL"):
                config.check_interval_seconds = float(_env("HEALTH_MONITOR_CHECK_INTERVAL"))

            probe = asdict(config.probe)
            if _env("HEALTH_MONITOR_TIMEOUT_MS"):
                probe["default_timeout_ms"] = int(_env("HEALTH_MONITOR_TIMEOUT_MS"))
            if _env("HEALTH_MONITOR_RETRY_ATTEMPTS"):
                probe["retry_attempts"] = int(_env("HEALTH_MONITOR_RETRY_ATTEMPTS"))
            if _env("HEALTH_MONITOR_RETRY_DELAY_MS"):
                probe["retry_delay_ms"] = int(_env("HEALTH_MONITOR_RETRY_DELAY_MS"))
            config.probe = ProbeSettings(**probe)

            status = asdict(config.status)
            if _env("HEALTH_MONITOR_HEALTHY_THRESHOLD"):
                status["healthy_threshold"] = int(_env("HEALTH_MONITOR_HEALTHY_THRESHOLD"))
            if _env("HEALTH_MONITOR_UNHEALTHY_THRESHOLD"):
                status["unhealthy_threshold"] = int(_env("HEALTH_MONITOR_UNHEALTHY_THRESHOLD"))
            config.status = StatusThresholds(**status)

            breaker = asdict(config.circuit_breaker)
            if _env("HEALTH_MONITOR_CB_ENABLED"):
                breaker["enabled"] = _env_bool(_env("HEALTH_MONITOR_CB_ENABLED"))
            if _env("HEALTH_MONITOR_CB_FAILURE_THRESHOLD"):
                breaker["failure_threshold"] = int(_env("HEALTH_MONITOR_CB_FAILURE_THRESHOLD"))
            if _env("HEALTH_MONITOR_CB_SUCCESS_THRESHOLD"):
                breaker["success_threshold"] = int(_env("HEALTH_MONITOR_CB_SUCCESS_THRESHOLD"))
            if _env("HEALTH_MONITOR_CB_RECOVERY_TIMEOUT"):
                breaker["recovery_timeout_seconds"] = float(_env("HEALTH_MONITOR_CB_RECOVERY_TIMEOUT"))
            if _env("HEALTH_MONITOR_CB_VOLUME_THRESHOLD"):
                breaker["volume_threshold"] = int(_env("HEALTH_MONITOR_CB_VOLUME_THRESHOLD"))
            config.circuit_breaker = CircuitBreakerSettings(**breaker)

            if _env("HEALTH_MONITOR_ALERTING_ENABLED"):
                config.alerting.enabled = _env_bool(_env("HEALTH_MONITOR_ALERTING_ENABLED"))
            if _env("HEALTH_MONITOR_SLOW_RESPONSE_MS"):
                performance = asdict(config.alerting.performance_degradation)
                performance["threshold"] = float(_env("HEALTH_MONITOR_SLOW_RESPONSE_MS"))
                config.alerting.performance_degradation = AlertRuleSettings(**performance)

            snapshot = asdict(config.snapshot)
            if _env("HEALTH_MONITOR_SNAPSHOT_TTL"):
                snapshot["ttl_seconds"] = int(_env("HEALTH_MONITOR_SNAPSHOT_TTL"))
            config.snapshot = SnapshotSettings(**snapshot)

        except ValueError as e:
            raise ConfigurationError(f"Invalid environment value: {e}") from e

        config.__post_init__()
        return config

    @classmethod
    def from_yaml(cls, path: Path) -> "MonitorConfig":
        """
        Load configuration from a YAML file.

        An unreadable or malformed file falls back to defaults;
        invalid values still raise ConfigurationError.
        """
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load YAML config from {path}: {e}")
            return cls()

        if not isinstance(data, dict):
            raise ConfigurationError(
                "Monitor config must be a mapping",
                config_key=str(path),
                actual_value=type(data).__name__,
            )
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)
