"""
Dependency Health - Alert Dispatcher.

============================================================
PURPOSE
============================================================
Evaluates the alert rules once per cycle, after every
DependencyState has been updated, and hands fired alerts to
the alert transport.

RULES:
- critical_dependency_down: critical AND unhealthy count >= threshold
- multiple_dependencies_down: unhealthy count >= threshold
- performance_degradation: any measured average response time
  above threshold_ms
- dependency_status_change: one alert per status transition of
  a critical dependency during the cycle

COOLDOWN:
- One cooldown entry per alert type
- Within the cooldown the alert is suppressed entirely
  (no queuing, no escalation) and the entry is NOT refreshed
- Only an alert that actually fires refreshes its entry

A transport failure is logged and never raised.

============================================================
"""

import logging
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, List, Mapping, Optional, Sequence

from .config import AlertingConfig, AlertRuleSettings
from .models import (
    AlertRecord,
    AlertType,
    DependencyDefinition,
    DependencyState,
    HealthStatus,
    StatusTransition,
)


logger = logging.getLogger(__name__)


# ============================================================
# ALERT RULES
# ============================================================

class AlertRule(ABC):
    """
    Base class for alert rules.

    Rules are pure: they read states and return a payload, they
    do not know about cooldowns or transports.
    """

    alert_type: AlertType

    def __init__(self, settings: AlertRuleSettings):
        self.settings = settings

    @property
    def cooldown(self) -> timedelta:
        return timedelta(seconds=self.settings.cooldown_seconds)

    @abstractmethod
    def evaluate(
        self,
        states: Mapping[str, DependencyState],
        definitions: Mapping[str, DependencyDefinition],
    ) -> Optional[Dict[str, Any]]:
        """Return the alert payload when the rule matches, None otherwise."""
        pass


def _describe(definition: Optional[DependencyDefinition], state: DependencyState) -> Dict[str, Any]:
    return {
        "id": state.dependency_id,
        "name": definition.name if definition else state.dependency_id,
        "last_error": state.last_error,
    }


class CriticalDependencyDownRule(AlertRule):
    """Critical dependencies that are unhealthy."""

    alert_type = AlertType.CRITICAL_DEPENDENCY_DOWN

    def evaluate(self, states, definitions):
        down = [
            _describe(definitions.get(dep_id), state)
            for dep_id, state in states.items()
            if state.status == HealthStatus.UNHEALTHY
            and definitions.get(dep_id) is not None
            and definitions[dep_id].is_critical
        ]
        if len(down) < self.settings.threshold:
            return None
        return {"count": len(down), "dependencies": down}


class MultipleDependenciesDownRule(AlertRule):
    """Unhealthy dependencies of any criticality."""

    alert_type = AlertType.MULTIPLE_DEPENDENCIES_DOWN

    def evaluate(self, states, definitions):
        down = [
            _describe(definitions.get(dep_id), state)
            for dep_id, state in states.items()
            if state.status == HealthStatus.UNHEALTHY
        ]
        if len(down) < self.settings.threshold:
            return None
        return {"count": len(down), "dependencies": down}


class PerformanceDegradationRule(AlertRule):
    """
    Dependencies whose average response time exceeds the threshold.

    Dependencies without a measured average are ignored.
    """

    alert_type = AlertType.PERFORMANCE_DEGRADATION

    def evaluate(self, states, definitions):
        threshold_ms = self.settings.threshold
        slow = []
        for dep_id, state in states.items():
            avg = state.average_response_time_ms
            if avg is None or avg <= threshold_ms:
                continue
            definition = definitions.get(dep_id)
            slow.append({
                "id": dep_id,
                "name": definition.name if definition else dep_id,
                "response_time_ms": round(avg, 2),
            })
        if not slow:
            return None
        return {
            "count": len(slow),
            "threshold_ms": threshold_ms,
            "dependencies": slow,
        }


def status_change_payload(
    transition: StatusTransition,
    definition: DependencyDefinition,
    state: DependencyState,
) -> Dict[str, Any]:
    """Payload of a dependency_status_change alert."""
    return {
        "count": 1,
        "dependency_id": transition.dependency_id,
        "previous_status": transition.from_status.value,
        "current_status": transition.to_status.value,
        "criticality": definition.criticality.value,
        "consecutive_failures": state.consecutive_failures,
        "last_success_time": (
            state.last_success_time.isoformat() if state.last_success_time else None
        ),
        "endpoints": [
            {
                "name": name,
                "success": result.success,
                "response_time_ms": round(result.response_time_ms, 2),
            }
            for name, result in state.endpoint_results.items()
        ],
        "dependencies": [_describe(definition, state)],
    }


def build_rules(config: AlertingConfig) -> List[AlertRule]:
    """The three rules, in evaluation order."""
    return [
        CriticalDependencyDownRule(config.critical_dependency_down),
        MultipleDependenciesDownRule(config.multiple_dependencies_down),
        PerformanceDegradationRule(config.performance_degradation),
    ]


# ============================================================
# ALERT DISPATCHER
# ============================================================

class AlertDispatcher:
    """
    Cooldown-gated alert evaluation and delivery.

    The cooldown map is owned by the caller (the monitor state) so
    several monitors never share it. Only the post-cycle step calls
    evaluate(), so the map has a single writer.
    """

    def __init__(
        self,
        config: Optional[AlertingConfig] = None,
        transport=None,
        cooldowns: Optional[Dict[AlertType, datetime]] = None,
        recent_alerts: Optional[Deque[AlertRecord]] = None,
    ) -> None:
        self.config = config or AlertingConfig()
        self.transport = transport
        self.cooldowns: Dict[AlertType, datetime] = cooldowns if cooldowns is not None else {}
        self.recent_alerts: Deque[AlertRecord] = (
            recent_alerts if recent_alerts is not None
            else deque(maxlen=self.config.recent_alerts_size)
        )
        self.rules = build_rules(self.config)
        self._sent = 0
        self._suppressed = 0
        self._failed = 0

    def in_cooldown(self, alert_type: AlertType, cooldown: timedelta, now: datetime) -> bool:
        last = self.cooldowns.get(alert_type)
        return last is not None and now - last < cooldown

    async def evaluate(
        self,
        states: Mapping[str, DependencyState],
        definitions: Mapping[str, DependencyDefinition],
        now: datetime,
        transitions: Sequence[StatusTransition] = (),
    ) -> List[AlertRecord]:
        """
        Evaluate every rule and dispatch the alerts that fire.

        transitions are the status changes since the previous
        evaluation; those of critical dependencies become
        dependency_status_change alerts.

        Returns:
            The alerts that were dispatched (suppressed ones excluded)
        """
        if not self.config.enabled:
            return []

        fired: List[AlertRecord] = []

        for rule in self.rules:
            if not rule.settings.enabled:
                continue

            try:
                payload = rule.evaluate(states, definitions)
            except Exception as e:
                logger.error(f"Error evaluating rule {rule.alert_type.value}: {e}", exc_info=True)
                continue

            if payload is None:
                continue

            if self.in_cooldown(rule.alert_type, rule.cooldown, now):
                self._suppressed += 1
                logger.debug(f"Alert {rule.alert_type.value} suppressed (cooldown)")
                continue

            alert = AlertRecord(type=rule.alert_type, timestamp=now, payload=payload)
            self.cooldowns[rule.alert_type] = now
            self.recent_alerts.append(alert)
            fired.append(alert)

            names = ", ".join(d["name"] for d in payload.get("dependencies", []))
            logger.warning(f"Alert triggered: {alert.type.value} ({names})")

            await self._send(alert)

        fired.extend(await self._dispatch_transitions(transitions, states, definitions, now))
        return fired

    async def _dispatch_transitions(
        self,
        transitions: Sequence[StatusTransition],
        states: Mapping[str, DependencyState],
        definitions: Mapping[str, DependencyDefinition],
        now: datetime,
    ) -> List[AlertRecord]:
        settings = self.config.dependency_status_change
        if not settings.enabled:
            return []

        cooldown = timedelta(seconds=settings.cooldown_seconds)
        fired: List[AlertRecord] = []

        for transition in transitions:
            definition = definitions.get(transition.dependency_id)
            state = states.get(transition.dependency_id)
            if definition is None or state is None or not definition.is_critical:
                continue

            if self.in_cooldown(AlertType.DEPENDENCY_STATUS_CHANGE, cooldown, now):
                self._suppressed += 1
                continue

            alert = AlertRecord(
                type=AlertType.DEPENDENCY_STATUS_CHANGE,
                timestamp=now,
                payload=status_change_payload(transition, definition, state),
            )
            self.cooldowns[AlertType.DEPENDENCY_STATUS_CHANGE] = now
            self.recent_alerts.append(alert)
            fired.append(alert)

            logger.warning(
                f"[{transition.dependency_id}] Alert triggered: status "
                f"{transition.from_status.value} -> {transition.to_status.value}"
            )
            await self._send(alert)

        return fired

    async def _send(self, alert: AlertRecord) -> None:
        """Hand one alert to the transport; failures are only logged."""
        if self.transport is None:
            return
        try:
            await self.transport.send(alert)
            self._sent += 1
        except Exception as e:
            self._failed += 1
            logger.warning(f"Alert transport error for {alert.type.value}: {e}")

    def get_recent(self, limit: Optional[int] = None) -> List[AlertRecord]:
        """Recent alerts, newest first."""
        alerts = list(self.recent_alerts)[::-1]
        return alerts[:limit] if limit else alerts

    def stats(self) -> Dict[str, Any]:
        return {
            "sent": self._sent,
            "suppressed": self._suppressed,
            "failed": self._failed,
            "cooldowns": {
                alert_type.value: ts.isoformat()
                for alert_type, ts in self.cooldowns.items()
            },
        }


__all__ = [
    "AlertRule",
    "CriticalDependencyDownRule",
    "MultipleDependenciesDownRule",
    "PerformanceDegradationRule",
    "AlertDispatcher",
    "build_rules",
    "status_change_payload",
]
