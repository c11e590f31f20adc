"""
Dependency Health - HTTP API.

============================================================
PURPOSE
============================================================
Thin aiohttp boundary over a DependencyMonitor.

    GET  /health                                    overall snapshot
    GET  /health/category/{category}                category view
    GET  /health/dependency/{dependency_id}         dependency view
    POST /health/dependency/{dependency_id}/check   on-demand check
    POST /health/dependency/{dependency_id}/circuit-breaker/reset
    GET  /metrics                                   Prometheus text

STATUS CODES:
- healthy -> 200, degraded / unhealthy / unknown -> 503
- unknown category or dependency -> 404
- 500 only for faults of the monitor itself, never because a
  dependency is failing

============================================================
"""

import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any

from aiohttp import web

from .exceptions import DependencyNotFoundError
from .models import HealthStatus
from .scheduler import DependencyMonitor
from .snapshot import http_status_for, render_prometheus


logger = logging.getLogger(__name__)


MONITOR_KEY = web.AppKey("dependency_monitor", DependencyMonitor)


# ============================================================
# JSON ENCODER
# ============================================================

class HealthEncoder(json.JSONEncoder):
    """JSON encoder for health payloads."""

    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        return super().default(obj)


def json_response(data: Any, status: int = 200) -> web.Response:
    """Create JSON response."""
    return web.Response(
        text=json.dumps(data, cls=HealthEncoder, indent=2),
        status=status,
        content_type="application/json",
    )


def error_response(error: str, status: int, **extra: Any) -> web.Response:
    body = {"status": "error", "error": error}
    body.update(extra)
    return json_response(body, status=status)


# ============================================================
# API HANDLERS
# ============================================================

class HealthAPI:
    """HTTP handlers for the dependency monitor."""

    def __init__(self, monitor: DependencyMonitor):
        self._monitor = monitor

    # --------------------------------------------------------
    # READ ENDPOINTS
    # --------------------------------------------------------

    async def get_health(self, request: web.Request) -> web.Response:
        """
        GET /health

        Overall snapshot; 200 when healthy, 503 otherwise.
        """
        try:
            snapshot = self._monitor.get_snapshot()
            return json_response(snapshot.to_dict(), status=snapshot.http_status)
        except Exception as e:
            logger.error(f"Error getting health snapshot: {e}", exc_info=True)
            return error_response(str(e), 500)

    async def get_category(self, request: web.Request) -> web.Response:
        """GET /health/category/{category}"""
        category = request.match_info["category"]
        try:
            view = self._monitor.get_category(category)
            if view is None:
                return error_response(
                    "Category not found",
                    404,
                    available_categories=self._monitor.registry.categories(),
                )
            return json_response(view, status=http_status_for(HealthStatus(view["status"])))
        except Exception as e:
            logger.error(f"Error getting category {category}: {e}", exc_info=True)
            return error_response(str(e), 500)

    async def get_dependency(self, request: web.Request) -> web.Response:
        """
        GET /health/dependency/{dependency_id}

        State, circuit breaker and the last 10 checks.
        """
        dependency_id = request.match_info["dependency_id"]
        try:
            view = self._monitor.get_dependency(dependency_id)
            if view is None:
                return self._not_found(dependency_id)
            return json_response(view, status=http_status_for(HealthStatus(view["status"])))
        except Exception as e:
            logger.error(f"[{dependency_id}] Error getting dependency: {e}", exc_info=True)
            return error_response(str(e), 500)

    async def get_metrics(self, request: web.Request) -> web.Response:
        """GET /metrics"""
        try:
            return web.Response(
                text=render_prometheus(self._monitor.get_snapshot()),
                content_type="text/plain",
            )
        except Exception as e:
            logger.error(f"Error rendering metrics: {e}", exc_info=True)
            return web.Response(text=f"# error: {e}\n", status=500, content_type="text/plain")

    # --------------------------------------------------------
    # ADMIN ENDPOINTS
    # --------------------------------------------------------

    async def check_dependency(self, request: web.Request) -> web.Response:
        """
        POST /health/dependency/{dependency_id}/check

        Run an on-demand check (respects the circuit breaker).
        """
        dependency_id = request.match_info["dependency_id"]
        try:
            await self._monitor.check_now(dependency_id)
            view = self._monitor.get_dependency(dependency_id)
            return json_response(view, status=http_status_for(HealthStatus(view["status"])))
        except DependencyNotFoundError:
            return self._not_found(dependency_id)
        except Exception as e:
            logger.error(f"[{dependency_id}] On-demand check failed: {e}", exc_info=True)
            return error_response(str(e), 500)

    async def reset_circuit_breaker(self, request: web.Request) -> web.Response:
        """POST /health/dependency/{dependency_id}/circuit-breaker/reset"""
        dependency_id = request.match_info["dependency_id"]
        try:
            if not self._monitor.reset_circuit_breaker(dependency_id):
                return self._not_found(dependency_id)
            return json_response({
                "status": "ok",
                "message": f"Circuit breaker for {dependency_id} reset",
                "circuit_breaker": self._monitor.breakers[dependency_id].to_dict(),
            })
        except Exception as e:
            logger.error(f"[{dependency_id}] Error resetting circuit breaker: {e}", exc_info=True)
            return error_response(str(e), 500)

    def _not_found(self, dependency_id: str) -> web.Response:
        return error_response(
            f"Dependency not found: {dependency_id}",
            404,
            available_dependencies=self._monitor.registry.ids(),
        )


# ============================================================
# APPLICATION FACTORY
# ============================================================

def create_health_app(monitor: DependencyMonitor) -> web.Application:
    """
    Create the health API application.

    Returns an aiohttp Application with all routes configured.
    """
    api = HealthAPI(monitor)

    app = web.Application()
    app[MONITOR_KEY] = monitor

    app.router.add_get("/health", api.get_health)
    app.router.add_get("/health/category/{category}", api.get_category)
    app.router.add_get("/health/dependency/{dependency_id}", api.get_dependency)
    app.router.add_get("/metrics", api.get_metrics)

    app.router.add_post("/health/dependency/{dependency_id}/check", api.check_dependency)
    app.router.add_post(
        "/health/dependency/{dependency_id}/circuit-breaker/reset",
        api.reset_circuit_breaker,
    )

    return app


__all__ = ["HealthAPI", "create_health_app", "json_response", "MONITOR_KEY"]
