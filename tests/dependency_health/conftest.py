"""
Shared fixtures for dependency health tests.

- clock: MockClock at a fixed instant
- http: scripted HttpClient that never touches the network
- make_definition: builds single- or multi-endpoint dependencies
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import aiohttp
import pytest

from dependency_health.clock import MockClock
from dependency_health.http_client import HttpClient, HttpResponse
from dependency_health.models import Criticality, DependencyDefinition, EndpointProbe


START_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeHttpClient(HttpClient):
    """
    Scripted HTTP client.

    Each URL gets a queue of responses (HttpResponse or an exception
    to raise). The last entry repeats forever. latency_ms advances
    the mock clock to simulate slow responses.
    """

    def __init__(self, clock: Optional[MockClock] = None):
        self.clock = clock
        self.routes: Dict[str, List[Any]] = {}
        self.latency_ms: Dict[str, float] = {}
        self.calls: List[Dict[str, Any]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def script(self, url: str, *responses: Any, latency_ms: float = 0.0) -> None:
        self.routes[url] = list(responses)
        self.latency_ms[url] = latency_ms

    def ok(self, url: str, body: Any = None, latency_ms: float = 0.0) -> None:
        self.script(url, HttpResponse(status=200, body=body if body is not None else {}), latency_ms=latency_ms)

    def fail(self, url: str, error: Optional[BaseException] = None) -> None:
        self.script(url, error or aiohttp.ClientConnectionError("connection refused"))

    def calls_to(self, url: str) -> int:
        return sum(1 for c in self.calls if c["url"] == url)

    async def fetch(self, url, method="GET", headers=None, body=None, timeout_ms=10000):
        self.calls.append({
            "url": url,
            "method": method,
            "headers": headers,
            "body": body,
            "timeout_ms": timeout_ms,
        })
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            # Yield so concurrent checks interleave
            await asyncio.sleep(0)

            queue = self.routes.get(url)
            if not queue:
                raise aiohttp.ClientConnectionError(f"no route for {url}")
            item = queue[0] if len(queue) == 1 else queue.pop(0)

            latency = self.latency_ms.get(url, 0.0)
            if latency and self.clock is not None:
                self.clock.advance(latency / 1000)

            if isinstance(item, BaseException):
                raise item
            return item
        finally:
            self.in_flight -= 1


@pytest.fixture
def clock():
    """Mock clock at a fixed start time."""
    return MockClock(START_TIME)


@pytest.fixture
def http(clock):
    """Scripted HTTP client bound to the mock clock."""
    return FakeHttpClient(clock)


@pytest.fixture
def make_definition():
    """Factory for dependency definitions with one endpoint per URL."""

    def _make(
        dependency_id: str,
        *urls: str,
        criticality: Criticality = Criticality.MEDIUM,
        category: str = "price_feed",
        assertion=None,
    ) -> DependencyDefinition:
        urls = urls or (f"https://{dependency_id}.test/ping",)
        return DependencyDefinition(
            id=dependency_id,
            name=dependency_id.replace("_", " ").title(),
            category=category,
            criticality=criticality,
            endpoints=tuple(
                EndpointProbe(name=f"endpoint_{i}", url=url, assertion=assertion)
                for i, url in enumerate(urls)
            ),
        )

    return _make
