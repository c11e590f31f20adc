"""
Dependency Health - Probe Executor.

============================================================
PROBE EXECUTION
============================================================

A probe is one HTTP call against one endpoint of a dependency.

Success requires BOTH:
- response status == endpoint.expected_status
- no assertion, or the assertion passes on the parsed body

Everything else is a failure with a readable error:
- connection error
- timeout
- status mismatch
- JSON parse error
- assertion failure (or an assertion that raised)

Failures are returned as CheckResult(success=False), never raised.
probe() wraps probe_once() in with_retry() with linear backoff.

Probing is read-only: no state is touched here.

============================================================
"""

import asyncio
import logging
from typing import List, Optional

import aiohttp

from .assertions import evaluate_assertion
from .clock import ClockProtocol, SleepFunc, SystemClock
from .config import ProbeSettings
from .exceptions import ProbeError
from .http_client import HttpClient, HttpParseError, HttpTimeoutError
from .models import CheckResult, DependencyDefinition, EndpointProbe
from .retry import LinearBackoff, with_retry


logger = logging.getLogger(__name__)


class ProbeExecutor:
    """
    Executes endpoint probes with timeout, validation and retry.
    """

    def __init__(
        self,
        http_client: HttpClient,
        settings: Optional[ProbeSettings] = None,
        clock: Optional[ClockProtocol] = None,
        sleep: Optional[SleepFunc] = None,
    ) -> None:
        self.http_client = http_client
        self.settings = settings or ProbeSettings()
        self.clock = clock or SystemClock()
        self._sleep = sleep or self.clock.sleep
        self._backoff = LinearBackoff(self.settings.retry_delay_ms / 1000)

    # =========================================================
    # SINGLE ATTEMPT
    # =========================================================

    async def probe_once(
        self,
        endpoint: EndpointProbe,
        dependency_id: str = "",
        attempt: int = 1,
    ) -> CheckResult:
        """Run one attempt against an endpoint."""
        timeout_ms = endpoint.timeout_ms or self.settings.default_timeout_ms
        started = self.clock.monotonic()
        status: Optional[int] = None

        try:
            try:
                response = await self.http_client.fetch(
                    endpoint.url,
                    method=endpoint.method,
                    headers=endpoint.headers,
                    body=endpoint.body,
                    timeout_ms=timeout_ms,
                )
            except (HttpTimeoutError, asyncio.TimeoutError) as e:
                raise ProbeError("Request timeout", endpoint.name, dependency_id) from e
            except HttpParseError as e:
                raise ProbeError("Failed to parse JSON response", endpoint.name, dependency_id) from e
            except aiohttp.ClientError as e:
                raise ProbeError(
                    f"Connection error: {str(e) or e.__class__.__name__}",
                    endpoint.name,
                    dependency_id,
                ) from e

            status = response.status
            if status != endpoint.expected_status:
                raise ProbeError(
                    f"Unexpected status code: {status}",
                    endpoint.name,
                    dependency_id,
                    status=status,
                )

            if endpoint.assertion is not None:
                failure = evaluate_assertion(endpoint.assertion, status, response.body)
                if failure:
                    raise ProbeError(failure, endpoint.name, dependency_id, status=status)

        except ProbeError as e:
            return self._result(endpoint, False, started, e.reason, status, attempt)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Anything the client raises is just another failed probe
            return self._result(
                endpoint, False, started, str(e) or e.__class__.__name__, status, attempt
            )

        return self._result(endpoint, True, started, None, status, attempt)

    # =========================================================
    # WITH RETRY
    # =========================================================

    async def probe(self, endpoint: EndpointProbe, dependency_id: str = "") -> CheckResult:
        """
        Probe an endpoint, retrying with linear backoff.

        Returns the first success, or the last attempt's failure.
        """
        label = f"{dependency_id}/{endpoint.name}" if dependency_id else endpoint.name

        result = await with_retry(
            lambda attempt: self.probe_once(endpoint, dependency_id, attempt),
            max_attempts=self.settings.retry_attempts,
            backoff=self._backoff,
            sleep=self._sleep,
            is_failure=lambda r: not r.success,
            label=label,
        )

        if result.success:
            logger.debug(
                f"[{label}] OK in {result.response_time_ms:.1f}ms "
                f"(attempt {result.attempts})"
            )
        else:
            logger.debug(
                f"[{label}] FAILED after {result.attempts} attempts: {result.error}"
            )
        return result

    async def probe_dependency(self, definition: DependencyDefinition) -> List[CheckResult]:
        """Probe every endpoint of a dependency, in declaration order."""
        results = []
        for endpoint in definition.endpoints:
            results.append(await self.probe(endpoint, definition.id))
        return results

    def _result(
        self,
        endpoint: EndpointProbe,
        success: bool,
        started: float,
        error: Optional[str],
        status: Optional[int],
        attempt: int,
    ) -> CheckResult:
        return CheckResult(
            endpoint=endpoint.name,
            success=success,
            response_time_ms=(self.clock.monotonic() - started) * 1000,
            error=error,
            status_code=status,
            attempts=attempt,
            checked_at=self.clock.now(),
        )


__all__ = ["ProbeExecutor"]
