"""
Dependency Health - HTTP Client.

============================================================
RESPONSIBILITY
============================================================

Narrow HTTP interface consumed by the probe executor:

    fetch(url, method, headers, body, timeout_ms) -> HttpResponse

- AiohttpClient: production implementation over one shared
  aiohttp.ClientSession
- Tests inject fakes implementing the same protocol

Body handling:
- dict / list bodies are sent as JSON
- str bodies are sent as-is
- responses are parsed as JSON when possible, otherwise the
  raw text is returned

============================================================
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import aiohttp


logger = logging.getLogger(__name__)


class HttpTimeoutError(Exception):
    """The request exceeded its timeout."""


class HttpParseError(Exception):
    """The response declared JSON but could not be parsed."""


@dataclass
class HttpResponse:
    """Status and parsed body of an HTTP response."""
    status: int
    body: Any = None
    headers: Dict[str, str] = field(default_factory=dict)


class HttpClient(ABC):
    """Interface the probe executor uses to issue requests."""

    @abstractmethod
    async def fetch(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
        timeout_ms: int = 10000,
    ) -> HttpResponse:
        """
        Issue one request.

        Raises on network failure, HttpTimeoutError on timeout and
        HttpParseError on malformed JSON.
        """
        pass

    async def close(self) -> None:
        """Release resources."""
        pass


# ============================================================
# AIOHTTP IMPLEMENTATION
# ============================================================

class AiohttpClient(HttpClient):
    """
    HttpClient over a shared aiohttp session.

    The session is created lazily and reused by all probes; an
    injected session is never closed by this client.
    """

    DEFAULT_HEADERS = {
        "Accept": "application/json",
        "User-Agent": "ArbitrageDependencyMonitor/1.0",
    }

    def __init__(self, session: Optional[aiohttp.ClientSession] = None) -> None:
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers=self.DEFAULT_HEADERS)
            self._owns_session = True
        return self._session

    async def fetch(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
        timeout_ms: int = 10000,
    ) -> HttpResponse:
        session = await self._get_session()

        kwargs: Dict[str, Any] = {
            "headers": headers or None,
            "timeout": aiohttp.ClientTimeout(total=timeout_ms / 1000),
        }
        if body is not None:
            if isinstance(body, (str, bytes)):
                kwargs["data"] = body
            else:
                kwargs["json"] = body

        try:
            async with session.request(method, url, **kwargs) as response:
                text = await response.text()
                parsed = _parse_body(text, response.content_type)
                return HttpResponse(
                    status=response.status,
                    body=parsed,
                    headers=dict(response.headers),
                )
        except asyncio.TimeoutError as e:
            raise HttpTimeoutError(f"Timeout after {timeout_ms}ms") from e

    async def close(self) -> None:
        """Close the session if this client created it."""
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()
            logger.debug("AiohttpClient session closed")

    async def __aenter__(self) -> "AiohttpClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def _parse_body(text: str, content_type: str) -> Any:
    """JSON when declared or parseable, raw text otherwise."""
    if "json" in (content_type or ""):
        if not text:
            return None
        try:
            return json.loads(text)
        except ValueError as e:
            raise HttpParseError(f"Invalid JSON response: {e}") from e

    stripped = text.strip()
    if stripped[:1] in ("{", "["):
        try:
            return json.loads(stripped)
        except ValueError:
            return text
    return text


__all__ = [
    "HttpClient",
    "HttpResponse",
    "HttpTimeoutError",
    "HttpParseError",
    "AiohttpClient",
]
