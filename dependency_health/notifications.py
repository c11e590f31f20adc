"""
Dependency Health - Alert Transports.

============================================================
PURPOSE
============================================================
Deliver AlertRecords produced by the dispatcher.

- LoggingAlertTransport: writes the alert to the log
- WebhookAlertTransport: POSTs the alert JSON to a URL
- TelegramAlertTransport: sends an HTML message via the Bot API
- CompositeAlertTransport: fans out to several transports

Every transport raises AlertDeliveryError on failure. The
dispatcher catches and logs it; delivery is best effort and
never retried.

============================================================
"""

import html
import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

import aiohttp

from .exceptions import AlertDeliveryError
from .models import AlertRecord, AlertType


logger = logging.getLogger(__name__)


class AlertTransport(ABC):
    """Interface used by the alert dispatcher."""

    @abstractmethod
    async def send(self, alert: AlertRecord) -> None:
        """Deliver one alert; raise AlertDeliveryError on failure."""
        pass

    async def close(self) -> None:
        pass


# ============================================================
# LOGGING
# ============================================================

class LoggingAlertTransport(AlertTransport):
    """Writes alerts to the log. Default transport."""

    def __init__(self, level: int = logging.WARNING):
        self.level = level

    async def send(self, alert: AlertRecord) -> None:
        logger.log(
            self.level,
            f"HEALTH ALERT {alert.type.value}: {json.dumps(alert.to_dict(), default=str)}",
        )


# ============================================================
# WEBHOOK
# ============================================================

class WebhookAlertTransport(AlertTransport):
    """POSTs the alert JSON to a webhook URL."""

    def __init__(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout_seconds: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.url = url
        self.headers = headers or {}
        self.timeout_seconds = timeout_seconds
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            )
            self._owns_session = True
        return self._session

    async def send(self, alert: AlertRecord) -> None:
        session = await self._get_session()
        try:
            async with session.post(
                self.url,
                data=json.dumps(alert.to_dict(), default=str),
                headers={"Content-Type": "application/json", **self.headers},
            ) as response:
                if response.status >= 300:
                    body = await response.text()
                    raise AlertDeliveryError(
                        alert.type.value,
                        f"Webhook returned {response.status}: {body[:200]}",
                    )
        except aiohttp.ClientError as e:
            raise AlertDeliveryError(alert.type.value, f"Webhook unreachable: {e}", e) from e

    async def close(self) -> None:
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()
            self._session = None


# ============================================================
# TELEGRAM
# ============================================================

class AlertFormatter:
    """
    Formats alerts for Telegram.

    Uses HTML formatting for clarity.
    """

    TYPE_ICONS = {
        AlertType.CRITICAL_DEPENDENCY_DOWN: "🚨",
        AlertType.MULTIPLE_DEPENDENCIES_DOWN: "🔴",
        AlertType.PERFORMANCE_DEGRADATION: "🐢",
        AlertType.DEPENDENCY_STATUS_CHANGE: "🔄",
    }

    TITLES = {
        AlertType.CRITICAL_DEPENDENCY_DOWN: "Critical dependency down",
        AlertType.MULTIPLE_DEPENDENCIES_DOWN: "Multiple dependencies down",
        AlertType.PERFORMANCE_DEGRADATION: "Performance degradation",
        AlertType.DEPENDENCY_STATUS_CHANGE: "Dependency status change",
    }

    @classmethod
    def format_alert(cls, alert: AlertRecord, max_items: int = 10) -> str:
        icon = cls.TYPE_ICONS.get(alert.type, "📌")
        title = cls.TITLES.get(alert.type, alert.type.value)
        payload = alert.payload
        dependencies = payload.get("dependencies", [])

        lines = [
            f"{icon} <b>{html.escape(title)}</b>",
            "",
            f"Affected: <b>{payload.get('count', len(dependencies))}</b>",
        ]
        if "threshold_ms" in payload:
            lines.append(f"Threshold: <code>{payload['threshold_ms']:.0f}ms</code>")
        if "previous_status" in payload:
            lines.append(
                f"Status: <code>{payload['previous_status']}</code> → "
                f"<code>{payload['current_status']}</code>"
            )

        if dependencies:
            lines.append("")
            for dep in dependencies[:max_items]:
                line = f"• <code>{html.escape(str(dep.get('name', dep.get('id'))))}</code>"
                if dep.get("response_time_ms") is not None:
                    line += f" {dep['response_time_ms']:.0f}ms"
                elif dep.get("last_error"):
                    line += f": {html.escape(str(dep['last_error']))}"
                lines.append(line)
            if len(dependencies) > max_items:
                lines.append(f"<i>... and {len(dependencies) - max_items} more</i>")

        lines.append("")
        lines.append(f"🕐 {alert.timestamp.strftime('%Y-%m-%d %H:%M:%S UTC')}")
        return "\n".join(lines)


class TelegramAlertTransport(AlertTransport):
    """
    Sends alerts to Telegram chats.

    Notification-only; configured from TELEGRAM_BOT_TOKEN and
    TELEGRAM_CHAT_ID (comma-separated) when not given explicitly.
    """

    BASE_URL = "https://api.telegram.org/bot"

    def __init__(
        self,
        bot_token: Optional[str] = None,
        chat_ids: Optional[List[str]] = None,
        base_url: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self._bot_token = bot_token or os.getenv("TELEGRAM_BOT_TOKEN", "")
        if chat_ids:
            self._chat_ids = list(chat_ids)
        else:
            env_chat_ids = os.getenv("TELEGRAM_CHAT_ID", "")
            self._chat_ids = [c.strip() for c in env_chat_ids.split(",") if c.strip()]

        self._base_url = base_url or self.BASE_URL
        self._formatter = AlertFormatter()
        self._session = session
        self._owns_session = session is None

        if self.configured:
            logger.info(f"TelegramAlertTransport enabled with {len(self._chat_ids)} chat(s)")
        else:
            logger.warning(
                "TelegramAlertTransport NOT configured - check TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID"
            )

    @property
    def configured(self) -> bool:
        return bool(self._bot_token and self._chat_ids)

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def send(self, alert: AlertRecord) -> None:
        if not self.configured:
            raise AlertDeliveryError(alert.type.value, "Telegram transport not configured")

        message = self._formatter.format_alert(alert)
        failures = []
        for chat_id in self._chat_ids:
            error = await self._send_message(chat_id, message)
            if error:
                failures.append(f"{chat_id}: {error}")

        if failures:
            raise AlertDeliveryError(alert.type.value, "; ".join(failures))

    async def _send_message(
        self,
        chat_id: str,
        message: str,
        parse_mode: str = "HTML",
    ) -> Optional[str]:
        """Send message to a specific chat; returns an error string on failure."""
        session = await self._get_session()
        url = f"{self._base_url}{self._bot_token}/sendMessage"
        payload = {
            "chat_id": chat_id,
            "text": message,
            "parse_mode": parse_mode,
            "disable_web_page_preview": True,
        }

        try:
            async with session.post(url, json=payload) as response:
                if response.status == 200:
                    return None
                body = await response.text()
                return f"Telegram API error {response.status}: {body[:200]}"
        except aiohttp.ClientError as e:
            return f"Error sending Telegram message: {e}"

    async def close(self) -> None:
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()
            self._session = None


# ============================================================
# COMPOSITE
# ============================================================

class CompositeAlertTransport(AlertTransport):
    """
    Delivers to every transport.

    All transports are attempted; failures are collected into a
    single AlertDeliveryError.
    """

    def __init__(self, transports: Sequence[AlertTransport]):
        self.transports = list(transports)

    async def send(self, alert: AlertRecord) -> None:
        failures = []
        for transport in self.transports:
            try:
                await transport.send(alert)
            except Exception as e:
                failures.append(f"{transport.__class__.__name__}: {e}")

        if failures:
            raise AlertDeliveryError(alert.type.value, "; ".join(failures))

    async def close(self) -> None:
        for transport in self.transports:
            await transport.close()


def transport_from_env() -> AlertTransport:
    """
    Build the transport chain from the environment.

    Always logs; adds a webhook when HEALTH_MONITOR_WEBHOOK_URL is
    set and Telegram when TELEGRAM_BOT_TOKEN is set.
    """
    transports: List[AlertTransport] = [LoggingAlertTransport()]

    webhook_url = os.getenv("HEALTH_MONITOR_WEBHOOK_URL")
    if webhook_url:
        transports.append(WebhookAlertTransport(webhook_url))

    if os.getenv("TELEGRAM_BOT_TOKEN"):
        transports.append(TelegramAlertTransport())

    if len(transports) == 1:
        return transports[0]
    return CompositeAlertTransport(transports)


__all__ = [
    "AlertTransport",
    "LoggingAlertTransport",
    "WebhookAlertTransport",
    "AlertFormatter",
    "TelegramAlertTransport",
    "CompositeAlertTransport",
    "transport_from_env",
]
