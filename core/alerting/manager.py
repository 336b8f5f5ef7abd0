"""Alert contract, notification channels, and the dispatcher."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import httpx
from prometheus_client import CollectorRegistry, Counter

from otel_init import get_tracer

logger = logging.getLogger(__name__)


class AlertSeverity(StrEnum):
    """Alert severities, ordered info < warning < critical."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    AlertSeverity.INFO: 0,
    AlertSeverity.WARNING: 1,
    AlertSeverity.CRITICAL: 2,
}


class AlertType(StrEnum):
    CONSECUTIVE_BLOCKS_MISSED = "consecutive_blocks_missed"
    CONSECUTIVE_HEARTBEATS_MISSED = "consecutive_heartbeats_missed"
    SIGN_RATE_LOW = "sign_rate_low"
    HEARTBEAT_RATE_LOW = "heartbeat_rate_low"
    NODE_DISCONNECTED = "node_disconnected"
    EVM_VOTE_MISSED = "evm_vote_missed"
    AMPD_VOTE_MISSED = "ampd_vote_missed"
    AMPD_SIGNING_MISSED = "ampd_signing_missed"
    BLOCKS_RECOVERED = "blocks_recovered"
    HEARTBEATS_RECOVERED = "heartbeats_recovered"
    SIGN_RATE_RECOVERED = "sign_rate_recovered"
    HEARTBEAT_RATE_RECOVERED = "heartbeat_rate_recovered"
    NODE_RECONNECTED = "node_reconnected"
    EVM_VOTES_RECOVERED = "evm_votes_recovered"
    AMPD_VOTES_RECOVERED = "ampd_votes_recovered"
    AMPD_SIGNINGS_RECOVERED = "ampd_signings_recovered"


RECOVERY_TYPES: dict[AlertType, AlertType] = {
    AlertType.CONSECUTIVE_BLOCKS_MISSED: AlertType.BLOCKS_RECOVERED,
    AlertType.CONSECUTIVE_HEARTBEATS_MISSED: AlertType.HEARTBEATS_RECOVERED,
    AlertType.SIGN_RATE_LOW: AlertType.SIGN_RATE_RECOVERED,
    AlertType.HEARTBEAT_RATE_LOW: AlertType.HEARTBEAT_RATE_RECOVERED,
    AlertType.NODE_DISCONNECTED: AlertType.NODE_RECONNECTED,
    AlertType.EVM_VOTE_MISSED: AlertType.EVM_VOTES_RECOVERED,
    AlertType.AMPD_VOTE_MISSED: AlertType.AMPD_VOTES_RECOVERED,
    AlertType.AMPD_SIGNING_MISSED: AlertType.AMPD_SIGNINGS_RECOVERED,
}


@dataclass(slots=True)
class Alert:
    """Canonical alert payload handed to every channel and the live feed."""

    type: AlertType
    message: str
    severity: AlertSeverity
    chain: str | None = None
    metrics: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def as_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "chain": self.chain,
            "message": self.message,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
            "metrics": self.metrics,
        }


class AlertChannel:
    """Channel interface."""

    name = "channel"

    async def send(self, alert: Alert) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class DiscordChannel(AlertChannel):
    """Discord webhook with severity-coloured embeds."""

    name = "discord"

    COLORS = {
        AlertSeverity.INFO: 0x3498DB,
        AlertSeverity.WARNING: 0xF39C12,
        AlertSeverity.CRITICAL: 0xE74C3C,
    }

    def __init__(
        self,
        webhook_url: str,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        title_prefix: str = "Axelar Validator Alert",
    ):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.client = client
        self.title_prefix = title_prefix

    def build_payload(self, alert: Alert) -> dict[str, Any]:
        return {
            "embeds": [
                {
                    "title": f"{self.title_prefix}: {alert.type.value}",
                    "description": alert.message,
                    "color": self.COLORS[alert.severity],
                    "timestamp": alert.timestamp.isoformat(),
                }
            ]
        }

    async def send(self, alert: Alert) -> None:
        payload = self.build_payload(alert)
        if self.client is not None:
            response = await self.client.post(
                self.webhook_url, json=payload, timeout=self.timeout
            )
            response.raise_for_status()
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.webhook_url, json=payload)
                response.raise_for_status()
        logger.info(f"Discord notification sent for {alert.type.value}")


# Characters legacy Telegram Markdown treats as entity delimiters.
_TELEGRAM_MARKDOWN_SPECIALS = ("_", "*", "`", "[")


def escape_markdown(text: str) -> str:
    for char in _TELEGRAM_MARKDOWN_SPECIALS:
        text = text.replace(char, f"\\{char}")
    return text


class TelegramChannel(AlertChannel):
    """Telegram bot `sendMessage` channel."""

    name = "telegram"

    EMOJI = {
        AlertSeverity.INFO: "ℹ️",
        AlertSeverity.WARNING: "⚠️",
        AlertSeverity.CRITICAL: "🚨",
    }

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        api_base: str = "https://api.telegram.org",
        title: str = "Axelar Validator Alert",
    ):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.timeout = timeout
        self.client = client
        self.api_base = api_base.rstrip("/")
        self.title = title

    @property
    def endpoint(self) -> str:
        return f"{self.api_base}/bot{self.bot_token}/sendMessage"

    def build_payload(self, alert: Alert) -> dict[str, Any]:
        return {
            "chat_id": self.chat_id,
            "text": (
                f"{self.EMOJI[alert.severity]} *{escape_markdown(self.title)}*\n\n"
                f"{escape_markdown(alert.message)}"
            ),
            "parse_mode": "Markdown",
        }

    async def send(self, alert: Alert) -> None:
        payload = self.build_payload(alert)
        if self.client is not None:
            response = await self.client.post(
                self.endpoint, json=payload, timeout=self.timeout
            )
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.endpoint, json=payload)
        response.raise_for_status()
        body = response.json()
        if not body.get("ok", False):
            raise RuntimeError(
                f"Telegram rejected message: {body.get('description', 'unknown error')}"
            )
        logger.info(f"Telegram notification sent for {alert.type.value}")


class PrometheusChannel(AlertChannel):
    """Prometheus counter channel for Grafana alerting."""

    name = "prometheus"

    def __init__(self, registry: CollectorRegistry | None = None):
        kwargs = {"registry": registry} if registry is not None else {}
        self.counter = Counter(
            "validator_alert_events_total",
            "Total alert events emitted by the validator sentinel",
            ["severity", "type", "chain"],
            **kwargs,
        )

    async def send(self, alert: Alert) -> None:
        self.counter.labels(
            severity=alert.severity.value,
            type=alert.type.value,
            chain=alert.chain or "",
        ).inc()


class OtelChannel(AlertChannel):
    """OpenTelemetry span-based alert channel."""

    name = "otel"

    def __init__(self, tracer_name: str = "core.alerting.manager"):
        self.tracer = get_tracer(tracer_name)

    async def send(self, alert: Alert) -> None:
        with self.tracer.start_as_current_span("sentinel.alert.dispatch") as span:
            span.set_attribute("alert.type", alert.type.value)
            span.set_attribute("alert.severity", alert.severity.value)
            span.set_attribute("alert.message", alert.message)
            if alert.chain is not None:
                span.set_attribute("alert.chain", alert.chain)


class NotificationDispatcher:
    """
    Fans an alert out to all configured channels.

    A failing channel is logged and never prevents delivery on the others;
    ``dispatch`` itself does not raise for channel errors.
    """

    def __init__(self, channels: list[AlertChannel], *, timeout: float = 15.0):
        self.channels = channels
        self.timeout = timeout

    async def _send(self, channel: AlertChannel, alert: Alert) -> None:
        await asyncio.wait_for(channel.send(alert), timeout=self.timeout)

    async def dispatch(self, alert: Alert) -> list[str]:
        """Deliver ``alert``; returns the names of channels that failed."""
        if not self.channels:
            return []

        results = await asyncio.gather(
            *(self._send(channel, alert) for channel in self.channels),
            return_exceptions=True,
        )
        failed: list[str] = []
        for channel, result in zip(self.channels, results):
            if isinstance(result, BaseException):
                failed.append(channel.name)
                logger.error(
                    f"Failed to send {alert.type.value} via {channel.name}: {result!r}",
                    exc_info=result,
                )
        return failed


def build_channels(
    notification_config: Any,
    *,
    registry: CollectorRegistry | None = None,
    client: httpx.AsyncClient | None = None,
) -> list[AlertChannel]:
    """Channels enabled by a ``NotificationConfig``; Prometheus and OTel always on."""
    channels: list[AlertChannel] = [PrometheusChannel(registry=registry), OtelChannel()]
    timeout = notification_config.timeout_seconds
    if notification_config.discord.active:
        channels.append(
            DiscordChannel(
                notification_config.discord.webhook_url, timeout=timeout, client=client
            )
        )
    if notification_config.telegram.active:
        channels.append(
            TelegramChannel(
                notification_config.telegram.bot_token,
                notification_config.telegram.chat_id,
                timeout=timeout,
                client=client,
            )
        )
    return channels
