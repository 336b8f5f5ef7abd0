"""Threshold alert engine with hysteresis and cooldown deduplication."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any, Callable

from apps.sentinel.formatting import format_alert_message, metrics_excerpt
from apps.sentinel.scan import (
    consecutive_blocks_missed,
    consecutive_heartbeats_missed,
    consecutive_outcomes_missed,
    has_recorded_outcomes,
    success_rate,
)
from core.alerting.feed import AlertFeed
from core.alerting.manager import (
    RECOVERY_TYPES,
    Alert,
    AlertSeverity,
    AlertType,
    NotificationDispatcher,
)
from core.config import Thresholds
from core.metrics.snapshot import MetricsSnapshot, PollOutcome
from otel_init import get_meter, get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)
meter = get_meter(__name__)

checks_total = meter.create_counter(
    "sentinel_checks_total", description="Alert engine check cycles", unit="1"
)
alerts_total = meter.create_counter(
    "sentinel_alerts_total", description="Alerts emitted by the engine", unit="1"
)

StateKey = tuple[AlertType, str | None]
SnapshotProvider = Callable[[], MetricsSnapshot | None]


class MetricsUnavailableError(RuntimeError):
    """The metrics snapshot itself is missing; the collaborator broke its contract."""


@dataclass(slots=True)
class AlertState:
    active: bool = False
    last_severity: AlertSeverity | None = None
    last_sent_at: float | None = None
    last_value: float | None = None


@dataclass(slots=True, frozen=True)
class _Condition:
    alert_type: AlertType
    value: float
    breached: bool
    headline: str
    higher_is_worse: bool = True
    # Counts escalate on every increase; rates escalate only warning -> critical.
    escalate_repeatedly: bool = True
    initial_severity: AlertSeverity = AlertSeverity.WARNING
    chain: str | None = None
    consecutive_missed: int | None = None
    grace_seconds: float = 0.0


_POLL_DIMENSIONS = (
    (
        "evm_votes",
        AlertType.EVM_VOTE_MISSED,
        "EVM votes",
        "consecutive_evm_votes_missed",
        "evm_vote_grace_seconds",
    ),
    (
        "ampd_votes",
        AlertType.AMPD_VOTE_MISSED,
        "AMPD votes",
        "consecutive_ampd_votes_missed",
        "ampd_vote_grace_seconds",
    ),
    (
        "ampd_signings",
        AlertType.AMPD_SIGNING_MISSED,
        "AMPD signings",
        "consecutive_ampd_signings_missed",
        "ampd_signing_grace_seconds",
    ),
)


class AlertEngine:
    """
    Converts metric snapshots into a minimal stream of alerts.

    Every condition follows the same policy: a breach opens the condition
    with a warning, a strictly worse value escalates to critical immediately,
    a persisting breach is re-notified only after the cooldown, and clearing
    the threshold emits exactly one info recovery which is never suppressed.
    """

    def __init__(
        self,
        *,
        thresholds: Thresholds | None = None,
        dispatcher: NotificationDispatcher | None = None,
        feed: AlertFeed | None = None,
        clock: Any = time.time,
        drain_timeout_seconds: float = 5.0,
    ):
        self.thresholds = thresholds or Thresholds()
        self.dispatcher = dispatcher
        self.feed = feed
        self.clock = clock
        self.drain_timeout_seconds = drain_timeout_seconds
        self._states: dict[StateKey, AlertState] = {}
        self._counters: dict[tuple[str, str | None], int] = {}
        self._dispatch_tasks: set[asyncio.Task[Any]] = set()
        self._running = False
        self._task: asyncio.Task[Any] | None = None

    def states(self) -> dict[StateKey, AlertState]:
        return {key: replace(state) for key, state in self._states.items()}

    def counters(self) -> dict[tuple[str, str | None], int]:
        return dict(self._counters)

    def evaluate(self, snapshot: MetricsSnapshot | None) -> list[Alert]:
        """Run one check cycle against ``snapshot`` and return emitted alerts."""
        if snapshot is None or not isinstance(snapshot, MetricsSnapshot):
            raise MetricsUnavailableError("metrics snapshot is not available")

        now = float(self.clock())
        emitted: list[Alert] = []
        with tracer.start_as_current_span("sentinel.check") as span:
            for condition in self._conditions(snapshot, now):
                alert = self._apply(condition, snapshot, now)
                if alert is not None:
                    emitted.append(alert)
            span.set_attribute("sentinel.alerts_emitted", len(emitted))

        checks_total.add(1)
        for alert in emitted:
            alerts_total.add(
                1, {"type": alert.type.value, "severity": alert.severity.value}
            )
        return emitted

    async def check(self, snapshot: MetricsSnapshot | None) -> list[Alert]:
        """Evaluate, publish to the live feed, and dispatch without awaiting delivery."""
        alerts = self.evaluate(snapshot)
        for alert in alerts:
            logger.info(f"Alert created: {alert.type.value} ({alert.severity.value})")
            if self.feed is not None:
                self.feed.publish(alert)
            if self.dispatcher is not None:
                self._spawn_dispatch(alert)
        return alerts

    async def start(self, snapshot_provider: SnapshotProvider) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(snapshot_provider))
        logger.info(
            "Alert engine started periodic checks every "
            f"{self.thresholds.check_interval_seconds}s"
        )

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except MetricsUnavailableError:
                logger.error("Alert engine had already stopped on missing metrics")
            self._task = None

        if self._dispatch_tasks:
            _, pending = await asyncio.wait(
                set(self._dispatch_tasks), timeout=self.drain_timeout_seconds
            )
            if pending:
                logger.warning(
                    f"{len(pending)} notification(s) still in flight at shutdown"
                )

    @property
    def running(self) -> bool:
        return self._running

    @property
    def pending_dispatches(self) -> int:
        return len(self._dispatch_tasks)

    async def _loop(self, snapshot_provider: SnapshotProvider) -> None:
        while self._running:
            try:
                await self.check(snapshot_provider())
            except MetricsUnavailableError:
                logger.critical("Metrics snapshot unavailable; alert engine stopping")
                self._running = False
                raise
            except Exception:
                logger.exception("Alert check cycle failed")
            await asyncio.sleep(self.thresholds.check_interval_seconds)

    def _spawn_dispatch(self, alert: Alert) -> None:
        task = asyncio.create_task(self.dispatcher.dispatch(alert))
        self._dispatch_tasks.add(task)
        task.add_done_callback(self._on_dispatch_done)

    def _on_dispatch_done(self, task: asyncio.Task[Any]) -> None:
        self._dispatch_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Notification dispatch failed: {exc!r}", exc_info=exc)

    def _conditions(self, snapshot: MetricsSnapshot, now: float) -> list[_Condition]:
        t = self.thresholds
        conditions: list[_Condition] = []

        if snapshot.block_statuses is not None:
            missed = consecutive_blocks_missed(snapshot.block_statuses)
            self._counters[("blocks_missed", None)] = missed
            conditions.append(
                _Condition(
                    alert_type=AlertType.CONSECUTIVE_BLOCKS_MISSED,
                    value=missed,
                    breached=missed >= t.consecutive_blocks_missed,
                    headline=f"{missed} consecutive blocks missed",
                    consecutive_missed=missed,
                )
            )
            rate = success_rate(snapshot.total_signed, snapshot.total_missed)
            conditions.append(
                _Condition(
                    alert_type=AlertType.SIGN_RATE_LOW,
                    value=rate,
                    breached=rate < t.sign_rate,
                    headline=f"Low signing rate ({rate:.2f}%)",
                    higher_is_worse=False,
                    escalate_repeatedly=False,
                    consecutive_missed=missed,
                )
            )

        if snapshot.heartbeat_statuses is not None:
            missed = consecutive_heartbeats_missed(snapshot.heartbeat_statuses)
            self._counters[("heartbeats_missed", None)] = missed
            conditions.append(
                _Condition(
                    alert_type=AlertType.CONSECUTIVE_HEARTBEATS_MISSED,
                    value=missed,
                    breached=missed >= t.consecutive_heartbeats_missed,
                    headline=f"{missed} consecutive heartbeats missed",
                    consecutive_missed=missed,
                )
            )
            rate = success_rate(snapshot.heartbeats_signed, snapshot.heartbeats_missed)
            conditions.append(
                _Condition(
                    alert_type=AlertType.HEARTBEAT_RATE_LOW,
                    value=rate,
                    breached=rate < t.heartbeat_rate,
                    headline=f"Low heartbeat rate ({rate:.2f}%)",
                    higher_is_worse=False,
                    escalate_repeatedly=False,
                    consecutive_missed=missed,
                )
            )

        if snapshot.connected is not None:
            disconnected = not snapshot.connected
            conditions.append(
                _Condition(
                    alert_type=AlertType.NODE_DISCONNECTED,
                    value=1.0 if disconnected else 0.0,
                    breached=disconnected,
                    headline=(
                        "Node disconnected! Last error: "
                        f"{snapshot.last_error or 'unknown'}"
                    ),
                    # No warning stage: a disconnect opens and reminds at critical.
                    initial_severity=AlertSeverity.CRITICAL,
                )
            )

        for dimension, alert_type, label, threshold_name, grace_name in _POLL_DIMENSIONS:
            table: dict[str, tuple[PollOutcome, ...]] | None = getattr(
                snapshot, dimension
            )
            if table is None:
                continue
            threshold = getattr(t, threshold_name)
            grace = getattr(t, grace_name)
            for chain, outcomes in table.items():
                if not has_recorded_outcomes(outcomes):
                    continue
                missed = consecutive_outcomes_missed(
                    outcomes, now=now, grace_seconds=grace
                )
                self._counters[(dimension, chain)] = missed
                conditions.append(
                    _Condition(
                        alert_type=alert_type,
                        value=missed,
                        breached=missed >= threshold,
                        headline=f"{missed} consecutive {label} missed on chain {chain}",
                        chain=chain,
                        grace_seconds=grace,
                    )
                )

        return conditions

    def _apply(
        self, condition: _Condition, snapshot: MetricsSnapshot, now: float
    ) -> Alert | None:
        key = (condition.alert_type, condition.chain)
        state = self._states.setdefault(key, AlertState())

        if not condition.breached:
            was_active = state.active
            state.active = False
            state.last_value = condition.value
            if not was_active:
                return None
            return self._emit(
                condition,
                state,
                snapshot,
                now,
                AlertSeverity.INFO,
                alert_type=RECOVERY_TYPES[condition.alert_type],
            )

        if not state.active:
            severity = condition.initial_severity
            state.last_value = condition.value
            if not self._cooldown_allows(state, severity, now):
                return None
            state.active = True
            return self._emit(condition, state, snapshot, now, severity)

        worse = self._is_worse(condition, state.last_value)
        state.last_value = condition.value
        if worse and (
            condition.escalate_repeatedly
            or state.last_severity != AlertSeverity.CRITICAL
        ):
            return self._emit(condition, state, snapshot, now, AlertSeverity.CRITICAL)

        severity = state.last_severity or condition.initial_severity
        if self._cooldown_allows(state, severity, now):
            return self._emit(condition, state, snapshot, now, severity)
        return None

    @staticmethod
    def _is_worse(condition: _Condition, previous: float | None) -> bool:
        if previous is None:
            return False
        if condition.higher_is_worse:
            return condition.value > previous
        return condition.value < previous

    def _cooldown_allows(
        self, state: AlertState, severity: AlertSeverity, now: float
    ) -> bool:
        if severity == AlertSeverity.INFO:
            return True
        if state.last_sent_at is None or state.last_severity != severity:
            return True
        return now - state.last_sent_at >= self.thresholds.cooldown_seconds

    def _emit(
        self,
        condition: _Condition,
        state: AlertState,
        snapshot: MetricsSnapshot,
        now: float,
        severity: AlertSeverity,
        *,
        alert_type: AlertType | None = None,
    ) -> Alert:
        alert_type = alert_type or condition.alert_type
        headline = _headline(alert_type, severity, condition)
        message = format_alert_message(
            alert_type,
            headline,
            snapshot,
            now=now,
            chain=condition.chain,
            consecutive_missed=condition.consecutive_missed,
            grace_seconds=condition.grace_seconds,
        )
        state.last_severity = severity
        state.last_sent_at = now
        return Alert(
            type=alert_type,
            message=message,
            severity=severity,
            chain=condition.chain,
            metrics=metrics_excerpt(alert_type, snapshot, condition.chain),
            timestamp=datetime.fromtimestamp(now, UTC),
        )


_RECOVERY_HEADLINES = {
    AlertType.BLOCKS_RECOVERED: "Block signing recovered. Now operating normally.",
    AlertType.HEARTBEATS_RECOVERED: "Heartbeats recovered. Now operating normally.",
    AlertType.SIGN_RATE_RECOVERED: "Signing rate back above threshold",
    AlertType.HEARTBEAT_RATE_RECOVERED: "Heartbeat rate back above threshold",
    AlertType.NODE_RECONNECTED: "Node reconnected successfully!",
    AlertType.EVM_VOTES_RECOVERED: "EVM votes recovered",
    AlertType.AMPD_VOTES_RECOVERED: "AMPD votes recovered",
    AlertType.AMPD_SIGNINGS_RECOVERED: "AMPD signings recovered",
}


def _headline(
    alert_type: AlertType, severity: AlertSeverity, condition: _Condition
) -> str:
    if severity == AlertSeverity.INFO:
        text = _RECOVERY_HEADLINES[alert_type]
        if condition.chain is not None:
            text = f"{text} on chain {condition.chain}. Now operating normally."
        elif condition.higher_is_worse is False:
            text = f"{text} ({condition.value:.2f}%)"
        return f"🟢 INFO: {text}"
    if severity == AlertSeverity.CRITICAL:
        return f"🔴 CRITICAL ALERT: {condition.headline}"
    return f"⚠️ ALERT: {condition.headline}"
