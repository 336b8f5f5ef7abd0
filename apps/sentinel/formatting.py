"""Human-readable alert messages with the relevant metric context."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from apps.sentinel.scan import Verdict, outcome_judge, success_rate
from core.alerting.manager import AlertType
from core.metrics.snapshot import MetricsSnapshot, OutcomeStatus, PollOutcome

RECENT_SAMPLE_SIZE = 5

_BLOCK_TYPES = {
    AlertType.CONSECUTIVE_BLOCKS_MISSED,
    AlertType.SIGN_RATE_LOW,
    AlertType.BLOCKS_RECOVERED,
    AlertType.SIGN_RATE_RECOVERED,
}
_HEARTBEAT_TYPES = {
    AlertType.CONSECUTIVE_HEARTBEATS_MISSED,
    AlertType.HEARTBEAT_RATE_LOW,
    AlertType.HEARTBEATS_RECOVERED,
    AlertType.HEARTBEAT_RATE_RECOVERED,
}
_EVM_VOTE_TYPES = {AlertType.EVM_VOTE_MISSED, AlertType.EVM_VOTES_RECOVERED}
_AMPD_VOTE_TYPES = {AlertType.AMPD_VOTE_MISSED, AlertType.AMPD_VOTES_RECOVERED}
_AMPD_SIGNING_TYPES = {
    AlertType.AMPD_SIGNING_MISSED,
    AlertType.AMPD_SIGNINGS_RECOVERED,
}
_RECOVERY_TYPES = {
    AlertType.BLOCKS_RECOVERED,
    AlertType.HEARTBEATS_RECOVERED,
    AlertType.SIGN_RATE_RECOVERED,
    AlertType.HEARTBEAT_RATE_RECOVERED,
    AlertType.NODE_RECONNECTED,
    AlertType.EVM_VOTES_RECOVERED,
    AlertType.AMPD_VOTES_RECOVERED,
    AlertType.AMPD_SIGNINGS_RECOVERED,
}


def _iso(epoch: float | None) -> str:
    if epoch is None:
        return "unknown"
    return datetime.fromtimestamp(epoch, UTC).isoformat()


def _outcome_lines(label: str, outcomes: list[PollOutcome]) -> list[str]:
    return [f"- {label} {o.id}: {o.raw_result or o.status.value}" for o in outcomes]


def _chain_outcomes(
    table: dict[str, tuple[PollOutcome, ...]] | None, chain: str | None
) -> list[PollOutcome] | None:
    if table is None or chain is None or chain not in table:
        return None
    return list(table[chain])


def _poll_details(
    title: str,
    label: str,
    alert_type: AlertType,
    chain: str | None,
    outcomes: list[PollOutcome] | None,
    *,
    now: float,
    grace_seconds: float,
) -> list[str]:
    if outcomes is None:
        return ["", f"No {title.lower()} data found for chain {chain}."]

    lines = [""]
    if alert_type in _RECOVERY_TYPES:
        lines.append(f"{title}s have recovered on chain {chain}")
    else:
        lines.append(f"{title} Details ({chain}):")
        judge = outcome_judge(now, grace_seconds)
        bad = [o for o in outcomes if judge(o) is Verdict.BAD]
        if bad:
            lines += ["", f"Missed {title}s:"]
            lines += _outcome_lines(label, bad)
    recent = [o for o in outcomes if o.status != OutcomeStatus.UNKNOWN]
    lines += ["", f"Recent {title}s:"]
    lines += _outcome_lines(label, recent[:RECENT_SAMPLE_SIZE])
    return lines


def format_alert_message(
    alert_type: AlertType,
    headline: str,
    snapshot: MetricsSnapshot,
    *,
    now: float,
    chain: str | None = None,
    consecutive_missed: int | None = None,
    grace_seconds: float = 0.0,
) -> str:
    lines = [headline, "", f"Timestamp: {_iso(now)}"]
    if snapshot.moniker:
        lines.append(f"Validator: {snapshot.moniker}")

    if alert_type in _BLOCK_TYPES:
        total = snapshot.total_signed + snapshot.total_missed
        rate = success_rate(snapshot.total_signed, snapshot.total_missed)
        lines += [
            "",
            "Block Metrics:",
            f"- Height: {snapshot.last_block}",
            f"- Signed: {snapshot.total_signed}/{total} ({rate:.2f}%)",
        ]
        if consecutive_missed is not None:
            lines.append(f"- Consecutive missed: {consecutive_missed}")
    elif alert_type in _HEARTBEAT_TYPES:
        total = snapshot.heartbeats_signed + snapshot.heartbeats_missed
        rate = success_rate(snapshot.heartbeats_signed, snapshot.heartbeats_missed)
        lines += [
            "",
            "Heartbeat Metrics:",
            f"- Current period: {snapshot.last_heartbeat_period}",
            f"- Signed: {snapshot.heartbeats_signed}/{total} ({rate:.2f}%)",
        ]
        if consecutive_missed is not None:
            lines.append(f"- Consecutive missed: {consecutive_missed}")
    elif alert_type == AlertType.NODE_DISCONNECTED:
        lines += [
            "",
            "Connection Error:",
            snapshot.last_error or "Unknown error",
            f"Last seen: {_iso(snapshot.last_block_time)}",
        ]
    elif alert_type == AlertType.NODE_RECONNECTED:
        lines += [
            "",
            "Node reconnected after being offline",
            f"- Current block height: {snapshot.last_block}",
            f"- Last block time: {_iso(snapshot.last_block_time)}",
        ]
    elif alert_type in _EVM_VOTE_TYPES:
        lines += _poll_details(
            "EVM Vote",
            "Poll",
            alert_type,
            chain,
            _chain_outcomes(snapshot.evm_votes, chain),
            now=now,
            grace_seconds=grace_seconds,
        )
    elif alert_type in _AMPD_VOTE_TYPES:
        lines += _poll_details(
            "AMPD Vote",
            "Poll",
            alert_type,
            chain,
            _chain_outcomes(snapshot.ampd_votes, chain),
            now=now,
            grace_seconds=grace_seconds,
        )
    elif alert_type in _AMPD_SIGNING_TYPES:
        lines += _poll_details(
            "AMPD Signing",
            "Signing",
            alert_type,
            chain,
            _chain_outcomes(snapshot.ampd_signings, chain),
            now=now,
            grace_seconds=grace_seconds,
        )

    return "\n".join(lines) + "\n"


def metrics_excerpt(
    alert_type: AlertType, snapshot: MetricsSnapshot, chain: str | None = None
) -> dict[str, Any]:
    """Partial snapshot attached to an alert; large histories are left out."""
    excerpt: dict[str, Any] = {
        "moniker": snapshot.moniker,
        "chain_id": snapshot.chain_id,
        "last_block": snapshot.last_block,
        "connected": snapshot.connected,
    }
    if alert_type in _BLOCK_TYPES:
        excerpt.update(
            total_signed=snapshot.total_signed,
            total_missed=snapshot.total_missed,
            sign_rate=success_rate(snapshot.total_signed, snapshot.total_missed),
            recent_block_statuses=[
                int(s) for s in (snapshot.block_statuses or ())[:RECENT_SAMPLE_SIZE]
            ],
        )
    elif alert_type in _HEARTBEAT_TYPES:
        excerpt.update(
            heartbeats_signed=snapshot.heartbeats_signed,
            heartbeats_missed=snapshot.heartbeats_missed,
            heartbeat_rate=success_rate(
                snapshot.heartbeats_signed, snapshot.heartbeats_missed
            ),
            last_heartbeat_period=snapshot.last_heartbeat_period,
            recent_heartbeat_statuses=[
                int(s)
                for s in (snapshot.heartbeat_statuses or ())[:RECENT_SAMPLE_SIZE]
            ],
        )
    elif alert_type in (AlertType.NODE_DISCONNECTED, AlertType.NODE_RECONNECTED):
        excerpt.update(
            last_error=snapshot.last_error,
            last_block_time=snapshot.last_block_time,
        )
    else:
        table = None
        if alert_type in _EVM_VOTE_TYPES:
            table = snapshot.evm_votes
        elif alert_type in _AMPD_VOTE_TYPES:
            table = snapshot.ampd_votes
        elif alert_type in _AMPD_SIGNING_TYPES:
            table = snapshot.ampd_signings
        outcomes = _chain_outcomes(table, chain) or []
        excerpt.update(
            chain=chain,
            recent_outcomes=[o.as_dict() for o in outcomes[:RECENT_SAMPLE_SIZE]],
        )
    return excerpt
