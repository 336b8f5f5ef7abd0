"""Ordered-sequence scans and rates used by the alert engine."""

from __future__ import annotations

from enum import Enum
from typing import Callable, Iterable, TypeVar

from apps.heartbeat.period import HeartbeatStatus
from core.metrics.snapshot import BlockSignStatus, OutcomeStatus, PollOutcome

T = TypeVar("T")


class Verdict(Enum):
    GOOD = "good"
    BAD = "bad"
    SKIP = "skip"


def leading_bad_run(items: Iterable[T], judge: Callable[[T], Verdict]) -> int:
    """
    Length of the run of bad items counted from the most recent backward.

    Skipped items neither count nor break the run; the first good item ends it.
    """
    count = 0
    for item in items:
        verdict = judge(item)
        if verdict is Verdict.GOOD:
            break
        if verdict is Verdict.BAD:
            count += 1
    return count


def judge_block(status: BlockSignStatus) -> Verdict:
    if status == BlockSignStatus.UNKNOWN:
        return Verdict.SKIP
    return Verdict.GOOD if status.is_signed else Verdict.BAD


def judge_heartbeat(status: HeartbeatStatus) -> Verdict:
    if status == HeartbeatStatus.SIGNED:
        return Verdict.GOOD
    if status == HeartbeatStatus.MISSED:
        return Verdict.BAD
    return Verdict.SKIP


def outcome_judge(now: float, grace_seconds: float) -> Callable[[PollOutcome], Verdict]:
    """Judge for poll outcomes where unsubmitted is bad only past the grace period."""

    def judge(outcome: PollOutcome) -> Verdict:
        if outcome.status == OutcomeStatus.VALID:
            return Verdict.GOOD
        if outcome.status == OutcomeStatus.INVALID:
            return Verdict.BAD
        if outcome.status == OutcomeStatus.UNSUBMITTED:
            # No observation time means the age is unknown; count it as overdue.
            if outcome.timestamp is None or now - outcome.timestamp > grace_seconds:
                return Verdict.BAD
        return Verdict.SKIP

    return judge


def consecutive_blocks_missed(statuses: Iterable[BlockSignStatus]) -> int:
    return leading_bad_run(statuses, judge_block)


def consecutive_heartbeats_missed(statuses: Iterable[HeartbeatStatus]) -> int:
    return leading_bad_run(statuses, judge_heartbeat)


def consecutive_outcomes_missed(
    outcomes: Iterable[PollOutcome], *, now: float, grace_seconds: float
) -> int:
    return leading_bad_run(outcomes, outcome_judge(now, grace_seconds))


def has_recorded_outcomes(outcomes: Iterable[PollOutcome]) -> bool:
    return any(outcome.status != OutcomeStatus.UNKNOWN for outcome in outcomes)


def success_rate(good: int, bad: int) -> float:
    """Percentage of good observations; no observations counts as healthy."""
    total = good + bad
    if total <= 0:
        return 100.0
    return good / total * 100.0
