"""Tests for consecutive-miss scans and success rates."""

import pytest

from apps.heartbeat.period import HeartbeatStatus
from apps.sentinel.scan import (
    consecutive_blocks_missed,
    consecutive_heartbeats_missed,
    consecutive_outcomes_missed,
    has_recorded_outcomes,
    success_rate,
)
from core.metrics.snapshot import BlockSignStatus, OutcomeStatus, PollOutcome

M = BlockSignStatus.MISSED
S = BlockSignStatus.SIGNED


def outcome(status, timestamp=None, poll_id="1"):
    return PollOutcome(id=poll_id, status=status, timestamp=timestamp)


def test_leading_run_stops_at_first_good_outcome():
    assert consecutive_blocks_missed([M, M, M, S, M, M, M, M]) == 3
    assert consecutive_blocks_missed([S, M, M]) == 0
    assert consecutive_blocks_missed([]) == 0


def test_prevote_and_precommit_only_count_as_missed():
    statuses = [BlockSignStatus.PREVOTE, BlockSignStatus.PRECOMMIT, BlockSignStatus.PROPOSED]
    assert consecutive_blocks_missed(statuses) == 2


def test_unknown_block_placeholders_are_skipped():
    statuses = [BlockSignStatus.UNKNOWN, M, BlockSignStatus.UNKNOWN, M, S]
    assert consecutive_blocks_missed(statuses) == 2


def test_heartbeat_run():
    statuses = [
        HeartbeatStatus.MISSED,
        HeartbeatStatus.UNKNOWN,
        HeartbeatStatus.MISSED,
        HeartbeatStatus.SIGNED,
        HeartbeatStatus.MISSED,
    ]
    assert consecutive_heartbeats_missed(statuses) == 2


def test_unsubmitted_within_grace_is_skipped_without_breaking_run():
    now = 1000.0
    outcomes = [
        outcome(OutcomeStatus.UNSUBMITTED, timestamp=990.0),
        outcome(OutcomeStatus.INVALID),
        outcome(OutcomeStatus.UNSUBMITTED, timestamp=500.0),
        outcome(OutcomeStatus.VALID),
        outcome(OutcomeStatus.INVALID),
    ]
    assert consecutive_outcomes_missed(outcomes, now=now, grace_seconds=60) == 2


def test_unsubmitted_without_timestamp_counts_as_missed():
    outcomes = [outcome(OutcomeStatus.UNSUBMITTED), outcome(OutcomeStatus.VALID)]
    assert consecutive_outcomes_missed(outcomes, now=0.0, grace_seconds=300) == 1


def test_has_recorded_outcomes_ignores_placeholders():
    assert not has_recorded_outcomes([outcome(OutcomeStatus.UNKNOWN)] * 3)
    assert has_recorded_outcomes([outcome(OutcomeStatus.UNKNOWN), outcome(OutcomeStatus.VALID)])


def test_success_rate_zero_observations_is_healthy():
    assert success_rate(0, 0) == pytest.approx(100.0)
    assert success_rate(97, 3) == pytest.approx(97.0)


def test_outcome_status_parsing():
    assert OutcomeStatus.parse("succeeded_on_chain") == OutcomeStatus.VALID
    assert OutcomeStatus.parse("FAILED_ON_CHAIN") == OutcomeStatus.INVALID
    assert OutcomeStatus.parse("unsubmit") == OutcomeStatus.UNSUBMITTED
    assert OutcomeStatus.parse(None) == OutcomeStatus.UNKNOWN
