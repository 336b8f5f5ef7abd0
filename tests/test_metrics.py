"""Tests for block classification and metric aggregation."""

import pytest

from apps.heartbeat.detector import HeartbeatUpdate
from apps.heartbeat.period import HeartbeatStatus
from core.chain.signatures import MalformedBlockError, classify_block, commit_signers
from core.metrics.aggregator import MetricAggregator
from core.metrics.snapshot import BlockSignStatus, OutcomeStatus, PollOutcome

VALIDATOR = "ABCDEF0123"


def block(height, proposer="OTHER", signers=(VALIDATOR,)):
    return {
        "block": {
            "header": {"height": str(height), "proposer_address": proposer},
            "last_commit": {
                "signatures": [{"validator_address": s} for s in signers]
                + [{"validator_address": None, "block_id_flag": 1}]
            },
        }
    }


def test_classify_proposed_signed_and_missed():
    assert classify_block(block(10, proposer=VALIDATOR), VALIDATOR) == (
        10,
        BlockSignStatus.PROPOSED,
    )
    assert classify_block(block(11), VALIDATOR.lower()) == (11, BlockSignStatus.SIGNED)
    assert classify_block(block(12, signers=("FFFF",)), VALIDATOR) == (
        12,
        BlockSignStatus.MISSED,
    )


def test_classify_accepts_bare_block():
    assert classify_block(block(13)["block"], VALIDATOR)[1] == BlockSignStatus.SIGNED


def test_malformed_block_raises():
    with pytest.raises(MalformedBlockError):
        classify_block({"block": {"header": {}}}, VALIDATOR)
    with pytest.raises(MalformedBlockError):
        commit_signers({"block": {"last_commit": ["not", "a", "dict"]}})


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def test_snapshot_before_any_data_reports_missing_dimensions():
    snapshot = MetricAggregator().snapshot()
    assert snapshot.block_statuses is None
    assert snapshot.heartbeat_statuses is None
    assert snapshot.connected is None
    assert snapshot.evm_votes is None


def test_block_totals_and_ordering():
    aggregator = MetricAggregator(blocks_history_size=5, clock=FakeClock())
    aggregator.record_block(1, BlockSignStatus.SIGNED)
    aggregator.record_block(2, BlockSignStatus.PROPOSED)
    aggregator.record_block(3, BlockSignStatus.PREVOTE)
    aggregator.record_block(4, BlockSignStatus.MISSED)

    snapshot = aggregator.snapshot()

    assert snapshot.block_statuses[:4] == (
        BlockSignStatus.MISSED,
        BlockSignStatus.PREVOTE,
        BlockSignStatus.PROPOSED,
        BlockSignStatus.SIGNED,
    )
    assert len(snapshot.block_statuses) == 5
    assert snapshot.total_signed == 2
    assert snapshot.total_proposed == 1
    assert snapshot.total_missed == 2
    assert snapshot.prevote_missed == 1
    assert snapshot.last_block == 4
    assert snapshot.last_block_time == pytest.approx(100.0)
    assert snapshot.connected is True


def test_duplicate_block_is_ignored():
    aggregator = MetricAggregator(blocks_history_size=5)
    aggregator.record_block(7, BlockSignStatus.MISSED)
    aggregator.record_block(7, BlockSignStatus.SIGNED)

    snapshot = aggregator.snapshot()
    assert snapshot.block_statuses[0] == BlockSignStatus.MISSED
    assert snapshot.total_signed == 0


def test_heartbeat_updates_feed_history():
    aggregator = MetricAggregator(heartbeat_history_size=4)
    aggregator.record_heartbeat(
        HeartbeatUpdate(
            period_index=3,
            start_height=150,
            end_height=199,
            status=HeartbeatStatus.SIGNED,
            found_at_height=152,
        )
    )
    aggregator.record_heartbeat(
        HeartbeatUpdate(
            period_index=4,
            start_height=200,
            end_height=249,
            status=HeartbeatStatus.MISSED,
        )
    )

    snapshot = aggregator.snapshot()
    assert snapshot.heartbeat_statuses[:2] == (
        HeartbeatStatus.MISSED,
        HeartbeatStatus.SIGNED,
    )
    assert snapshot.heartbeat_found_at[:2] == (None, 152)
    assert snapshot.heartbeats_signed == 1
    assert snapshot.heartbeats_missed == 1
    assert snapshot.last_heartbeat_period == 4


def test_poll_tables_are_keyed_by_lowercase_chain_and_truncated():
    aggregator = MetricAggregator(poll_history_size=2)
    outcomes = [
        PollOutcome.from_payload({"poll_id": i, "result": "validated"}) for i in range(5)
    ]
    aggregator.update_evm_votes("Ethereum", outcomes)

    snapshot = aggregator.snapshot()
    assert list(snapshot.evm_votes) == ["ethereum"]
    assert len(snapshot.evm_votes["ethereum"]) == 2
    assert snapshot.evm_votes["ethereum"][0].status == OutcomeStatus.VALID
    assert snapshot.ampd_votes is None


def test_connection_state_keeps_last_error():
    aggregator = MetricAggregator()
    aggregator.set_connection(False, "connection refused")
    aggregator.set_connection(True)

    snapshot = aggregator.snapshot()
    assert snapshot.connected is True
    assert snapshot.last_error == "connection refused"


def test_snapshot_as_dict_samples_histories():
    aggregator = MetricAggregator(blocks_history_size=50)
    aggregator.record_block(1, BlockSignStatus.SIGNED)

    data = aggregator.snapshot().as_dict(sample_size=3)
    assert data["block_statuses"] == [3, -1, -1]
    assert data["heartbeat_statuses"] is None
