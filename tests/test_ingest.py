"""Tests for NATS chain-event decoding and the block feed watchdog."""

import json

import pytest

from core.metrics.snapshot import OutcomeStatus
from core.monitoring.block_watcher import BlockFeedWatcher
from core.nats.ingest import (
    BlockEvent,
    ChainEventIngest,
    ConnectionEvent,
    PollUpdate,
    TxEvent,
)


class FakeSubscription:
    def __init__(self):
        self.unsubscribed = False

    async def unsubscribe(self):
        self.unsubscribed = True


class FakeNats:
    def __init__(self):
        self.subscriptions = []

    async def subscribe(self, subject, cb=None):
        subscription = FakeSubscription()
        self.subscriptions.append((subject, cb, subscription))
        return subscription


class FakeMsg:
    def __init__(self, subject, payload):
        self.subject = subject
        self.data = json.dumps(payload).encode()


class EventSink:
    def __init__(self):
        self.events = []

    async def __call__(self, event):
        self.events.append(event)


def make_ingest(prefix="validator"):
    sink = EventSink()
    return ChainEventIngest(FakeNats(), sink, subject_prefix=prefix), sink


@pytest.mark.asyncio
async def test_subscribes_to_prefix_wildcard_and_unsubscribes():
    ingest, _ = make_ingest("axelar.mainnet")
    await ingest.start()

    subject, cb, subscription = ingest.nats_client.subscriptions[0]
    assert subject == "axelar.mainnet.>"
    assert cb is not None

    await ingest.stop()
    assert subscription.unsubscribed


@pytest.mark.asyncio
async def test_message_callback_forwards_block_event():
    ingest, sink = make_ingest()
    payload = {"block": {"header": {"height": "10"}}}

    await ingest._on_message(FakeMsg("validator.block", payload))  # noqa: SLF001

    assert sink.events == [BlockEvent(payload=payload)]


@pytest.mark.asyncio
async def test_tx_event_flat_and_tendermint_forms():
    ingest, sink = make_ingest()

    await ingest.handle_message(
        "validator.tx", json.dumps({"height": "12", "tx": "abc=", "log": "l"})
    )
    await ingest.handle_message(
        "validator.tx",
        json.dumps(
            {"TxResult": {"height": 13, "tx": "def=", "result": {"log": "sender val1"}}}
        ),
    )

    assert sink.events == [
        TxEvent(height=12, tx="abc=", log="l"),
        TxEvent(height=13, tx="def=", log="sender val1"),
    ]


@pytest.mark.asyncio
async def test_poll_update_parses_outcomes():
    ingest, sink = make_ingest()
    payload = {
        "chain": "Ethereum",
        "polls": [
            {"poll_id": "77", "result": "failed_on_chain", "timestamp": 1700000000},
            {"poll_id": "76", "result": "validated"},
        ],
    }

    event = await ingest.handle_message("validator.evm_votes", json.dumps(payload))

    assert isinstance(event, PollUpdate)
    assert event.kind == "evm_votes"
    assert event.chain == "ethereum"
    assert [o.status for o in event.outcomes] == [
        OutcomeStatus.INVALID,
        OutcomeStatus.VALID,
    ]
    assert event.outcomes[0].timestamp == pytest.approx(1700000000.0)


@pytest.mark.asyncio
async def test_signings_use_signings_key():
    ingest, sink = make_ingest()
    payload = {"chain": "flow", "signings": [{"signing_id": 5, "result": "signed"}]}

    await ingest.handle_message("validator.ampd_signings", json.dumps(payload))

    assert sink.events[0].outcomes[0].id == "5"


@pytest.mark.asyncio
async def test_connection_event():
    ingest, sink = make_ingest()
    await ingest.handle_message(
        "validator.connection", json.dumps({"connected": False, "error": "EOF"})
    )
    assert sink.events == [ConnectionEvent(connected=False, error="EOF")]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "subject,data",
    [
        ("validator.block", b"{not json"),
        ("validator.block", b"[1, 2]"),
        ("validator.tx", b'{"tx": "abc="}'),
        ("validator.evm_votes", b'{"chain": "ethereum", "polls": "oops"}'),
        ("validator.evm_votes", b'{"chain": "ethereum", "polls": ["oops"]}'),
    ],
)
async def test_undecodable_messages_are_dropped(subject, data, caplog):
    ingest, sink = make_ingest()

    assert await ingest.handle_message(subject, data) is None

    assert sink.events == []
    assert "Dropping undecodable message" in caplog.text


@pytest.mark.asyncio
async def test_unknown_subject_is_ignored():
    ingest, sink = make_ingest()
    assert await ingest.handle_message("validator.mempool", b"{}") is None
    assert sink.events == []


@pytest.mark.asyncio
async def test_block_watcher_reports_stale_feed_once():
    sink = EventSink()
    now = 1000.0

    def clock():
        return now

    watcher = BlockFeedWatcher(emit=sink, stale_after_seconds=60, clock=clock)
    assert await watcher.check_health() is True

    watcher.record_block()
    now = 1030.0
    assert await watcher.check_health() is True

    now = 1065.0
    assert await watcher.check_health() is False
    assert await watcher.check_health() is False
    assert sink.events == [
        ConnectionEvent(connected=False, error="No new block for 65 seconds")
    ]

    watcher.record_block()
    assert watcher.stale is False
    assert await watcher.check_health() is True
