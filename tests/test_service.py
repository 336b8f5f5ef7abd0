"""End-to-end tests for the monitor service event pipeline."""

import asyncio
import base64

import pytest

from apps.heartbeat.detector import HEARTBEAT_MESSAGE_MARKERS
from apps.heartbeat.period import HeartbeatStatus
from apps.sentinel.service import MonitorService
from core.alerting.manager import AlertSeverity, AlertType
from core.config import HeartbeatConfig, MonitorConfig, Thresholds
from core.metrics.snapshot import BlockSignStatus, OutcomeStatus, PollOutcome
from core.nats.ingest import BlockEvent, ConnectionEvent, PollUpdate, TxEvent

VALIDATOR = "AABBCC"


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class RecordingDispatcher:
    def __init__(self):
        self.alerts = []

    async def dispatch(self, alert):
        self.alerts.append(alert)
        return []


def make_config(**threshold_overrides):
    return MonitorConfig(
        validator_address=VALIDATOR,
        moniker="val-one",
        heartbeat=HeartbeatConfig(target_address="axelar1broadcaster", period_length=50),
        thresholds=Thresholds(**threshold_overrides),
    )


def block_event(height, signed=True):
    signers = [{"validator_address": VALIDATOR}] if signed else []
    return BlockEvent(
        payload={
            "block": {
                "header": {"height": str(height), "proposer_address": "OTHER"},
                "last_commit": {"signatures": signers},
            }
        }
    )


def heartbeat_event(height):
    raw = " ".join([*HEARTBEAT_MESSAGE_MARKERS, "axelar1broadcaster"])
    return TxEvent(height=height, tx=base64.b64encode(raw.encode()).decode())


def make_service(**threshold_overrides):
    dispatcher = RecordingDispatcher()
    service = MonitorService(
        make_config(**threshold_overrides), dispatcher=dispatcher, clock=FakeClock()
    )
    return service, dispatcher


def test_apply_routes_events_to_detector_and_aggregator():
    service, _ = make_service()

    service.apply(block_event(120))
    service.apply(heartbeat_event(121))
    service.apply(block_event(150, signed=False))
    service.apply(
        PollUpdate(
            kind="ampd_votes",
            chain="flow",
            outcomes=(PollOutcome(id="9", status=OutcomeStatus.VALID),),
        )
    )

    snapshot = service.snapshot()
    assert snapshot.last_block == 150
    assert snapshot.block_statuses[:2] == (BlockSignStatus.MISSED, BlockSignStatus.SIGNED)
    assert snapshot.heartbeat_statuses[0] == HeartbeatStatus.SIGNED
    assert snapshot.heartbeat_found_at[0] == 121
    assert snapshot.ampd_votes["flow"][0].id == "9"
    assert snapshot.connected is True


def test_missed_heartbeat_period_reaches_snapshot():
    service, _ = make_service()

    service.apply(block_event(120))
    service.apply(block_event(150))
    service.apply(block_event(200))

    assert service.snapshot().heartbeat_statuses[0] == HeartbeatStatus.MISSED
    assert service.snapshot().heartbeats_missed == 1


def test_malformed_block_is_skipped(caplog):
    service, _ = make_service()
    service.apply(BlockEvent(payload={"block": {"header": {}}}))

    assert service.snapshot().block_statuses is None
    assert "Skipping malformed block" in caplog.text


def test_connection_event_sets_error():
    service, _ = make_service()
    service.apply(ConnectionEvent(connected=False, error="No new block for 61 seconds"))

    snapshot = service.snapshot()
    assert snapshot.connected is False
    assert snapshot.last_error == "No new block for 61 seconds"


@pytest.mark.asyncio
async def test_running_service_raises_alert_from_queued_events():
    service, dispatcher = make_service(check_interval_seconds=0.01)
    await service.start()
    try:
        for height in range(1, 5):
            await service.submit(block_event(height, signed=False))
        await service.queue.join()
        for _ in range(50):
            if dispatcher.alerts:
                break
            await asyncio.sleep(0.01)
        assert service.healthy
    finally:
        await service.stop()

    types = {(a.type, a.severity) for a in dispatcher.alerts}
    assert (AlertType.CONSECUTIVE_BLOCKS_MISSED, AlertSeverity.WARNING) in types
    assert service.feed.recent()
    assert not service.healthy
