"""Tests for the HTTP status endpoints."""

import pytest

import main
from apps.sentinel.service import MonitorService
from core.config import HeartbeatConfig, MonitorConfig
from core.metrics.snapshot import BlockSignStatus


class RecordingDispatcher:
    def __init__(self):
        self.alerts = []

    async def dispatch(self, alert):
        self.alerts.append(alert)
        return []


@pytest.fixture
def service():
    config = MonitorConfig(
        validator_address="AABBCC",
        moniker="val-one",
        heartbeat=HeartbeatConfig(target_address="axelar1broadcaster"),
    )
    svc = MonitorService(config, dispatcher=RecordingDispatcher())
    main.app.state.service = svc
    yield svc
    main.app.state.service = None


@pytest.mark.asyncio
async def test_liveness_and_root():
    assert await main.liveness() == {"status": "ok"}
    assert (await main.root())["service"] == "validator-sentinel"


@pytest.mark.asyncio
async def test_readiness_unavailable_before_start(service):
    response = await main.readiness()
    assert response.status_code == 503


@pytest.mark.asyncio
async def test_snapshot_endpoint_samples_histories(service):
    for height in range(1, 4):
        service.aggregator.record_block(height, BlockSignStatus.MISSED)

    data = await main.snapshot(sample_size=2)

    assert data["moniker"] == "val-one"
    assert data["block_statuses"] == [0, 0]
    assert data["last_block"] == 3


@pytest.mark.asyncio
async def test_alert_endpoints_expose_feed_and_state(service):
    for height in range(1, 4):
        service.aggregator.record_block(height, BlockSignStatus.MISSED)
    await service.engine.check(service.snapshot())
    await service.engine.stop()

    recent = await main.recent_alerts(limit=10)
    state = await main.alert_state()

    assert {a["type"] for a in recent} >= {"consecutive_blocks_missed"}
    blocks = [c for c in state["conditions"] if c["type"] == "consecutive_blocks_missed"]
    assert blocks[0]["active"] is True
    assert blocks[0]["last_severity"] == "warning"
    assert {"dimension": "blocks_missed", "chain": None, "consecutive_missed": 3} in state[
        "counters"
    ]


@pytest.mark.asyncio
async def test_endpoints_report_unavailable_without_service():
    main.app.state.service = None
    response = await main.snapshot()
    assert response.status_code == 503
