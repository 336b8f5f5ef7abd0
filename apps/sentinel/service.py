"""Monitor service: ordered event consumption plus the periodic alert check."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from prometheus_client import CollectorRegistry

from apps.heartbeat.detector import HeartbeatDetector
from apps.sentinel.engine import AlertEngine
from core.alerting.feed import AlertFeed
from core.alerting.manager import NotificationDispatcher, build_channels
from core.chain.signatures import MalformedBlockError, classify_block
from core.config import MonitorConfig
from core.metrics.aggregator import MetricAggregator
from core.metrics.snapshot import MetricsSnapshot
from core.monitoring.block_watcher import BlockFeedWatcher
from core.nats.ingest import (
    BlockEvent,
    ChainEvent,
    ChainEventIngest,
    ConnectionEvent,
    PollUpdate,
    TxEvent,
)

logger = logging.getLogger(__name__)


class MonitorService:
    """
    Owns the detector, aggregator and alert engine for one validator.

    Chain events are applied by a single consumer task in arrival order,
    so detector and aggregator state is only ever mutated from one place.
    The alert engine reads snapshots on its own timer.
    """

    def __init__(
        self,
        config: MonitorConfig,
        *,
        dispatcher: NotificationDispatcher | None = None,
        feed: AlertFeed | None = None,
        registry: CollectorRegistry | None = None,
        clock: Any = time.time,
        queue_size: int = 10000,
    ):
        self.config = config
        self.clock = clock
        self.detector = HeartbeatDetector(
            target_address=config.heartbeat.target_address,
            period_length=config.heartbeat.period_length,
            history_size=config.heartbeat.history_size,
            detection_window=config.heartbeat.detection_window,
        )
        self.aggregator = MetricAggregator(
            chain_id=config.chain_id,
            moniker=config.moniker,
            blocks_history_size=config.blocks_history_size,
            heartbeat_history_size=config.heartbeat.history_size,
            clock=clock,
        )
        self.detector.add_listener(self.aggregator.record_heartbeat)
        self.feed = feed or AlertFeed()
        self.dispatcher = dispatcher or NotificationDispatcher(
            build_channels(config.notifications, registry=registry),
            timeout=config.notifications.timeout_seconds + 5,
        )
        self.engine = AlertEngine(
            thresholds=config.thresholds,
            dispatcher=self.dispatcher,
            feed=self.feed,
            clock=clock,
        )
        self.watcher = BlockFeedWatcher(
            emit=self.submit,
            stale_after_seconds=config.block_stale_seconds,
            check_interval_seconds=config.thresholds.check_interval_seconds,
            clock=clock,
        )
        self.queue: asyncio.Queue[ChainEvent] = asyncio.Queue(maxsize=queue_size)
        self.ingest: ChainEventIngest | None = None
        self._consumer: asyncio.Task[Any] | None = None

    async def submit(self, event: ChainEvent) -> None:
        await self.queue.put(event)

    def snapshot(self) -> MetricsSnapshot:
        return self.aggregator.snapshot()

    def apply(self, event: ChainEvent) -> None:
        """Apply one chain event to detector and aggregator state."""
        if isinstance(event, BlockEvent):
            try:
                height, status = classify_block(
                    event.payload, self.config.validator_address
                )
            except MalformedBlockError as exc:
                logger.warning(f"Skipping malformed block: {exc}")
                return
            self.aggregator.record_block(height, status)
            self.watcher.record_block()
            self.detector.observe_block(height)
        elif isinstance(event, TxEvent):
            self.detector.observe_transaction(event.height, event.tx, event.log)
        elif isinstance(event, PollUpdate):
            update = getattr(self.aggregator, f"update_{event.kind}")
            update(event.chain, event.outcomes)
        elif isinstance(event, ConnectionEvent):
            self.aggregator.set_connection(event.connected, event.error)
            if not event.connected:
                logger.error(f"Node disconnected: {event.error or 'unknown error'}")
        else:
            logger.warning(f"Unknown event type {type(event).__name__} ignored")

    async def start(self, nats_client: Any = None) -> None:
        if self._consumer is not None:
            return
        self._consumer = asyncio.create_task(self._consume())
        await self.watcher.start()
        await self.engine.start(self.snapshot)
        if nats_client is not None:
            self.ingest = ChainEventIngest(
                nats_client, self.submit, subject_prefix=self.config.nats_subject_prefix
            )
            await self.ingest.start()
        logger.info(
            f"Monitor service started for {self.config.moniker} "
            f"({self.config.validator_address})"
        )

    async def stop(self) -> None:
        if self.ingest is not None:
            await self.ingest.stop()
            self.ingest = None
        await self.watcher.stop()
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None
        await self.engine.stop()
        logger.info("Monitor service stopped")

    @property
    def healthy(self) -> bool:
        return self._consumer is not None and self.engine.running

    async def _consume(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                self.apply(event)
            except Exception:
                logger.exception(f"Failed to apply {type(event).__name__}")
            finally:
                self.queue.task_done()
