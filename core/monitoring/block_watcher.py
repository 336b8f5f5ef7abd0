"""Block feed watchdog that reports the node disconnected when blocks stop."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from core.nats.ingest import ConnectionEvent, EventSink

logger = logging.getLogger(__name__)


class BlockFeedWatcher:
    """Monitors block recency and emits a disconnect event on a stale feed."""

    def __init__(
        self,
        *,
        emit: EventSink,
        stale_after_seconds: float = 60,
        check_interval_seconds: float = 5,
        clock: Any = time.time,
    ):
        self.emit = emit
        self.stale_after_seconds = stale_after_seconds
        self.check_interval_seconds = check_interval_seconds
        self.clock = clock
        self.last_block_ts: float | None = None
        self.stale = False
        self._task: asyncio.Task[Any] | None = None

    def record_block(self) -> None:
        self.last_block_ts = float(self.clock())
        if self.stale:
            logger.info("Block feed resumed")
        self.stale = False

    async def check_health(self) -> bool:
        if self.last_block_ts is None:
            return True

        elapsed = float(self.clock()) - self.last_block_ts
        if elapsed <= self.stale_after_seconds:
            return True

        if not self.stale:
            self.stale = True
            logger.error(f"No new block for {int(elapsed)} seconds")
            await self.emit(
                ConnectionEvent(
                    connected=False,
                    error=f"No new block for {int(elapsed)} seconds",
                )
            )
        return False

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _loop(self) -> None:
        while True:
            try:
                await self.check_health()
            except Exception:
                logger.exception("Block feed health check failed")
            await asyncio.sleep(self.check_interval_seconds)
