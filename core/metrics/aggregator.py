"""Continuous bookkeeping that turns chain events into a metrics snapshot."""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Any, Iterable

from apps.heartbeat.detector import HeartbeatUpdate
from apps.heartbeat.period import HeartbeatStatus
from core.metrics.snapshot import BlockSignStatus, MetricsSnapshot, PollOutcome

logger = logging.getLogger(__name__)


class MetricAggregator:
    """Accumulates sign statuses, heartbeat outcomes and poll lists."""

    def __init__(
        self,
        *,
        chain_id: str = "axelar",
        moniker: str = "My Validator",
        blocks_history_size: int = 35000,
        heartbeat_history_size: int = 700,
        poll_history_size: int = 35,
        clock: Any = time.time,
    ):
        self.chain_id = chain_id
        self.moniker = moniker
        self.poll_history_size = poll_history_size
        self.clock = clock
        self._block_statuses: deque[BlockSignStatus] = deque(
            [BlockSignStatus.UNKNOWN] * blocks_history_size,
            maxlen=blocks_history_size,
        )
        self._blocks_seen = False
        self._heartbeat_statuses: deque[HeartbeatStatus] = deque(
            [HeartbeatStatus.UNKNOWN] * heartbeat_history_size,
            maxlen=heartbeat_history_size,
        )
        self._heartbeat_found_at: deque[int | None] = deque(
            [None] * heartbeat_history_size, maxlen=heartbeat_history_size
        )
        self._heartbeats_seen = False
        self.last_block = 0
        self.last_block_time: float | None = None
        self.last_heartbeat_period = 0
        self.last_heartbeat_time: float | None = None
        self.connected: bool | None = None
        self.last_error = ""
        self._evm_votes: dict[str, tuple[PollOutcome, ...]] | None = None
        self._ampd_votes: dict[str, tuple[PollOutcome, ...]] | None = None
        self._ampd_signings: dict[str, tuple[PollOutcome, ...]] | None = None

    def record_block(self, height: int, status: BlockSignStatus) -> None:
        if self._blocks_seen and height <= self.last_block:
            logger.warning(
                f"Duplicate or out-of-order block {height} (last {self.last_block}) ignored"
            )
            return
        self._block_statuses.appendleft(status)
        self._blocks_seen = True
        self.last_block = height
        self.last_block_time = float(self.clock())
        self.connected = True
        logger.debug(f"Block {height}: {status.name}")

    def record_heartbeat(self, update: HeartbeatUpdate) -> None:
        if not update.final:
            return
        self._heartbeat_statuses.appendleft(update.status)
        self._heartbeat_found_at.appendleft(update.found_at_height)
        self._heartbeats_seen = True
        self.last_heartbeat_period = update.period_index
        self.last_heartbeat_time = float(self.clock())
        logger.info(
            f"Heartbeat period {update.period_index} ({update.key}): "
            f"{update.status.name}"
        )

    def set_connection(self, connected: bool, error: str = "") -> None:
        self.connected = connected
        if error:
            self.last_error = error

    def update_evm_votes(self, chain: str, outcomes: Iterable[PollOutcome]) -> None:
        self._evm_votes = self._replace_chain(self._evm_votes, chain, outcomes)

    def update_ampd_votes(self, chain: str, outcomes: Iterable[PollOutcome]) -> None:
        self._ampd_votes = self._replace_chain(self._ampd_votes, chain, outcomes)

    def update_ampd_signings(
        self, chain: str, outcomes: Iterable[PollOutcome]
    ) -> None:
        self._ampd_signings = self._replace_chain(self._ampd_signings, chain, outcomes)

    def _replace_chain(
        self,
        table: dict[str, tuple[PollOutcome, ...]] | None,
        chain: str,
        outcomes: Iterable[PollOutcome],
    ) -> dict[str, tuple[PollOutcome, ...]]:
        updated = dict(table or {})
        updated[chain.lower()] = tuple(outcomes)[: self.poll_history_size]
        return updated

    def snapshot(self) -> MetricsSnapshot:
        total_signed = total_missed = total_proposed = 0
        prevote_missed = precommit_missed = 0
        for status in self._block_statuses:
            if status == BlockSignStatus.UNKNOWN:
                continue
            if status.is_signed:
                total_signed += 1
                if status == BlockSignStatus.PROPOSED:
                    total_proposed += 1
            else:
                total_missed += 1
                if status == BlockSignStatus.PREVOTE:
                    prevote_missed += 1
                elif status == BlockSignStatus.PRECOMMIT:
                    precommit_missed += 1

        heartbeats_signed = sum(
            1 for s in self._heartbeat_statuses if s == HeartbeatStatus.SIGNED
        )
        heartbeats_missed = sum(
            1 for s in self._heartbeat_statuses if s == HeartbeatStatus.MISSED
        )

        return MetricsSnapshot(
            chain_id=self.chain_id,
            moniker=self.moniker,
            last_block=self.last_block,
            last_block_time=self.last_block_time,
            block_statuses=tuple(self._block_statuses) if self._blocks_seen else None,
            total_signed=total_signed,
            total_missed=total_missed,
            total_proposed=total_proposed,
            prevote_missed=prevote_missed,
            precommit_missed=precommit_missed,
            heartbeat_statuses=(
                tuple(self._heartbeat_statuses) if self._heartbeats_seen else None
            ),
            heartbeat_found_at=tuple(self._heartbeat_found_at),
            heartbeats_signed=heartbeats_signed,
            heartbeats_missed=heartbeats_missed,
            last_heartbeat_period=self.last_heartbeat_period,
            last_heartbeat_time=self.last_heartbeat_time,
            connected=self.connected,
            last_error=self.last_error,
            evm_votes=dict(self._evm_votes) if self._evm_votes is not None else None,
            ampd_votes=dict(self._ampd_votes) if self._ampd_votes is not None else None,
            ampd_signings=(
                dict(self._ampd_signings) if self._ampd_signings is not None else None
            ),
        )
