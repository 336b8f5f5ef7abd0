"""Heartbeat transaction detection over fixed block-height periods."""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Callable

from apps.heartbeat.history import HeartbeatHistory
from apps.heartbeat.period import (
    HeartbeatPeriod,
    HeartbeatStatus,
    period_bounds,
    period_index,
)

logger = logging.getLogger(__name__)

# Both message types must appear in the decoded tx for it to be a heartbeat.
HEARTBEAT_MESSAGE_MARKERS = (
    "/axelar.reward.v1beta1.RefundMsgRequest",
    "/axelar.tss.v1beta1.HeartBeatRequest",
)


@dataclass(slots=True, frozen=True)
class HeartbeatUpdate:
    """Period-finalized event, published once per period."""

    period_index: int
    start_height: int
    end_height: int
    status: HeartbeatStatus
    found_at_height: int | None = None
    final: bool = True

    @property
    def key(self) -> str:
        return f"{self.start_height}-{self.end_height}"

    def as_dict(self) -> dict:
        return {
            "period_index": self.period_index,
            "start_height": self.start_height,
            "end_height": self.end_height,
            "status": self.status.name.lower(),
            "found_at_height": self.found_at_height,
            "final": self.final,
        }


HeartbeatListener = Callable[[HeartbeatUpdate], None]


class HeartbeatDetector:
    """
    Decides, per period, whether the target address emitted a heartbeat.

    Every period reaches exactly one terminal status (signed or missed),
    published exactly once and never revised. The partial period that was
    in progress when observation started is never judged missed.
    """

    def __init__(
        self,
        *,
        target_address: str,
        period_length: int = 50,
        history_size: int = 700,
        detection_window: int = 10,
    ):
        if period_length <= 0:
            raise ValueError("period_length must be positive")
        self.target_address = target_address
        self.period_length = period_length
        self.detection_window = detection_window
        self.history = HeartbeatHistory(history_size)
        self._listeners: list[HeartbeatListener] = []
        self._periods: dict[int, HeartbeatPeriod] = {}
        self._current_index: int | None = None
        self._initialized = False
        self._window_warned: set[int] = set()

    @property
    def initialized(self) -> bool:
        return self._initialized

    def add_listener(self, listener: HeartbeatListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: HeartbeatListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def current_period(self) -> HeartbeatPeriod | None:
        if self._current_index is None:
            return None
        period = self._period(self._current_index)
        return HeartbeatPeriod(
            index=period.index,
            start_height=period.start_height,
            end_height=period.end_height,
            status=period.status,
            found_at_height=period.found_at_height,
        )

    def statuses(self) -> list[HeartbeatStatus]:
        return self.history.statuses()

    def found_at_heights(self) -> list[int | None]:
        return self.history.found_at_heights()

    def observe_transaction(
        self,
        height: int | str,
        raw_payload: str | None,
        result_log: str | None = None,
    ) -> HeartbeatUpdate | None:
        try:
            tx_height = int(height)
        except (TypeError, ValueError):
            logger.warning(f"Skipping transaction with invalid height: {height!r}")
            return None

        if not self._is_heartbeat_for_target(tx_height, raw_payload, result_log):
            return None

        index = period_index(tx_height, self.period_length)
        if self._current_index is None or index > self._current_index:
            # Periods only open as the block clock reaches them.
            self.observe_block(tx_height)
        if (
            self._current_index is not None
            and index < self._current_index - self.history.capacity
        ):
            logger.warning(
                f"Heartbeat at height {tx_height} is older than the tracked history, ignored"
            )
            return None
        period = self._period(index)
        if period.status == HeartbeatStatus.SIGNED:
            logger.debug(
                f"Duplicate heartbeat at height {tx_height} ignored "
                f"(period {period.key} already signed at {period.found_at_height})"
            )
            return None
        if period.status == HeartbeatStatus.MISSED:
            logger.warning(
                f"Late heartbeat at height {tx_height} ignored: "
                f"period {period.key} was already finalized as missed"
            )
            return None

        period.status = HeartbeatStatus.SIGNED
        period.found_at_height = tx_height
        logger.info(
            f"Heartbeat found for {self.target_address} at height {tx_height} "
            f"(period {period.key})"
        )
        return self._finalize(period)

    def observe_block(self, height: int | str | None) -> HeartbeatUpdate | None:
        try:
            block_height = int(height)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            logger.error(f"Invalid block height, block skipped: {height!r}")
            return None

        index = period_index(block_height, self.period_length)

        if self._current_index is None:
            self._current_index = index
            start, end = period_bounds(index, self.period_length)
            logger.info(
                f"Heartbeat detector started at block {block_height}, "
                f"period {index} ({start}-{end})"
            )
            return None

        update = None
        if index > self._current_index:
            previous = self._period(self._current_index)
            if not self._initialized:
                self._initialized = True
                logger.info(
                    f"Heartbeat detector initialized; checks start from period {index}"
                )
            elif not previous.finalized:
                previous.status = HeartbeatStatus.MISSED
                logger.warning(f"Heartbeat NOT found in period {previous.key}")
                update = self._finalize(previous)

            skipped = index - self._current_index - 1
            if skipped > 0:
                logger.warning(
                    f"Block stream jumped over {skipped} heartbeat period(s) "
                    f"before block {block_height}; those periods are not judged"
                )

            self._current_index = index
            self._prune(index)
            current = self._period(index)
            logger.info(f"New heartbeat period started: {current.key}")

        self._check_detection_window(block_height)
        return update

    def _is_heartbeat_for_target(
        self, height: int, raw_payload: str | None, result_log: str | None
    ) -> bool:
        if not raw_payload:
            return False

        try:
            decoded = base64.b64decode(raw_payload, validate=True).decode(
                "utf-8", errors="replace"
            )
        except (binascii.Error, ValueError, TypeError) as exc:
            logger.warning(f"Undecodable transaction payload at height {height}: {exc}")
            return False

        if not all(marker in decoded for marker in HEARTBEAT_MESSAGE_MARKERS):
            return False

        if self.target_address in decoded:
            return True
        return bool(result_log) and self.target_address in result_log

    def _check_detection_window(self, height: int) -> None:
        if not self._initialized or self._current_index is None:
            return
        period = self._period(self._current_index)
        if period.finalized or period.index in self._window_warned:
            return
        if height >= period.start_height + 1 + self.detection_window:
            self._window_warned.add(period.index)
            logger.warning(
                f"Heartbeat window ({self.detection_window} blocks) exceeded for "
                f"period {period.key}, detection chances reduced"
            )

    def _period(self, index: int) -> HeartbeatPeriod:
        period = self._periods.get(index)
        if period is None:
            start, end = period_bounds(index, self.period_length)
            period = HeartbeatPeriod(index=index, start_height=start, end_height=end)
            self._periods[index] = period
        return period

    def _prune(self, current_index: int) -> None:
        horizon = current_index - self.history.capacity
        for index in [i for i in self._periods if i < horizon]:
            del self._periods[index]
        self._window_warned = {i for i in self._window_warned if i >= current_index}

    def _finalize(self, period: HeartbeatPeriod) -> HeartbeatUpdate:
        self.history.push(period.status, period.found_at_height)
        update = HeartbeatUpdate(
            period_index=period.index,
            start_height=period.start_height,
            end_height=period.end_height,
            status=period.status,
            found_at_height=period.found_at_height,
        )
        for listener in list(self._listeners):
            try:
                listener(update)
            except Exception:
                logger.exception(f"Heartbeat listener failed for period {period.key}")
        return update
