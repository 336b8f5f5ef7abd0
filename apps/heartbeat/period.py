"""Fixed-width block-height periods used for heartbeat accounting."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class HeartbeatStatus(IntEnum):
    """Outcome of a heartbeat period."""

    UNKNOWN = -1
    MISSED = 0
    SIGNED = 1


@dataclass(slots=True)
class HeartbeatPeriod:
    index: int
    start_height: int
    end_height: int
    status: HeartbeatStatus = HeartbeatStatus.UNKNOWN
    found_at_height: int | None = None

    @property
    def key(self) -> str:
        return f"{self.start_height}-{self.end_height}"

    @property
    def finalized(self) -> bool:
        return self.status != HeartbeatStatus.UNKNOWN


def period_index(height: int, period_length: int) -> int:
    if period_length <= 0:
        raise ValueError("period_length must be positive")
    return height // period_length


def period_bounds(index: int, period_length: int) -> tuple[int, int]:
    start = index * period_length
    return start, start + period_length - 1


def period_for_height(height: int, period_length: int) -> HeartbeatPeriod:
    index = period_index(height, period_length)
    start, end = period_bounds(index, period_length)
    return HeartbeatPeriod(index=index, start_height=start, end_height=end)
