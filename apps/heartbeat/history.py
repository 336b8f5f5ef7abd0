"""Fixed-capacity, newest-first record of finalized heartbeat periods."""

from __future__ import annotations

from collections import deque

from apps.heartbeat.period import HeartbeatStatus


class HeartbeatHistory:
    """Ring buffer of period statuses with a parallel buffer of found heights."""

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError("history capacity must be positive")
        self.capacity = capacity
        self._statuses: deque[HeartbeatStatus] = deque(
            [HeartbeatStatus.UNKNOWN] * capacity, maxlen=capacity
        )
        self._found_at: deque[int | None] = deque([None] * capacity, maxlen=capacity)

    def push(self, status: HeartbeatStatus, found_at_height: int | None) -> None:
        self._statuses.appendleft(status)
        self._found_at.appendleft(found_at_height)

    def statuses(self) -> list[HeartbeatStatus]:
        return list(self._statuses)

    def found_at_heights(self) -> list[int | None]:
        return list(self._found_at)

    def __len__(self) -> int:
        return len(self._statuses)
