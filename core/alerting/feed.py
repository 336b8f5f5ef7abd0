"""Live alert feed with non-blocking fan-out to subscribers."""

from __future__ import annotations

import asyncio
import logging
from collections import deque

from core.alerting.manager import Alert

logger = logging.getLogger(__name__)


class AlertFeed:
    """Keeps recent alerts and pushes new ones to subscriber queues."""

    def __init__(self, *, recent_size: int = 100, queue_size: int = 100):
        self.queue_size = queue_size
        self._recent: deque[Alert] = deque(maxlen=recent_size)
        self._subscribers: list[asyncio.Queue[Alert]] = []

    def subscribe(self) -> asyncio.Queue[Alert]:
        queue: asyncio.Queue[Alert] = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[Alert]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, alert: Alert) -> None:
        self._recent.appendleft(alert)
        for queue in self._subscribers:
            if queue.full():
                # Slow consumer: drop its oldest alert rather than block the engine.
                queue.get_nowait()
                logger.warning("Alert feed subscriber is lagging; oldest alert dropped")
            queue.put_nowait(alert)

    def recent(self, limit: int | None = None) -> list[Alert]:
        alerts = list(self._recent)
        return alerts if limit is None else alerts[:limit]
