from __future__ import annotations

import logging
import queue
import threading
from typing import Any


logger = logging.getLogger(__name__)

CALENDAR_CHANGE = "calendar-change"


class EventBus:
    """In-process fan-out with one bounded queue per subscriber.

    publish() never blocks: when a subscriber's queue is full the event is
    dropped for that subscriber and a warning is logged.
    """

    def __init__(self, queue_size: int = 100) -> None:
        self.queue_size = max(1, int(queue_size))
        self._lock = threading.Lock()
        self._subscribers: list[queue.Queue[dict[str, Any]]] = []

    def subscribe(self) -> queue.Queue[dict[str, Any]]:
        channel: queue.Queue[dict[str, Any]] = queue.Queue(maxsize=self.queue_size)
        with self._lock:
            self._subscribers.append(channel)
        return channel

    def unsubscribe(self, channel: queue.Queue[dict[str, Any]]) -> None:
        with self._lock:
            if channel in self._subscribers:
                self._subscribers.remove(channel)

    def publish(self, event: dict[str, Any]) -> int:
        with self._lock:
            subscribers = list(self._subscribers)
        delivered = 0
        for channel in subscribers:
            try:
                channel.put_nowait(dict(event))
                delivered += 1
            except queue.Full:
                logger.warning("Dropping %s event for a slow subscriber", event.get("type", "unknown"))
        return delivered

    def publish_calendar_change(self, calendar_id: str) -> int:
        return self.publish({"type": CALENDAR_CHANGE, "calendarId": calendar_id})
