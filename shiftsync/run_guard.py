from __future__ import annotations

import threading
from datetime import datetime
from enum import Enum

from shiftsync.models import utc_now


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class FeedRunGuard:
    """Explicit per-feed Idle/Running map; at most one run per feed at a time."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: dict[str, RunState] = {}
        self._last_attempt: dict[str, datetime] = {}

    def try_acquire(self, feed_id: str, now: datetime | None = None) -> bool:
        with self._lock:
            if self._states.get(feed_id) is RunState.RUNNING:
                return False
            self._states[feed_id] = RunState.RUNNING
            self._last_attempt[feed_id] = now or utc_now()
            return True

    def release(self, feed_id: str) -> None:
        with self._lock:
            if feed_id in self._states:
                self._states[feed_id] = RunState.IDLE

    def state(self, feed_id: str) -> RunState:
        with self._lock:
            return self._states.get(feed_id, RunState.IDLE)

    def last_attempt_at(self, feed_id: str) -> datetime | None:
        with self._lock:
            return self._last_attempt.get(feed_id)

    def forget(self, feed_id: str) -> None:
        with self._lock:
            if self._states.get(feed_id) is not RunState.RUNNING:
                self._states.pop(feed_id, None)
            self._last_attempt.pop(feed_id, None)

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return {feed_id: state.value for feed_id, state in self._states.items()}
