from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timedelta
from functools import partial
from typing import Optional

from shiftsync.config_manager import ConfigManager
from shiftsync.errors import SyncError
from shiftsync.models import ExternalFeed, utc_now
from shiftsync.sync_engine import TRIGGER_SCHEDULED, SyncEngine


logger = logging.getLogger(__name__)

DEFAULT_TICK_SECONDS = 60


def feed_is_due(feed: ExternalFeed, now: datetime, last_attempt_at: datetime | None = None) -> bool:
    if feed.interval_minutes <= 0:
        return False
    marks = [mark for mark in (feed.last_synced_at, last_attempt_at) if mark is not None]
    if not marks:
        return True
    return now - max(marks) >= timedelta(minutes=feed.interval_minutes)


class SyncScheduler:
    def __init__(self, sync_engine: SyncEngine, config_manager: ConfigManager) -> None:
        self.sync_engine = sync_engine
        self.config_manager = config_manager
        self._thread: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        if not self.config_manager.load().scheduler.enabled:
            logger.info("Scheduler disabled by config; feeds sync on demand only")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="shiftsync-scheduler", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        self._wake_event.set()
        if self._thread:
            self._thread.join(timeout=5)
        with self._executor_lock:
            if self._executor is not None:
                # Queued runs are cancelled; their guards are released by _release_if_cancelled.
                self._executor.shutdown(wait=False, cancel_futures=True)
                self._executor = None

    def wake(self) -> None:
        self._wake_event.set()

    def status(self) -> dict[str, str]:
        return self.sync_engine.run_guard.snapshot()

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            try:
                tick_seconds = self.config_manager.load().scheduler.tick_seconds
            except Exception:
                logger.exception("Could not reload scheduler config; keeping the default tick")
                tick_seconds = DEFAULT_TICK_SECONDS
            self._wake_event.wait(timeout=tick_seconds)
            self._wake_event.clear()

    def _ensure_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._stop_event.is_set():
                raise RuntimeError("scheduler is stopped")
            if self._executor is None:
                max_workers = self.config_manager.load().scheduler.max_workers
                self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="shiftsync-feed")
            return self._executor

    def tick(self, now: datetime | None = None) -> dict[str, Future]:
        """Start a run for every due, idle feed and return the submitted futures."""
        now = now or utc_now()
        guard = self.sync_engine.run_guard
        started: dict[str, Future] = {}
        try:
            feeds = self.sync_engine.state_store.list_feeds()
        except Exception:
            logger.exception("Scheduler tick could not list feeds")
            return started

        for feed in feeds:
            if self._stop_event.is_set():
                break
            try:
                if not feed_is_due(feed, now, guard.last_attempt_at(feed.feed_id)):
                    continue
                if not guard.try_acquire(feed.feed_id, now=now):
                    logger.info("Feed %s is due but still running; skipped this tick", feed.feed_id)
                    continue
                try:
                    future = self._ensure_executor().submit(self._run_feed, feed.feed_id)
                except Exception:
                    guard.release(feed.feed_id)
                    raise
                future.add_done_callback(partial(self._release_if_cancelled, feed.feed_id))
                started[feed.feed_id] = future
            except Exception:
                logger.exception("Scheduler could not start feed %s", feed.feed_id)
        return started

    def _run_feed(self, feed_id: str) -> None:
        try:
            self.sync_engine.run_claimed(feed_id, trigger=TRIGGER_SCHEDULED)
        except SyncError as exc:
            logger.debug("Scheduled sync for feed %s ended with %s", feed_id, exc.__class__.__name__)
        except Exception:
            logger.exception("Scheduled sync for feed %s crashed", feed_id)
        finally:
            self.sync_engine.run_guard.release(feed_id)

    def _release_if_cancelled(self, feed_id: str, future: Future) -> None:
        if future.cancelled():
            logger.info("Scheduled sync for feed %s cancelled before it started", feed_id)
            self.sync_engine.run_guard.release(feed_id)
