from __future__ import annotations

import logging
import time

from shiftsync.config_manager import ConfigManager
from shiftsync.errors import ConcurrentRunSkipped, SyncError
from shiftsync.event_bus import EventBus
from shiftsync.feed_fetcher import FeedFetcher
from shiftsync.feed_parser import parse_feed_document
from shiftsync.models import ExternalFeed, SyncStats, utc_now
from shiftsync.reconciler import build_plan
from shiftsync.run_guard import FeedRunGuard
from shiftsync.state_store import StateStore
from shiftsync.sync_log import SyncLog


logger = logging.getLogger(__name__)

TRIGGER_MANUAL = "manual"
TRIGGER_SCHEDULED = "scheduled"


class SyncEngine:
    """Runs the fetch, parse, diff, apply and log pipeline for one feed."""

    def __init__(
        self,
        config_manager: ConfigManager,
        state_store: StateStore,
        event_bus: EventBus | None = None,
        run_guard: FeedRunGuard | None = None,
    ) -> None:
        self.config_manager = config_manager
        self.state_store = state_store
        self.event_bus = event_bus
        self.run_guard = run_guard or FeedRunGuard()
        self.sync_log = SyncLog(state_store)

    def run_sync(self, feed_id: str, trigger: str = TRIGGER_MANUAL) -> SyncStats:
        """Run one feed now, bypassing its interval but not the one-run-per-feed guard."""
        if not self.run_guard.try_acquire(feed_id):
            logger.info("Sync for feed %s skipped: previous run still in flight", feed_id)
            raise ConcurrentRunSkipped(feed_id)
        try:
            return self.run_claimed(feed_id, trigger=trigger)
        finally:
            self.run_guard.release(feed_id)

    def run_claimed(self, feed_id: str, trigger: str = TRIGGER_SCHEDULED) -> SyncStats:
        """Run a feed whose guard the caller already holds. Failures are logged, then re-raised."""
        try:
            feed = self.state_store.get_feed(feed_id)
        except SyncError as exc:
            # No feed row to attach a log entry to.
            logger.warning("Sync for feed %s (%s) could not load the feed: %s", feed_id, trigger, exc)
            raise
        started = time.monotonic()
        try:
            stats = self._execute(feed)
        except SyncError as exc:
            message = str(exc) or exc.__class__.__name__
            logger.warning("Sync failed for feed %s (%s): %s", feed.feed_id, trigger, message)
            self.sync_log.record_error(feed, message, trigger=trigger)
            raise
        except Exception as exc:
            message = f"unexpected error: {exc}"
            logger.exception("Sync crashed for feed %s (%s)", feed.feed_id, trigger)
            self.sync_log.record_error(feed, message, trigger=trigger)
            raise SyncError(message) from exc

        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info("Synced feed %s (%s) in %dms: %s", feed.feed_id, trigger, duration_ms, stats.summary())
        self.sync_log.record_success(feed, stats, trigger=trigger)
        return stats

    def _execute(self, feed: ExternalFeed) -> SyncStats:
        config = self.config_manager.load()
        raw_ical = FeedFetcher(config.fetch).fetch(feed.url)
        parsed = parse_feed_document(
            raw_ical,
            timezone_name=config.sync.timezone,
            untitled=config.sync.untitled_title,
        )
        if parsed.skipped:
            logger.debug("Feed %s: skipped %d untrackable events", feed.feed_id, parsed.skipped)

        existing = self.state_store.list_synced_records(feed.feed_id)
        plan = build_plan(existing, parsed.events, color=feed.color)
        stats = self.state_store.apply_sync_plan(feed, plan, synced_at=utc_now())
        stats.total_seen = parsed.total_seen
        self._notify_calendar_change(feed.calendar_id)
        return stats

    def _notify_calendar_change(self, calendar_id: str) -> None:
        if self.event_bus is None:
            return
        try:
            self.event_bus.publish_calendar_change(calendar_id)
        except Exception:
            logger.exception("Failed to publish calendar-change for %s", calendar_id)
