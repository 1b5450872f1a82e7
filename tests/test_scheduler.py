import tempfile
import threading
import time
import unittest
from concurrent.futures import wait
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest import mock

from shiftsync.config_manager import ConfigManager
from shiftsync.errors import FetchFailed
from shiftsync.feed_service import FeedService
from shiftsync.models import ExternalFeed
from shiftsync.scheduler import SyncScheduler, feed_is_due
from shiftsync.state_store import StateStore
from shiftsync.sync_engine import SyncEngine


ICS = (
    "BEGIN:VCALENDAR\r\nVERSION:2.0\r\nPRODID:-//Test//EN\r\n"
    "BEGIN:VEVENT\r\nUID:A\r\nSUMMARY:Early\r\nDTSTART:20260301T080000Z\r\nDTEND:20260301T160000Z\r\nEND:VEVENT\r\n"
    "END:VCALENDAR\r\n"
)
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _feed(interval: int, last_synced_at: datetime | None = None) -> ExternalFeed:
    return ExternalFeed(
        feed_id="f",
        calendar_id="c",
        name="n",
        url="https://icloud.com/x",
        interval_minutes=interval,
        last_synced_at=last_synced_at,
    )


class FeedIsDueTests(unittest.TestCase):
    def test_first_run_is_due_immediately(self) -> None:
        self.assertTrue(feed_is_due(_feed(60), NOW))

    def test_interval_elapsed(self) -> None:
        self.assertFalse(feed_is_due(_feed(60, NOW - timedelta(minutes=59)), NOW))
        self.assertTrue(feed_is_due(_feed(60, NOW - timedelta(minutes=60)), NOW))

    def test_zero_interval_means_manual_only(self) -> None:
        self.assertFalse(feed_is_due(_feed(0), NOW))

    def test_recent_failed_attempt_waits_for_interval(self) -> None:
        feed = _feed(30, NOW - timedelta(hours=5))
        self.assertFalse(feed_is_due(feed, NOW, last_attempt_at=NOW - timedelta(minutes=10)))
        self.assertTrue(feed_is_due(feed, NOW, last_attempt_at=NOW - timedelta(minutes=30)))


class SyncSchedulerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.config_manager = ConfigManager(Path(self.temp_dir.name) / "config.yaml")
        self.store = StateStore(str(Path(self.temp_dir.name) / "state.db"))
        self.engine = SyncEngine(self.config_manager, self.store)
        self.scheduler = SyncScheduler(self.engine, self.config_manager)
        service = FeedService(self.config_manager, self.store, self.engine.run_guard)
        self.good = service.create_feed(calendar_id="cal-1", name="Good", url="https://a.icloud.com/good")
        self.bad = service.create_feed(calendar_id="cal-2", name="Bad", url="https://b.icloud.com/bad")
        self.manual = service.create_feed(
            calendar_id="cal-3", name="Manual", url="https://c.icloud.com/manual", interval_minutes=0
        )
        patcher = mock.patch("shiftsync.sync_engine.FeedFetcher")
        fetcher_cls = patcher.start()
        self.addCleanup(patcher.stop)

        def fetch(url: str) -> str:
            if url.endswith("/bad"):
                raise FetchFailed("fetch timeout")
            return ICS

        self.fetch = fetcher_cls.return_value.fetch
        self.fetch.side_effect = fetch

    def tearDown(self) -> None:
        self.scheduler.stop()
        self.temp_dir.cleanup()

    def _tick(self, now: datetime) -> set[str]:
        futures = self.scheduler.tick(now=now)
        wait(list(futures.values()), timeout=10)
        return set(futures)

    def test_failing_feed_does_not_affect_others(self) -> None:
        started = self._tick(NOW)

        self.assertEqual(started, {self.good.feed_id, self.bad.feed_id})
        good_log = self.store.list_sync_logs(feed_id=self.good.feed_id)
        bad_log = self.store.list_sync_logs(feed_id=self.bad.feed_id)
        self.assertEqual([(e.status, e.trigger) for e in good_log], [("success", "scheduled")])
        self.assertEqual([(e.status, e.message) for e in bad_log], [("error", "fetch timeout")])
        self.assertEqual(self.scheduler.status()[self.bad.feed_id], "idle")

    def test_feeds_wait_for_their_interval(self) -> None:
        self._tick(NOW)
        self.assertEqual(self._tick(NOW + timedelta(minutes=1)), set())

        later = datetime.now(timezone.utc) + timedelta(minutes=61)
        self.assertEqual(self._tick(later), {self.good.feed_id, self.bad.feed_id})

    def test_running_feed_is_skipped_not_queued(self) -> None:
        self.assertTrue(self.engine.run_guard.try_acquire(self.good.feed_id))
        try:
            started = self._tick(NOW)
        finally:
            self.engine.run_guard.release(self.good.feed_id)
        self.assertEqual(started, {self.bad.feed_id})
        self.assertEqual(self.store.list_sync_logs(feed_id=self.good.feed_id), [])

    def test_storage_outage_while_listing_is_contained(self) -> None:
        with mock.patch.object(self.store, "list_feeds", side_effect=RuntimeError("db locked")):
            with self.assertLogs("shiftsync.scheduler", level="ERROR"):
                self.assertEqual(self.scheduler.tick(now=NOW), {})

    def test_stop_releases_runs_still_queued(self) -> None:
        self.config_manager.update({"scheduler": {"max_workers": 1}})
        fetch_started = threading.Event()
        release_fetch = threading.Event()

        def slow_fetch(url: str) -> str:
            fetch_started.set()
            release_fetch.wait(timeout=5)
            return ICS

        self.fetch.side_effect = slow_fetch
        futures = self.scheduler.tick(now=NOW)
        self.assertEqual(set(futures), {self.good.feed_id, self.bad.feed_id})
        self.assertTrue(fetch_started.wait(timeout=5))

        self.scheduler.stop()
        release_fetch.set()
        wait(list(futures.values()), timeout=10)

        self.assertEqual(sum(future.cancelled() for future in futures.values()), 1)
        self.assertEqual(set(self.scheduler.status().values()), {"idle"})
        queued_id = next(feed_id for feed_id, future in futures.items() if future.cancelled())
        self.assertEqual(self.engine.run_sync(queued_id).created, 1)

    def test_tick_after_stop_starts_nothing(self) -> None:
        self.scheduler.stop()
        self.assertEqual(self.scheduler.tick(now=NOW), {})
        self.assertEqual(set(self.scheduler.status().values()), set())

    def test_loop_ticks_on_start_and_on_wake(self) -> None:
        ticked = threading.Event()
        calls: list[object] = []

        def fake_tick(now=None):
            calls.append(now)
            ticked.set()
            return {}

        with mock.patch.object(self.scheduler, "tick", side_effect=fake_tick):
            self.scheduler.start()
            self.assertTrue(ticked.wait(timeout=5))
            ticked.clear()
            self.scheduler.wake()
            self.assertTrue(ticked.wait(timeout=5))
            self.scheduler.stop()

        self.assertGreaterEqual(len(calls), 2)
        self.assertFalse(self.scheduler._thread.is_alive())

    def test_started_loop_syncs_due_feeds(self) -> None:
        self.scheduler.start()
        deadline = time.monotonic() + 10
        while time.monotonic() < deadline:
            if self.store.list_sync_logs(feed_id=self.good.feed_id) and self.store.list_sync_logs(feed_id=self.bad.feed_id):
                break
            time.sleep(0.05)
        self.scheduler.stop()

        self.assertEqual([e.status for e in self.store.list_sync_logs(feed_id=self.good.feed_id)], ["success"])
        self.assertEqual(self.store.list_sync_logs(feed_id=self.manual.feed_id), [])

    def test_start_respects_disabled_flag(self) -> None:
        self.config_manager.update({"scheduler": {"enabled": False}})
        self.scheduler.start()
        self.assertIsNone(self.scheduler._thread)


if __name__ == "__main__":
    unittest.main()
