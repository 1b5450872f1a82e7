import tempfile
import unittest
from pathlib import Path

from shiftsync.config_manager import ConfigManager
from shiftsync.errors import FeedNotFound, InvalidSourceUrl
from shiftsync.feed_service import FeedService
from shiftsync.run_guard import FeedRunGuard
from shiftsync.state_store import StateStore


class FeedServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.config_manager = ConfigManager(Path(self.temp_dir.name) / "config.yaml")
        self.store = StateStore(str(Path(self.temp_dir.name) / "state.db"))
        self.guard = FeedRunGuard()
        self.service = FeedService(self.config_manager, self.store, self.guard)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_create_applies_defaults(self) -> None:
        feed = self.service.create_feed(
            calendar_id="cal-1", name=" Rota ", url="webcal://p123-caldav.icloud.com/published/x"
        )
        self.assertEqual(feed.name, "Rota")
        self.assertEqual(feed.color, "#3b82f6")
        self.assertEqual(feed.interval_minutes, 60)
        self.assertIsNone(feed.last_synced_at)

    def test_invalid_url_blocks_creation(self) -> None:
        for url in ("http://evil.com", "ftp://icloud.com/x", "https://icloud.com.evil.com/x"):
            with self.subTest(url=url):
                with self.assertRaises(InvalidSourceUrl):
                    self.service.create_feed(calendar_id="cal-1", name="Bad", url=url)
        self.assertEqual(self.service.list_feeds(), [])

    def test_allow_list_comes_from_config(self) -> None:
        self.config_manager.update({"fetch": {"allowed_host_suffixes": ["example.org"]}})
        feed = self.service.create_feed(calendar_id="cal-1", name="Org", url="https://cal.example.org/x.ics")
        self.assertEqual(feed.url, "https://cal.example.org/x.ics")
        with self.assertRaises(InvalidSourceUrl):
            self.service.create_feed(calendar_id="cal-1", name="Apple", url="https://p1.icloud.com/x")

    def test_update_revalidates_url(self) -> None:
        feed = self.service.create_feed(calendar_id="cal-1", name="Rota", url="https://p1.icloud.com/x")
        with self.assertRaises(InvalidSourceUrl):
            self.service.update_feed(feed.feed_id, url="https://evil.com/x")
        updated = self.service.update_feed(feed.feed_id, color="#ff0000", interval_minutes=15)
        self.assertEqual((updated.color, updated.interval_minutes), ("#ff0000", 15))
        self.assertEqual(updated.url, "https://p1.icloud.com/x")

    def test_required_fields_and_bad_interval(self) -> None:
        with self.assertRaises(ValueError):
            self.service.create_feed(calendar_id="", name="Rota", url="https://p1.icloud.com/x")
        with self.assertRaises(ValueError):
            self.service.create_feed(calendar_id="cal-1", name="Rota", url="https://p1.icloud.com/x", interval_minutes=-5)

    def test_delete_forgets_run_state(self) -> None:
        feed = self.service.create_feed(calendar_id="cal-1", name="Rota", url="https://p1.icloud.com/x")
        self.guard.try_acquire(feed.feed_id)
        self.guard.release(feed.feed_id)
        self.service.delete_feed(feed.feed_id)
        self.assertNotIn(feed.feed_id, self.guard.snapshot())
        self.assertIsNone(self.guard.last_attempt_at(feed.feed_id))
        with self.assertRaises(FeedNotFound):
            self.service.delete_feed(feed.feed_id)


if __name__ == "__main__":
    unittest.main()
