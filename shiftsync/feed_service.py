from __future__ import annotations

import logging
from typing import Any

from shiftsync.config_manager import ConfigManager
from shiftsync.models import ExternalFeed
from shiftsync.run_guard import FeedRunGuard
from shiftsync.state_store import StateStore
from shiftsync.url_policy import validate_source_url


logger = logging.getLogger(__name__)


class FeedService:
    """Feed configuration CRUD. URLs are allow-list checked here, never at sync time."""

    def __init__(
        self,
        config_manager: ConfigManager,
        state_store: StateStore,
        run_guard: FeedRunGuard | None = None,
    ) -> None:
        self.config_manager = config_manager
        self.state_store = state_store
        self.run_guard = run_guard

    def _validated_url(self, url: str) -> str:
        fetch_config = self.config_manager.load().fetch
        return validate_source_url(
            url,
            allowed_schemes=fetch_config.allowed_schemes,
            allowed_host_suffixes=fetch_config.allowed_host_suffixes,
        )

    @staticmethod
    def _interval(value: Any) -> int:
        try:
            interval = int(value)
        except (TypeError, ValueError) as exc:
            raise ValueError("interval_minutes must be an integer") from exc
        if interval < 0:
            raise ValueError("interval_minutes must not be negative")
        return interval

    def create_feed(
        self,
        *,
        calendar_id: str,
        name: str,
        url: str,
        color: str | None = None,
        interval_minutes: int | None = None,
    ) -> ExternalFeed:
        calendar_id = str(calendar_id or "").strip()
        name = str(name or "").strip()
        if not calendar_id or not name:
            raise ValueError("calendar_id and name are required")
        sync_config = self.config_manager.load().sync
        feed = self.state_store.create_feed(
            calendar_id=calendar_id,
            name=name,
            url=self._validated_url(url),
            color=str(color or "").strip() or sync_config.default_color,
            interval_minutes=self._interval(
                sync_config.default_interval_minutes if interval_minutes is None else interval_minutes
            ),
        )
        logger.info("Created feed %s for calendar %s", feed.feed_id, feed.calendar_id)
        return feed

    def update_feed(self, feed_id: str, **changes: Any) -> ExternalFeed:
        if changes.get("url") is not None:
            changes["url"] = self._validated_url(changes["url"])
        if changes.get("interval_minutes") is not None:
            changes["interval_minutes"] = self._interval(changes["interval_minutes"])
        if changes.get("name") is not None:
            changes["name"] = str(changes["name"]).strip()
            if not changes["name"]:
                raise ValueError("name must not be empty")
        return self.state_store.update_feed(feed_id, **changes)

    def delete_feed(self, feed_id: str) -> None:
        self.state_store.delete_feed(feed_id)
        if self.run_guard is not None:
            self.run_guard.forget(feed_id)
        logger.info("Deleted feed %s with its synced shifts and log entries", feed_id)

    def get_feed(self, feed_id: str) -> ExternalFeed:
        return self.state_store.get_feed(feed_id)

    def list_feeds(self, calendar_id: str | None = None) -> list[ExternalFeed]:
        return self.state_store.list_feeds(calendar_id)
