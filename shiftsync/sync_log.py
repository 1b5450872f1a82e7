from __future__ import annotations

import logging

from shiftsync.models import ExternalFeed, SyncLogEntry, SyncStats
from shiftsync.state_store import StateStore


logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"


class SyncLog:
    """Append-only outcome log. Writes never raise; a broken log must not break syncing."""

    def __init__(self, state_store: StateStore) -> None:
        self.state_store = state_store

    def record_success(self, feed: ExternalFeed, stats: SyncStats, *, trigger: str) -> int | None:
        return self._append(
            feed,
            status=STATUS_SUCCESS,
            message=stats.summary(),
            trigger=trigger,
            created=stats.created,
            updated=stats.updated,
            deleted=stats.deleted,
        )

    def record_error(self, feed: ExternalFeed, message: str, *, trigger: str) -> int | None:
        return self._append(feed, status=STATUS_ERROR, message=message, trigger=trigger)

    def _append(self, feed: ExternalFeed, *, status: str, message: str, trigger: str, **counts: int) -> int | None:
        try:
            return self.state_store.append_sync_log(
                feed_id=feed.feed_id,
                calendar_id=feed.calendar_id,
                status=status,
                message=message,
                trigger=trigger,
                **counts,
            )
        except Exception:
            logger.exception("Failed to write sync log entry for feed %s (%s: %s)", feed.feed_id, status, message)
            return None

    def entries(
        self,
        *,
        feed_id: str | None = None,
        calendar_id: str | None = None,
        limit: int | None = None,
    ) -> list[SyncLogEntry]:
        return self.state_store.list_sync_logs(feed_id=feed_id, calendar_id=calendar_id, limit=limit)

    def has_unread_errors(self, *, feed_id: str | None = None, calendar_id: str | None = None) -> bool:
        return self.state_store.has_unread_errors(feed_id=feed_id, calendar_id=calendar_id)

    def mark_errors_read(self, *, feed_id: str | None = None, calendar_id: str | None = None) -> int:
        return self.state_store.mark_errors_read(feed_id=feed_id, calendar_id=calendar_id)

    def clear(self, *, feed_id: str | None = None, calendar_id: str | None = None) -> int:
        return self.state_store.clear_sync_logs(feed_id=feed_id, calendar_id=calendar_id)
