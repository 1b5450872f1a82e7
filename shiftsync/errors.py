from __future__ import annotations


class SyncError(Exception):
    """Base class for failures of the external calendar sync path."""


class InvalidSourceUrl(SyncError, ValueError):
    pass


class FetchFailed(SyncError):
    pass


class ParseFailed(SyncError):
    pass


class StorageFailed(SyncError):
    pass


class ConcurrentRunSkipped(SyncError):
    """Raised when a run was requested while the same feed is already running."""

    def __init__(self, feed_id: str) -> None:
        super().__init__(f"sync already running for feed {feed_id}")
        self.feed_id = feed_id


class FeedNotFound(SyncError, LookupError):
    def __init__(self, feed_id: str) -> None:
        super().__init__(f"feed not found: {feed_id}")
        self.feed_id = feed_id
