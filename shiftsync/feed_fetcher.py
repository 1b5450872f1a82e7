from __future__ import annotations

import logging
import time

import requests

from shiftsync.errors import FetchFailed
from shiftsync.models import FetchConfig
from shiftsync.url_policy import to_fetch_url


logger = logging.getLogger(__name__)

CHUNK_SIZE = 512


class FeedFetcher:
    """Performs exactly one GET per call; retrying is left to the scheduler.

    ``timeout_seconds`` is a deadline for the whole request. requests only bounds
    the connect and each socket read, so the body is streamed and the deadline is
    checked between chunks.
    """

    def __init__(self, config: FetchConfig) -> None:
        self.config = config

    def fetch(self, url: str) -> str:
        fetch_url = to_fetch_url(url)
        deadline = time.monotonic() + self.config.timeout_seconds
        try:
            response = requests.get(
                fetch_url,
                headers={
                    "User-Agent": self.config.user_agent,
                    "Accept": "text/calendar, */*;q=0.5",
                },
                timeout=self.config.timeout_seconds,
                stream=True,
            )
        except requests.Timeout as exc:
            raise FetchFailed("fetch timeout") from exc
        except requests.RequestException as exc:
            raise FetchFailed(f"fetch failed: {exc}") from exc

        try:
            if not 200 <= response.status_code < 300:
                reason = str(getattr(response, "reason", "") or "").strip()
                raise FetchFailed(f"fetch failed: HTTP {response.status_code} {reason}".rstrip())
            body = self._read_body(response, deadline)
        finally:
            response.close()

        logger.debug("Fetched %d bytes from %s", len(body), fetch_url)
        # RFC 5545 documents are UTF-8; text/calendar without a charset would otherwise decode as latin-1.
        return body.decode("utf-8", errors="replace")

    def _read_body(self, response: requests.Response, deadline: float) -> bytes:
        limit = self.config.max_response_bytes
        chunks: list[bytes] = []
        size = 0
        try:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if time.monotonic() > deadline:
                    raise FetchFailed("fetch timeout")
                size += len(chunk)
                if size > limit:
                    raise FetchFailed(f"fetch failed: response larger than {limit} bytes")
                chunks.append(chunk)
        except requests.Timeout as exc:
            raise FetchFailed("fetch timeout") from exc
        except requests.RequestException as exc:
            raise FetchFailed(f"fetch failed: {exc}") from exc
        return b"".join(chunks)
