from __future__ import annotations

import re
from typing import Iterable
from urllib.parse import urlsplit

from shiftsync.errors import InvalidSourceUrl
from shiftsync.models import DEFAULT_ALLOWED_HOST_SUFFIXES, DEFAULT_ALLOWED_SCHEMES


WEBCAL_PATTERN = re.compile(r"^webcal://", re.IGNORECASE)


def _host_allowed(hostname: str, suffixes: Iterable[str]) -> bool:
    for suffix in suffixes:
        suffix = suffix.lower().lstrip(".")
        if not suffix:
            continue
        if hostname == suffix or hostname.endswith("." + suffix):
            return True
    return False


def validate_source_url(
    url: str,
    *,
    allowed_schemes: Iterable[str] = DEFAULT_ALLOWED_SCHEMES,
    allowed_host_suffixes: Iterable[str] = DEFAULT_ALLOWED_HOST_SUFFIXES,
) -> str:
    """Return the stripped URL, or raise InvalidSourceUrl if it is not allow-listed."""
    text = str(url or "").strip()
    schemes = {str(x).lower() for x in allowed_schemes}
    suffix_text = ", ".join(allowed_host_suffixes)
    if not text:
        raise InvalidSourceUrl("Source URL is required.")
    try:
        parts = urlsplit(text)
        hostname = (parts.hostname or "").lower()
        # Accessing .port validates the netloc as well.
        parts.port
    except ValueError as exc:
        raise InvalidSourceUrl(f"Source URL is malformed: {text}") from exc
    if parts.scheme.lower() not in schemes:
        raise InvalidSourceUrl(
            f"Source URL must use one of {', '.join(sorted(schemes))}:// and be hosted on {suffix_text}."
        )
    if parts.username or parts.password:
        raise InvalidSourceUrl("Source URL must not carry credentials.")
    if not hostname or not _host_allowed(hostname, allowed_host_suffixes):
        raise InvalidSourceUrl(f"Source URL host must be {suffix_text} or one of its subdomains.")
    return text


def to_fetch_url(url: str) -> str:
    return WEBCAL_PATTERN.sub("https://", str(url).strip())
