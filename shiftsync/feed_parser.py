from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, tzinfo
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from icalendar import Calendar as ICalendar
from icalendar import Event as ICEvent

from shiftsync.errors import ParseFailed
from shiftsync.models import ALL_DAY_END, ALL_DAY_START, ExternalEvent


logger = logging.getLogger(__name__)


@dataclass
class ParsedFeed:
    events: list[ExternalEvent] = field(default_factory=list)
    total_seen: int = 0
    skipped: int = 0


def resolve_timezone(name: str) -> tzinfo:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to UTC", name)
        return ZoneInfo("UTC")


def _decode_raw_ical(raw_data: Any) -> str:
    if isinstance(raw_data, bytes):
        return raw_data.decode("utf-8", errors="replace")
    return str(raw_data or "")


def _decoded(vevent: ICEvent, name: str) -> Any:
    if vevent.get(name) is None:
        return None
    return vevent.decoded(name)


def _is_date_only(value: Any) -> bool:
    return isinstance(value, date) and not isinstance(value, datetime)


def _to_local(value: datetime, local_tz: tzinfo) -> datetime:
    # Floating times are already wall-clock.
    if value.tzinfo is None:
        return value
    return value.astimezone(local_tz)


def _normalize_vevent(vevent: ICEvent, local_tz: tzinfo, untitled: str) -> ExternalEvent | None:
    uid = str(vevent.get("UID", "")).strip()
    if not uid:
        return None

    start = _decoded(vevent, "DTSTART")
    end = _decoded(vevent, "DTEND")
    if end is None and start is not None:
        duration = _decoded(vevent, "DURATION")
        if isinstance(duration, timedelta):
            end = start + duration
    if start is None or not isinstance(start, date):
        return None

    all_day = _is_date_only(start) or end is None
    if isinstance(start, datetime):
        local_start = _to_local(start, local_tz)
        event_date = local_start.date()
    else:
        local_start = None
        event_date = start

    start_time, end_time = ALL_DAY_START, ALL_DAY_END
    if not all_day and local_start is not None:
        start_time = local_start.strftime("%H:%M")
        if isinstance(end, datetime):
            end_time = _to_local(end, local_tz).strftime("%H:%M")

    summary = str(vevent.get("SUMMARY", "") or "").strip()
    description = str(vevent.get("DESCRIPTION", "") or "").strip()
    return ExternalEvent(
        external_id=uid,
        date=event_date,
        start_time=start_time,
        end_time=end_time,
        all_day=all_day,
        title=summary or untitled,
        description=description or None,
    )


def parse_feed_document(raw_data: Any, *, timezone_name: str = "UTC", untitled: str = "Untitled") -> ParsedFeed:
    text = _decode_raw_ical(raw_data)
    if not text.strip():
        raise ParseFailed("calendar document is empty")
    try:
        # Bytes, so a single-line body is never treated as a local file path.
        calendar_obj = ICalendar.from_ical(text.encode("utf-8"))
    except (ValueError, IndexError, KeyError) as exc:
        raise ParseFailed(f"invalid calendar document: {exc}") from exc
    if getattr(calendar_obj, "name", "") != "VCALENDAR":
        raise ParseFailed("calendar document has no VCALENDAR component")

    local_tz = resolve_timezone(timezone_name)
    parsed = ParsedFeed()
    for vevent in calendar_obj.walk("VEVENT"):
        parsed.total_seen += 1
        try:
            event = _normalize_vevent(vevent, local_tz, untitled)
        except (ValueError, TypeError, KeyError, OverflowError) as exc:
            logger.debug("Skipping malformed VEVENT: %s", exc)
            event = None
        if event is None:
            parsed.skipped += 1
            continue
        parsed.events.append(event)
    return parsed


def parse_feed(raw_data: Any, *, timezone_name: str = "UTC", untitled: str = "Untitled") -> list[ExternalEvent]:
    return parse_feed_document(raw_data, timezone_name=timezone_name, untitled=untitled).events
