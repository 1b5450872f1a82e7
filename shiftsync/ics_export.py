from __future__ import annotations

from datetime import datetime, time, timedelta
from typing import Iterable

from icalendar import Calendar as ICalendar
from icalendar import Event as ICEvent

from shiftsync.models import SyncedRecord


PRODID = "-//ShiftSync//Shift Calendar Export//EN"


def _clock(value: str) -> time:
    hours, minutes = value.split(":", 1)
    return time(int(hours), int(minutes))


def _shift_vevent(shift: SyncedRecord) -> ICEvent:
    vevent = ICEvent()
    vevent.add("UID", f"{shift.shift_id}@shiftsync")
    vevent.add("SUMMARY", shift.title or "")
    if shift.description:
        vevent.add("DESCRIPTION", shift.description)
    vevent.add("DTSTAMP", shift.updated_at)
    if shift.all_day:
        vevent.add("DTSTART", shift.date)
        vevent.add("DTEND", shift.date + timedelta(days=1))
        return vevent
    start = datetime.combine(shift.date, _clock(shift.start_time))
    end = datetime.combine(shift.date, _clock(shift.end_time))
    # Overnight shifts end on the following day.
    if end <= start:
        end += timedelta(days=1)
    vevent.add("DTSTART", start)
    vevent.add("DTEND", end)
    return vevent


def build_calendar_ics(shifts: Iterable[SyncedRecord], calendar_name: str = "") -> str:
    calendar_obj = ICalendar()
    calendar_obj.add("PRODID", PRODID)
    calendar_obj.add("VERSION", "2.0")
    if calendar_name:
        calendar_obj.add("X-WR-CALNAME", calendar_name)
    for shift in shifts:
        calendar_obj.add_component(_shift_vevent(shift))
    return calendar_obj.to_ical().decode("utf-8")
