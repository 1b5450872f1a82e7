import unittest
from datetime import date, datetime

from icalendar import Calendar as ICalendar

from shiftsync.ics_export import build_calendar_ics
from shiftsync.models import SyncedRecord


def _shift(shift_id: str, start: str, end: str, all_day: bool = False) -> SyncedRecord:
    return SyncedRecord(
        shift_id=shift_id,
        calendar_id="cal-1",
        date=date(2026, 3, 1),
        start_time=start,
        end_time=end,
        title=f"Shift {shift_id}",
        color="#3b82f6",
        all_day=all_day,
        description="Ward 3" if shift_id == "day" else None,
    )


class IcsExportTests(unittest.TestCase):
    def setUp(self) -> None:
        body = build_calendar_ics(
            [
                _shift("day", "08:00", "16:00"),
                _shift("night", "22:00", "06:00"),
                _shift("off", "00:00", "23:59", all_day=True),
            ],
            calendar_name="Rota",
        )
        calendar_obj = ICalendar.from_ical(body.encode("utf-8"))
        self.calendar_obj = calendar_obj
        self.events = {str(vevent["UID"]): vevent for vevent in calendar_obj.walk("VEVENT")}

    def test_calendar_metadata(self) -> None:
        self.assertEqual(str(self.calendar_obj["X-WR-CALNAME"]), "Rota")
        self.assertEqual(sorted(self.events), ["day@shiftsync", "night@shiftsync", "off@shiftsync"])

    def test_timed_shift(self) -> None:
        vevent = self.events["day@shiftsync"]
        self.assertEqual(str(vevent["SUMMARY"]), "Shift day")
        self.assertEqual(str(vevent["DESCRIPTION"]), "Ward 3")
        self.assertEqual(vevent.decoded("DTSTART"), datetime(2026, 3, 1, 8, 0))
        self.assertEqual(vevent.decoded("DTEND"), datetime(2026, 3, 1, 16, 0))

    def test_overnight_shift_ends_next_day(self) -> None:
        vevent = self.events["night@shiftsync"]
        self.assertEqual(vevent.decoded("DTEND"), datetime(2026, 3, 2, 6, 0))
        self.assertNotIn("DESCRIPTION", vevent)

    def test_all_day_shift_uses_dates(self) -> None:
        vevent = self.events["off@shiftsync"]
        self.assertEqual(vevent.decoded("DTSTART"), date(2026, 3, 1))
        self.assertEqual(vevent.decoded("DTEND"), date(2026, 3, 2))


if __name__ == "__main__":
    unittest.main()
