import unittest

from shiftsync.event_bus import EventBus


class EventBusTests(unittest.TestCase):
    def test_fan_out_to_subscribers(self) -> None:
        bus = EventBus(queue_size=5)
        first, second = bus.subscribe(), bus.subscribe()
        self.assertEqual(bus.publish_calendar_change("cal-1"), 2)
        self.assertEqual(first.get_nowait(), {"type": "calendar-change", "calendarId": "cal-1"})
        self.assertEqual(second.get_nowait(), {"type": "calendar-change", "calendarId": "cal-1"})

    def test_full_subscriber_is_dropped_without_blocking(self) -> None:
        bus = EventBus(queue_size=1)
        slow = bus.subscribe()
        fast = bus.subscribe()
        bus.publish_calendar_change("cal-1")
        fast.get_nowait()

        with self.assertLogs("shiftsync.event_bus", level="WARNING"):
            delivered = bus.publish_calendar_change("cal-2")

        self.assertEqual(delivered, 1)
        self.assertEqual(slow.qsize(), 1)
        self.assertEqual(slow.get_nowait()["calendarId"], "cal-1")
        self.assertEqual(fast.get_nowait()["calendarId"], "cal-2")

    def test_unsubscribe(self) -> None:
        bus = EventBus()
        channel = bus.subscribe()
        bus.unsubscribe(channel)
        self.assertEqual(bus.publish({"type": "calendar-change", "calendarId": "x"}), 0)
        self.assertTrue(channel.empty())


if __name__ == "__main__":
    unittest.main()
