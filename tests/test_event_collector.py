"""Tests for the event collector and its per-interaction listeners."""

import unittest

from stepwright.recorder.collector import EventCollector
from stepwright.recorder.events import InputEvent, KeyboardEvent, MouseEvent, NavigationEvent, ScrollEvent, SelectEvent
from stepwright.settings import RecorderSettings
from stepwright.testing import ManualScheduler

BUTTON = {"tagName": "button", "testId": "save", "textContent": "Save"}
EMAIL = {"tagName": "input", "xpath": "/html/body/form/input[1]", "attributes": {"name": "email", "type": "email"}}
PASSWORD = {"tagName": "input", "xpath": "/html/body/form/input[2]", "attributes": {"name": "pw", "type": "password"}}


class EventCollectorTests(unittest.TestCase):
    """Recording state gates every listener; filtering happens before storage."""

    def setUp(self) -> None:
        self.scheduler = ManualScheduler()
        self.collector = EventCollector(self.scheduler)

    def _input(self, event_type: str, value: str, target=EMAIL) -> None:
        self.collector.ingest("input", {"type": event_type, "target": target, "value": value, "url": "https://app.test/"})

    def test_start_records_initial_navigation(self) -> None:
        self.collector.start("https://app.test/login")
        self.assertEqual(self.collector.state, "recording")
        events = self.collector.events
        self.assertEqual(len(events), 1)
        self.assertIsInstance(events[0], NavigationEvent)
        self.assertEqual(events[0].to_url, "https://app.test/login")

    def test_pause_and_resume_gate_events(self) -> None:
        self.collector.start()
        self.collector.ingest("click", {"target": BUTTON, "detail": 1})
        self.collector.pause()
        self.assertEqual(self.collector.state, "paused")
        self.collector.ingest("click", {"target": BUTTON, "detail": 1})
        self.collector.resume()
        self.collector.ingest("click", {"target": BUTTON, "detail": 2})
        events = self.collector.events
        self.assertEqual([event.type for event in events], ["click", "dblclick"])
        self.assertIsInstance(events[0], MouseEvent)

    def test_nothing_is_recorded_before_start(self) -> None:
        self.collector.ingest("click", {"target": BUTTON})
        self.assertEqual(self.collector.events, [])

    def test_ignored_and_malformed_payloads_are_dropped(self) -> None:
        self.collector.start()
        self.collector.ingest("click", {"target": BUTTON, "ignored": True})
        self.collector.ingest("click", {"target": {"id": "no-tag"}})
        self.collector.ingest("unknown", {"target": BUTTON})
        self.assertEqual(self.collector.events, [])

    def test_input_ticks_are_debounced(self) -> None:
        self.collector.start()
        self._input("input", "h")
        self.scheduler.advance(100)
        self._input("input", "he")
        self.scheduler.advance(100)
        self._input("input", "hel")
        self.assertEqual(self.collector.events, [])
        self.scheduler.advance(300)
        events = self.collector.events
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].value, "hel")

    def test_blur_with_unchanged_value_is_suppressed(self) -> None:
        self.collector.start()
        self._input("change", "hello")
        self._input("blur", "hello")
        self._input("blur", "hello!")
        events = self.collector.events
        self.assertEqual([(event.type, event.value) for event in events], [("change", "hello"), ("blur", "hello!")])
        self.assertEqual(events[1].previous_value, "hello")

    def test_sensitive_values_are_masked(self) -> None:
        self.collector.start()
        self._input("change", "secret", target=PASSWORD)
        event = self.collector.events[0]
        self.assertIsInstance(event, InputEvent)
        self.assertEqual(event.value, "******")
        self.assertTrue(event.is_sensitive)

    def test_button_like_inputs_are_ignored(self) -> None:
        self.collector.start()
        submit = {"tagName": "input", "attributes": {"type": "submit"}}
        self._input("change", "Go", target=submit)
        self.assertEqual(self.collector.events, [])

    def test_select_change_becomes_select_event(self) -> None:
        self.collector.start()
        self.collector.ingest(
            "input",
            {
                "type": "change",
                "target": {"tagName": "select", "attributes": {"name": "country"}},
                "values": ["us"],
                "optionTexts": ["United States"],
            },
        )
        event = self.collector.events[0]
        self.assertIsInstance(event, SelectEvent)
        self.assertEqual(event.values, ("us",))
        self.assertEqual(event.option_texts, ("United States",))

    def test_keyboard_filter(self) -> None:
        self.collector.start()
        self.collector.ingest("keyboard", {"type": "keydown", "key": "a", "target": EMAIL})
        self.collector.ingest("keyboard", {"type": "keyup", "key": "Enter", "target": EMAIL})
        self.collector.ingest("keyboard", {"type": "keydown", "key": "Enter", "target": EMAIL})
        self.collector.ingest("keyboard", {"type": "keydown", "key": "s", "modifiers": {"meta": True}})
        self.collector.ingest("keyboard", {"type": "keydown", "key": "F5"})
        events = self.collector.events
        self.assertEqual([event.key for event in events], ["Enter", "s", "F5"])
        self.assertIsInstance(events[0], KeyboardEvent)
        self.assertEqual(events[1].target.tag_name, "body")

    def test_scroll_is_debounced_and_small_moves_dropped(self) -> None:
        self.collector.start()
        self.collector.ingest("scroll", {"x": 0, "y": 5})
        self.scheduler.advance(150)
        self.assertEqual(self.collector.events, [])
        self.collector.ingest("scroll", {"x": 0, "y": 100})
        self.scheduler.advance(50)
        self.collector.ingest("scroll", {"x": 0, "y": 300})
        self.scheduler.advance(150)
        events = self.collector.events
        self.assertEqual(len(events), 1)
        self.assertIsInstance(events[0], ScrollEvent)
        self.assertEqual(events[0].y, 300)
        self.assertEqual(events[0].delta_y, 295)

    def test_navigation_to_same_url_is_suppressed(self) -> None:
        self.collector.start("https://app.test/")
        self.collector.ingest("navigation", {"toUrl": "https://app.test/"})
        self.collector.ingest("navigation", {"toUrl": "https://app.test/cart", "navigationType": "pop"})
        self.collector.ingest("navigation", {"toUrl": "https://app.test/cart", "navigationType": "reload"})
        events = self.collector.events
        self.assertEqual(len(events), 2)
        self.assertEqual(events[1].from_url, "https://app.test/")
        self.assertEqual(events[1].navigation_type, "pop")

    def test_stop_cancels_pending_debounced_input(self) -> None:
        self.collector.start()
        self._input("input", "abc")
        self.collector.stop()
        self.assertEqual(self.scheduler.pending, 0)
        self.scheduler.advance(1000)
        self.assertEqual(self.collector.events, [])
        self.collector.ingest("click", {"target": BUTTON})
        self.assertEqual(self.collector.events, [])

    def test_capture_flags_disable_listeners(self) -> None:
        collector = EventCollector(self.scheduler, RecorderSettings(capture_clicks=False))
        collector.start()
        collector.ingest("click", {"target": BUTTON})
        self.assertEqual(collector.events, [])

    def test_handler_failures_do_not_block_storage(self) -> None:
        seen = []

        def _broken(_event) -> None:
            raise RuntimeError("handler exploded")

        self.collector.on_event(_broken)
        unsubscribe = self.collector.on_event(seen.append)
        self.collector.start()
        with self.assertLogs("stepwright.recorder.collector", level="WARNING"):
            self.collector.ingest("click", {"target": BUTTON})
        self.assertEqual(len(self.collector.events), 1)
        self.assertEqual(len(seen), 1)
        unsubscribe()
        self.collector.ingest("click", {"target": BUTTON})
        self.assertEqual(len(seen), 1)

    def test_steps_are_transformed_and_merged(self) -> None:
        self.collector.start("https://app.test/login")
        self._input("change", "a")
        self._input("change", "ab")
        self.collector.ingest("click", {"target": BUTTON})
        steps = self.collector.steps()
        self.assertEqual([step.type for step in steps], ["navigate", "type", "click"])
        self.assertEqual(steps[0].url, "/login")
        self.assertEqual(steps[1].value, "ab")


if __name__ == "__main__":
    unittest.main()
