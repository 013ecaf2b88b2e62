"""Tests for DOM mutation buffering, filtering and ranking."""

import unittest

from stepwright.recorder.dom_port import Rect, ViewportSize
from stepwright.recorder.mutations import DomMutationTracker, generate_selector, significance_score
from stepwright.testing import FakeDomPort, ManualScheduler, fake_element

CORNER = Rect(x=0, y=0, width=10, height=10)


class DomMutationTrackerTests(unittest.TestCase):
    """Stability timer, dedupe, visibility filter and significance cap."""

    def setUp(self) -> None:
        self.scheduler = ManualScheduler()
        self.port = FakeDomPort()
        self.reports = []
        self.tracker = DomMutationTracker(
            self.port,
            self.scheduler,
            self.reports.append,
            stability_threshold_ms=1500,
            ignore_selectors=[".toast", "::bad"],
        )
        self.tracker.start()

    def test_reports_top_three_by_significance(self) -> None:
        nodes = [
            fake_element("div", node_id=1, text="Saved", attributes={"id": "a"}),
            fake_element("div", node_id=2, attributes={"id": "b"}),
            fake_element("div", node_id=3, attributes={"id": "c"}, rect=CORNER),
            fake_element("div", node_id=4, text="Done", attributes={"id": "d"}, rect=CORNER),
            fake_element("div", node_id=5, attributes={"id": "e"}, rect=Rect(x=300, y=200, width=40, height=40)),
        ]
        self.port.add_nodes(*nodes)
        self.scheduler.advance(1500)
        self.assertEqual(len(self.reports), 1)
        batch = self.reports[0]
        self.assertEqual([item.selector for item in batch], ["#a", "#d", "#b"])
        self.assertEqual(batch[0].text_content, "Saved")
        self.assertIsNone(batch[2].text_content)
        self.assertTrue(all(item.type == "added" for item in batch))

    def test_first_classification_wins(self) -> None:
        element = fake_element("p", node_id=1, text="hi", attributes={"id": "msg"})
        self.port.add_nodes(element)
        self.port.change_text(element)
        self.assertEqual(self.tracker.buffered_count, 2)
        self.scheduler.advance(1500)
        self.assertEqual(len(self.reports[0]), 1)
        self.assertEqual(self.reports[0][0].type, "added")

    def test_text_change_reports_parent_element(self) -> None:
        element = fake_element("span", node_id=1, text="3 items", classes=["badge", "stepwright-hl"])
        self.port.change_text(element)
        self.scheduler.advance(1500)
        mutation = self.reports[0][0]
        self.assertEqual(mutation.type, "textChanged")
        self.assertEqual(mutation.selector, "span.badge")
        self.assertEqual(mutation.tag_name, "span")

    def test_invisible_and_detached_elements_are_filtered(self) -> None:
        self.port.add_nodes(
            fake_element("div", node_id=1, rect=None),
            fake_element("div", node_id=2, rect=Rect(x=0, y=0, width=0, height=20)),
            fake_element("div", node_id=3, connected=False),
        )
        self.scheduler.advance(1500)
        self.assertEqual(self.reports, [])
        self.assertEqual(self.tracker.buffered_count, 0)

    def test_ignored_nodes_are_not_buffered(self) -> None:
        self.port.add_nodes(
            fake_element("script", node_id=1),
            fake_element("div", node_id=2, attributes={"data-stepwright-ignore": ""}),
            fake_element("div", node_id=3, ignore_matches={".toast": True}),
            fake_element("div", node_id=4, ignore_matches={"::bad": "invalid"}),
        )
        self.assertEqual(self.tracker.buffered_count, 1)

    def test_each_mutation_restarts_timer(self) -> None:
        self.port.add_nodes(fake_element("div", node_id=1, attributes={"id": "one"}))
        self.scheduler.advance(1000)
        self.port.add_nodes(fake_element("div", node_id=2, attributes={"id": "two"}))
        self.scheduler.advance(1000)
        self.assertEqual(self.reports, [])
        self.scheduler.advance(500)
        self.assertEqual(len(self.reports), 1)
        self.assertEqual(len(self.reports[0]), 2)

    def test_stop_and_reset_drop_buffer(self) -> None:
        self.port.add_nodes(fake_element("div", node_id=1))
        self.tracker.reset()
        self.assertFalse(self.tracker.timer_pending)
        self.assertTrue(self.port.observing)
        self.port.add_nodes(fake_element("div", node_id=2))
        self.tracker.stop()
        self.assertEqual(self.port.disconnect_calls, 1)
        self.assertEqual(self.tracker.buffered_count, 0)
        self.scheduler.advance(5000)
        self.assertEqual(self.reports, [])


    def test_records_are_dropped_while_not_recording(self) -> None:
        recording = [False]
        port = FakeDomPort()
        tracker = DomMutationTracker(
            port,
            self.scheduler,
            self.reports.append,
            is_recording=lambda: recording[0],
        )
        tracker.start()
        port.add_nodes(fake_element("div", node_id=1, text="Hidden change"))
        self.assertEqual(tracker.buffered_count, 0)
        self.assertFalse(tracker.timer_pending)

        recording[0] = True
        port.add_nodes(fake_element("div", node_id=2, text="Recorded change"))
        self.assertEqual(tracker.buffered_count, 1)
        self.scheduler.advance(1500)
        self.assertEqual(len(self.reports), 1)
        self.assertEqual(self.reports[0][0].text_content, "Recorded change")


class MutationSelectorTests(unittest.TestCase):
    """Selector preference and significance scoring for changed elements."""

    def test_selector_preference_order(self) -> None:
        self.assertEqual(
            generate_selector(fake_element("div", attributes={"data-testid": "toast", "id": "x"})),
            '[data-testid="toast"]',
        )
        self.assertEqual(
            generate_selector(fake_element("div", attributes={"role": "alert", "aria-label": "Saved"})),
            '[role="alert"][aria-label="Saved"]',
        )
        self.assertEqual(generate_selector(fake_element("div", attributes={"role": "status"})), '[role="status"]')
        self.assertEqual(generate_selector(fake_element("div", attributes={"id": "x"})), "#x")
        self.assertEqual(generate_selector(fake_element("li", classes=["a", "b", "c"])), "li.a.b")
        self.assertEqual(generate_selector(fake_element("SECTION")), "section")

    def test_custom_test_id_attribute(self) -> None:
        element = fake_element("div", attributes={"data-qa": "banner"})
        self.assertEqual(generate_selector(element, "data-qa"), '[data-qa="banner"]')

    def test_significance_score(self) -> None:
        viewport = ViewportSize(width=1280, height=720)
        centered = fake_element("div", text="Hello")
        self.assertEqual(significance_score(centered, viewport), 150)
        self.assertEqual(significance_score(fake_element("div", rect=None), viewport), 0)
        corner = fake_element("div", rect=CORNER)
        self.assertLess(significance_score(corner, viewport), 1)


if __name__ == "__main__":
    unittest.main()
