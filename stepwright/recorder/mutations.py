"""DOM mutation stability tracker used to synthesize element assertions."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from stepwright.errors import InvalidSelectorError
from stepwright.recorder.dom_port import (
    ELEMENT_NODE,
    DomObservationPort,
    MutationRecord,
    ViewportSize,
)
from stepwright.recorder.scheduling import Scheduler, TimerHandle

logger = logging.getLogger("stepwright.recorder.mutations")

IGNORED_TAGS = frozenset({"script", "style", "link", "meta", "noscript"})
IGNORE_MARKER_ATTRIBUTE = "data-stepwright-ignore"
INTERNAL_CLASS_PREFIX = "stepwright"
MAX_MUTATIONS_PER_REPORT = 3
DEFAULT_STABILITY_THRESHOLD_MS = 1500


@dataclass(frozen=True)
class TrackedMutation:
    type: str
    selector: str
    tag_name: str
    text_content: str | None = None


@dataclass
class _BufferedMutation:
    type: str
    element: Any


def generate_selector(element: Any, test_id_attribute: str = "data-testid") -> str:
    """CSS selector for a changed element: testid > role+aria-label > role > id > tag.classes > tag."""
    test_id = element.get_attribute(test_id_attribute)
    if test_id:
        return f'[{test_id_attribute}="{test_id}"]'
    role = element.get_attribute("role")
    aria_label = element.get_attribute("aria-label")
    if role and aria_label:
        return f'[role="{role}"][aria-label="{aria_label}"]'
    if role:
        return f'[role="{role}"]'
    element_id = element.get_attribute("id")
    if element_id:
        return f"#{element_id}"
    tag = element.tag_name.lower()
    classes = [name for name in element.class_names if name and not name.startswith(INTERNAL_CLASS_PREFIX)][:2]
    if classes:
        return f"{tag}.{'.'.join(classes)}"
    return tag


def significance_score(element: Any, viewport: ViewportSize) -> float:
    """+100 for non-empty text, plus up to 50 for proximity to the viewport center."""
    score = 0.0
    if (element.text_content() or "").strip():
        score += 100
    rect = element.bounding_box()
    if rect is None:
        return score
    center_x = viewport.width / 2
    center_y = viewport.height / 2
    element_x = rect.x + rect.width / 2
    element_y = rect.y + rect.height / 2
    distance = math.hypot(element_x - center_x, element_y - center_y)
    max_distance = math.hypot(center_x, center_y)
    if max_distance > 0:
        score += max(0.0, 50 * (1 - distance / max_distance))
    return score


def _is_visible_in_dom(element: Any) -> bool:
    if not element.is_connected():
        return False
    rect = element.bounding_box()
    if rect is None:
        return False
    return rect.width >= 1 and rect.height >= 1


class DomMutationTracker:
    """Buffer subtree mutations and report a ranked batch once the DOM settles.

    Every buffered entry restarts the stability timer. When the timer fires,
    the buffer is deduplicated (first classification per element wins),
    filtered to connected elements with a visible box, ranked by
    significance and capped before `on_stable` is invoked.
    """

    def __init__(
        self,
        port: DomObservationPort,
        scheduler: Scheduler,
        on_stable: Callable[[list[TrackedMutation]], None],
        *,
        stability_threshold_ms: float = DEFAULT_STABILITY_THRESHOLD_MS,
        ignore_selectors: Iterable[str] = (),
        max_mutations: int = MAX_MUTATIONS_PER_REPORT,
        test_id_attribute: str = "data-testid",
        is_recording: Callable[[], bool] | None = None,
    ):
        self._port = port
        self._is_recording = is_recording
        self._scheduler = scheduler
        self._on_stable = on_stable
        self.stability_threshold_ms = stability_threshold_ms
        self.ignore_selectors = list(ignore_selectors)
        self.max_mutations = max_mutations
        self.test_id_attribute = test_id_attribute
        self._buffer: list[_BufferedMutation] = []
        self._timer: TimerHandle | None = None
        self._observing = False

    @property
    def observing(self) -> bool:
        return self._observing

    @property
    def buffered_count(self) -> int:
        return len(self._buffer)

    @property
    def timer_pending(self) -> bool:
        return self._timer is not None

    def start(self) -> None:
        if self._observing:
            return
        self._observing = True
        self._port.observe(self._handle_records)

    def stop(self) -> None:
        if self._observing:
            self._port.disconnect()
            self._observing = False
        self._clear_timer()
        self._buffer = []

    def reset(self) -> None:
        self._buffer = []
        self._clear_timer()

    def _handle_records(self, records: list[MutationRecord]) -> None:
        if not self._observing:
            return
        if self._is_recording is not None and not self._is_recording():
            logger.debug("Dropped %s mutation records while not recording", len(records))
            return
        buffered = 0
        for record in records:
            if record.type == "childList":
                for node in record.added_nodes:
                    if self._is_trackable(node):
                        self._buffer.append(_BufferedMutation(type="added", element=node))
                        buffered += 1
            elif record.type == "characterData":
                target = getattr(record.target, "parent_element", None)
                if target is not None and self._is_trackable(target):
                    self._buffer.append(_BufferedMutation(type="textChanged", element=target))
                    buffered += 1
        if buffered:
            self._reset_timer()

    def _is_trackable(self, node: Any) -> bool:
        if getattr(node, "node_type", None) != ELEMENT_NODE:
            return False
        if node.tag_name.lower() in IGNORED_TAGS:
            return False
        return not self._matches_ignore(node)

    def _matches_ignore(self, element: Any) -> bool:
        for selector in self.ignore_selectors:
            try:
                if element.matches(selector):
                    return True
            except InvalidSelectorError:
                logger.debug("Ignore selector %r is invalid; treating as non-match", selector)
        return element.get_attribute(IGNORE_MARKER_ATTRIBUTE) is not None

    def _reset_timer(self) -> None:
        self._clear_timer()
        self._timer = self._scheduler.call_later(self.stability_threshold_ms, self._on_stability_reached)

    def _clear_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_stability_reached(self) -> None:
        self._timer = None
        seen: set[int] = set()
        filtered: list[_BufferedMutation] = []
        for entry in self._buffer:
            key = id(entry.element)
            if key in seen:
                continue
            seen.add(key)
            if not _is_visible_in_dom(entry.element):
                continue
            filtered.append(entry)
        self._buffer = []
        if not filtered:
            return

        viewport = self._port.viewport()
        # sorted() is stable, so equal scores keep buffer order
        ranked = sorted(filtered, key=lambda entry: significance_score(entry.element, viewport), reverse=True)
        tracked = []
        for entry in ranked[: self.max_mutations]:
            text = (entry.element.text_content() or "").strip()
            tracked.append(
                TrackedMutation(
                    type=entry.type,
                    selector=generate_selector(entry.element, self.test_id_attribute),
                    tag_name=entry.element.tag_name.lower(),
                    text_content=text or None,
                )
            )
        logger.debug("DOM stable: reporting %s of %s mutations", len(tracked), len(filtered))
        self._on_stable(tracked)
