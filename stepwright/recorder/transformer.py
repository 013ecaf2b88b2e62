"""Raw event to AST step transformation and the type-step merge pass."""

from __future__ import annotations

import logging
from typing import Callable, Iterable
from urllib.parse import urlparse

from stepwright.model.selectors import Selector, selector_key
from stepwright.model.steps import (
    BaseStep,
    ClickStep,
    KeypressStep,
    NavigateStep,
    ScrollPosition,
    ScrollStep,
    SelectStep,
    TypeStep,
)
from stepwright.recorder.element_info import ElementInfo
from stepwright.recorder.events import (
    InputEvent,
    KeyboardEvent,
    MouseEvent,
    NavigationEvent,
    RawEvent,
    ScrollEvent,
    SelectEvent,
)
from stepwright.recorder.selectors import get_best_selector

logger = logging.getLogger("stepwright.recorder.transformer")

CAPTURE_KEYS = frozenset({"Enter", "Tab", "Escape"})
SENSITIVE_INPUT_TYPES = frozenset({"password"})
SENSITIVE_NAME_PATTERNS = (
    "password",
    "passwd",
    "secret",
    "token",
    "apikey",
    "api_key",
    "credit_card",
    "creditcard",
    "card_number",
    "cvv",
    "cvc",
    "ssn",
    "social_security",
)

SelectorResolver = Callable[[ElementInfo], "Selector | None"]


def is_sensitive_field(info: ElementInfo | None, input_type: str | None = None) -> bool:
    """Password inputs and fields whose name/id look like credentials or card data."""
    if info is None:
        return False
    field_type = (input_type or info.attributes.get("type") or "").lower()
    if field_type in SENSITIVE_INPUT_TYPES:
        return True
    name = (info.attributes.get("name") or "").lower()
    element_id = (info.id or "").lower()
    return any(pattern in name or pattern in element_id for pattern in SENSITIVE_NAME_PATTERNS)


def navigation_path(url: str) -> str:
    """Strip scheme and host so recorded navigation replays against any origin."""
    parsed = urlparse(url)
    path = parsed.path
    if parsed.query:
        path = f"{path}?{parsed.query}"
    if parsed.fragment:
        path = f"{path}#{parsed.fragment}"
    return path or "/"


class EventTransformer:
    """Map one RawEvent to zero or one Step."""

    def __init__(self, resolve_selector: SelectorResolver | None = None):
        self._resolve = resolve_selector or get_best_selector

    def transform(self, event: RawEvent) -> BaseStep | None:
        if isinstance(event, MouseEvent):
            return self._click(event)
        if isinstance(event, InputEvent):
            return self._input(event)
        if isinstance(event, KeyboardEvent):
            return self._keyboard(event)
        if isinstance(event, ScrollEvent):
            return self._scroll(event)
        if isinstance(event, SelectEvent):
            return self._select(event)
        if isinstance(event, NavigationEvent):
            return NavigateStep(url=navigation_path(event.to_url))
        return None

    def transform_all(self, events: Iterable[RawEvent]) -> list[BaseStep]:
        steps = []
        for event in events:
            step = self.transform(event)
            if step is not None:
                steps.append(step)
        return steps

    def _click(self, event: MouseEvent) -> ClickStep | None:
        if event.type not in {"click", "dblclick"}:
            return None
        selector = self._resolve(event.target)
        if selector is None:
            logger.debug("Dropped %s event %s: no resolvable selector", event.type, event.id)
            return None
        button = None
        if event.button == 1:
            button = "middle"
        elif event.button == 2:
            button = "right"
        modifiers = event.modifiers.as_list()
        return ClickStep(
            selector=selector,
            button=button,
            click_count=2 if event.type == "dblclick" else None,
            modifiers=modifiers or None,
        )

    def _input(self, event: InputEvent) -> TypeStep | None:
        if event.type not in {"blur", "change"}:
            return None
        selector = self._resolve(event.target)
        if selector is None:
            logger.debug("Dropped %s event %s: no resolvable selector", event.type, event.id)
            return None
        if not event.value and not event.previous_value:
            return None
        sensitive = event.is_sensitive or is_sensitive_field(event.target, event.input_type)
        return TypeStep(selector=selector, value=event.value, sensitive=True if sensitive else None)

    def _keyboard(self, event: KeyboardEvent) -> KeypressStep | None:
        mods = event.modifiers
        if event.key not in CAPTURE_KEYS and not (mods.ctrl or mods.meta or mods.alt):
            return None
        selector = self._resolve(event.target)
        modifiers = mods.as_list()
        return KeypressStep(key=event.key, selector=selector, modifiers=modifiers or None)

    def _scroll(self, event: ScrollEvent) -> ScrollStep:
        selector = self._resolve(event.target)
        position = ScrollPosition(
            x=event.x if event.x != 0 else None,
            y=event.y if event.y != 0 else None,
        )
        return ScrollStep(selector=selector, position=position)

    def _select(self, event: SelectEvent) -> SelectStep | None:
        selector = self._resolve(event.target)
        if selector is None:
            return None
        values = list(event.values)
        return SelectStep(selector=selector, values=values[0] if len(values) == 1 else values)


def transform_event(event: RawEvent) -> BaseStep | None:
    return EventTransformer().transform(event)


def transform_events(events: Iterable[RawEvent]) -> list[BaseStep]:
    return EventTransformer().transform_all(events)


def merge_type_steps(steps: Iterable[BaseStep]) -> list[BaseStep]:
    """Collapse consecutive type steps on the same selector, keeping the latest value."""
    merged: list[BaseStep] = []
    for step in steps:
        if (
            isinstance(step, TypeStep)
            and merged
            and isinstance(merged[-1], TypeStep)
            and selector_key(merged[-1].selector) == selector_key(step.selector)
        ):
            merged[-1] = step
            continue
        merged.append(step)
    return merged
