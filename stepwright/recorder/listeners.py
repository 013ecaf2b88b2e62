"""Per-interaction listeners that turn page payloads into RawEvents."""

from __future__ import annotations

import logging
from typing import Any, Callable

from pydantic import ValidationError

from stepwright.recorder.element_info import ElementInfo, parse_element_info
from stepwright.recorder.events import (
    InputEvent,
    KeyboardEvent,
    ModifierKeys,
    MouseEvent,
    NavigationEvent,
    RawEvent,
    ScrollEvent,
    SelectEvent,
)
from stepwright.recorder.scheduling import Debouncer, Scheduler
from stepwright.recorder.transformer import is_sensitive_field

logger = logging.getLogger("stepwright.recorder.listeners")

IGNORED_INPUT_TYPES = frozenset({"submit", "button", "reset", "file", "image"})
KEYBOARD_CAPTURE_KEYS = frozenset(
    {
        "Enter",
        "Tab",
        "Escape",
        "Backspace",
        "Delete",
        "ArrowUp",
        "ArrowDown",
        "ArrowLeft",
        "ArrowRight",
        "Home",
        "End",
        "PageUp",
        "PageDown",
    }
    | {f"F{number}" for number in range(1, 13)}
)
MIN_SCROLL_DELTA = 10
NAVIGATION_TYPES = frozenset({"push", "replace", "pop", "reload"})

EmitEvent = Callable[[RawEvent], None]
IsRecording = Callable[[], bool]


def _modifiers(payload: dict[str, Any]) -> ModifierKeys:
    raw = payload.get("modifiers")
    if not isinstance(raw, dict):
        raw = {}
    return ModifierKeys(
        alt=bool(raw.get("alt")),
        ctrl=bool(raw.get("ctrl")),
        meta=bool(raw.get("meta")),
        shift=bool(raw.get("shift")),
    )


def _float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def mask_value(value: str) -> str:
    return "*" * len(value)


class Listener:
    """Base class: payload gating, target parsing and forwarding to the collector."""

    kind = ""

    def __init__(self, emit: EmitEvent, is_recording: IsRecording, scheduler: Scheduler):
        self._emit = emit
        self._is_recording = is_recording
        self._scheduler = scheduler
        self.attached = False

    def attach(self) -> None:
        self.attached = True

    def detach(self) -> None:
        self.attached = False

    def handle(self, payload: dict[str, Any]) -> None:
        if not self.attached or not self._is_recording():
            return
        if payload.get("ignored"):
            logger.debug("Dropped %s payload on ignored element", self.kind)
            return
        self._handle(payload)

    def _handle(self, payload: dict[str, Any]) -> None:
        raise NotImplementedError

    def _forward(self, event: RawEvent) -> None:
        if self.attached and self._is_recording():
            self._emit(event)

    def _target(self, payload: dict[str, Any]) -> ElementInfo | None:
        try:
            return parse_element_info(payload.get("target"))
        except ValidationError as exc:
            logger.debug("Dropped %s payload with malformed target: %s", self.kind, exc)
            return None

    def _timestamp(self, payload: dict[str, Any]) -> float:
        return _float(payload.get("timestamp"), self._scheduler.now_ms())


class ClickListener(Listener):
    kind = "click"

    def _handle(self, payload: dict[str, Any]) -> None:
        target = self._target(payload)
        if target is None:
            return
        event_type = "dblclick" if payload.get("detail") == 2 or payload.get("type") == "dblclick" else "click"
        self._forward(
            MouseEvent(
                type=event_type,
                target=target,
                url=str(payload.get("url", "")),
                timestamp=self._timestamp(payload),
                button=int(_float(payload.get("button"))),
                x=_float(payload.get("x")),
                y=_float(payload.get("y")),
                modifiers=_modifiers(payload),
            )
        )


class InputListener(Listener):
    """Input, change and blur on text fields; change on <select> becomes a select event.

    Raw `input` ticks are debounced per element. A blur whose value equals
    the last value recorded for that element is suppressed.
    """

    kind = "input"

    def __init__(self, emit: EmitEvent, is_recording: IsRecording, scheduler: Scheduler, debounce_ms: float = 300):
        super().__init__(emit, is_recording, scheduler)
        self.debounce_ms = debounce_ms
        self._previous_values: dict[str, str] = {}
        self._debouncers: dict[str, Debouncer] = {}

    def detach(self) -> None:
        super().detach()
        for debouncer in self._debouncers.values():
            debouncer.cancel()
        self._debouncers.clear()

    def _handle(self, payload: dict[str, Any]) -> None:
        target = self._target(payload)
        if target is None:
            return
        event_type = str(payload.get("type", "input"))
        if target.tag == "select":
            if event_type == "change":
                self._emit_select(target, payload)
            return
        if target.tag not in {"input", "textarea"}:
            return
        input_type = str(payload.get("inputType") or target.attributes.get("type") or "text").lower()
        if target.tag == "input" and input_type in IGNORED_INPUT_TYPES:
            return
        if event_type == "input":
            key = self._element_key(target)
            debouncer = self._debouncers.get(key)
            if debouncer is None:
                debouncer = Debouncer(self._scheduler, self.debounce_ms)
                self._debouncers[key] = debouncer
            debouncer.call(lambda: self._process(target, payload, "input", input_type))
            return
        if event_type in {"change", "blur"}:
            self._process(target, payload, event_type, input_type)

    def _element_key(self, target: ElementInfo) -> str:
        return target.xpath or target.id or f"{target.tag}:{target.attributes.get('name', '')}"

    def _process(self, target: ElementInfo, payload: dict[str, Any], event_type: str, input_type: str) -> None:
        sensitive = bool(payload.get("isSensitive")) or is_sensitive_field(target, input_type)
        value = str(payload.get("value", "") or "")
        if sensitive:
            value = mask_value(value)
        key = self._element_key(target)
        previous = self._previous_values.get(key)
        if event_type == "blur" and value == previous:
            return
        self._previous_values[key] = value
        self._forward(
            InputEvent(
                type=event_type,
                target=target,
                url=str(payload.get("url", "")),
                timestamp=self._timestamp(payload),
                value=value,
                previous_value=previous,
                input_type=input_type if target.tag == "input" else "textarea",
                is_sensitive=sensitive,
            )
        )

    def _emit_select(self, target: ElementInfo, payload: dict[str, Any]) -> None:
        values = payload.get("values")
        if not isinstance(values, list):
            values = [payload.get("value", "")]
        option_texts = payload.get("optionTexts")
        if not isinstance(option_texts, list):
            option_texts = []
        self._forward(
            SelectEvent(
                target=target,
                url=str(payload.get("url", "")),
                timestamp=self._timestamp(payload),
                values=tuple(str(value) for value in values),
                option_texts=tuple(str(text) for text in option_texts),
            )
        )


class KeyboardListener(Listener):
    kind = "keyboard"

    def _handle(self, payload: dict[str, Any]) -> None:
        if payload.get("type", "keydown") != "keydown":
            return
        key = str(payload.get("key", ""))
        modifiers = _modifiers(payload)
        if key not in KEYBOARD_CAPTURE_KEYS and not (modifiers.ctrl or modifiers.meta):
            return
        target = self._target(payload) or ElementInfo(tag_name="body")
        self._forward(
            KeyboardEvent(
                type="keydown",
                target=target,
                url=str(payload.get("url", "")),
                timestamp=self._timestamp(payload),
                key=key,
                code=str(payload.get("code", "")),
                modifiers=modifiers,
            )
        )


class ScrollListener(Listener):
    """Debounced scroll capture; moves under MIN_SCROLL_DELTA px on both axes are dropped."""

    kind = "scroll"

    def __init__(self, emit: EmitEvent, is_recording: IsRecording, scheduler: Scheduler, debounce_ms: float = 150):
        super().__init__(emit, is_recording, scheduler)
        self._debouncer = Debouncer(scheduler, debounce_ms)
        self._last_x = 0.0
        self._last_y = 0.0

    def detach(self) -> None:
        super().detach()
        self._debouncer.cancel()

    def _handle(self, payload: dict[str, Any]) -> None:
        self._debouncer.call(lambda: self._process(payload))

    def _process(self, payload: dict[str, Any]) -> None:
        target = self._target(payload) or ElementInfo(tag_name="html", xpath="/html")
        x = _float(payload.get("x"))
        y = _float(payload.get("y"))
        delta_x = x - self._last_x
        delta_y = y - self._last_y
        self._last_x, self._last_y = x, y
        if abs(delta_x) < MIN_SCROLL_DELTA and abs(delta_y) < MIN_SCROLL_DELTA:
            return
        self._forward(
            ScrollEvent(
                target=target,
                url=str(payload.get("url", "")),
                timestamp=self._timestamp(payload),
                x=x,
                y=y,
                delta_x=delta_x,
                delta_y=delta_y,
            )
        )


class NavigationListener(Listener):
    kind = "navigation"

    def __init__(self, emit: EmitEvent, is_recording: IsRecording, scheduler: Scheduler):
        super().__init__(emit, is_recording, scheduler)
        self.current_url: str | None = None

    def _handle(self, payload: dict[str, Any]) -> None:
        to_url = str(payload.get("toUrl") or payload.get("url") or "").strip()
        navigation_type = str(payload.get("navigationType", "push"))
        if navigation_type not in NAVIGATION_TYPES:
            navigation_type = "push"
        self.navigate(to_url, navigation_type=navigation_type, timestamp=self._timestamp(payload))

    def navigate(self, to_url: str, *, navigation_type: str = "push", timestamp: float | None = None) -> None:
        if not to_url:
            return
        from_url = self.current_url
        self.current_url = to_url
        if to_url == from_url:
            return
        self._forward(
            NavigationEvent(
                url=to_url,
                to_url=to_url,
                from_url=from_url,
                navigation_type=navigation_type,
                timestamp=self._scheduler.now_ms() if timestamp is None else timestamp,
            )
        )
