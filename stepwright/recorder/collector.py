"""Event collector: recording state, listener lifecycle and the raw event log."""

from __future__ import annotations

import logging
from typing import Any, Callable

from stepwright.model.steps import BaseStep
from stepwright.recorder.events import RawEvent
from stepwright.recorder.listeners import (
    ClickListener,
    InputListener,
    KeyboardListener,
    Listener,
    NavigationListener,
    ScrollListener,
)
from stepwright.recorder.scheduling import Scheduler
from stepwright.recorder.transformer import EventTransformer, merge_type_steps
from stepwright.settings import RecorderSettings

logger = logging.getLogger("stepwright.recorder.collector")

EventHandler = Callable[[RawEvent], None]


class EventCollector:
    """Own the recording state consulted by every listener before forwarding."""

    def __init__(
        self,
        scheduler: Scheduler,
        settings: RecorderSettings | None = None,
        transformer: EventTransformer | None = None,
    ):
        self._scheduler = scheduler
        self.settings = settings or RecorderSettings()
        self._transformer = transformer or EventTransformer()
        self._state = "idle"
        self._events: list[RawEvent] = []
        self._handlers: list[EventHandler] = []
        self._listeners: dict[str, Listener] = {}

    @property
    def state(self) -> str:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state == "recording"

    def start(self, initial_url: str | None = None) -> None:
        if self._state == "recording":
            return
        self._state = "recording"
        self._attach_listeners()
        logger.info("Recording started")
        navigation = self._listeners.get("navigation")
        if initial_url and isinstance(navigation, NavigationListener):
            navigation.navigate(initial_url, navigation_type="push")

    def stop(self) -> None:
        if self._state == "idle":
            return
        self._state = "idle"
        self._detach_listeners()
        logger.info("Recording stopped with %s events", len(self._events))

    def pause(self) -> None:
        if self._state != "recording":
            return
        self._state = "paused"

    def resume(self) -> None:
        if self._state != "paused":
            return
        self._state = "recording"

    def ingest(self, kind: str, payload: dict[str, Any]) -> None:
        """Route a page payload to the listener registered for its interaction kind."""
        listener = self._listeners.get(kind)
        if listener is None:
            logger.debug("No active listener for %s payload", kind)
            return
        listener.handle(payload if isinstance(payload, dict) else {})

    def record(self, event: RawEvent) -> None:
        """Store an event directly, subject to the recording state."""
        self._handle_event(event)

    @property
    def events(self) -> list[RawEvent]:
        return list(self._events)

    def steps(self) -> list[BaseStep]:
        return merge_type_steps(self._transformer.transform_all(self._events))

    def clear(self) -> None:
        self._events = []

    def on_event(self, handler: EventHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    def _handle_event(self, event: RawEvent) -> None:
        if self._state != "recording":
            return
        self._events.append(event)
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as exc:
                logger.warning("Event handler failed for %s event: %s", event.type, exc)

    def _attach_listeners(self) -> None:
        settings = self.settings
        gate = lambda: self._state == "recording"  # noqa: E731
        emit = self._handle_event
        if settings.capture_clicks:
            self._listeners["click"] = ClickListener(emit, gate, self._scheduler)
        if settings.capture_inputs:
            self._listeners["input"] = InputListener(
                emit, gate, self._scheduler, debounce_ms=settings.input_debounce_ms
            )
        if settings.capture_keyboard:
            self._listeners["keyboard"] = KeyboardListener(emit, gate, self._scheduler)
        if settings.capture_scroll:
            self._listeners["scroll"] = ScrollListener(
                emit, gate, self._scheduler, debounce_ms=settings.scroll_debounce_ms
            )
        if settings.capture_navigation:
            self._listeners["navigation"] = NavigationListener(emit, gate, self._scheduler)
        for listener in self._listeners.values():
            listener.attach()

    def _detach_listeners(self) -> None:
        for listener in self._listeners.values():
            listener.detach()
        self._listeners = {}
