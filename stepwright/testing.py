"""Deterministic in-memory implementations of the scheduler, DOM and driver ports."""

from __future__ import annotations

import asyncio
import heapq
import itertools
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Sequence

from stepwright.errors import ElementNotFoundError, StepTimeoutError
from stepwright.player.driver import ElementState
from stepwright.recorder.dom_port import MirroredElement, MutationCallback, MutationRecord, Rect, ViewportSize


class _ManualTimer:
    def __init__(self, due: float, callback: Callable[[], None]):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Virtual clock; timers fire only when `advance()` moves time past them."""

    def __init__(self, start_ms: float = 0.0):
        self._now = float(start_ms)
        self._counter = itertools.count()
        self._timers: list[tuple[float, int, _ManualTimer]] = []

    def now_ms(self) -> float:
        return self._now

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> _ManualTimer:
        timer = _ManualTimer(self._now + max(0.0, delay_ms), callback)
        heapq.heappush(self._timers, (timer.due, next(self._counter), timer))
        return timer

    @property
    def pending(self) -> int:
        return sum(1 for _, _, timer in self._timers if not timer.cancelled)

    def advance(self, ms: float) -> None:
        target = self._now + ms
        while self._timers and self._timers[0][0] <= target:
            due, _, timer = heapq.heappop(self._timers)
            if timer.cancelled:
                continue
            self._now = due
            timer.callback()
        self._now = target


def fake_element(
    tag_name: str,
    *,
    node_id: int = 0,
    text: str = "",
    attributes: dict[str, str] | None = None,
    classes: Sequence[str] = (),
    rect: Rect | None = Rect(x=600, y=340, width=80, height=40),
    connected: bool = True,
    parent: MirroredElement | None = None,
    ignore_matches: dict[str, Any] | None = None,
) -> MirroredElement:
    return MirroredElement(
        node_id=node_id,
        tag_name=tag_name,
        attributes=dict(attributes or {}),
        classes=list(classes),
        text=text,
        rect=rect,
        connected=connected,
        parent=parent,
        ignore_matches=dict(ignore_matches or {}),
    )


class FakeDomPort:
    """Observation port whose mutation batches are pushed by the test."""

    def __init__(self, viewport: ViewportSize | None = None):
        self._viewport = viewport or ViewportSize(width=1280, height=720)
        self._callback: MutationCallback | None = None
        self.disconnect_calls = 0

    @property
    def observing(self) -> bool:
        return self._callback is not None

    def observe(self, callback: MutationCallback) -> None:
        self._callback = callback

    def disconnect(self) -> None:
        self._callback = None
        self.disconnect_calls += 1

    def viewport(self) -> ViewportSize:
        return self._viewport

    def emit(self, records: list[MutationRecord]) -> None:
        if self._callback is not None:
            self._callback(records)

    def add_nodes(self, *nodes: MirroredElement) -> None:
        self.emit([MutationRecord(type="childList", target=None, added_nodes=tuple(nodes))])

    def change_text(self, element: MirroredElement) -> None:
        text_node = MirroredElement(node_id=-1, tag_name="", node_type=3, parent=element)
        self.emit([MutationRecord(type="characterData", target=text_node)])


@dataclass
class FakeElement:
    visible: bool = True
    text: str = ""
    attributes: dict[str, str] = field(default_factory=dict)
    count: int = 1


class FakeDriver:
    """Scripted automation driver: elements by query string, queued failures, call log.

    `fail(method, error, times=1)` makes the next `times` calls of `method`
    raise `error`. `on_call` runs before every recorded call, so a test can
    pause or stop a player while a step is in flight.
    """

    def __init__(self, elements: dict[str, FakeElement] | None = None, url: str = "about:blank"):
        self.elements: dict[str, FakeElement] = dict(elements or {})
        self.url = url
        self.connected = True
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.slept: list[float] = []
        self.failures: dict[str, list[Exception]] = {}
        self.on_call: Callable[[str, dict[str, Any]], None] | None = None
        self.snapshot: dict[str, Any] = {"html": "<html></html>", "url": url}
        self.evaluations: dict[str, Any] = {}

    def fail(self, method: str, error: Exception, times: int = 1) -> None:
        self.failures.setdefault(method, []).extend([error] * times)

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    async def _record(self, method: str, **kwargs: Any) -> None:
        self.calls.append((method, kwargs))
        if self.on_call is not None:
            self.on_call(method, kwargs)
        await asyncio.sleep(0)
        queued = self.failures.get(method)
        if queued:
            raise queued.pop(0)

    def _element(self, selector: str) -> FakeElement:
        element = self.elements.get(selector)
        if element is None or element.count == 0:
            raise ElementNotFoundError(selector)
        return element

    def is_connected(self) -> bool:
        return self.connected

    async def navigate(self, url: str, *, wait_until: str | None = None, timeout_ms: int = 30000) -> None:
        await self._record("navigate", url=url, wait_until=wait_until, timeout_ms=timeout_ms)
        self.url = url

    async def wait_for_selector(self, selector: str, *, state: str = "visible", timeout_ms: int = 30000) -> None:
        await self._record("wait_for_selector", selector=selector, state=state, timeout_ms=timeout_ms)
        element = self.elements.get(selector)
        if state in {"hidden", "detached"}:
            if element is not None and element.count and (state == "detached" or element.visible):
                raise StepTimeoutError(f"{selector} still present after {timeout_ms}ms")
            return
        element = self._element(selector)
        if state == "visible" and not element.visible:
            raise ElementNotFoundError(selector, f"element not visible: {selector}")

    async def click(
        self,
        selector: str,
        *,
        button: str = "left",
        click_count: int = 1,
        modifiers: Sequence[str] = (),
        position: dict[str, float] | None = None,
        timeout_ms: int = 30000,
    ) -> None:
        await self._record(
            "click",
            selector=selector,
            button=button,
            click_count=click_count,
            modifiers=list(modifiers),
            position=position,
            timeout_ms=timeout_ms,
        )
        self._element(selector)

    async def type(
        self,
        selector: str,
        text: str,
        *,
        clear: bool = True,
        delay: float | None = None,
        timeout_ms: int = 30000,
    ) -> None:
        await self._record("type", selector=selector, text=text, clear=clear, delay=delay, timeout_ms=timeout_ms)
        element = self._element(selector)
        element.attributes["value"] = text if clear else element.attributes.get("value", "") + text

    async def press_key(
        self,
        key: str,
        *,
        modifiers: Sequence[str] = (),
        selector: str | None = None,
        timeout_ms: int = 30000,
    ) -> None:
        await self._record("press_key", key=key, modifiers=list(modifiers), selector=selector, timeout_ms=timeout_ms)
        if selector is not None:
            self._element(selector)

    async def hover(self, selector: str, *, position: dict[str, float] | None = None, timeout_ms: int = 30000) -> None:
        await self._record("hover", selector=selector, position=position, timeout_ms=timeout_ms)
        self._element(selector)

    async def scroll(
        self,
        *,
        selector: str | None = None,
        x: float | None = None,
        y: float | None = None,
        behavior: str = "auto",
        timeout_ms: int = 30000,
    ) -> None:
        await self._record("scroll", selector=selector, x=x, y=y, behavior=behavior, timeout_ms=timeout_ms)
        if selector is not None:
            self._element(selector)

    async def select_option(self, selector: str, values: Sequence[str], *, timeout_ms: int = 30000) -> list[str]:
        await self._record("select_option", selector=selector, values=list(values), timeout_ms=timeout_ms)
        self._element(selector)
        return list(values)

    async def query(self, selector: str) -> ElementState | None:
        self.calls.append(("query", {"selector": selector}))
        element = self.elements.get(selector)
        if element is None or element.count == 0:
            return None
        return ElementState(visible=element.visible, text=element.text, attributes=dict(element.attributes))

    async def count(self, selector: str) -> int:
        self.calls.append(("count", {"selector": selector}))
        element = self.elements.get(selector)
        return element.count if element is not None else 0

    async def wait_for_navigation(self, *, timeout_ms: int = 30000) -> None:
        await self._record("wait_for_navigation", timeout_ms=timeout_ms)

    async def wait_for_network_idle(self, *, timeout_ms: int = 30000) -> None:
        await self._record("wait_for_network_idle", timeout_ms=timeout_ms)

    async def wait_for_dom_stable(self, *, stability_ms: int, timeout_ms: int = 30000) -> None:
        await self._record("wait_for_dom_stable", stability_ms=stability_ms, timeout_ms=timeout_ms)

    async def sleep(self, duration_ms: float) -> None:
        self.slept.append(duration_ms)
        await asyncio.sleep(0)

    async def screenshot(self, path: Path, *, full_page: bool = False) -> str:
        await self._record("screenshot", path=str(path), full_page=full_page)
        return str(path)

    async def snapshot_dom(self, *, computed_styles: Sequence[str] = (), full_page: bool = False) -> dict[str, Any]:
        await self._record("snapshot_dom", computed_styles=list(computed_styles), full_page=full_page)
        return dict(self.snapshot)

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        await self._record("evaluate", expression=expression, arg=arg)
        return self.evaluations.get(expression)

    async def current_url(self) -> str:
        return self.url
