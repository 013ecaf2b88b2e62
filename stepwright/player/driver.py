"""Automation driver port and its Playwright implementation used during playback."""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Optional, Protocol, Sequence

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from stepwright.errors import (
    DriverDisconnectedError,
    ElementNotFoundError,
    StepTimeoutError,
)

logger = logging.getLogger("stepwright.player.driver")

DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_VIEWPORT = {"width": 1280, "height": 720}
_WAIT_UNTIL = {
    "load": "load",
    "domcontentloaded": "domcontentloaded",
    "networkidle0": "networkidle",
    "networkidle2": "networkidle",
}
_RETRYABLE_CLICK_FRAGMENTS = ("detached", "strict mode", "element is not stable")
_DISCONNECT_FRAGMENTS = (
    "target page, context or browser has been closed",
    "browser has been closed",
    "browser has disconnected",
)

_DOM_STABLE_JS = """
([stabilityMs, timeoutMs]) => new Promise((resolve) => {
  let timer = null;
  const observer = new MutationObserver(() => {
    clearTimeout(timer);
    timer = setTimeout(done, stabilityMs);
  });
  const deadline = setTimeout(() => { observer.disconnect(); clearTimeout(timer); resolve(false); }, timeoutMs);
  function done() { observer.disconnect(); clearTimeout(deadline); resolve(true); }
  observer.observe(document.documentElement, {
    childList: true, subtree: true, attributes: true, characterData: true,
  });
  timer = setTimeout(done, stabilityMs);
})
"""

_SNAPSHOT_JS = """
([styleProps]) => {
  const snapshot = {
    url: window.location.href,
    title: document.title,
    html: document.documentElement.outerHTML,
    viewport: { width: window.innerWidth, height: window.innerHeight },
    scroll: { x: window.scrollX, y: window.scrollY },
  };
  if (styleProps && styleProps.length) {
    snapshot.computedStyles = Array.from(document.querySelectorAll("body *")).slice(0, 500).map((el, index) => {
      const computed = window.getComputedStyle(el);
      const styles = {};
      for (const prop of styleProps) {
        styles[prop] = computed.getPropertyValue(prop);
      }
      return { index, tagName: el.tagName.toLowerCase(), styles };
    });
  }
  return snapshot;
}
"""

_ATTRIBUTES_JS = "(el) => Object.fromEntries(Array.from(el.attributes).map((attr) => [attr.name, attr.value]))"


@dataclass(frozen=True)
class ElementState:
    """Observed state of the first element matching a selector."""

    visible: bool
    text: str = ""
    attributes: dict[str, str] = field(default_factory=dict)


class AutomationDriver(Protocol):
    """Capability set the step executors drive. Selectors are driver query strings."""

    def is_connected(self) -> bool: ...

    async def navigate(self, url: str, *, wait_until: str | None = None, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None: ...

    async def wait_for_selector(self, selector: str, *, state: str = "visible", timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None: ...

    async def click(
        self,
        selector: str,
        *,
        button: str = "left",
        click_count: int = 1,
        modifiers: Sequence[str] = (),
        position: dict[str, float] | None = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None: ...

    async def type(
        self,
        selector: str,
        text: str,
        *,
        clear: bool = True,
        delay: float | None = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None: ...

    async def press_key(
        self,
        key: str,
        *,
        selector: str | None = None,
        modifiers: Sequence[str] = (),
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None: ...

    async def hover(self, selector: str, *, position: dict[str, float] | None = None, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None: ...

    async def scroll(
        self,
        *,
        selector: str | None = None,
        x: float | None = None,
        y: float | None = None,
        behavior: str = "auto",
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None: ...

    async def select_option(self, selector: str, values: Sequence[str], *, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> list[str]: ...

    async def query(self, selector: str) -> ElementState | None: ...

    async def count(self, selector: str) -> int: ...

    async def wait_for_navigation(self, *, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None: ...

    async def wait_for_network_idle(self, *, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None: ...

    async def wait_for_dom_stable(self, *, stability_ms: int, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None: ...

    async def sleep(self, duration_ms: float) -> None: ...

    async def screenshot(self, path: Path, *, full_page: bool = False) -> str: ...

    async def snapshot_dom(self, *, computed_styles: Sequence[str] = (), full_page: bool = False) -> dict[str, Any]: ...

    async def evaluate(self, expression: str, arg: Any = None) -> Any: ...

    async def current_url(self) -> str: ...


def _is_disconnect(message: str) -> bool:
    lower = message.lower()
    return any(fragment in lower for fragment in _DISCONNECT_FRAGMENTS)


@contextmanager
def _translate_errors(selector: str = "", waiting_for_element: bool = True) -> Iterator[None]:
    """Map Playwright failures onto the step error taxonomy."""
    try:
        yield
    except PlaywrightTimeoutError as exc:
        if selector and waiting_for_element:
            raise ElementNotFoundError(selector, f"element not found: {selector} ({exc.message})") from exc
        raise StepTimeoutError(str(exc)) from exc
    except PlaywrightError as exc:
        if _is_disconnect(str(exc)):
            raise DriverDisconnectedError(str(exc)) from exc
        raise


class PlaywrightDriver:
    """Playwright-backed driver; launches a browser or attaches over CDP."""

    def __init__(
        self,
        *,
        headless: bool = True,
        cdp_url: str | None = None,
        viewport: dict[str, int] | None = None,
    ) -> None:
        self.headless = headless
        self.cdp_url = cdp_url
        self.viewport = viewport or dict(DEFAULT_VIEWPORT)
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    @property
    def page(self) -> Page:
        return self._require_page()

    async def connect(self) -> None:
        """Launch (or attach to) a browser and prepare an active page."""
        max_retries = 3
        last_error: Exception | None = None

        for attempt in range(1, max_retries + 1):
            try:
                if self._playwright is None:
                    self._playwright = await async_playwright().start()

                if self.cdp_url:
                    logger.info("Connecting to browser CDP endpoint %s", self.cdp_url)
                    self._browser = await self._playwright.chromium.connect_over_cdp(self.cdp_url)
                    contexts = self._browser.contexts
                    self._context = contexts[0] if contexts else await self._browser.new_context()
                    pages = self._context.pages
                    self._page = pages[0] if pages else await self._context.new_page()
                else:
                    logger.info("Launching chromium (headless=%s)", self.headless)
                    self._browser = await self._playwright.chromium.launch(headless=self.headless)
                    self._context = await self._browser.new_context(viewport=self.viewport)
                    self._page = await self._context.new_page()

                logger.info("Driver connected and ready with active page")
                return
            except Exception as exc:
                last_error = exc
                message = str(exc).lower()
                is_retryable = isinstance(exc, PlaywrightError) or (
                    "econnreset" in message or "connection refused" in message
                )
                if not is_retryable or attempt == max_retries:
                    break
                await asyncio.sleep(1)

        raise DriverDisconnectedError(f"failed to start browser after {max_retries} attempts: {last_error}") from last_error

    def _require_page(self) -> Page:
        """Return current page or fail if connect() has not been called."""
        if self._page is None:
            raise DriverDisconnectedError("driver is not connected; call connect() first")
        if self._page.is_closed():
            raise DriverDisconnectedError("page is closed")
        return self._page

    def is_connected(self) -> bool:
        if self._browser is None or self._page is None:
            return False
        return self._browser.is_connected() and not self._page.is_closed()

    async def navigate(self, url: str, *, wait_until: str | None = None, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None:
        page = self._require_page()
        logger.info("Navigating to %s", url)
        with _translate_errors(waiting_for_element=False):
            await page.goto(url, wait_until=_WAIT_UNTIL.get(wait_until or "load", "load"), timeout=timeout_ms)

    async def wait_for_selector(self, selector: str, *, state: str = "visible", timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None:
        page = self._require_page()
        with _translate_errors(selector, waiting_for_element=state in {"visible", "attached"}):
            await page.locator(selector).first.wait_for(state=state, timeout=timeout_ms)

    async def _execute_click(self, selector: str, options: dict[str, Any], timeout_ms: int) -> None:
        page = self._require_page()
        locator = page.locator(selector)
        await locator.wait_for(state="visible", timeout=timeout_ms)
        await locator.click(timeout=timeout_ms, **options)

    async def click(
        self,
        selector: str,
        *,
        button: str = "left",
        click_count: int = 1,
        modifiers: Sequence[str] = (),
        position: dict[str, float] | None = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None:
        """Click with a single retry for transient DOM mutation races."""
        logger.info("Clicking selector %s", selector)
        options: dict[str, Any] = {"button": button, "click_count": click_count}
        if modifiers:
            options["modifiers"] = list(modifiers)
        if position:
            options["position"] = dict(position)
        with _translate_errors(selector):
            try:
                await self._execute_click(selector, options, timeout_ms)
            except PlaywrightTimeoutError:
                raise
            except PlaywrightError as exc:
                if any(fragment in str(exc) for fragment in _RETRYABLE_CLICK_FRAGMENTS):
                    logger.warning("Click retry triggered for selector '%s': %s", selector, exc)
                    await self._execute_click(selector, options, timeout_ms)
                else:
                    raise

    async def type(
        self,
        selector: str,
        text: str,
        *,
        clear: bool = True,
        delay: float | None = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None:
        page = self._require_page()
        logger.info("Typing into selector %s", selector)
        locator = page.locator(selector)
        with _translate_errors(selector):
            await locator.wait_for(state="visible", timeout=timeout_ms)
            if clear:
                await locator.fill("", timeout=timeout_ms)
            if delay:
                await locator.press_sequentially(text, delay=delay, timeout=timeout_ms)
            elif clear:
                await locator.fill(text, timeout=timeout_ms)
            else:
                await locator.press_sequentially(text, timeout=timeout_ms)

    async def press_key(
        self,
        key: str,
        *,
        selector: str | None = None,
        modifiers: Sequence[str] = (),
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None:
        page = self._require_page()
        chord = "+".join([*modifiers, key])
        logger.info("Pressing %s", chord)
        with _translate_errors(selector or ""):
            if selector:
                await page.locator(selector).press(chord, timeout=timeout_ms)
            else:
                await page.keyboard.press(chord)

    async def hover(self, selector: str, *, position: dict[str, float] | None = None, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None:
        page = self._require_page()
        with _translate_errors(selector):
            if position:
                await page.locator(selector).hover(position=dict(position), timeout=timeout_ms)
            else:
                await page.locator(selector).hover(timeout=timeout_ms)

    async def scroll(
        self,
        *,
        selector: str | None = None,
        x: float | None = None,
        y: float | None = None,
        behavior: str = "auto",
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None:
        page = self._require_page()
        with _translate_errors(selector or ""):
            if selector and x is None and y is None:
                await page.locator(selector).scroll_into_view_if_needed(timeout=timeout_ms)
                return
            if selector:
                await page.locator(selector).evaluate(
                    "(el, [x, y, behavior]) => el.scrollTo({left: x ?? el.scrollLeft, top: y ?? el.scrollTop, behavior})",
                    [x, y, behavior],
                )
                return
            await page.evaluate(
                "([x, y, behavior]) => window.scrollTo({left: x ?? window.scrollX, top: y ?? window.scrollY, behavior})",
                [x, y, behavior],
            )

    async def select_option(self, selector: str, values: Sequence[str], *, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> list[str]:
        page = self._require_page()
        with _translate_errors(selector):
            return await page.locator(selector).select_option(list(values), timeout=timeout_ms)

    async def query(self, selector: str) -> ElementState | None:
        page = self._require_page()
        with _translate_errors(selector, waiting_for_element=False):
            locator = page.locator(selector)
            if await locator.count() == 0:
                return None
            first = locator.first
            return ElementState(
                visible=await first.is_visible(),
                text=await first.text_content() or "",
                attributes=await first.evaluate(_ATTRIBUTES_JS),
            )

    async def count(self, selector: str) -> int:
        page = self._require_page()
        with _translate_errors(selector, waiting_for_element=False):
            return await page.locator(selector).count()

    async def wait_for_navigation(self, *, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None:
        page = self._require_page()
        with _translate_errors(waiting_for_element=False):
            await page.wait_for_load_state("load", timeout=timeout_ms)

    async def wait_for_network_idle(self, *, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None:
        page = self._require_page()
        with _translate_errors(waiting_for_element=False):
            await page.wait_for_load_state("networkidle", timeout=timeout_ms)

    async def wait_for_dom_stable(self, *, stability_ms: int, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None:
        page = self._require_page()
        with _translate_errors(waiting_for_element=False):
            stable = await page.evaluate(_DOM_STABLE_JS, [stability_ms, timeout_ms])
        if not stable:
            raise StepTimeoutError(f"DOM did not stabilize for {stability_ms}ms within {timeout_ms}ms")

    async def sleep(self, duration_ms: float) -> None:
        await asyncio.sleep(max(0.0, duration_ms) / 1000)

    async def screenshot(self, path: Path, *, full_page: bool = False) -> str:
        page = self._require_page()
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with _translate_errors(waiting_for_element=False):
            await page.screenshot(path=str(path), full_page=full_page)
        return str(path)

    async def snapshot_dom(self, *, computed_styles: Sequence[str] = (), full_page: bool = False) -> dict[str, Any]:
        page = self._require_page()
        with _translate_errors(waiting_for_element=False):
            snapshot = await page.evaluate(_SNAPSHOT_JS, [list(computed_styles)])
        snapshot["fullPage"] = full_page
        return snapshot

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        page = self._require_page()
        with _translate_errors(waiting_for_element=False):
            return await page.evaluate(expression, arg)

    async def current_url(self) -> str:
        return self._require_page().url

    async def close(self) -> None:
        """Close browser and Playwright resources."""
        logger.info("Closing playback driver resources")

        if self._browser is not None:
            await self._browser.close()
            self._browser = None

        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

        self._context = None
        self._page = None
