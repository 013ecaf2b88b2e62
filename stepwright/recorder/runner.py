"""Recorder runtime: drive a headed browser, capture interaction, write the scenario."""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import socket
from pathlib import Path
from typing import Any

from playwright.async_api import async_playwright

from stepwright.model.scenario import Scenario, save_scenario
from stepwright.network.calls import PageApiObserver
from stepwright.recorder.dom_port import PageDomPort, ViewportSize
from stepwright.recorder.element_info import ATTRIBUTE_WHITELIST, MAX_PARENT_DEPTH, MAX_TEXT_LENGTH, MAX_XPATH_DEPTH
from stepwright.recorder.scheduling import LoopScheduler
from stepwright.recorder.server import RecordingServer
from stepwright.recorder.session import RecordingSession
from stepwright.settings import RecorderSettings, load_settings

logger = logging.getLogger("stepwright.recorder.runner")

INJECTOR_JS = Path(__file__).parent / "injector.js"
EVENT_BINDING_NAME = "__stepwrightEvent"
DEFAULT_VIEWPORT = {"width": 1280, "height": 720}


def _choose_recording_port(preferred_port: int = 7331) -> int:
    """Return an available localhost port, preferring the default recorder port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind(("127.0.0.1", preferred_port))
            return preferred_port
        except OSError:
            pass

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return int(sock.getsockname()[1])


def build_injector_script(settings: RecorderSettings) -> str:
    """Injector source prefixed with the page-side capture configuration."""
    page_config = {
        "testIdAttribute": settings.test_id_attribute,
        "ignoreSelectors": list(settings.ignore_selectors),
        "attributeWhitelist": list(ATTRIBUTE_WHITELIST),
        "maxParentDepth": MAX_PARENT_DEPTH,
        "maxXpathDepth": MAX_XPATH_DEPTH,
        "maxTextLength": MAX_TEXT_LENGTH,
    }
    injector_code = INJECTOR_JS.read_text(encoding="utf-8")
    return f"window.__stepwrightConfig = {json.dumps(page_config)};\n{injector_code}"


def _make_event_binding(session: RecordingSession):
    def _record_event_binding(_source: object, event: Any) -> None:
        if not isinstance(event, dict):
            return
        kind = event.get("kind")
        payload = event.get("payload", {})
        if isinstance(kind, str):
            session.ingest(kind, payload if isinstance(payload, dict) else {})

    return _record_event_binding


async def run_record(
    name: str,
    start_url: str,
    output_dir: Path = Path("scenarios"),
    settings: RecorderSettings | None = None,
) -> Scenario:
    """Record a scenario in a headed browser until interrupted, then save it."""
    settings = settings or RecorderSettings.from_settings(load_settings())
    dom_port = PageDomPort(ViewportSize(width=DEFAULT_VIEWPORT["width"], height=DEFAULT_VIEWPORT["height"]))
    session = RecordingSession(
        name,
        start_url,
        scheduler=LoopScheduler(),
        dom_port=dom_port,
        settings=settings,
        viewport=dict(DEFAULT_VIEWPORT),
    )
    recorder_port = _choose_recording_port()
    server = RecordingServer(session=session, port=recorder_port, dom_port=dom_port)
    await server.start()

    api_observer = PageApiObserver(session.api_log)
    playwright = await async_playwright().start()
    browser = None
    try:
        browser = await playwright.chromium.launch(headless=False)
        context = await browser.new_context(viewport=dict(DEFAULT_VIEWPORT))
        await context.expose_binding(EVENT_BINDING_NAME, _make_event_binding(session))
        await dom_port.install(context)
        await context.add_init_script(build_injector_script(settings))

        page = await context.new_page()
        session.user_agent = await page.evaluate("navigator.userAgent")
        api_observer.start(page)

        def _on_frame_navigated(frame: Any) -> None:
            if frame is page.main_frame:
                session.ingest("navigation", {"toUrl": frame.url, "navigationType": "push"})

        session.start()
        await page.goto(start_url, wait_until="domcontentloaded")
        page.on("framenavigated", _on_frame_navigated)

        print(f"\nRecording scenario: {name}")
        print(f"Start URL: {start_url}")
        print(f"External event receiver: http://127.0.0.1:{recorder_port}")
        print("Perform actions in browser. Press Ctrl+C when finished.\n")

        stop_event = asyncio.Event()

        def _stop() -> None:
            stop_event.set()

        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, _stop)
        except NotImplementedError:
            logger.warning("Signal handlers not supported on this platform.")
        page.on("close", lambda _page: _stop())

        await stop_event.wait()

        api_observer.stop()
        scenario = session.finalize(name=name)

        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = save_scenario(scenario, output_dir / f"{name}.json")

        print(f"\nRecorded {len(scenario.steps)} steps")
        print(f"Saved -> {output_path}\n")
        return scenario
    finally:
        session.close()
        await server.stop()
        if browser is not None:
            await browser.close()
        await playwright.stop()
