"""Playback runtime: load a scenario file, replay it in a browser, persist the run."""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Any

from stepwright.model.results import PlaybackResult
from stepwright.model.scenario import load_scenario
from stepwright.network.calls import ApiCallLog, PageApiObserver
from stepwright.player.driver import PlaywrightDriver
from stepwright.player.player import PlayerEvent, StepPlayer
from stepwright.player.reporting import write_json_report, write_junit_report
from stepwright.settings import PlayerOptions, data_dir, load_settings, validate_settings
from stepwright.store import save_run

logger = logging.getLogger("stepwright.player.runner")


def _log_event(event: PlayerEvent) -> None:
    if event.type == "stepComplete":
        result = event.data["result"]
        logger.info("Step %s [%s] %s", result.index + 1, result.step_id, result.status)
    elif event.type == "playbackError":
        logger.warning("Playback error at step %s: %s", event.data.get("index"), event.data.get("message"))
    else:
        logger.debug("Player event %s %s", event.type, event.data)


async def run_playback(
    scenario_path: Path,
    options: PlayerOptions | None = None,
    *,
    settings: dict[str, Any] | None = None,
    cdp_url: str | None = None,
    report_json: Path | None = None,
    junit: Path | None = None,
    persist: bool = True,
) -> PlaybackResult:
    """Replay a scenario file end to end and return its playback result."""
    settings = validate_settings(settings or load_settings())
    options = options or PlayerOptions.from_settings(settings)
    scenario = load_scenario(Path(scenario_path))
    if options.screenshot_on_failure and options.screenshot_dir is None:
        options = dataclasses.replace(options, screenshot_dir=data_dir() / "screenshots" / scenario.id)

    api_log = ApiCallLog()
    observer = PageApiObserver(api_log)
    driver = PlaywrightDriver(headless=options.headless, cdp_url=cdp_url)
    player = StepPlayer(
        driver,
        options,
        api_log=api_log,
        test_id_attribute=settings["recorder"]["test_id_attribute"],
    )

    try:
        await driver.connect()
        observer.start(driver.page)
        player.load(scenario)
        logger.info("Playing scenario %s (%s steps)", scenario.id, len(scenario.steps))
        result = await player.play()
        if player.state == "paused":
            # Nobody can resume a non-interactive run.
            player.stop()
            result = player.result()
    finally:
        observer.stop()
        await driver.close()

    for event in player.drain_events():
        _log_event(event)

    if report_json is not None:
        write_json_report(result, report_json, scenario)
    if junit is not None:
        write_junit_report(result, junit, scenario)
    if persist:
        try:
            await save_run(result, scenario_path=str(scenario_path))
        except Exception as exc:
            logger.warning("Run history could not be saved: %s", exc)
    return result
