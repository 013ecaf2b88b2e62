"""Playback report writers (JSON and JUnit XML)."""

from __future__ import annotations

import json
import logging
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from stepwright.model.results import PlaybackResult
from stepwright.model.scenario import Scenario

logger = logging.getLogger("stepwright.player.reporting")


def build_json_report(result: PlaybackResult, scenario: Scenario | None = None) -> dict[str, Any]:
    report = result.to_dict()
    if scenario is not None:
        report["scenarioName"] = scenario.name
        report["steps"] = [
            {"id": step.id, "type": getattr(step, "type", ""), "description": step.description}
            for step in scenario.steps
        ]
    return report


def write_json_report(result: PlaybackResult, path: Path, scenario: Scenario | None = None) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(build_json_report(result, scenario), indent=2), encoding="utf-8")
    logger.info("Wrote JSON report to %s", path)
    return path


def build_junit_xml(result: PlaybackResult, scenario: Scenario | None = None) -> str:
    """One testsuite per run, one testcase per executed step."""
    suite_name = scenario.name if scenario is not None else result.scenario_id
    step_types = {step.id: getattr(step, "type", "") for step in scenario.steps} if scenario is not None else {}
    summary = result.summary
    started = datetime.fromtimestamp(result.start_time / 1000, tz=timezone.utc) if result.start_time else None

    suite = ET.Element(
        "testsuite",
        {
            "name": suite_name,
            "tests": str(summary.total_steps),
            "failures": str(summary.failed),
            "skipped": str(summary.skipped),
            "time": f"{summary.duration / 1000:.3f}",
        },
    )
    if started is not None:
        suite.set("timestamp", started.isoformat())

    for step_result in result.step_results:
        step_type = step_types.get(step_result.step_id, "")
        name = f"{step_result.index + 1}. {step_type} {step_result.step_id}".replace("  ", " ").strip()
        case = ET.SubElement(
            suite,
            "testcase",
            {
                "name": name,
                "classname": result.scenario_id,
                "time": f"{step_result.duration / 1000:.3f}",
            },
        )
        error = step_result.error
        if step_result.status == "failed":
            failure = ET.SubElement(
                case,
                "failure",
                {
                    "message": error.message if error else "step failed",
                    "type": error.error_code if error else "",
                },
            )
            if error is not None:
                failure.text = f"{error.error_class}: {error.message}"
        elif step_result.status == "skipped":
            skipped = ET.SubElement(case, "skipped")
            if error is not None:
                skipped.set("message", error.message)
        if step_result.screenshot_path:
            ET.SubElement(case, "system-out").text = f"screenshot: {step_result.screenshot_path}"

    ET.indent(suite)
    return ET.tostring(suite, encoding="utf-8", xml_declaration=True).decode("utf-8")


def write_junit_report(result: PlaybackResult, path: Path, scenario: Scenario | None = None) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(build_junit_xml(result, scenario), encoding="utf-8")
    logger.info("Wrote JUnit report to %s", path)
    return path
