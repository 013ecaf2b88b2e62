"""Static scenario selector analyzer for replay risk reporting."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

from stepwright.model.scenario import Scenario, load_scenario
from stepwright.model.selectors import Selector, SelectorInput, to_query_string
from stepwright.model.steps import step_selector

logger = logging.getLogger("stepwright.recorder.analyzer")

_THREE_PLUS_DIGITS = re.compile(r"\d{3,}")
_BROAD_TAGS = {"a", "button", "input", "div", "span", "p", "li"}
_TAG_ONLY = re.compile(r"[a-z][a-z0-9-]*")


def _base_score(selector: SelectorInput) -> tuple[int, str]:
    if isinstance(selector, Selector):
        if selector.strategy == "testId":
            return 95, "testId selector"
        if selector.strategy == "role":
            if selector.name:
                return 82, "role selector with accessible name"
            return 60, "role selector"
        if selector.strategy == "xpath":
            return 20, "xpath selector"
        return _css_score(selector.value)
    return _css_score(selector)


def _css_score(selector: str) -> tuple[int, str]:
    if selector.startswith(("[data-testid=", "[data-test=", "[data-cy=", "[data-qa=")):
        return 93, "test attribute selector"
    if selector.startswith(("#", "[id=")):
        return 88, "id selector"
    if selector.startswith("[aria-label="):
        return 78, "aria-label selector"
    if "[name=" in selector:
        return 75, "name selector"
    if ":nth-of-type(" in selector or ":nth-child(" in selector:
        return 40, "positional selector"
    if "." in selector and not selector.startswith("["):
        return 55, "tag.class selector"
    if _TAG_ONLY.fullmatch(selector):
        return 30, "tag-only selector"
    return 45, "generic selector"


def _selector_risks(query: str) -> list[str]:
    risks: list[str] = []
    lowered = query.lower()
    if _THREE_PLUS_DIGITS.search(query):
        risks.append("contains long numeric token")
    if "css-" in lowered or "sc-" in lowered or ":r" in lowered:
        risks.append("contains dynamic style/react token")
    if "\\ " in query:
        risks.append("contains escaped whitespace token")
    if len(query) > 80:
        risks.append("very long selector")
    if _TAG_ONLY.fullmatch(query) and query in _BROAD_TAGS:
        risks.append("overly broad tag selector")
    return risks


def _apply_penalties(base: int, risks: list[str]) -> int:
    score = base
    for risk in risks:
        if risk in {"contains long numeric token", "contains dynamic style/react token"}:
            score -= 15
        elif risk in {"contains escaped whitespace token", "very long selector"}:
            score -= 10
        elif risk == "overly broad tag selector":
            score -= 20
    return max(0, min(100, score))


def score_band(score: int) -> str:
    if score >= 85:
        return "stable"
    if score >= 65:
        return "acceptable"
    if score >= 45:
        return "fragile"
    return "high_risk"


def analyze_scenario(scenario: Scenario) -> dict[str, Any]:
    """Analyze selector quality of every selector-bearing step without executing it."""
    selector_steps = [
        (index, step, step_selector(step))
        for index, step in enumerate(scenario.steps)
        if hasattr(step, "selector")
    ]
    selector_usage: dict[str, int] = {}
    for _, _, selector in selector_steps:
        if selector is None:
            continue
        query = to_query_string(selector)
        selector_usage[query] = selector_usage.get(query, 0) + 1

    step_reports: list[dict[str, Any]] = []
    for index, step, selector in selector_steps:
        step_id = step.id or f"step-{index + 1}"
        if selector is None:
            # keypress and scroll may legitimately target the page
            if step.type in {"keypress", "scroll", "wait"}:
                continue
            step_reports.append(
                {
                    "step_id": step_id,
                    "type": step.type,
                    "score": 0,
                    "band": "high_risk",
                    "selector": "",
                    "reasons": ["missing selector"],
                }
            )
            continue

        query = to_query_string(selector)
        base, basis = _base_score(selector)
        reasons = [basis]
        risks = _selector_risks(query)
        reasons.extend(risks)
        score = _apply_penalties(base, risks)

        duplicates = selector_usage.get(query, 0)
        if duplicates > 1 and step.type not in {"assertElement"}:
            dup_penalty = min(15, (duplicates - 1) * 5)
            score = max(0, score - dup_penalty)
            reasons.append(f"selector reused {duplicates} times")

        step_reports.append(
            {
                "step_id": step_id,
                "type": step.type,
                "score": score,
                "band": score_band(score),
                "selector": query,
                "reasons": reasons,
            }
        )

    scored_values = [item["score"] for item in step_reports]
    average_score = round(sum(scored_values) / len(scored_values), 2) if scored_values else 0.0
    summary = {
        "selector_steps": len(scored_values),
        "average_score": average_score,
        "stable": sum(1 for item in step_reports if item["band"] == "stable"),
        "acceptable": sum(1 for item in step_reports if item["band"] == "acceptable"),
        "fragile": sum(1 for item in step_reports if item["band"] == "fragile"),
        "high_risk": sum(1 for item in step_reports if item["band"] == "high_risk"),
    }
    return {
        "scenario_id": scenario.id,
        "ast_schema_version": scenario.meta.ast_schema_version,
        "summary": summary,
        "steps": step_reports,
    }


def analyze_scenario_file(path: Path) -> dict[str, Any]:
    """Load a scenario document from disk and return its selector analysis report."""
    logger.info("Analyzing scenario selector quality from %s", path)
    return analyze_scenario(load_scenario(path))


def compute_lint_violations(
    report: dict[str, Any],
    min_average_score: float,
    max_fragile: int,
    max_high_risk: int,
) -> list[str]:
    """Threshold violations from an analyzer report summary."""
    summary = report.get("summary", {})
    average_score = float(summary.get("average_score", 0))
    fragile = int(summary.get("fragile", 0))
    high_risk = int(summary.get("high_risk", 0))

    violations: list[str] = []
    if average_score < min_average_score:
        violations.append(f"average_score {average_score} below minimum {min_average_score}")
    if fragile > max_fragile:
        violations.append(f"fragile {fragile} exceeds maximum {max_fragile}")
    if high_risk > max_high_risk:
        violations.append(f"high_risk {high_risk} exceeds maximum {max_high_risk}")
    return violations
