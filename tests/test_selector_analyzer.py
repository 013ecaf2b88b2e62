"""Tests for static selector analyzer scoring and reporting."""

import unittest

from stepwright.model.scenario import build_scenario
from stepwright.model import selectors as selector_model
from stepwright.model.selectors import role_selector, xpath_selector
from stepwright.model.steps import ClickStep, KeypressStep, TypeStep
from stepwright.recorder.analyzer import analyze_scenario, compute_lint_violations, score_band


def _scenario(*steps):
    return build_scenario(steps=list(steps), url="https://example.com", scenario_id="scn")


class SelectorAnalyzerTests(unittest.TestCase):
    """Validate deterministic selector scoring and risk classification."""

    def test_scores_high_quality_selectors_as_stable(self) -> None:
        report = analyze_scenario(_scenario(ClickStep(selector=selector_model.test_id_selector("submit-btn"))))
        step = report["steps"][0]
        self.assertEqual(step["band"], "stable")
        self.assertGreaterEqual(step["score"], 90)
        self.assertEqual(step["selector"], '[data-testid="submit-btn"]')

    def test_penalizes_broad_and_reused_selectors(self) -> None:
        report = analyze_scenario(
            _scenario(
                ClickStep(selector="button"),
                TypeStep(selector="button", value="x"),
            )
        )
        self.assertEqual(report["summary"]["selector_steps"], 2)
        self.assertEqual(report["summary"]["high_risk"], 2)
        self.assertTrue(all(item["score"] <= 10 for item in report["steps"]))
        self.assertIn("selector reused 2 times", report["steps"][0]["reasons"])

    def test_flags_dynamic_tokens(self) -> None:
        report = analyze_scenario(_scenario(ClickStep(selector="#react-123456")))
        reasons = report["steps"][0]["reasons"]
        self.assertIn("contains long numeric token", reasons)
        self.assertLess(report["steps"][0]["score"], 90)

    def test_role_and_xpath_strategies(self) -> None:
        report = analyze_scenario(
            _scenario(
                ClickStep(selector=role_selector("button", "Save")),
                ClickStep(selector=xpath_selector("/html/body/div/button")),
            )
        )
        role_step, xpath_step = report["steps"]
        self.assertEqual(role_step["score"], 82)
        self.assertEqual(role_step["band"], "acceptable")
        self.assertEqual(xpath_step["band"], "high_risk")

    def test_page_level_keypress_is_not_scored(self) -> None:
        report = analyze_scenario(_scenario(KeypressStep(key="Enter"), ClickStep(selector="#save")))
        self.assertEqual(report["summary"]["selector_steps"], 1)
        self.assertEqual(report["steps"][0]["step_id"], "step-2")

    def test_lint_violations_follow_thresholds(self) -> None:
        report = analyze_scenario(_scenario(ClickStep(selector="button")))
        violations = compute_lint_violations(report, min_average_score=70.0, max_fragile=5, max_high_risk=0)
        self.assertEqual(len(violations), 2)
        self.assertTrue(violations[0].startswith("average_score"))

        stable = analyze_scenario(_scenario(ClickStep(selector=selector_model.test_id_selector("ok"))))
        self.assertEqual(compute_lint_violations(stable, 70.0, 5, 0), [])

    def test_score_bands(self) -> None:
        self.assertEqual(score_band(85), "stable")
        self.assertEqual(score_band(65), "acceptable")
        self.assertEqual(score_band(45), "fragile")
        self.assertEqual(score_band(44), "high_risk")


if __name__ == "__main__":
    unittest.main()
