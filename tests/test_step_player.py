"""Tests for the step player state machine, failure policy and event stream."""

import asyncio
import tempfile
import unittest
from pathlib import Path

from stepwright.errors import DriverDisconnectedError, PlayerStateError
from stepwright.model.scenario import build_scenario
from stepwright.model.steps import (
    ApiExpectation,
    ApiMatch,
    AssertApiStep,
    ClickStep,
    NavigateStep,
    SnapshotDomStep,
    TypeStep,
)
from stepwright.network.calls import ApiCallLog, CapturedApiCall, CapturedRequest, CapturedResponse
from stepwright.player.player import StepPlayer
from stepwright.settings import PlayerOptions
from stepwright.testing import FakeDriver, FakeElement


def _scenario(*steps, setup=None, teardown=None):
    scenario = build_scenario(steps=list(steps), url="https://app.test/", scenario_id="scn-1")
    if setup is not None or teardown is not None:
        scenario = scenario.model_copy(update={"setup": setup, "teardown": teardown})
    return scenario


def _checkout_steps():
    return [
        NavigateStep(url="https://app.test/cart"),
        ClickStep(selector="#checkout"),
        TypeStep(selector="#email", value="ann@example.com"),
    ]


class StepPlayerTestCase(unittest.IsolatedAsyncioTestCase):
    """Shared driver and player construction."""

    def setUp(self) -> None:
        self.driver = FakeDriver({"#checkout": FakeElement(), "#email": FakeElement()})

    def _player(self, **options) -> StepPlayer:
        return StepPlayer(self.driver, PlayerOptions(**options))

    @staticmethod
    def _types(events) -> list[str]:
        return [event.type for event in events]


class StepPlayerPlaybackTests(StepPlayerTestCase):
    """Full runs, failure dispositions and retries."""

    async def test_successful_run_emits_lifecycle_in_order(self) -> None:
        player = self._player()
        player.load(_scenario(*_checkout_steps()))
        result = await player.play()

        self.assertEqual(player.state, "completed")
        self.assertTrue(result.success)
        self.assertEqual(result.summary.total_steps, 3)
        self.assertEqual(result.summary.passed, 3)
        self.assertEqual([item.step_id for item in result.step_results], ["step-1", "step-2", "step-3"])
        events = player.drain_events()
        self.assertEqual(
            self._types(events),
            [
                "stateChange",
                "playbackStart",
                "stepStart",
                "stepComplete",
                "stepStart",
                "stepComplete",
                "stepStart",
                "stepComplete",
                "stateChange",
                "playbackComplete",
            ],
        )
        self.assertEqual(events[0].data, {"state": "playing", "previous": "idle"})
        self.assertEqual(events[0].schema_version, "player_event.v1")
        self.assertEqual(events[2].data["step_type"], "navigate")
        self.assertEqual(events[-1].data["summary"]["totalSteps"], 3)

    async def test_failure_stops_run_by_default(self) -> None:
        del self.driver.elements["#checkout"]
        player = self._player()
        player.load(_scenario(*_checkout_steps()))
        result = await player.play()

        self.assertEqual(player.state, "stopped")
        self.assertFalse(result.success)
        self.assertEqual([item.status for item in result.step_results], ["passed", "failed"])
        error = result.step_results[1].error
        self.assertEqual(error.error_code, "SEL_NOT_FOUND")
        self.assertEqual(error.error_class, "selector_not_found")
        self.assertEqual(len(error.fingerprint), 64)
        types = self._types(player.drain_events())
        self.assertEqual(types[-5:], ["stepError", "stepComplete", "stateChange", "playbackError", "playbackComplete"])
        self.assertEqual(types.count("playbackComplete"), 1)

    async def test_continue_on_failure_runs_remaining_steps(self) -> None:
        del self.driver.elements["#checkout"]
        player = self._player(continue_on_failure=True)
        player.load(_scenario(*_checkout_steps()))
        result = await player.play()

        self.assertEqual(player.state, "completed")
        self.assertFalse(result.success)
        self.assertEqual(result.summary.failed, 1)
        self.assertEqual(result.summary.passed, 2)

    async def test_optional_step_failure_is_skipped(self) -> None:
        steps = _checkout_steps()
        steps[1] = ClickStep(selector="#promo-banner", optional=True)
        player = self._player()
        player.load(_scenario(*steps))
        result = await player.play()

        self.assertEqual(player.state, "completed")
        self.assertTrue(result.success)
        self.assertEqual([item.status for item in result.step_results], ["passed", "skipped", "passed"])
        self.assertEqual(result.step_results[1].error.error_code, "SEL_NOT_FOUND")

    async def test_retries_wait_between_attempts(self) -> None:
        self.driver.fail("click", RuntimeError("flaky overlay"), times=2)
        player = self._player(max_retries=2)
        player.load(_scenario(*_checkout_steps()))
        with self.assertLogs("stepwright.player.player", level="WARNING"):
            result = await player.play()

        self.assertTrue(result.success)
        self.assertEqual(self.driver.slept, [1000, 1000])
        self.assertEqual(self.driver.call_names().count("click"), 3)

    async def test_disconnect_is_fatal_and_not_retried(self) -> None:
        self.driver.fail("click", DriverDisconnectedError())
        player = self._player(max_retries=3, continue_on_failure=True)
        player.load(_scenario(*_checkout_steps()))
        result = await player.play()

        self.assertEqual(player.state, "error")
        self.assertEqual(self.driver.slept, [])
        self.assertEqual(len(result.step_results), 2)
        errors = [event for event in player.drain_events() if event.type == "playbackError"]
        self.assertEqual(errors[0].data["error_code"], "DRIVER_DISCONNECTED")
        self.assertEqual(errors[0].data["index"], 1)

    async def test_pause_on_failure_then_resume(self) -> None:
        del self.driver.elements["#checkout"]
        player = self._player(pause_on_failure=True)
        player.load(_scenario(*_checkout_steps()))
        await player.play()

        self.assertEqual(player.state, "paused")
        self.assertEqual(player.current_index, 1)
        self.assertIn("playbackError", self._types(player.drain_events()))

        result = await player.play()
        self.assertEqual(player.state, "completed")
        self.assertEqual([item.status for item in result.step_results], ["passed", "failed", "passed"])
        self.assertFalse(result.success)

    async def test_failure_screenshot_and_api_response_are_recorded(self) -> None:
        api_log = ApiCallLog()
        api_log.add(
            CapturedApiCall(
                request=CapturedRequest(url="https://app.test/api/orders", method="POST", timestamp=0)
            ).complete(CapturedResponse(status=500, response_time=40))
        )
        with tempfile.TemporaryDirectory() as tmpdir:
            player = StepPlayer(
                self.driver,
                PlayerOptions(screenshot_dir=Path(tmpdir)),
                api_log=api_log,
            )
            player.load(
                _scenario(AssertApiStep(match=ApiMatch(url="/api/orders"), expect=ApiExpectation(status=201)))
            )
            result = await player.play()

            failed = result.step_results[0]
            self.assertEqual(failed.error.error_code, "ASSERT_API_STATUS")
            self.assertEqual(failed.error.error_class, "assertion_failed")
            self.assertEqual(failed.api_response.status, 500)
            self.assertTrue(failed.screenshot_path.startswith(tmpdir))
            self.assertIn("screenshot", self.driver.call_names())

    async def test_dom_snapshots_are_kept_on_the_result(self) -> None:
        player = self._player()
        player.load(_scenario(NavigateStep(url="https://app.test/"), SnapshotDomStep(label="home")))
        result = await player.play()

        self.assertEqual(len(result.snapshots), 1)
        snapshot = result.snapshots[0]
        self.assertEqual((snapshot.step_id, snapshot.index, snapshot.label), ("step-2", 1, "home"))
        self.assertEqual(snapshot.snapshot["html"], "<html></html>")
        self.assertIsNone(snapshot.screenshot_path)
        self.assertEqual(result.to_dict()["snapshots"][0]["stepId"], "step-2")

        player.load(_scenario(*_checkout_steps()))
        self.assertEqual(player.result().snapshots, [])

    async def test_step_delay_is_scaled_by_speed(self) -> None:
        player = self._player(step_delay_ms=200, speed=2.0)
        player.load(_scenario(*_checkout_steps()))
        await player.play()
        self.assertEqual(self.driver.slept, [100, 100])


class StepPlayerControlTests(StepPlayerTestCase):
    """pause, stop, step, go_to_step and load semantics."""

    async def test_pause_while_step_in_flight_then_resume(self) -> None:
        player = self._player()

        def _pause_on_click(method, _kwargs) -> None:
            if method == "click":
                player.pause()

        self.driver.on_call = _pause_on_click
        player.load(_scenario(*_checkout_steps()))
        await player.play()
        self.assertEqual(player.state, "paused")
        self.assertEqual(len(player.results), 2)

        self.driver.on_call = None
        result = await player.play()
        self.assertEqual(player.state, "completed")
        self.assertEqual(len(result.step_results), 3)

    async def test_resume_while_step_in_flight_continues_the_live_run(self) -> None:
        player = self._player()
        resumed = []

        def _pause_and_resume_on_click(method, _kwargs) -> None:
            if method == "click" and not resumed:
                player.pause()
                resumed.append(asyncio.ensure_future(player.play()))

        self.driver.on_call = _pause_and_resume_on_click
        player.load(_scenario(*_checkout_steps()))
        await player.play()
        resumed_result = await resumed[0]

        self.assertEqual(player.state, "completed")
        self.assertEqual(resumed_result.state, "completed")
        self.assertEqual(self.driver.call_names().count("click"), 1)
        self.assertEqual(self.driver.call_names().count("type"), 1)
        self.assertEqual([item.index for item in player.results], [0, 1, 2])
        self.assertEqual(self._types(player.drain_events()).count("playbackComplete"), 1)

    async def test_step_while_step_in_flight_is_rejected(self) -> None:
        player = self._player()
        attempts = []

        def _pause_and_step_on_click(method, _kwargs) -> None:
            if method == "click" and not attempts:
                player.pause()
                attempts.append(asyncio.ensure_future(player.step()))

        self.driver.on_call = _pause_and_step_on_click
        player.load(_scenario(*_checkout_steps()))
        await player.play()
        with self.assertRaises(PlayerStateError):
            await attempts[0]

        self.assertEqual(player.state, "paused")
        self.assertEqual([item.index for item in player.results], [0, 1])
        self.assertEqual(self.driver.call_names().count("click"), 1)

        last = await player.step()
        self.assertEqual(last.index, 2)
        self.assertEqual(player.state, "completed")

    async def test_stop_ignores_late_completion(self) -> None:
        player = self._player()

        def _stop_on_click(method, _kwargs) -> None:
            if method == "click":
                player.stop()

        self.driver.on_call = _stop_on_click
        player.load(_scenario(*_checkout_steps()))
        result = await player.play()

        self.assertEqual(player.state, "stopped")
        self.assertEqual(len(result.step_results), 1)
        self.assertNotIn("type", self.driver.call_names())
        types = self._types(player.drain_events())
        self.assertEqual(types[-1], "playbackComplete")
        self.assertEqual(types.count("playbackComplete"), 1)
        self.assertEqual(types.count("stepComplete"), 1)

    async def test_stepping_runs_one_step_at_a_time(self) -> None:
        player = self._player()
        player.load(_scenario(*_checkout_steps()))

        first = await player.step()
        self.assertEqual(first.step_id, "step-1")
        self.assertEqual(player.state, "paused")
        self.assertNotIn("playing", [event.data.get("state") for event in player.drain_events()])

        await player.step()
        last = await player.step()
        self.assertEqual(last.step_id, "step-3")
        self.assertEqual(player.state, "completed")
        self.assertEqual(player.result().summary.failed, 0)

    async def test_step_failure_keeps_player_paused(self) -> None:
        del self.driver.elements["#checkout"]
        player = self._player()
        player.load(_scenario(*_checkout_steps()))
        await player.step()
        result = await player.step()

        self.assertEqual(result.status, "failed")
        self.assertEqual(player.state, "paused")
        self.assertEqual(player.current_index, 1)
        self.assertIn("playbackError", self._types(player.drain_events()))

    async def test_go_to_step_moves_cursor(self) -> None:
        player = self._player()
        player.load(_scenario(*_checkout_steps()))
        with self.assertRaises(PlayerStateError):
            player.go_to_step(3)
        player.go_to_step(2)
        result = await player.play()
        self.assertEqual([item.index for item in result.step_results], [2])
        self.assertEqual(self.driver.call_names(), ["type"])

    async def test_load_while_playing_is_misuse(self) -> None:
        player = self._player()
        scenario = _scenario(*_checkout_steps())
        misuse = []

        def _reload_on_click(method, _kwargs) -> None:
            if method != "click":
                return
            try:
                player.load(scenario)
            except PlayerStateError as exc:
                misuse.append(exc)

        self.driver.on_call = _reload_on_click
        player.load(scenario)
        await player.play()

        self.assertEqual(len(misuse), 1)
        self.assertEqual(player.state, "error")
        errors = [event for event in player.drain_events() if event.type == "playbackError"]
        self.assertEqual(errors[0].data["error_code"], "PLAYER_LOAD_MISUSE")

    async def test_terminal_run_requires_reload(self) -> None:
        player = self._player()
        with self.assertRaises(PlayerStateError):
            await player.play()

        player.load(_scenario(*_checkout_steps()))
        await player.play()
        with self.assertRaises(PlayerStateError):
            await player.play()
        with self.assertRaises(PlayerStateError):
            await player.step()

        player.load(_scenario(NavigateStep(url="https://app.test/")))
        self.assertEqual(player.state, "idle")
        self.assertEqual(player.results, [])
        result = await player.play()
        self.assertEqual(result.summary.total_steps, 1)

    async def test_pause_and_stop_outside_a_run_are_noops(self) -> None:
        player = self._player()
        player.load(_scenario(*_checkout_steps()))
        player.pause()
        player.stop()
        self.assertEqual(player.state, "idle")
        self.assertEqual(player.drain_events(), [])

    async def test_update_options_applies_to_next_steps(self) -> None:
        del self.driver.elements["#checkout"]
        player = self._player()
        player.update_options(continue_on_failure=True)
        player.load(_scenario(*_checkout_steps()))
        await player.play()
        self.assertEqual(player.state, "completed")


class StepPlayerSetupTeardownTests(StepPlayerTestCase):
    """Setup failures end the run; teardown failures only warn."""

    async def test_setup_failure_stops_before_steps(self) -> None:
        player = self._player()
        player.load(_scenario(*_checkout_steps(), setup=[ClickStep(selector="#accept-cookies")]))
        with self.assertLogs("stepwright.player.player", level="WARNING"):
            result = await player.play()

        self.assertEqual(player.state, "stopped")
        self.assertEqual(result.step_results, [])
        events = player.drain_events()
        self.assertNotIn("stepStart", self._types(events))
        errors = [event for event in events if event.type == "playbackError"]
        self.assertEqual(errors[0].data["error_code"], "SETUP_FAILED")
        self.assertEqual(errors[0].data["index"], -1)

    async def test_setup_runs_before_steps(self) -> None:
        player = self._player()
        player.load(_scenario(*_checkout_steps(), setup=[NavigateStep(url="https://app.test/login")]))
        await player.play()
        self.assertEqual(self.driver.calls[0][1]["url"], "https://app.test/login")
        self.assertEqual(len(player.results), 3)

    async def test_teardown_failure_still_completes(self) -> None:
        player = self._player()
        player.load(_scenario(*_checkout_steps(), teardown=[ClickStep(selector="#logout")]))
        with self.assertLogs("stepwright.player.player", level="WARNING") as logs:
            result = await player.play()

        self.assertEqual(player.state, "completed")
        self.assertTrue(result.success)
        self.assertTrue(any("Teardown step" in line for line in logs.output))


if __name__ == "__main__":
    unittest.main()
