"""Sequential step player: a failure-aware state machine over a loaded scenario."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from stepwright.contracts import PLAYER_EVENT_SCHEMA_V1
from stepwright.errors import DriverDisconnectedError, PlayerStateError
from stepwright.failures import classify_failure
from stepwright.model.results import DomSnapshot, PlaybackResult, StepError, StepResult, summarize
from stepwright.model.scenario import Scenario
from stepwright.model.selectors import describe_selector
from stepwright.model.steps import BaseStep, NavigateStep, step_selector
from stepwright.network.calls import ApiCallLog
from stepwright.player.context import ExecutionContext
from stepwright.player.driver import AutomationDriver
from stepwright.player.executors import ApiAssertionError, StepOutcome, execute_step
from stepwright.settings import PlayerOptions

logger = logging.getLogger("stepwright.player.player")

TERMINAL_STATES = frozenset({"stopped", "completed", "error"})
LOADABLE_STATES = frozenset({"idle"}) | TERMINAL_STATES
TRANSITIONS: dict[str, frozenset[str]] = {
    "idle": frozenset({"playing", "paused", "error"}),
    "playing": frozenset({"paused", "completed", "error", "stopped"}),
    "paused": frozenset({"playing", "completed", "error", "stopped"}),
    "stopped": frozenset({"idle"}),
    "completed": frozenset({"idle"}),
    "error": frozenset({"idle"}),
}
RETRY_WAIT_MS = 1000
SETUP_INDEX = -1


@dataclass(frozen=True)
class PlayerEvent:
    """Tagged lifecycle notification delivered through the player's event queue."""

    type: str
    timestamp: float
    data: dict[str, Any] = field(default_factory=dict)
    schema_version: str = PLAYER_EVENT_SCHEMA_V1


@dataclass
class _Attempt:
    status: str
    duration: float
    outcome: StepOutcome | None = None
    error: Exception | None = None


def _now_ms() -> float:
    return time.time() * 1000


class StepPlayer:
    """Execute a loaded scenario step by step against an automation driver.

    Lifecycle notifications (stateChange, playbackStart, stepStart, stepComplete,
    stepError, playbackComplete, playbackError) are queued in emission order;
    the host drains them with `drain_events()` or awaits `next_event()`.
    """

    def __init__(
        self,
        driver: AutomationDriver,
        options: PlayerOptions | None = None,
        *,
        api_log: ApiCallLog | None = None,
        test_id_attribute: str = "data-testid",
    ):
        self.driver = driver
        self.options = options or PlayerOptions()
        self.api_log = api_log or ApiCallLog()
        self.test_id_attribute = test_id_attribute
        self._state = "idle"
        self._scenario: Scenario | None = None
        self._steps: tuple[BaseStep, ...] = ()
        self._current_index = -1
        self._results: list[StepResult] = []
        self._snapshots: list[DomSnapshot] = []
        self._events: asyncio.Queue[PlayerEvent] = asyncio.Queue()
        self._start_time = 0.0
        self._started_perf = 0.0
        self._started = False
        self._running = False
        self._looping = False
        self._loop_done = asyncio.Event()
        self._loop_done.set()
        self._run_token = 0
        self._finished = False

    @property
    def state(self) -> str:
        return self._state

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def results(self) -> list[StepResult]:
        return list(self._results)

    @property
    def scenario(self) -> Scenario | None:
        return self._scenario

    def drain_events(self) -> list[PlayerEvent]:
        events = []
        while True:
            try:
                events.append(self._events.get_nowait())
            except asyncio.QueueEmpty:
                return events

    async def next_event(self, timeout: float | None = None) -> PlayerEvent:
        return await asyncio.wait_for(self._events.get(), timeout)

    def update_options(self, **changes: Any) -> None:
        self.options = dataclasses.replace(self.options, **changes)

    def load(self, scenario: Scenario) -> None:
        """Load a scenario; only valid while idle or after a run has ended."""
        if self._state not in LOADABLE_STATES:
            message = f"cannot load a scenario while {self._state}"
            self._run_token += 1
            self._fail(message, error_code="PLAYER_LOAD_MISUSE")
            raise PlayerStateError(message)
        self._run_token += 1
        self._scenario = scenario
        self._steps = tuple(scenario.steps)
        self._current_index = -1
        self._results = []
        self._snapshots = []
        self._started = False
        self._finished = False
        self._running = False
        self._looping = False
        if self._state != "idle":
            self._transition("idle")
        logger.info("Loaded scenario %s with %s steps", scenario.id, len(self._steps))

    def go_to_step(self, index: int) -> None:
        """Make `index` the next step to run."""
        self._require_scenario()
        if self._state == "playing":
            raise PlayerStateError("cannot jump while playing")
        if index < 0 or index >= len(self._steps):
            raise PlayerStateError(f"invalid step index: {index}")
        self._current_index = index - 1

    async def play(self) -> PlaybackResult:
        """Run steps from `current_index + 1` until the end, a halt, pause or stop."""
        self._require_scenario()
        if self._state == "playing":
            raise PlayerStateError("already playing")
        if self._state in TERMINAL_STATES:
            raise PlayerStateError(f"run already {self._state}; load() the scenario again")
        if self._running:
            if not self._looping:
                raise PlayerStateError("a step is still in flight")
            # Paused with a step still in flight: the live loop picks up again.
            done = self._loop_done
            self._transition("playing")
            await done.wait()
            return self.result()

        token = self._run_token
        fresh = not self._started
        done = asyncio.Event()
        self._loop_done = done
        self._transition("playing")
        self._running = True
        self._looping = True
        try:
            if fresh:
                self._begin_run()
                if not await self._run_setup(token):
                    return self.result()
            while self._is_current(token) and self._state == "playing":
                index = self._current_index + 1
                if index >= len(self._steps):
                    await self._complete_run(token)
                    break
                result = await self._run_step(self._steps[index], index, token)
                if result is None:
                    break
                self._current_index = index
                if not self._handle_result(self._steps[index], result, stepping=False):
                    break
                if self._state == "playing" and index < len(self._steps) - 1:
                    await self._step_delay()
        finally:
            if self._is_current(token):
                self._running = False
                self._looping = False
            done.set()
        if self._state == "stopped":
            self._emit_complete()
        return self.result()

    async def step(self) -> StepResult | None:
        """Execute exactly the next step without entering `playing`."""
        self._require_scenario()
        if self._state not in {"idle", "paused"}:
            raise PlayerStateError(f"step() is not allowed while {self._state}")
        if self._running:
            raise PlayerStateError("a step is still in flight")
        token = self._run_token
        if not self._started:
            self._begin_run()
            self._transition("paused")
            if not await self._run_setup(token):
                return None

        index = self._current_index + 1
        if index >= len(self._steps):
            await self._complete_run(token)
            return None
        self._running = True
        try:
            result = await self._run_step(self._steps[index], index, token)
        finally:
            if self._is_current(token):
                self._running = False
        if result is None:
            if self._state == "stopped":
                self._emit_complete()
            return None
        self._current_index = index
        if self._handle_result(self._steps[index], result, stepping=True) and index == len(self._steps) - 1:
            await self._complete_run(token)
        return result

    def pause(self) -> None:
        """Stop scheduling further steps; index and results are kept for a later play()."""
        if self._state != "playing":
            return
        self._transition("paused")

    def stop(self) -> None:
        """End the run. A step still in flight completes late and is ignored."""
        if self._state not in {"playing", "paused"}:
            return
        self._run_token += 1
        self._transition("stopped")
        if not self._running:
            self._emit_complete()

    def result(self) -> PlaybackResult:
        """Current (possibly partial) playback result."""
        scenario_id = self._scenario.id if self._scenario is not None else ""
        end_time = _now_ms()
        duration = (time.perf_counter() - self._started_perf) * 1000 if self._started else 0.0
        summary = summarize(self._results, duration=duration, completed=self._state == "completed")
        return PlaybackResult(
            scenario_id=scenario_id,
            state=self._state,
            step_results=list(self._results),
            summary=summary,
            start_time=self._start_time,
            end_time=end_time,
            success=summary.success,
            snapshots=list(self._snapshots),
        )

    def _require_scenario(self) -> None:
        if self._scenario is None:
            raise PlayerStateError("no scenario loaded")

    def _is_current(self, token: int) -> bool:
        return token == self._run_token

    def _emit(self, event_type: str, **data: Any) -> None:
        self._events.put_nowait(PlayerEvent(type=event_type, timestamp=_now_ms(), data=data))

    def _transition(self, new_state: str) -> None:
        previous = self._state
        if new_state == previous:
            return
        if new_state not in TRANSITIONS[previous]:
            raise PlayerStateError(f"invalid player transition {previous} -> {new_state}")
        self._state = new_state
        logger.info("Player state %s -> %s", previous, new_state)
        self._emit("stateChange", state=new_state, previous=previous)

    def _fail(self, message: str, *, error_code: str, index: int | None = None) -> None:
        if self._state != "error":
            self._state_to_error()
        self._emit("playbackError", message=message, error_code=error_code, index=index)
        self._emit_complete()

    def _state_to_error(self) -> None:
        previous = self._state
        self._state = "error"
        logger.info("Player state %s -> error", previous)
        self._emit("stateChange", state="error", previous=previous)

    def _emit_complete(self) -> None:
        if self._finished:
            return
        self._finished = True
        self._emit("playbackComplete", summary=self.result().summary.model_dump(by_alias=True))

    def _begin_run(self) -> None:
        self._started = True
        self._finished = False
        self._start_time = _now_ms()
        self._started_perf = time.perf_counter()
        self._results = []
        self._snapshots = []
        self._emit("playbackStart", scenario_id=self._scenario.id if self._scenario else "")

    def _context(self) -> ExecutionContext:
        variables = dict(self._scenario.variables or {}) if self._scenario is not None else {}
        return ExecutionContext(
            driver=self.driver,
            options=self.options,
            variables=variables,
            api_log=self.api_log,
            test_id_attribute=self.test_id_attribute,
            screenshot_dir=self.options.screenshot_dir,
        )

    async def _step_delay(self) -> None:
        if self.options.step_delay_ms > 0:
            speed = self.options.speed if self.options.speed > 0 else 1.0
            await self.driver.sleep(self.options.step_delay_ms / speed)

    async def _attempt(self, step: BaseStep) -> _Attempt:
        started = time.perf_counter()
        attempts = self.options.max_retries + 1
        last_error: Exception | None = None
        for attempt in range(attempts):
            try:
                outcome = await execute_step(step, self._context())
                return _Attempt("passed", (time.perf_counter() - started) * 1000, outcome=outcome)
            except Exception as exc:
                last_error = exc
                if _is_disconnect(exc) or attempt == attempts - 1:
                    break
                logger.warning("Step %s failed (attempt %s/%s): %s", step.id, attempt + 1, attempts, exc)
                await self.driver.sleep(RETRY_WAIT_MS)
        return _Attempt("failed", (time.perf_counter() - started) * 1000, error=last_error)

    async def _run_step(self, step: BaseStep, index: int, token: int) -> StepResult | None:
        """Execute one step; returns None when the run was stopped or reloaded meanwhile."""
        step_id = step.id or f"step-{index + 1}"
        self._emit("stepStart", step_id=step_id, index=index, step_type=getattr(step, "type", ""))
        logger.info("Executing step %s (%s)", step_id, getattr(step, "type", ""))
        attempt = await self._attempt(step)
        if not self._is_current(token) or self._state == "stopped":
            logger.info("Ignoring late completion of step %s", step_id)
            return None

        if attempt.error is None:
            outcome = attempt.outcome or StepOutcome()
            result = StepResult(
                step_id=step_id,
                index=index,
                status="passed",
                duration=attempt.duration,
                screenshot_path=outcome.screenshot_path,
                api_response=outcome.api_response,
            )
            if outcome.snapshot is not None:
                self._snapshots.append(
                    DomSnapshot(
                        step_id=step_id,
                        index=index,
                        label=getattr(step, "label", step_id),
                        snapshot=outcome.snapshot,
                        screenshot_path=outcome.screenshot_path,
                    )
                )
        else:
            result = await self._failed_result(step, step_id, index, attempt)
            if not self._is_current(token) or self._state == "stopped":
                return None
            self._emit("stepError", step_id=step_id, index=index, result=result)
        self._results.append(result)
        self._emit("stepComplete", step_id=step_id, index=index, result=result)
        return result

    async def _failed_result(self, step: BaseStep, step_id: str, index: int, attempt: _Attempt) -> StepResult:
        error = attempt.error
        selector = step_selector(step)
        failure = classify_failure(
            error=error,
            step_id=step_id,
            step_type=getattr(step, "type", ""),
            selector=describe_selector(selector),
            url=step.url if isinstance(step, NavigateStep) else "",
        )
        screenshot_path = await self._capture_failure_screenshot(step_id)
        return StepResult(
            step_id=step_id,
            index=index,
            status="skipped" if step.optional and not _is_disconnect(error) else "failed",
            duration=attempt.duration,
            error=StepError.from_failure(failure),
            screenshot_path=screenshot_path,
            api_response=error.api_response if isinstance(error, ApiAssertionError) else None,
        )

    async def _capture_failure_screenshot(self, step_id: str) -> str | None:
        if not self.options.screenshot_on_failure or self.options.screenshot_dir is None:
            return None
        target = self.options.screenshot_dir / f"{step_id}-{int(_now_ms())}.png"
        try:
            return await self.driver.screenshot(target)
        except Exception as exc:
            logger.warning("Failure screenshot for %s could not be captured: %s", step_id, exc)
            return None

    def _handle_result(self, step: BaseStep, result: StepResult, *, stepping: bool) -> bool:
        """Apply failure policy; returns whether execution may continue."""
        if result.status != "failed":
            return True
        error_code = result.error.error_code if result.error else ""
        message = result.error.message if result.error else "step failed"
        if error_code == "DRIVER_DISCONNECTED":
            self._fail(message, error_code=error_code, index=result.index)
            return False
        if self.options.continue_on_failure:
            return True
        if stepping:
            self._emit("playbackError", message=message, error_code=error_code, index=result.index)
            return False
        if self.options.pause_on_failure:
            self._transition("paused")
            self._emit("playbackError", message=message, error_code=error_code, index=result.index)
            return False
        self._transition("stopped")
        self._emit("playbackError", message=message, error_code=error_code, index=result.index)
        self._emit_complete()
        return False

    async def _run_setup(self, token: int) -> bool:
        scenario = self._scenario
        for step in (scenario.setup or []) if scenario is not None else []:
            attempt = await self._attempt(step)
            if not self._is_current(token) or self._state == "stopped":
                return False
            if attempt.error is not None and not step.optional:
                message = f"setup step failed: {attempt.error}"
                if _is_disconnect(attempt.error):
                    self._fail(message, error_code="DRIVER_DISCONNECTED", index=SETUP_INDEX)
                    return False
                logger.warning("Setup step %s failed: %s", step.id, attempt.error)
                self._transition("stopped")
                self._emit("playbackError", message=message, error_code="SETUP_FAILED", index=SETUP_INDEX)
                self._emit_complete()
                return False
        return True

    async def _complete_run(self, token: int) -> None:
        scenario = self._scenario
        for step in (scenario.teardown or []) if scenario is not None else []:
            attempt = await self._attempt(step)
            if not self._is_current(token):
                return
            if attempt.error is not None:
                logger.warning("Teardown step %s failed: %s", step.id, attempt.error)
        if not self._is_current(token) or self._state in TERMINAL_STATES:
            return
        self._transition("completed")
        self._emit_complete()


def _is_disconnect(error: Exception | None) -> bool:
    if error is None:
        return False
    if isinstance(error, DriverDisconnectedError):
        return True
    lower = str(error).lower()
    return "target page, context or browser has been closed" in lower or "browser has disconnected" in lower
