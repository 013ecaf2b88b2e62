"""One executor per step type. Executors raise on failure; the player decides disposition."""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable
from uuid import uuid4

from stepwright.errors import AssertionMismatchError, UnsupportedStepError
from stepwright.model.results import ApiResponseInfo
from stepwright.model.steps import (
    ApiMatch,
    AssertApiStep,
    AssertElementStep,
    BaseStep,
    ClickStep,
    HoverStep,
    KeypressStep,
    NavigateStep,
    ScrollStep,
    SelectStep,
    SnapshotDomStep,
    StatusRange,
    TypeStep,
    WaitStep,
)
from stepwright.network.calls import CapturedApiCall, match_url
from stepwright.player.context import ExecutionContext

logger = logging.getLogger("stepwright.player.executors")

POLL_INTERVAL_MS = 100
DEFAULT_WAIT_DURATION_MS = 1000
DEFAULT_DOM_STABILITY_MS = 1500
_INDEX = re.compile(r"\[(\d+)\]")


@dataclass(frozen=True)
class StepOutcome:
    """Partial result an executor returns when a step passes."""

    api_response: ApiResponseInfo | None = None
    snapshot: dict[str, Any] | None = None
    screenshot_path: str | None = None


class ApiAssertionError(AssertionMismatchError):
    """API expectation mismatch; carries the observed response for the step result."""

    def __init__(self, message: str, *, error_code: str, api_response: ApiResponseInfo | None = None):
        super().__init__(message, error_code=error_code)
        self.api_response = api_response


StepExecutor = Callable[[Any, ExecutionContext], Awaitable[StepOutcome]]


async def _poll(context: ExecutionContext, timeout_ms: int, check: Callable[[], Awaitable[bool]]) -> bool:
    """Run `check` until it passes or the timeout budget of poll intervals runs out."""
    attempts = max(1, math.ceil(timeout_ms / POLL_INTERVAL_MS))
    for attempt in range(attempts):
        if await check():
            return True
        if attempt < attempts - 1:
            await context.driver.sleep(POLL_INTERVAL_MS)
    return False


async def execute_navigate(step: NavigateStep, context: ExecutionContext) -> StepOutcome:
    url = context.resolve_url(step.url)
    await context.driver.navigate(url, wait_until=step.wait_until, timeout_ms=context.timeout_for(step))
    return StepOutcome()


async def execute_click(step: ClickStep, context: ExecutionContext) -> StepOutcome:
    await context.driver.click(
        context.query(step.selector),
        button=step.button or "left",
        click_count=step.click_count or 1,
        modifiers=tuple(step.modifiers or ()),
        position=step.position.model_dump() if step.position else None,
        timeout_ms=context.timeout_for(step),
    )
    return StepOutcome()


async def execute_type(step: TypeStep, context: ExecutionContext) -> StepOutcome:
    value = context.substitute(step.value)
    selector = context.query(step.selector)
    if step.sensitive:
        logger.info("Typing sensitive value into %s", selector)
    await context.driver.type(
        selector,
        value,
        clear=True if step.clear is None else step.clear,
        delay=context.scaled(step.delay) if step.delay else None,
        timeout_ms=context.timeout_for(step),
    )
    return StepOutcome()


async def execute_keypress(step: KeypressStep, context: ExecutionContext) -> StepOutcome:
    await context.driver.press_key(
        step.key,
        selector=context.query(step.selector) if step.selector is not None else None,
        modifiers=tuple(step.modifiers or ()),
        timeout_ms=context.timeout_for(step),
    )
    return StepOutcome()


async def execute_wait(step: WaitStep, context: ExecutionContext) -> StepOutcome:
    timeout_ms = context.timeout_for(step)
    driver = context.driver
    if step.strategy == "time":
        duration = DEFAULT_WAIT_DURATION_MS if step.duration is None else step.duration
        await driver.sleep(context.scaled(duration))
    elif step.strategy == "selector":
        await driver.wait_for_selector(context.query(step.selector), state=step.state or "visible", timeout_ms=timeout_ms)
    elif step.strategy == "navigation":
        await driver.wait_for_navigation(timeout_ms=timeout_ms)
    elif step.strategy == "networkIdle":
        await driver.wait_for_network_idle(timeout_ms=timeout_ms)
    elif step.strategy == "domStable":
        await driver.wait_for_dom_stable(
            stability_ms=step.stability_threshold or DEFAULT_DOM_STABILITY_MS,
            timeout_ms=timeout_ms,
        )
    return StepOutcome()


async def execute_hover(step: HoverStep, context: ExecutionContext) -> StepOutcome:
    await context.driver.hover(
        context.query(step.selector),
        position=step.position.model_dump() if step.position else None,
        timeout_ms=context.timeout_for(step),
    )
    return StepOutcome()


async def execute_scroll(step: ScrollStep, context: ExecutionContext) -> StepOutcome:
    position = step.position
    await context.driver.scroll(
        selector=context.query(step.selector) if step.selector is not None else None,
        x=position.x if position else None,
        y=position.y if position else None,
        behavior=step.behavior or "auto",
        timeout_ms=context.timeout_for(step),
    )
    return StepOutcome()


async def execute_select(step: SelectStep, context: ExecutionContext) -> StepOutcome:
    await context.driver.select_option(
        context.query(step.selector),
        [context.substitute(value) for value in step.value_list()],
        timeout_ms=context.timeout_for(step),
    )
    return StepOutcome()


def _call_matches(call: CapturedApiCall, match: ApiMatch, url: str) -> bool:
    if not match_url(call.request.url, url, bool(match.url_is_regex)):
        return False
    if match.method and call.request.method.upper() != match.method.upper():
        return False
    return True


def _find_call(context: ExecutionContext, match: ApiMatch, url: str) -> CapturedApiCall | None:
    for call in context.api_log.calls():
        if call.response is not None and _call_matches(call, match, url):
            return call
    return None


def get_by_json_path(body: Any, path: str) -> Any:
    """Resolve a dotted path with `[n]` list indices; missing segments yield None."""
    current = body
    for part in _INDEX.sub(r".\1", path).split("."):
        if part == "":
            continue
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def _status_matches(actual: int, expected: int | StatusRange) -> bool:
    if isinstance(expected, StatusRange):
        return expected.min <= actual <= expected.max
    return actual == expected


def _describe_status(expected: int | StatusRange) -> str:
    if isinstance(expected, StatusRange):
        return f"{expected.min}-{expected.max}"
    return str(expected)


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True)


async def execute_assert_api(step: AssertApiStep, context: ExecutionContext) -> StepOutcome:
    url = context.substitute(step.match.url)
    method = step.match.method or "ANY"
    found: list[CapturedApiCall] = []

    async def _check() -> bool:
        call = _find_call(context, step.match, url)
        if call is None:
            return False
        found.append(call)
        return True

    if step.wait_for:
        await _poll(context, context.timeout_for(step), _check)
    else:
        await _check()
    if not found:
        suffix = " within timeout" if step.wait_for else ""
        raise ApiAssertionError(
            f"No matching API call found for {method} {url}{suffix}",
            error_code="ASSERT_API_NOT_FOUND",
        )

    response = found[0].response
    info = ApiResponseInfo(
        status=response.status,
        headers=dict(response.headers),
        body=response.body,
        response_time=response.response_time,
    )
    expect = step.expect
    if expect is not None:
        if expect.status is not None and not _status_matches(response.status, expect.status):
            raise ApiAssertionError(
                f"Status code mismatch: expected {_describe_status(expect.status)}, got {response.status}",
                error_code="ASSERT_API_STATUS",
                api_response=info,
            )
        for path, expected_value in (expect.json_path or {}).items():
            actual_value = get_by_json_path(response.body, path)
            if _canonical(actual_value) != _canonical(expected_value):
                raise ApiAssertionError(
                    f"JSONPath assertion failed: {path} expected {_canonical(expected_value)}, "
                    f"got {_canonical(actual_value)}",
                    error_code="ASSERT_API_JSON_PATH",
                    api_response=info,
                )
        for header, expected_header in (expect.headers or {}).items():
            actual_header = response.headers.get(header.lower())
            if actual_header != expected_header:
                raise ApiAssertionError(
                    f'Header assertion failed: {header} expected "{expected_header}", got "{actual_header}"',
                    error_code="ASSERT_API_HEADER",
                    api_response=info,
                )
        if expect.response_time is not None and response.response_time > expect.response_time:
            raise ApiAssertionError(
                f"Response time exceeded: expected < {expect.response_time}ms, got {response.response_time}ms",
                error_code="ASSERT_API_RESPONSE_TIME",
                api_response=info,
            )
    return StepOutcome(api_response=info)


_COUNT_OPERATORS: dict[str, Callable[[int, int], bool]] = {
    "eq": lambda actual, expected: actual == expected,
    "gt": lambda actual, expected: actual > expected,
    "gte": lambda actual, expected: actual >= expected,
    "lt": lambda actual, expected: actual < expected,
    "lte": lambda actual, expected: actual <= expected,
}


async def _element_check(selector: str, assertion: Any, context: ExecutionContext) -> tuple[bool, str]:
    driver = context.driver
    kind = assertion.type
    if kind == "count":
        count = await driver.count(selector)
        operator = assertion.operator or "eq"
        passed = _COUNT_OPERATORS[operator](count, assertion.value)
        return passed, f"Element count {count} does not satisfy {operator} {assertion.value}"
    state = await driver.query(selector)
    if kind == "visible":
        return state is not None and state.visible, "Element is not visible"
    if kind == "hidden":
        return state is None or not state.visible, "Element is visible"
    if kind == "exists":
        return state is not None, "Element does not exist"
    if kind == "notExists":
        return state is None, "Element exists"
    if kind == "text":
        text = state.text if state is not None else ""
        if assertion.contains:
            return assertion.value in text, f'Text does not contain "{assertion.value}"'
        return text.strip() == assertion.value.strip(), f'Text does not match: "{text}" vs "{assertion.value}"'
    if kind == "attribute":
        actual = state.attributes.get(assertion.name) if state is not None else None
        if assertion.value is None:
            return actual is not None, f"Attribute missing: {assertion.name}"
        return actual == assertion.value, f'Attribute mismatch: {assertion.name}="{actual}"'
    return False, f"Unknown assertion type: {kind}"


async def execute_assert_element(step: AssertElementStep, context: ExecutionContext) -> StepOutcome:
    selector = context.query(step.selector)
    last_message: list[str] = []

    async def _check() -> bool:
        passed, message = await _element_check(selector, step.assertion, context)
        last_message[:] = [message]
        return passed

    if not await _poll(context, context.timeout_for(step), _check):
        raise AssertionMismatchError(
            f"{last_message[0]} ({selector})",
            error_code=f"ASSERT_{re.sub(r'(?<!^)(?=[A-Z])', '_', step.assertion.type).upper()}",
        )
    return StepOutcome()


async def execute_snapshot_dom(step: SnapshotDomStep, context: ExecutionContext) -> StepOutcome:
    snapshot = await context.driver.snapshot_dom(
        computed_styles=tuple(step.computed_styles or ()),
        full_page=bool(step.full_page),
    )
    screenshot_path = None
    if step.include_screenshot and context.screenshot_dir is not None:
        target = context.screenshot_dir / f"{step.label}-{uuid4().hex[:8]}.png"
        screenshot_path = await context.driver.screenshot(target, full_page=bool(step.full_page))
    return StepOutcome(snapshot=snapshot, screenshot_path=screenshot_path)


EXECUTORS: dict[str, StepExecutor] = {
    "navigate": execute_navigate,
    "click": execute_click,
    "type": execute_type,
    "keypress": execute_keypress,
    "wait": execute_wait,
    "hover": execute_hover,
    "scroll": execute_scroll,
    "select": execute_select,
    "assertApi": execute_assert_api,
    "assertElement": execute_assert_element,
    "snapshotDom": execute_snapshot_dom,
}


def get_executor(step_type: str) -> StepExecutor | None:
    return EXECUTORS.get(step_type)


async def execute_step(step: BaseStep, context: ExecutionContext) -> StepOutcome:
    """Dispatch a step to its executor; raises whatever the executor raises."""
    step_type = getattr(step, "type", "")
    executor = get_executor(step_type)
    if executor is None:
        raise UnsupportedStepError(step_type)
    return await executor(step, context)
