"""Tests for per-step executors against a scripted driver."""

import tempfile
import unittest
from pathlib import Path
from types import SimpleNamespace

from stepwright.errors import AssertionMismatchError, StepTimeoutError, UnsupportedStepError
from stepwright.model import selectors as selector_model
from stepwright.model.steps import (
    ApiExpectation,
    ApiMatch,
    AssertApiStep,
    AssertElementStep,
    AttributeAssertion,
    ClickStep,
    CountAssertion,
    NavigateStep,
    NotExistsAssertion,
    Point,
    ScrollPosition,
    ScrollStep,
    SelectStep,
    SnapshotDomStep,
    StatusRange,
    TextAssertion,
    TypeStep,
    VisibleAssertion,
    WaitStep,
)
from stepwright.network.calls import ApiCallLog, CapturedApiCall, CapturedRequest, CapturedResponse
from stepwright.player.context import ExecutionContext, substitute_variables
from stepwright.player.executors import ApiAssertionError, execute_step, get_by_json_path
from stepwright.settings import PlayerOptions
from stepwright.testing import FakeDriver, FakeElement


def _api_call(url: str, method: str = "GET", status: int | None = 200, body=None, headers=None) -> CapturedApiCall:
    call = CapturedApiCall(request=CapturedRequest(url=url, method=method, timestamp=0))
    if status is None:
        return call
    return call.complete(CapturedResponse(status=status, response_time=120, body=body, headers=headers or {}))


class ActionExecutorTests(unittest.IsolatedAsyncioTestCase):
    """UI actions translate step fields into driver calls."""

    def setUp(self) -> None:
        self.driver = FakeDriver(
            {
                '[data-testid="save"]': FakeElement(),
                "#q": FakeElement(),
                'select[name="country"]': FakeElement(),
                "#list": FakeElement(),
            }
        )
        self.context = ExecutionContext(
            driver=self.driver,
            options=PlayerOptions(base_url="https://app.test/", speed=2.0),
            variables={"user": "ann", "term": "shoes", "country": "us"},
        )

    async def test_navigate_resolves_relative_url(self) -> None:
        await execute_step(NavigateStep(url="/login?u=${user}", timeout=5000), self.context)
        name, kwargs = self.driver.calls[0]
        self.assertEqual(name, "navigate")
        self.assertEqual(kwargs["url"], "https://app.test/login?u=ann")
        self.assertEqual(kwargs["timeout_ms"], 5000)

        await execute_step(NavigateStep(url="https://other.test/"), self.context)
        self.assertEqual(self.driver.calls[1][1]["url"], "https://other.test/")
        self.assertEqual(self.driver.calls[1][1]["timeout_ms"], 30000)

    async def test_click_forwards_options(self) -> None:
        step = ClickStep(
            selector=selector_model.test_id_selector("save"),
            button="right",
            click_count=2,
            modifiers=["Shift"],
            position=Point(x=1, y=2),
        )
        await execute_step(step, self.context)
        kwargs = self.driver.calls[0][1]
        self.assertEqual(kwargs["selector"], '[data-testid="save"]')
        self.assertEqual(kwargs["button"], "right")
        self.assertEqual(kwargs["click_count"], 2)
        self.assertEqual(kwargs["modifiers"], ["Shift"])
        self.assertEqual(kwargs["position"], {"x": 1, "y": 2})

    async def test_type_defaults_to_clear_and_scales_delay(self) -> None:
        await execute_step(TypeStep(selector="#q", value="${term}", delay=100), self.context)
        kwargs = self.driver.calls[0][1]
        self.assertEqual(kwargs["text"], "shoes")
        self.assertTrue(kwargs["clear"])
        self.assertEqual(kwargs["delay"], 50)

        await execute_step(TypeStep(selector="#q", value="!", clear=False), self.context)
        self.assertFalse(self.driver.calls[1][1]["clear"])
        self.assertIsNone(self.driver.calls[1][1]["delay"])
        self.assertEqual(self.driver.elements["#q"].attributes["value"], "shoes!")

    async def test_wait_strategies(self) -> None:
        await execute_step(WaitStep(strategy="time"), self.context)
        await execute_step(WaitStep(strategy="time", duration=300), self.context)
        self.assertEqual(self.driver.slept, [500, 150])

        await execute_step(WaitStep(strategy="domStable"), self.context)
        self.assertEqual(self.driver.calls[-1], ("wait_for_dom_stable", {"stability_ms": 1500, "timeout_ms": 30000}))

        with self.assertRaises(StepTimeoutError):
            await execute_step(WaitStep(strategy="selector", selector="#q", state="hidden"), self.context)

    async def test_scroll_and_select(self) -> None:
        await execute_step(ScrollStep(position=ScrollPosition(y=400)), self.context)
        kwargs = self.driver.calls[0][1]
        self.assertIsNone(kwargs["selector"])
        self.assertIsNone(kwargs["x"])
        self.assertEqual(kwargs["y"], 400)
        self.assertEqual(kwargs["behavior"], "auto")

        await execute_step(SelectStep(selector='select[name="country"]', values=["${country}", "ca"]), self.context)
        self.assertEqual(self.driver.calls[1][1]["values"], ["us", "ca"])

    async def test_unknown_step_type_is_unsupported(self) -> None:
        with self.assertRaises(UnsupportedStepError) as ctx:
            await execute_step(SimpleNamespace(type="drag"), self.context)
        self.assertEqual(ctx.exception.error_code, "STEP_UNSUPPORTED")


class AssertApiExecutorTests(unittest.IsolatedAsyncioTestCase):
    """assertApi matches the first completed call and checks expectations in order."""

    def setUp(self) -> None:
        self.driver = FakeDriver()
        self.log = ApiCallLog()
        self.context = ExecutionContext(driver=self.driver, api_log=self.log)

    async def test_expectations_pass(self) -> None:
        self.log.add(_api_call("https://app.test/api/items", "POST", status=None))
        self.log.add(
            _api_call(
                "https://app.test/api/items",
                "POST",
                status=201,
                body={"data": {"items": [{"id": 7}]}},
                headers={"x-trace": "abc"},
            )
        )
        step = AssertApiStep(
            match=ApiMatch(url="/api/items", method="POST"),
            expect=ApiExpectation(
                status=StatusRange(min=200, max=299),
                json_path={"data.items[0].id": 7},
                headers={"X-Trace": "abc"},
                response_time=500,
            ),
        )
        outcome = await execute_step(step, self.context)
        self.assertEqual(outcome.api_response.status, 201)
        self.assertEqual(outcome.api_response.response_time, 120)

    async def test_status_mismatch_carries_response(self) -> None:
        self.log.add(_api_call("https://app.test/api/items", "POST", status=500))
        step = AssertApiStep(match=ApiMatch(url="/api/items"), expect=ApiExpectation(status=201))
        with self.assertRaises(ApiAssertionError) as ctx:
            await execute_step(step, self.context)
        self.assertEqual(ctx.exception.error_code, "ASSERT_API_STATUS")
        self.assertEqual(str(ctx.exception), "Status code mismatch: expected 201, got 500")
        self.assertEqual(ctx.exception.api_response.status, 500)

    async def test_json_path_and_header_mismatch(self) -> None:
        self.log.add(_api_call("https://app.test/api/me", body={"name": "ann"}, headers={"x-env": "prod"}))
        step = AssertApiStep(match=ApiMatch(url="/api/me"), expect=ApiExpectation(json_path={"name": "bob"}))
        with self.assertRaises(ApiAssertionError) as ctx:
            await execute_step(step, self.context)
        self.assertEqual(ctx.exception.error_code, "ASSERT_API_JSON_PATH")

        step = AssertApiStep(match=ApiMatch(url="/api/me"), expect=ApiExpectation(headers={"X-Env": "staging"}))
        with self.assertRaises(ApiAssertionError) as ctx:
            await execute_step(step, self.context)
        self.assertEqual(ctx.exception.error_code, "ASSERT_API_HEADER")

        step = AssertApiStep(match=ApiMatch(url="/api/me"), expect=ApiExpectation(response_time=100))
        with self.assertRaises(ApiAssertionError) as ctx:
            await execute_step(step, self.context)
        self.assertEqual(ctx.exception.error_code, "ASSERT_API_RESPONSE_TIME")

    async def test_missing_call_without_wait_fails_immediately(self) -> None:
        step = AssertApiStep(match=ApiMatch(url="/api/items", method="DELETE"))
        with self.assertRaises(ApiAssertionError) as ctx:
            await execute_step(step, self.context)
        self.assertEqual(ctx.exception.error_code, "ASSERT_API_NOT_FOUND")
        self.assertEqual(str(ctx.exception), "No matching API call found for DELETE /api/items")
        self.assertEqual(self.driver.slept, [])

    async def test_missing_call_with_wait_polls_until_timeout(self) -> None:
        step = AssertApiStep(match=ApiMatch(url="/api/items"), wait_for=True, timeout=300)
        with self.assertRaises(ApiAssertionError) as ctx:
            await execute_step(step, self.context)
        self.assertTrue(str(ctx.exception).endswith("within timeout"))
        self.assertEqual(self.driver.slept, [100, 100])

    async def test_regex_match(self) -> None:
        self.log.add(_api_call("https://app.test/api/items/42"))
        step = AssertApiStep(match=ApiMatch(url=r"/items/\d+$", url_is_regex=True))
        outcome = await execute_step(step, self.context)
        self.assertEqual(outcome.api_response.status, 200)

    def test_json_path_lookup(self) -> None:
        body = {"a": {"b": [{"c": 1}]}}
        self.assertEqual(get_by_json_path(body, "a.b[0].c"), 1)
        self.assertIsNone(get_by_json_path(body, "a.b[3].c"))
        self.assertIsNone(get_by_json_path(body, "a.x"))
        self.assertIsNone(get_by_json_path("text", "a"))


class AssertElementExecutorTests(unittest.IsolatedAsyncioTestCase):
    """Element assertions poll the driver until they pass or time out."""

    def setUp(self) -> None:
        self.driver = FakeDriver(
            {
                ".toast": FakeElement(text="Order #42 placed", attributes={"role": "status"}),
                "li.item": FakeElement(count=3),
                "#hidden": FakeElement(visible=False),
            }
        )
        self.context = ExecutionContext(driver=self.driver)

    async def test_passing_assertions(self) -> None:
        for assertion in (
            TextAssertion(value="#42", contains=True),
            AttributeAssertion(name="role", value="status"),
            AttributeAssertion(name="role"),
            VisibleAssertion(),
        ):
            await execute_step(AssertElementStep(selector=".toast", assertion=assertion), self.context)
        await execute_step(
            AssertElementStep(selector="li.item", assertion=CountAssertion(value=2, operator="gte")),
            self.context,
        )
        await execute_step(AssertElementStep(selector="#gone", assertion=NotExistsAssertion()), self.context)
        self.assertEqual(self.driver.slept, [])

    async def test_failure_after_polling_budget(self) -> None:
        step = AssertElementStep(selector="#hidden", assertion=VisibleAssertion(), timeout=200)
        with self.assertRaises(AssertionMismatchError) as ctx:
            await execute_step(step, self.context)
        self.assertEqual(ctx.exception.error_code, "ASSERT_VISIBLE")
        self.assertEqual(str(ctx.exception), "Element is not visible (#hidden)")
        self.assertEqual(self.driver.slept, [100])

    async def test_error_codes_follow_assertion_type(self) -> None:
        step = AssertElementStep(selector=".toast", assertion=NotExistsAssertion(), timeout=100)
        with self.assertRaises(AssertionMismatchError) as ctx:
            await execute_step(step, self.context)
        self.assertEqual(ctx.exception.error_code, "ASSERT_NOT_EXISTS")

        step = AssertElementStep(selector=".toast", assertion=TextAssertion(value="Order #41 placed"), timeout=100)
        with self.assertRaises(AssertionMismatchError) as ctx:
            await execute_step(step, self.context)
        self.assertEqual(ctx.exception.error_code, "ASSERT_TEXT")


class SnapshotExecutorTests(unittest.IsolatedAsyncioTestCase):
    """DOM snapshots come back on the outcome, with an optional screenshot."""

    async def test_snapshot_with_screenshot(self) -> None:
        driver = FakeDriver(url="https://app.test/")
        with tempfile.TemporaryDirectory() as tmpdir:
            context = ExecutionContext(driver=driver, screenshot_dir=Path(tmpdir))
            outcome = await execute_step(
                SnapshotDomStep(label="checkout", include_screenshot=True, computed_styles=["color"]),
                context,
            )
            self.assertEqual(outcome.snapshot["url"], "https://app.test/")
            self.assertTrue(Path(outcome.screenshot_path).name.startswith("checkout-"))
            self.assertEqual(driver.call_names(), ["snapshot_dom", "screenshot"])

    def test_variable_substitution_leaves_unknown_names(self) -> None:
        self.assertEqual(substitute_variables("${a}-${b}", {"a": 1}), "1-${b}")


if __name__ == "__main__":
    unittest.main()
