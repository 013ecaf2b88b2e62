"""Tests for captured API calls, URL matching and assertApi synthesis."""

import unittest

from stepwright.network.assertions import (
    IdleWindow,
    compile_exclude_patterns,
    generate_api_assertions,
    get_relevant_api_calls,
    url_pattern,
)
from stepwright.network.calls import (
    ApiCallLog,
    CapturedApiCall,
    CapturedRequest,
    CapturedResponse,
    match_url,
    parse_api_call,
)


def _call(url: str, method: str = "GET", *, started: float = 100, duration: float = 50, status: int = 200, **extra):
    request = CapturedRequest(url=url, method=method, timestamp=started)
    call = CapturedApiCall(request=request, **extra)
    if status is None:
        return call
    return call.complete(CapturedResponse(status=status, response_time=duration))


class ApiCallLogTests(unittest.TestCase):
    """Payload parsing, URL matching and replace-on-complete."""

    def test_parse_api_call_payload(self) -> None:
        call = parse_api_call(
            {
                "request": {
                    "id": "req-1",
                    "url": " https://app.test/api/items ",
                    "method": "post",
                    "timestamp": 10,
                    "headers": {"Content-Type": "application/json"},
                },
                "response": {"status": 201, "responseTime": 42, "statusText": "Created"},
            }
        )
        self.assertEqual(call.request.id, "req-1")
        self.assertEqual(call.request.url, "https://app.test/api/items")
        self.assertEqual(call.request.method, "POST")
        self.assertEqual(call.request.headers, {"content-type": "application/json"})
        self.assertFalse(call.pending)
        self.assertEqual(call.completed_at, 52)

        pending = parse_api_call({"request": {"url": "https://app.test/api"}})
        self.assertTrue(pending.pending)
        self.assertIsNone(pending.completed_at)

        failed = parse_api_call({"request": {"url": "https://app.test/api"}, "error": "net::ERR_FAILED"})
        self.assertFalse(failed.pending)
        self.assertEqual(failed.error, "net::ERR_FAILED")

    def test_parse_rejects_missing_request(self) -> None:
        with self.assertRaises(ValueError):
            parse_api_call({})
        with self.assertRaises(ValueError):
            parse_api_call({"request": {"url": "  "}})

    def test_match_url_modes(self) -> None:
        url = "https://app.test/api/items/42?expand=1"
        self.assertTrue(match_url(url, "/api/items"))
        self.assertFalse(match_url(url, "/api/orders"))
        self.assertTrue(match_url(url, "https://app.test/api/*"))
        self.assertFalse(match_url(url, "/api/*"))
        self.assertTrue(match_url(url, r"items/\d+", is_regex=True))
        self.assertFalse(match_url(url, "(", is_regex=True))

    def test_log_replaces_entry_on_completion(self) -> None:
        log = ApiCallLog()
        completed = []
        log.on_complete(completed.append)
        pending = CapturedApiCall(request=CapturedRequest(url="https://app.test/api", method="GET", timestamp=0))
        log.add(pending)
        self.assertEqual(completed, [])
        done = log.add(pending.complete(CapturedResponse(status=200, response_time=5)))
        self.assertEqual(len(log), 1)
        self.assertIs(log.get(pending.request.id), done)
        self.assertEqual(completed, [done])
        self.assertEqual(log.completed(), [done])

    def test_find_matching_filters_method(self) -> None:
        log = ApiCallLog()
        log.add(_call("https://app.test/api/items", "GET"))
        post = log.add(_call("https://app.test/api/items", "POST"))
        self.assertIs(log.find_matching("/api/items", "post"), post)
        self.assertIsNone(log.find_matching("/api/items", "DELETE"))
        log.clear()
        self.assertIsNone(log.find_matching("/api/items"))


class ApiAssertionSynthesisTests(unittest.TestCase):
    """Window relevance, exclusion and prioritized generation."""

    def test_relevance_window_is_inclusive(self) -> None:
        window = IdleWindow(last_event_timestamp=100, idle_detected_at=2100)
        calls = [
            _call("https://app.test/a", started=50, duration=50),
            _call("https://app.test/b", started=2000, duration=100),
            _call("https://app.test/early", started=0, duration=99),
            _call("https://app.test/late", started=2100, duration=1),
            _call("https://app.test/pending", status=None),
            _call("https://app.test/failed", status=None, pending=False, error="boom"),
        ]
        relevant = get_relevant_api_calls(calls, window)
        self.assertEqual([call.request.url for call in relevant], ["https://app.test/a", "https://app.test/b"])

    def test_noise_is_excluded_and_urls_deduplicated(self) -> None:
        window = IdleWindow(last_event_timestamp=0, idle_detected_at=5000)
        calls = [
            _call("https://www.googletagmanager.com/gtm.js"),
            _call("https://app.test/static/app.js.map"),
            _call("https://app.test/api/auth/refresh", "POST"),
            _call("https://app.test/api/cart", "POST", status=201),
            _call("https://app.test/api/cart", "POST", status=500),
            _call("https://app.test/api/feature-flags"),
        ]
        patterns = compile_exclude_patterns([r"feature-flags"])
        relevant = get_relevant_api_calls(calls, window, patterns)
        self.assertEqual(len(relevant), 1)
        self.assertEqual(relevant[0].response.status, 201)

    def test_generation_prioritizes_mutations_then_errors(self) -> None:
        calls = [
            _call("https://app.test/api/profile", status=404),
            _call("https://app.test/api/list"),
            _call("https://app.test/api/items?page=2", "PUT"),
            _call("https://app.test/api/items/1", "DELETE", status=204),
        ]
        steps = generate_api_assertions(calls, max_assertions=2)
        self.assertEqual([step.match.method for step in steps], ["PUT", "DELETE"])
        self.assertEqual(steps[0].match.url, "/api/items?page=2")
        self.assertEqual(steps[0].expect.status, 200)
        self.assertEqual(steps[0].description, "Auto: PUT /api/items?page=2 → 200")

        steps = generate_api_assertions(calls, max_assertions=5)
        self.assertEqual([step.match.url for step in steps], ["/api/items?page=2", "/api/items/1", "/api/profile"])
        self.assertEqual(generate_api_assertions(calls, max_assertions=0), [])

    def test_url_pattern(self) -> None:
        self.assertEqual(url_pattern("https://app.test"), "/")
        self.assertEqual(url_pattern("https://app.test/api?q=1#frag"), "/api?q=1")
        self.assertEqual(url_pattern("/relative/path"), "/relative/path")


if __name__ == "__main__":
    unittest.main()
