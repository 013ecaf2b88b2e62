"""Idle-window API relevance filtering and assertApi step generation."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Pattern
from urllib.parse import urlparse

from stepwright.model.steps import ApiExpectation, ApiMatch, AssertApiStep
from stepwright.network.calls import CapturedApiCall

logger = logging.getLogger("stepwright.network.assertions")

DEFAULT_EXCLUDE_PATTERNS: tuple[Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"google-analytics",
        r"googletagmanager",
        r"facebook\.com/tr",
        r"analytics",
        r"tracking",
        r"beacon",
        r"hot-update",
        r"__vite",
        r"__webpack",
        r"\.map$",
        r"favicon\.ico",
        r"\.woff2?$",
        r"\.ttf$",
        r"/auth/refresh",
        r"/token$",
    )
)
STATE_CHANGING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
MATCHABLE_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"})
DEFAULT_MAX_ASSERTIONS = 2


@dataclass(frozen=True)
class IdleWindow:
    """Inclusive bounds: last user event time and the moment idle was detected."""

    last_event_timestamp: float
    idle_detected_at: float


def compile_exclude_patterns(extra: Iterable[str] = ()) -> tuple[Pattern[str], ...]:
    return DEFAULT_EXCLUDE_PATTERNS + tuple(re.compile(pattern, re.IGNORECASE) for pattern in extra)


def is_error_status(status: int) -> bool:
    return status >= 400


def url_pattern(full_url: str) -> str:
    """Pathname plus query of an absolute URL; other input is returned unchanged."""
    parsed = urlparse(full_url)
    if not parsed.scheme or not parsed.netloc:
        return full_url
    path = parsed.path or "/"
    if parsed.query:
        return f"{path}?{parsed.query}"
    return path


def get_relevant_api_calls(
    calls: Iterable[CapturedApiCall],
    window: IdleWindow,
    exclude_patterns: Iterable[Pattern[str]] | None = None,
) -> list[CapturedApiCall]:
    """Completed calls that finished inside the window, minus noise, first per URL."""
    patterns = tuple(exclude_patterns) if exclude_patterns is not None else DEFAULT_EXCLUDE_PATTERNS
    seen_urls: set[str] = set()
    relevant = []
    for call in calls:
        if call.pending or call.error or call.response is None:
            continue
        completed_at = call.request.timestamp + call.response.response_time
        if completed_at < window.last_event_timestamp or completed_at > window.idle_detected_at:
            continue
        url = call.request.url
        if any(pattern.search(url) for pattern in patterns):
            logger.debug("Excluded API call %s", url)
            continue
        if url in seen_urls:
            continue
        seen_urls.add(url)
        relevant.append(call)
    return relevant


def _qualifies(call: CapturedApiCall) -> bool:
    status = call.response.status if call.response is not None else 0
    return call.request.method.upper() in STATE_CHANGING_METHODS or is_error_status(status)


def _priority(call: CapturedApiCall) -> int:
    if call.request.method.upper() in STATE_CHANGING_METHODS:
        return 0
    if call.response is not None and is_error_status(call.response.status):
        return 1
    return 2


def generate_api_assertions(
    relevant_calls: Iterable[CapturedApiCall],
    max_assertions: int = DEFAULT_MAX_ASSERTIONS,
) -> list[AssertApiStep]:
    """assertApi steps for state-changing or failing calls, ordered by priority then input order."""
    qualifying = [call for call in relevant_calls if _qualifies(call)]
    ordered = [
        call
        for _, _, call in sorted(
            ((_priority(call), index, call) for index, call in enumerate(qualifying)),
            key=lambda item: (item[0], item[1]),
        )
    ]
    steps = []
    for call in ordered[: max(0, max_assertions)]:
        method = call.request.method.upper()
        status = call.response.status
        url = url_pattern(call.request.url)
        steps.append(
            AssertApiStep(
                match=ApiMatch(url=url, method=method if method in MATCHABLE_METHODS else None),
                expect=ApiExpectation(status=status),
                wait_for=True,
                description=f"Auto: {method} {url} → {status}",
            )
        )
    return steps
