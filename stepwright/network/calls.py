"""Captured network exchanges and the Playwright-side interception observer."""

from __future__ import annotations

import dataclasses
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable
from uuid import uuid4

logger = logging.getLogger("stepwright.network.calls")

API_RESOURCE_TYPES = frozenset({"xhr", "fetch"})


@dataclass(frozen=True)
class CapturedRequest:
    url: str
    method: str
    timestamp: float
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    id: str = field(default_factory=lambda: f"req-{uuid4().hex[:12]}")


@dataclass(frozen=True)
class CapturedResponse:
    status: int
    response_time: float
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    status_text: str = ""


@dataclass(frozen=True)
class CapturedApiCall:
    request: CapturedRequest
    response: CapturedResponse | None = None
    pending: bool = True
    error: str | None = None

    @property
    def completed_at(self) -> float | None:
        if self.response is None:
            return None
        return self.request.timestamp + self.response.response_time

    def complete(self, response: CapturedResponse) -> "CapturedApiCall":
        return dataclasses.replace(self, response=response, pending=False, error=None)

    def fail(self, error: str) -> "CapturedApiCall":
        return dataclasses.replace(self, pending=False, error=error)


def _headers(raw: Any) -> dict[str, str]:
    if not isinstance(raw, dict):
        return {}
    return {str(key).lower(): str(value) for key, value in raw.items()}


def parse_api_call(payload: dict[str, Any]) -> CapturedApiCall:
    """Build a call from a host-posted payload (`request`/`response` objects, camelCase)."""
    request_raw = payload.get("request")
    if not isinstance(request_raw, dict):
        raise ValueError("api call payload requires a request object")
    url = str(request_raw.get("url", "")).strip()
    if not url:
        raise ValueError("api call request requires a url")
    request = CapturedRequest(
        url=url,
        method=str(request_raw.get("method", "GET")).upper(),
        timestamp=float(request_raw.get("timestamp", 0)),
        headers=_headers(request_raw.get("headers")),
        body=request_raw.get("body"),
        id=str(request_raw.get("id") or f"req-{uuid4().hex[:12]}"),
    )
    response_raw = payload.get("response")
    response = None
    if isinstance(response_raw, dict):
        response = CapturedResponse(
            status=int(response_raw.get("status", 0)),
            response_time=float(response_raw.get("responseTime", 0)),
            headers=_headers(response_raw.get("headers")),
            body=response_raw.get("body"),
            status_text=str(response_raw.get("statusText", "")),
        )
    error = payload.get("error")
    return CapturedApiCall(
        request=request,
        response=response,
        pending=bool(payload.get("pending", response is None and not error)),
        error=str(error) if error else None,
    )


def match_url(url: str, pattern: str, is_regex: bool = False) -> bool:
    """Substring match, `*` wildcard match over the full URL, or regex search."""
    if is_regex:
        try:
            return re.search(pattern, url) is not None
        except re.error:
            return False
    if "*" in pattern:
        regex = ".*".join(re.escape(part) for part in pattern.split("*"))
        return re.fullmatch(regex, url) is not None
    return pattern in url


class ApiCallLog:
    """Ordered log of captured calls; completed entries are replaced, never mutated."""

    def __init__(self) -> None:
        self._calls: list[CapturedApiCall] = []
        self._index: dict[str, int] = {}
        self._listeners: list[Callable[[CapturedApiCall], None]] = []

    def __len__(self) -> int:
        return len(self._calls)

    def add(self, call: CapturedApiCall) -> CapturedApiCall:
        position = self._index.get(call.request.id)
        if position is None:
            self._index[call.request.id] = len(self._calls)
            self._calls.append(call)
        else:
            self._calls[position] = call
        if not call.pending:
            for listener in list(self._listeners):
                try:
                    listener(call)
                except Exception as exc:
                    logger.warning("API call listener failed: %s", exc)
        return call

    def get(self, request_id: str) -> CapturedApiCall | None:
        position = self._index.get(request_id)
        if position is None:
            return None
        return self._calls[position]

    def calls(self) -> list[CapturedApiCall]:
        return list(self._calls)

    def completed(self) -> list[CapturedApiCall]:
        return [call for call in self._calls if call.response is not None]

    def clear(self) -> None:
        self._calls = []
        self._index = {}

    def on_complete(self, listener: Callable[[CapturedApiCall], None]) -> None:
        self._listeners.append(listener)

    def find_matching(self, url_pattern: str, method: str | None = None, is_regex: bool = False) -> CapturedApiCall | None:
        for call in self._calls:
            if not match_url(call.request.url, url_pattern, is_regex):
                continue
            if method and call.request.method.upper() != method.upper():
                continue
            return call
        return None


def _now_ms() -> float:
    return time.time() * 1000


class PageApiObserver:
    """Record xhr/fetch exchanges of a Playwright page into an ApiCallLog."""

    def __init__(self, log: ApiCallLog | None = None, clock: Callable[[], float] = _now_ms):
        self.log = log or ApiCallLog()
        self._clock = clock
        self._page: Any = None
        self._pending: dict[Any, str] = {}

    @property
    def observing(self) -> bool:
        return self._page is not None

    def start(self, page: Any) -> None:
        if self._page is not None:
            return
        self._page = page
        page.on("request", self._on_request)
        page.on("response", self._on_response)
        page.on("requestfailed", self._on_request_failed)

    def stop(self) -> None:
        if self._page is None:
            return
        self._page.remove_listener("request", self._on_request)
        self._page.remove_listener("response", self._on_response)
        self._page.remove_listener("requestfailed", self._on_request_failed)
        self._page = None
        self._pending.clear()

    def _on_request(self, request: Any) -> None:
        if request.resource_type not in API_RESOURCE_TYPES:
            return
        captured = CapturedRequest(
            url=request.url,
            method=request.method.upper(),
            timestamp=self._clock(),
            headers=_headers(request.headers),
            body=request.post_data,
        )
        self._pending[request] = captured.id
        self.log.add(CapturedApiCall(request=captured))

    async def _on_response(self, response: Any) -> None:
        request = response.request
        request_id = self._pending.pop(request, None)
        if request_id is None:
            return
        call = self.log.get(request_id)
        if call is None:
            return
        received_at = self._clock()
        headers = _headers(response.headers)
        body: Any = None
        try:
            if "application/json" in headers.get("content-type", ""):
                body = await response.json()
            else:
                body = await response.text()
        except Exception as exc:
            logger.debug("Could not read response body for %s: %s", request.url, exc)
        self.log.add(
            call.complete(
                CapturedResponse(
                    status=response.status,
                    response_time=received_at - call.request.timestamp,
                    headers=headers,
                    body=body,
                    status_text=response.status_text,
                )
            )
        )

    def _on_request_failed(self, request: Any) -> None:
        request_id = self._pending.pop(request, None)
        if request_id is None:
            return
        call = self.log.get(request_id)
        if call is not None:
            self.log.add(call.fail(str(request.failure or "request failed")))
