"""Local HTTP receiver for events and API calls posted by an external recorder host."""

from __future__ import annotations

import logging
from typing import Any

from aiohttp import web

from stepwright.recorder.dom_port import PageDomPort
from stepwright.recorder.session import RecordingSession

logger = logging.getLogger("stepwright.recorder.server")


class RecordingServer:
    """Aiohttp server that feeds posted payloads into a recording session."""

    def __init__(
        self,
        session: RecordingSession,
        host: str = "127.0.0.1",
        port: int = 7331,
        dom_port: PageDomPort | None = None,
    ):
        self.session = session
        self.host = host
        self.port = port
        self.dom_port = dom_port
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    async def _read_body(self, request: web.Request) -> dict[str, Any] | None:
        try:
            body = await request.json()
        except Exception:
            return None
        return body if isinstance(body, dict) else None

    async def _handle_event(self, request: web.Request) -> web.Response:
        """Accept one interaction payload: `{"kind": ..., "payload": {...}}`."""
        body = await self._read_body(request)
        if body is None:
            return web.json_response({"status": "bad_request"}, status=400)

        kind = body.get("kind", body.get("event_type"))
        payload = body.get("payload", {})
        if not isinstance(kind, str):
            return web.json_response({"status": "bad_request"}, status=400)
        if not isinstance(payload, dict):
            payload = {}

        self.session.ingest(kind, payload)
        return web.json_response({"status": "ok"})

    async def _handle_api_call(self, request: web.Request) -> web.Response:
        body = await self._read_body(request)
        if body is None:
            return web.json_response({"status": "bad_request"}, status=400)
        try:
            call = self.session.ingest_api_call(body)
        except ValueError as exc:
            return web.json_response({"status": "bad_request", "error": str(exc)}, status=400)
        return web.json_response({"status": "ok", "request_id": call.request.id})

    async def _handle_dom(self, request: web.Request) -> web.Response:
        if self.dom_port is None:
            return web.json_response({"status": "unsupported"}, status=404)
        body = await self._read_body(request)
        if body is None:
            return web.json_response({"status": "bad_request"}, status=400)
        self.dom_port.ingest(body)
        return web.json_response({"status": "ok"})

    async def _handle_status(self, request: web.Request) -> web.Response:
        return web.json_response(
            {
                "session_id": self.session.session_id,
                "state": self.session.collector.state,
                "events": len(self.session.collector.events),
                "api_calls": len(self.session.api_log),
            }
        )

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/event", self._handle_event)
        app.router.add_post("/api-call", self._handle_api_call)
        app.router.add_post("/dom", self._handle_dom)
        app.router.add_get("/status", self._handle_status)
        return app

    async def start(self) -> None:
        """Start aiohttp receiver."""
        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host=self.host, port=self.port)
        await self._site.start()
        logger.info("Recording server started at http://%s:%s", self.host, self.port)

    async def stop(self) -> None:
        """Stop aiohttp receiver."""
        if self._site is not None:
            await self._site.stop()
            self._site = None
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        self._app = None
        logger.info("Recording server stopped")
