"""HTTP transports for an agent connecting to an independently running server.

- ``GET /sse`` opens an event stream; its first ``endpoint`` event names the
  URL to POST requests to. Responses come back as ``message`` events.
- ``POST /messages?session_id=...`` accepts one request (202) for that stream.
- ``POST /rpc`` answers one request synchronously in the HTTP response.

The server can be restarted without restarting the agent session; the agent
just reconnects to ``/sse``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid

from aiohttp import web

from vfeedback.rpc.protocol import RpcDispatcher

logger = logging.getLogger(__name__)


class SseTransport:
    """Holds one response queue per open event stream."""

    def __init__(self, dispatcher: RpcDispatcher) -> None:
        self._dispatcher = dispatcher
        self._sessions: dict[str, asyncio.Queue] = {}

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def add_routes(self, app: web.Application) -> None:
        app.router.add_get("/sse", self.handle_sse)
        app.router.add_post("/messages", self.handle_message)
        app.router.add_post("/rpc", self.handle_rpc)

    async def handle_sse(self, request: web.Request) -> web.StreamResponse:
        session_id = uuid.uuid4().hex
        queue: asyncio.Queue = asyncio.Queue()
        self._sessions[session_id] = queue
        logger.info("SSE connection opened (session=%s)", session_id)

        response = web.StreamResponse(
            headers={
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
            }
        )
        await response.prepare(request)
        try:
            await self._write_event(response, "endpoint", f"/messages?session_id={session_id}")
            while True:
                message = await queue.get()
                if message is None:
                    break
                await self._write_event(response, "message", json.dumps(message))
        except ConnectionResetError:
            logger.info("SSE client went away (session=%s)", session_id)
        finally:
            self._sessions.pop(session_id, None)
        return response

    @staticmethod
    async def _write_event(response: web.StreamResponse, event: str, data: str) -> None:
        await response.write(f"event: {event}\ndata: {data}\n\n".encode("utf-8"))

    async def handle_message(self, request: web.Request) -> web.Response:
        queue = self._sessions.get(request.query.get("session_id", ""))
        if queue is None:
            return web.json_response({"error": "No SSE connection established"}, status=400)
        try:
            req = await request.json()
        except json.JSONDecodeError:
            return web.json_response({"error": "Invalid JSON"}, status=400)

        response = await self._dispatcher.handle(req)
        if response is not None:
            queue.put_nowait(response)
        return web.Response(status=202, text="Accepted")

    async def handle_rpc(self, request: web.Request) -> web.Response:
        try:
            req = await request.json()
        except json.JSONDecodeError:
            return web.json_response({"error": "Invalid JSON"}, status=400)
        response = await self._dispatcher.handle(req)
        if response is None:
            return web.Response(status=204)
        return web.json_response(response)

    def close(self) -> None:
        """End every open event stream."""
        for queue in self._sessions.values():
            queue.put_nowait(None)
