"""Transport Gateway: the authenticated client socket plus the HTTP surface.

Socket (default port 3847):
    ws://host:3847/?token=<token>
    One tracked client at a time; a newer authenticated connection replaces it.
    Connection state: disconnected → connecting → connected → disconnected.

HTTP (default port 3848):
    GET  /status            liveness, socket port, whether a token is required
    GET  /servers           live server instances from the registry
    GET  /tasks             pending changes, for the notification hook
    GET  /tasks/{id}/log    captured agent output for one change
    GET  /sse, POST /messages, POST /rpc   tool-call transports (when enabled)
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import Awaitable, Callable
from typing import Any, Literal

from aiohttp import WSCloseCode, WSMsgType, web

from vfeedback.auth import tokens_match
from vfeedback.config import FeedbackConfig
from vfeedback.errors import AuthError, ProtocolError
from vfeedback.registry import InstanceRegistry
from vfeedback.rpc.sse import SseTransport
from vfeedback.store.requests import RequestStore

logger = logging.getLogger(__name__)

AUTH_CLOSE_CODE = WSCloseCode.POLICY_VIOLATION

ConnectionState = Literal["disconnected", "connecting", "connected"]

Reply = Callable[[dict[str, Any]], Awaitable[None]]
MessageHandler = Callable[[dict[str, Any], Reply], Awaitable[None]]

_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def parse_message(data: str) -> dict[str, Any]:
    """Decode one client frame. Raises ProtocolError for anything malformed."""
    try:
        message = json.loads(data)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid JSON: {e}") from e
    if not isinstance(message, dict) or not isinstance(message.get("type"), str):
        raise ProtocolError("Message must be an object with a string 'type'")
    return message


@web.middleware
async def _cors_middleware(request: web.Request, handler):
    if request.method == "OPTIONS":
        response = web.Response(status=200)
    else:
        response = await handler(request)
    if not response.prepared:
        response.headers.update(_CORS_HEADERS)
    return response


class Gateway:
    """Owns the current client connection and both listeners."""

    def __init__(
        self,
        config: FeedbackConfig,
        store: RequestStore,
        registry: InstanceRegistry,
        token: str,
    ) -> None:
        self._config = config
        self._store = store
        self._registry = registry
        self._token = token
        self._strategy_name = ""
        self._rpc: SseTransport | None = None
        self._live_log: Callable[[str], str | None] | None = None
        self._handler: MessageHandler | None = None
        self._client: web.WebSocketResponse | None = None
        self._state: ConnectionState = "disconnected"
        self._runners: list[web.AppRunner] = []

    @property
    def name(self) -> str:
        return "gateway"

    @property
    def state(self) -> ConnectionState:
        return self._state

    def _set_state(self, state: ConnectionState) -> None:
        if state != self._state:
            logger.debug("Connection state: %s → %s", self._state, state)
            self._state = state

    def set_handler(self, handler: MessageHandler) -> None:
        self._handler = handler

    def attach_strategy(
        self,
        name: str,
        live_log: Callable[[str], str | None],
        rpc: SseTransport | None = None,
    ) -> None:
        """Wire in the delivery strategy, which is built after the gateway it notifies through."""
        self._strategy_name = name
        self._live_log = live_log
        self._rpc = rpc

    # ── Apps ──────────────────────────────────────────────────

    def build_ws_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/", self._handle_ws)
        return app

    def build_http_app(self) -> web.Application:
        app = web.Application(middlewares=[_cors_middleware])
        app.router.add_get("/status", self._handle_status)
        app.router.add_get("/servers", self._handle_servers)
        app.router.add_get("/tasks", self._handle_tasks)
        app.router.add_get("/tasks/{change_id}/log", self._handle_task_log)
        if self._rpc:
            self._rpc.add_routes(app)
        return app

    # ── Socket ────────────────────────────────────────────────

    def _authenticate(self, request: web.Request) -> None:
        if not tokens_match(self._token, request.query.get("token")):
            raise AuthError("Invalid token")

    async def _handle_ws(self, request: web.Request) -> web.StreamResponse:
        ws = web.WebSocketResponse()
        if not ws.can_prepare(request).ok:
            return web.Response(status=400, text="Expected a WebSocket upgrade")

        previous = self._state
        self._set_state("connecting")
        await ws.prepare(request)

        try:
            self._authenticate(request)
        except AuthError as e:
            logger.warning("Connection rejected: %s", e)
            await ws.close(code=AUTH_CLOSE_CODE, message=b"Invalid token")
            self._set_state(previous if self._client is not None else "disconnected")
            return ws

        if self._client is not None and not self._client.closed:
            logger.info("New client replaces the current connection")
        self._client = ws
        self._set_state("connected")
        logger.info("Extension connected")
        await self._safe_send(ws, {"type": "ready"})

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    await self._dispatch(ws, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    logger.warning("Socket error: %s", ws.exception())
        finally:
            if self._client is ws:
                self._client = None
                self._set_state("disconnected")
            logger.info("Extension disconnected")
        return ws

    async def _dispatch(self, ws: web.WebSocketResponse, data: str) -> None:
        async def reply(payload: dict[str, Any]) -> None:
            await self._safe_send(ws, payload)

        try:
            message = parse_message(data)
            logger.debug("Received: %s", message["type"])
            if self._handler is None:
                raise ProtocolError("No handler attached")
            await self._handler(message, reply)
        except ProtocolError as e:
            logger.warning("Dropping client message: %s", e)
        except Exception as e:
            logger.exception("Error handling client message")
            await reply({"success": False, "error": str(e)})

    async def _safe_send(self, ws: web.WebSocketResponse, payload: dict[str, Any]) -> bool:
        if ws.closed:
            return False
        try:
            await ws.send_json(payload)
            return True
        except (ConnectionResetError, RuntimeError) as e:
            logger.warning("Failed to send to client: %s", e)
            return False

    async def send(self, message: dict[str, Any]) -> bool:
        """Notifier protocol: push to the current client, if any."""
        client = self._client
        if client is None:
            logger.debug("No client connected; dropping %s", message.get("type"))
            return False
        return await self._safe_send(client, message)

    # ── HTTP ──────────────────────────────────────────────────

    async def _handle_status(self, request: web.Request) -> web.Response:
        body: dict[str, Any] = {
            "status": "running",
            "wsPort": self._config.server.ws_port,
            "requiresToken": True,
            "strategy": self._strategy_name,
            "pid": os.getpid(),
            "connected": self._state == "connected",
        }
        if self._rpc:
            body["sseEndpoint"] = "/sse"
        return web.json_response(body)

    async def _handle_servers(self, request: web.Request) -> web.Response:
        entries = await asyncio.to_thread(self._registry.list_live)
        return web.json_response([e.to_dict() for e in entries])

    async def _handle_tasks(self, request: web.Request) -> web.Response:
        pending = await asyncio.to_thread(self._store.get_pending, False)
        return web.json_response(
            {"count": len(pending), "tasks": [c.summary() for c in pending]}
        )

    async def _handle_task_log(self, request: web.Request) -> web.Response:
        change_id = request.match_info["change_id"]
        live = self._live_log(change_id) if self._live_log else None
        if live is not None:
            return web.json_response({"log": live})
        change = await asyncio.to_thread(self._store.get, change_id)
        if change is None:
            return web.json_response({"error": "Task not found"}, status=404)
        return web.json_response({"log": change.log})

    # ── Lifecycle ─────────────────────────────────────────────

    async def _start_site(self, app: web.Application, port: int, label: str) -> bool:
        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, self._config.server.host, port)
        try:
            await site.start()
        except OSError as e:
            logger.warning("%s port %d unavailable (%s)", label, port, e)
            await runner.cleanup()
            return False
        self._runners.append(runner)
        logger.info("%s listening on %s:%d", label, self._config.server.host, port)
        return True

    async def start(self, handler: MessageHandler) -> tuple[bool, bool]:
        """Bind both listeners. Returns (socket_ok, http_ok); a busy port is not fatal."""
        self._handler = handler
        ws_ok = await self._start_site(self.build_ws_app(), self._config.server.ws_port, "WebSocket")
        http_ok = await self._start_site(
            self.build_http_app(), self._config.server.http_port, "HTTP"
        )
        return ws_ok, http_ok

    async def stop(self) -> None:
        if self._rpc:
            self._rpc.close()
        if self._client is not None and not self._client.closed:
            await self._client.close()
        for runner in self._runners:
            await runner.cleanup()
        self._runners.clear()
        logger.info("Gateway stopped")
