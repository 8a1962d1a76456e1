"""JSON-RPC 2.0 tool protocol: request dispatch only (no I/O).

Every transport parses its framing into a request dict, hands it to
``RpcDispatcher.handle`` and frames the returned dict (if any) back.
"""

from __future__ import annotations

import logging
from typing import Any

from vfeedback import __version__
from vfeedback.delivery.tool_surface import TOOLS, ToolCallSurface

logger = logging.getLogger(__name__)

SERVER_NAME = "visual-feedback"
PROTOCOL_VERSION = "2024-11-05"

METHOD_NOT_FOUND = -32601
INVALID_REQUEST = -32600
INTERNAL_ERROR = -32603


def jsonrpc_result(req_id, result):
    return {"jsonrpc": "2.0", "id": req_id, "result": result}


def jsonrpc_error(req_id, code, message):
    return {"jsonrpc": "2.0", "id": req_id, "error": {"code": code, "message": message}}


class RpcDispatcher:
    """Maps JSON-RPC methods onto the Tool-Call Surface."""

    def __init__(self, surface: ToolCallSurface) -> None:
        self.surface = surface

    async def handle(self, req: Any) -> dict | None:
        if not isinstance(req, dict):
            return jsonrpc_error(None, INVALID_REQUEST, "Request must be a JSON object")

        req_id = req.get("id")
        method = req.get("method", "")

        # Notifications (no id) get no response
        if req_id is None:
            if method == "notifications/initialized":
                logger.info("Tool client initialized")
            return None

        if method == "initialize":
            params = req.get("params") or {}
            return jsonrpc_result(
                req_id,
                {
                    "protocolVersion": params.get("protocolVersion") or PROTOCOL_VERSION,
                    "capabilities": {"tools": {}},
                    "serverInfo": {"name": SERVER_NAME, "version": __version__},
                },
            )

        if method == "tools/list":
            return jsonrpc_result(req_id, {"tools": TOOLS})

        if method == "tools/call":
            params = req.get("params") or {}
            name = params.get("name", "")
            logger.info("Tool call: %s", name)
            try:
                result = await self.surface.call_tool(name, params.get("arguments"))
            except Exception as e:
                logger.exception("Tool %s raised", name)
                return jsonrpc_error(req_id, INTERNAL_ERROR, f"Internal error: {e}")
            return jsonrpc_result(req_id, result)

        if method == "ping":
            return jsonrpc_result(req_id, {})

        return jsonrpc_error(req_id, METHOD_NOT_FOUND, f"Method not found: {method}")
