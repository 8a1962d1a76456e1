"""Tests for the JSON-RPC dispatcher and the stdio transport."""

from __future__ import annotations

import asyncio
import io
import json

import pytest

from conftest import make_change
from vfeedback.delivery.tool_surface import ToolCallSurface
from vfeedback.rpc.protocol import (
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PROTOCOL_VERSION,
    SERVER_NAME,
    RpcDispatcher,
)
from vfeedback.rpc.stdio import handle_line, serve_stdio


@pytest.fixture
def dispatcher(config, store, notifier) -> RpcDispatcher:
    return RpcDispatcher(ToolCallSurface(store, config, notifier))


class TestDispatcher:
    @pytest.mark.asyncio
    async def test_initialize(self, dispatcher):
        resp = await dispatcher.handle({"jsonrpc": "2.0", "id": 1, "method": "initialize"})
        assert resp["id"] == 1
        assert resp["result"]["protocolVersion"] == PROTOCOL_VERSION
        assert resp["result"]["serverInfo"]["name"] == SERVER_NAME
        assert "tools" in resp["result"]["capabilities"]

    @pytest.mark.asyncio
    async def test_initialize_echoes_client_version(self, dispatcher):
        resp = await dispatcher.handle(
            {"id": 1, "method": "initialize", "params": {"protocolVersion": "2025-03-26"}}
        )
        assert resp["result"]["protocolVersion"] == "2025-03-26"

    @pytest.mark.asyncio
    async def test_tools_list(self, dispatcher):
        resp = await dispatcher.handle({"id": 2, "method": "tools/list"})
        assert len(resp["result"]["tools"]) == 5

    @pytest.mark.asyncio
    async def test_tools_call(self, dispatcher, store):
        store.add(make_change("7"))
        resp = await dispatcher.handle(
            {
                "id": 3,
                "method": "tools/call",
                "params": {"name": "get_change_details", "arguments": {"changeId": "7"}},
            }
        )
        assert resp["result"]["content"][0]["text"].startswith("Change details:")

    @pytest.mark.asyncio
    async def test_notification_has_no_response(self, dispatcher):
        assert await dispatcher.handle({"method": "notifications/initialized"}) is None

    @pytest.mark.asyncio
    async def test_unknown_method(self, dispatcher):
        resp = await dispatcher.handle({"id": 4, "method": "resources/list"})
        assert resp["error"]["code"] == METHOD_NOT_FOUND

    @pytest.mark.asyncio
    async def test_not_an_object(self, dispatcher):
        resp = await dispatcher.handle([1, 2, 3])
        assert resp["error"]["code"] == INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_ping(self, dispatcher):
        assert (await dispatcher.handle({"id": 5, "method": "ping"}))["result"] == {}


class TestStdio:
    @pytest.mark.asyncio
    async def test_handle_line(self, dispatcher):
        line = await handle_line(dispatcher, '{"jsonrpc":"2.0","id":1,"method":"ping"}\n')
        assert json.loads(line) == {"jsonrpc": "2.0", "id": 1, "result": {}}

    @pytest.mark.asyncio
    async def test_blank_and_garbage_lines(self, dispatcher):
        assert await handle_line(dispatcher, "   \n") is None
        assert await handle_line(dispatcher, "{oops\n") is None

    @pytest.mark.asyncio
    async def test_serve_until_eof(self, dispatcher):
        reader = asyncio.StreamReader()
        reader.feed_data(b'{"id":1,"method":"tools/list"}\n')
        reader.feed_data(b'{"method":"notifications/initialized"}\n')
        reader.feed_data(b'{"id":2,"method":"ping"}\n')
        reader.feed_eof()
        out = io.StringIO()

        await serve_stdio(dispatcher, reader=reader, out=out)

        responses = [json.loads(line) for line in out.getvalue().splitlines()]
        assert [r["id"] for r in responses] == [1, 2]
