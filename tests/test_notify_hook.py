"""Tests for the prompt-submit notification hook."""

from __future__ import annotations

import io
import socket

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from vfeedback.hooks.notify import check, fetch_pending_count, main, render_notice


def _free_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _tasks_app(body, status: int = 200) -> web.Application:
    async def handler(request: web.Request) -> web.Response:
        if isinstance(body, str):
            return web.Response(text=body, status=status)
        return web.json_response(body, status=status)

    app = web.Application()
    app.router.add_get("/tasks", handler)
    return app


class TestRenderNotice:
    def test_nothing_pending(self):
        assert render_notice(0) == ""

    def test_pending_block(self):
        text = render_notice(2)
        assert text.startswith('<visual-feedback-pending count="2">')
        assert "2 visual feedback task(s)" in text
        assert "get_visual_feedback" in text
        assert "mark_change_applied" in text
        assert text.endswith("</visual-feedback-pending>")


class TestFetch:
    @pytest.mark.asyncio
    async def test_unreachable_is_zero(self):
        url = f"http://127.0.0.1:{_free_port()}/tasks"
        assert await fetch_pending_count(url, timeout=1.0) == 0

    @pytest.mark.asyncio
    async def test_counts_pending(self):
        async with TestServer(_tasks_app({"count": 3, "tasks": []})) as server:
            assert await fetch_pending_count(str(server.make_url("/tasks"))) == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body,status",
        [("<html>", 200), ({"count": "many"}, 200), ([1, 2], 200), ({"count": 3}, 500)],
    )
    async def test_bad_responses_are_zero(self, body, status):
        async with TestServer(_tasks_app(body, status)) as server:
            assert await fetch_pending_count(str(server.make_url("/tasks"))) == 0


class TestCheck:
    @pytest.mark.asyncio
    async def test_prints_notice(self):
        out = io.StringIO()
        async with TestServer(_tasks_app({"count": 1})) as server:
            count = await check(str(server.make_url("/tasks")), out)
        assert count == 1
        assert 'count="1"' in out.getvalue()

    @pytest.mark.asyncio
    async def test_silent_when_empty(self):
        out = io.StringIO()
        async with TestServer(_tasks_app({"count": 0})) as server:
            await check(str(server.make_url("/tasks")), out)
        assert out.getvalue() == ""

    def test_main_never_raises(self, capsys):
        main(f"http://127.0.0.1:{_free_port()}/tasks")
        assert capsys.readouterr().out == ""
