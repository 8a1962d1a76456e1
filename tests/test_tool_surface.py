"""Tests for the Tool-Call Surface."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from conftest import RecordingNotifier, make_change
from vfeedback.config import DeliveryConfig, FeedbackConfig
from vfeedback.delivery.tool_surface import NOTHING_PENDING, TOOLS, ToolCallSurface
from vfeedback.models import ElementDescriptor
from vfeedback.prompts import PromptTemplate
from vfeedback.store.requests import RequestStore
from vfeedback.store.subjects import SubjectMemoryStore


@pytest.fixture
def surface(config: FeedbackConfig, store: RequestStore, notifier: RecordingNotifier):
    return ToolCallSurface(store, config, notifier)


def _text(result: dict) -> str:
    return result["content"][0]["text"]


class TestRetrieve:
    @pytest.mark.asyncio
    async def test_nothing_pending(self, surface):
        reply = await surface.retrieve()
        assert reply.text == NOTHING_PENDING
        assert reply.is_error is False

    @pytest.mark.asyncio
    async def test_single_change(self, surface, store):
        store.add(make_change("1"))
        reply = await surface.retrieve()
        assert reply.text.startswith("Found 1 pending visual change(s):")
        assert "make button blue" in reply.text
        assert ".cta" in reply.text
        assert reply.text.count("Task ID:") == 1

    @pytest.mark.asyncio
    async def test_skips_applied_unless_asked(self, surface, store):
        store.add(make_change("1", feedback="first"))
        store.add(make_change("2", feedback="second"))
        store.mark_applied("1")

        reply = await surface.retrieve()
        assert "Found 1 pending" in reply.text
        assert "first" not in reply.text

        reply = await surface.retrieve(include_applied=True)
        assert "Found 2 pending" in reply.text

    @pytest.mark.asyncio
    async def test_custom_separator(self, config, store, notifier):
        template = PromptTemplate(body="{{TASK_ID}}", separator="\n@@\n")
        surface = ToolCallSurface(store, config, notifier, template)
        store.add(make_change("a"))
        store.add(make_change("b"))
        reply = await surface.retrieve()
        assert reply.text.endswith("a\n@@\nb")

    @pytest.mark.asyncio
    async def test_failed_history_in_context(self, surface, store, config):
        element = ElementDescriptor(tag="button", selector=".cta", classes=["cta"])
        subjects = SubjectMemoryStore(config.beads_dir)
        subjects.save(element, "attempt one", "0", False)
        subjects.save(element, "attempt two", "1", False)

        store.add(make_change("2", element=element))
        text = (await surface.retrieve()).text

        first = text.index('✗ "attempt one"')
        second = text.index('✗ "attempt two"')
        assert first < second


class TestMarkApplied:
    @pytest.mark.asyncio
    async def test_applied(self, surface, store, notifier, config):
        change = store.add(make_change("1"))
        reply = await surface.mark_applied("1")

        assert reply.text == "Change 1 marked as applied."
        assert store.get("1").status == "applied"
        assert notifier.sent == [{"type": "CHANGE_APPLIED", "changeId": "1"}]
        bead = SubjectMemoryStore(config.beads_dir).load(change.element)
        assert bead.changes[-1].success is True

    @pytest.mark.asyncio
    async def test_repeat_is_quiet(self, surface, store, notifier, config):
        change = store.add(make_change("a1"))

        first = await surface.mark_applied("a1")
        second = await surface.mark_applied("a1")

        assert first.is_error is False
        assert second.is_error is False
        assert second.text == "Change a1 marked as applied."
        applied = notifier.of_type("CHANGE_APPLIED")
        assert applied == [{"type": "CHANGE_APPLIED", "changeId": "a1"}]
        bead = SubjectMemoryStore(config.beads_dir).load(change.element)
        assert [(c.task_id, c.success) for c in bead.changes] == [("a1", True)]

    @pytest.mark.asyncio
    async def test_unknown_id(self, surface, store, notifier):
        store.add(make_change("1"))
        before = store.path.read_text()

        reply = await surface.mark_applied("x")

        assert reply.is_error is True
        assert reply.text == "Change x not found."
        assert store.path.read_text() == before
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_no_client_connected(self, config, store):
        surface = ToolCallSurface(store, config, RecordingNotifier(connected=False))
        store.add(make_change("1"))
        reply = await surface.mark_applied("1")
        assert reply.is_error is False
        assert store.get("1").status == "applied"


class TestMarkFailed:
    @pytest.mark.asyncio
    async def test_failed(self, surface, store, notifier):
        store.add(make_change("1"))
        reply = await surface.mark_failed("1", "could not find the file")

        assert "marked as failed" in reply.text
        change = store.get("1")
        assert change.status == "failed"
        assert change.failure_reason == "could not find the file"
        assert notifier.sent == [
            {
                "type": "CHANGE_FAILED",
                "changeId": "1",
                "reason": "could not find the file",
                "retryCount": 1,
                "retryable": True,
            }
        ]

    @pytest.mark.asyncio
    async def test_retry_budget(self, store, notifier, tmp_path: Path):
        config = FeedbackConfig(
            data_dir=tmp_path / "data", delivery=DeliveryConfig(max_client_retries=2)
        )
        surface = ToolCallSurface(store, config, notifier)
        store.add(make_change("1"))
        await surface.mark_failed("1", "a")
        await surface.mark_failed("1", "b")
        assert [m["retryable"] for m in notifier.sent] == [True, False]

    @pytest.mark.asyncio
    async def test_failed_stays_pending(self, surface, store):
        store.add(make_change("1"))
        await surface.mark_failed("1", "nope")
        assert "Found 1 pending" in (await surface.retrieve()).text

    @pytest.mark.asyncio
    async def test_unknown_id(self, surface):
        reply = await surface.mark_failed("x", "why")
        assert reply.is_error is True


class TestInspectAndClear:
    @pytest.mark.asyncio
    async def test_inspect(self, surface, store):
        store.add(make_change("1"))
        reply = await surface.inspect("1")
        assert reply.text.startswith("Change details:")
        details = json.loads(reply.text.split("\n\n", 1)[1])
        assert details["id"] == "1"
        assert details["element"]["selector"] == ".cta"

    @pytest.mark.asyncio
    async def test_inspect_unknown(self, surface):
        reply = await surface.inspect("nope")
        assert reply.is_error is True
        assert reply.text == "Change nope not found."

    @pytest.mark.asyncio
    async def test_clear_all(self, surface, store):
        for cid in ["1", "2", "3"]:
            store.add(make_change(cid))
        store.mark_applied("2")

        reply = await surface.clear_all()

        assert reply.text == "Cleared 3 task(s) from the queue."
        assert store.list_all() == []
        assert (await surface.retrieve()).text == NOTHING_PENDING


class TestCallTool:
    def test_tool_names(self):
        assert [t["name"] for t in TOOLS] == [
            "get_visual_feedback",
            "mark_change_applied",
            "mark_change_failed",
            "get_change_details",
            "clear_all_tasks",
        ]

    @pytest.mark.asyncio
    async def test_dispatch(self, surface, store):
        store.add(make_change("1"))
        result = await surface.call_tool("mark_change_applied", {"changeId": "1"})
        assert _text(result) == "Change 1 marked as applied."
        assert "isError" not in result

    @pytest.mark.asyncio
    async def test_unknown_tool(self, surface):
        result = await surface.call_tool("launch_rockets", {})
        assert result["isError"] is True
        assert _text(result) == "Unknown tool: launch_rockets"

    @pytest.mark.asyncio
    async def test_missing_arguments(self, surface):
        result = await surface.call_tool("get_visual_feedback", None)
        assert _text(result) == NOTHING_PENDING
