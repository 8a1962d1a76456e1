"""Tool-Call Surface: named operations a long-running agent session pulls work through.

The same operations back every transport (stdio pipe, SSE, plain HTTP); the
transports only differ in framing. See ``vfeedback.rpc``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

from vfeedback.config import FeedbackConfig
from vfeedback.delivery.base import Notifier
from vfeedback.errors import NotFoundError, PersistenceError
from vfeedback.models import Change
from vfeedback.prompts import PromptTemplate, render_prompt
from vfeedback.store.requests import RequestStore
from vfeedback.store.subjects import SubjectMemoryStore

logger = logging.getLogger(__name__)

NOTHING_PENDING = (
    "No pending visual feedback. The user has not made any visual changes in the extension yet."
)

TOOLS = [
    {
        "name": "get_visual_feedback",
        "description": (
            "Get pending visual feedback from the browser extension.\n"
            "Returns each requested change with element information (selector, tag, "
            "classes, computed styles), the user's feedback text and the history of "
            "earlier edits to the same element.\n\n"
            "Call this tool when you want to see what visual changes the user has requested."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "includeApplied": {
                    "type": "boolean",
                    "description": "Include already applied changes in the response",
                    "default": False,
                },
            },
        },
    },
    {
        "name": "mark_change_applied",
        "description": (
            "Mark a visual change as successfully applied.\n"
            "Call this after you have made the code changes to implement the user's visual feedback."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "changeId": {
                    "type": "string",
                    "description": "The ID of the change to mark as applied",
                },
            },
            "required": ["changeId"],
        },
    },
    {
        "name": "mark_change_failed",
        "description": (
            "Mark a visual change as failed to apply.\n"
            "Call this if you were unable to implement the user's visual feedback."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "changeId": {
                    "type": "string",
                    "description": "The ID of the change to mark as failed",
                },
                "reason": {"type": "string", "description": "Reason for the failure"},
            },
            "required": ["changeId"],
        },
    },
    {
        "name": "get_change_details",
        "description": "Get detailed information about a specific visual change.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "changeId": {
                    "type": "string",
                    "description": "The ID of the change to get details for",
                },
            },
            "required": ["changeId"],
        },
    },
    {
        "name": "clear_all_tasks",
        "description": (
            "Clear all visual feedback tasks from the queue.\n"
            "Use this to reset the queue when you want to start fresh."
        ),
        "inputSchema": {"type": "object", "properties": {}},
    },
]


@dataclass
class ToolReply:
    """Text result of a tool call."""

    text: str
    is_error: bool = False

    def to_content(self) -> dict[str, Any]:
        result: dict[str, Any] = {"content": [{"type": "text", "text": self.text}]}
        if self.is_error:
            result["isError"] = True
        return result


class ToolCallSurface:
    """Delivery strategy where the agent pulls pending changes on its own schedule."""

    def __init__(
        self,
        store: RequestStore,
        config: FeedbackConfig,
        notifier: Notifier,
        template: PromptTemplate | None = None,
    ) -> None:
        self._store = store
        self._beads_fallback = config.beads_dir
        self._max_retries = config.delivery.max_client_retries
        self._notifier = notifier
        self._template = template or PromptTemplate()

    @property
    def name(self) -> str:
        return "tool_call"

    # ── Strategy protocol ─────────────────────────────────────

    async def submit(self, change: Change) -> None:
        logger.info("Change %s queued; waiting for the agent to retrieve it", change.id)

    def live_log(self, change_id: str) -> str | None:
        return None

    async def close(self) -> None:
        return None

    # ── Operations ────────────────────────────────────────────

    def _subjects(self, change: Change) -> SubjectMemoryStore:
        return SubjectMemoryStore.for_project(change.project_path, self._beads_fallback)

    def _format(self, change: Change) -> str:
        bead_context = self._subjects(change).context_for(change.element)
        return render_prompt(change, self._template, bead_context)

    async def retrieve(self, include_applied: bool = False) -> ToolReply:
        changes = await asyncio.to_thread(self._store.get_pending, include_applied)
        if not changes:
            return ToolReply(NOTHING_PENDING)
        formatted = [await asyncio.to_thread(self._format, c) for c in changes]
        body = self._template.separator.join(formatted)
        return ToolReply(f"Found {len(changes)} pending visual change(s):\n\n{body}")

    async def mark_applied(self, change_id: str) -> ToolReply:
        try:
            change, changed = await asyncio.to_thread(self._store.mark_applied, change_id)
        except NotFoundError as e:
            return ToolReply(str(e), is_error=True)
        if not changed:
            logger.info("Change %s was already applied", change_id)
            return ToolReply(f"Change {change_id} marked as applied.")

        await asyncio.to_thread(
            self._subjects(change).save, change.element, change.feedback, change.id, True
        )
        await self._notify({"type": "CHANGE_APPLIED", "changeId": change_id})
        return ToolReply(f"Change {change_id} marked as applied.")

    async def mark_failed(self, change_id: str, reason: str | None = None) -> ToolReply:
        try:
            change = await asyncio.to_thread(self._store.mark_failed, change_id, reason)
        except NotFoundError as e:
            return ToolReply(str(e), is_error=True)

        await asyncio.to_thread(
            self._subjects(change).save, change.element, change.feedback, change.id, False
        )
        await self._notify(
            {
                "type": "CHANGE_FAILED",
                "changeId": change_id,
                "reason": reason,
                "retryCount": change.retry_count,
                "retryable": change.retry_count < self._max_retries,
            }
        )
        return ToolReply(f"Change {change_id} marked as failed. The extension may auto-retry.")

    async def inspect(self, change_id: str) -> ToolReply:
        change = await asyncio.to_thread(self._store.get, change_id)
        if change is None:
            return ToolReply(f"Change {change_id} not found.", is_error=True)
        return ToolReply(f"Change details:\n\n{json.dumps(change.to_dict(), indent=2)}")

    async def clear_all(self) -> ToolReply:
        counts = await asyncio.to_thread(self._store.get_status_counts)
        total = sum(counts.values())
        await asyncio.to_thread(self._store.clear)
        logger.info("Cleared %d task(s) from the queue", total)
        return ToolReply(f"Cleared {total} task(s) from the queue.")

    async def _notify(self, message: dict[str, Any]) -> None:
        try:
            await self._notifier.send(message)
        except Exception as e:
            logger.error("Failed to notify extension: %s", e)

    # ── Tool dispatch ─────────────────────────────────────────

    async def call_tool(self, name: str, args: dict[str, Any] | None) -> dict[str, Any]:
        """Run a named tool and return an MCP-style result payload."""
        args = args or {}
        try:
            if name == "get_visual_feedback":
                reply = await self.retrieve(bool(args.get("includeApplied", False)))
            elif name == "mark_change_applied":
                reply = await self.mark_applied(str(args.get("changeId", "")))
            elif name == "mark_change_failed":
                reply = await self.mark_failed(str(args.get("changeId", "")), args.get("reason"))
            elif name == "get_change_details":
                reply = await self.inspect(str(args.get("changeId", "")))
            elif name == "clear_all_tasks":
                reply = await self.clear_all()
            else:
                reply = ToolReply(f"Unknown tool: {name}", is_error=True)
        except PersistenceError as e:
            logger.error("Tool %s failed: %s", name, e)
            reply = ToolReply(f"Queue storage error: {e}", is_error=True)
        return reply.to_content()
