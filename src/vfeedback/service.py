"""Feedback service: turns client messages into stored Changes and hands them off.

Responsibilities:
1. Validate inbound client messages (visual_feedback, get_tasks, ping)
2. Build the Change record and persist it in the Request Store
3. Acknowledge the client immediately
4. Hand the change to the active delivery strategy
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from vfeedback.delivery.base import DeliveryStrategy
from vfeedback.errors import PersistenceError, ProtocolError
from vfeedback.models import Change, ElementDescriptor
from vfeedback.store.requests import RequestStore

logger = logging.getLogger(__name__)

# Sends one JSON message back to the client that sent the request
Reply = Callable[[dict[str, Any]], Awaitable[None]]


def build_change(payload: Any, default_model: str | None = None) -> Change:
    """Construct a confirmed Change from a ``visual_feedback`` payload."""
    if not isinstance(payload, dict):
        raise ProtocolError("visual_feedback message without a payload")
    element = payload.get("element")
    if not isinstance(element, dict):
        raise ProtocolError("visual_feedback payload without an element")
    feedback = payload.get("feedback")
    if not isinstance(feedback, str) or not feedback.strip():
        raise ProtocolError("visual_feedback payload without feedback text")

    return Change(
        id=str(payload.get("id") or int(time.time() * 1000)),
        element=ElementDescriptor.from_dict(element),
        feedback=feedback,
        visual_adjustments=dict(payload.get("visualAdjustments") or {}),
        css_framework=payload.get("cssFramework") or "",
        original_units=dict(payload.get("originalUnits") or {}),
        status="confirmed",
        project_path=payload.get("projectPath"),
        page_url=payload.get("pageUrl"),
        model=payload.get("model") or default_model,
    )


class FeedbackService:
    """Explicit owner of the request path, built once at process start."""

    def __init__(
        self,
        store: RequestStore,
        strategy: DeliveryStrategy,
        default_model: str | None = None,
    ) -> None:
        self.store = store
        self.strategy = strategy
        self._default_model = default_model

    async def handle_message(self, message: dict[str, Any], reply: Reply) -> None:
        """Entry point for every parsed client message."""
        msg_type = message.get("type")

        # Keep-alive only
        if msg_type == "ping":
            return

        if msg_type == "visual_feedback":
            await self._handle_feedback(message.get("payload"), reply)
        elif msg_type == "get_tasks":
            tasks = await asyncio.to_thread(self.store.list_all, True)
            await reply({"type": "tasks", "tasks": [t.to_dict() for t in tasks]})
        else:
            raise ProtocolError(f"Unknown message type: {msg_type!r}")

    async def _handle_feedback(self, payload: Any, reply: Reply) -> None:
        change = build_change(payload, self._default_model)
        logger.info(
            'Feedback "%s" on <%s> %s (project=%s)',
            change.feedback,
            change.element.tag,
            change.element.selector,
            change.project_path,
        )

        try:
            change = await asyncio.to_thread(self.store.add, change)
        except PersistenceError as e:
            logger.error("Failed to store change %s: %s", change.id, e)
            await reply({"success": False, "error": str(e), "taskId": change.id})
            return

        await reply({"type": "task_update", "task": change.to_dict()})
        await reply({"success": True, "taskId": change.id})

        await self.strategy.submit(change)
