"""Delivery strategies: how a queued Change reaches the agent.

- ``subprocess``: spawn one agent process per change (SubprocessExecutor)
- ``tool_call``:  a running agent session pulls changes via tools (ToolCallSurface)
"""

from __future__ import annotations

from vfeedback.config import FeedbackConfig
from vfeedback.delivery.base import DeliveryStrategy, Notifier
from vfeedback.delivery.subprocess_executor import SubprocessExecutor
from vfeedback.delivery.tool_surface import ToolCallSurface
from vfeedback.prompts import PromptTemplate
from vfeedback.store.requests import RequestStore


def build_strategy(
    config: FeedbackConfig,
    store: RequestStore,
    notifier: Notifier,
    template: PromptTemplate | None = None,
) -> DeliveryStrategy:
    """Pick the strategy named in the configuration."""
    name = config.delivery.strategy
    if name == "subprocess":
        return SubprocessExecutor(store, config, notifier, template)
    if name == "tool_call":
        return ToolCallSurface(store, config, notifier, template)
    raise ValueError(f"Unknown delivery strategy: {name}")
