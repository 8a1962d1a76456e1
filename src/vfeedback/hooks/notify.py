"""Prompt-submit hook entry point: tell a waiting agent session that work exists.

Usage (agent hook):
    python -m vfeedback hook

Polls ``GET /tasks`` on the local HTTP surface and prints an instruction block
when changes are pending. An unreachable server means "nothing pending"; this
never raises and always exits 0. Must complete within a couple of seconds.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import TextIO

import aiohttp

logger = logging.getLogger(__name__)

DEFAULT_URL = "http://localhost:3848/tasks"
TIMEOUT_SECONDS = 2.0


async def fetch_pending_count(url: str = DEFAULT_URL, timeout: float = TIMEOUT_SECONDS) -> int:
    """Return the pending task count, or 0 on any failure."""
    try:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
            async with session.get(url) as resp:
                if resp.status != 200:
                    return 0
                data = json.loads(await resp.text())
    except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError, OSError) as e:
        logger.debug("Task check failed: %s", e)
        return 0
    if not isinstance(data, dict):
        return 0
    try:
        return max(int(data.get("count") or 0), 0)
    except (TypeError, ValueError):
        return 0


def render_notice(count: int) -> str:
    if count <= 0:
        return ""
    return "\n".join(
        [
            f'<visual-feedback-pending count="{count}">',
            f"IMPORTANT: {count} visual feedback task(s) queued from the browser extension.",
            "These have been explicitly submitted by the user - process them automatically.",
            "1. Call get_visual_feedback to retrieve the changes",
            "2. Add each change to your todo list",
            "3. Implement each change",
            "4. Call mark_change_applied (or mark_change_failed) with the task ID for each",
            "5. After completing all tasks, call get_visual_feedback again to check for new tasks",
            "Continue this loop until the queue is empty (no more pending changes).",
            "</visual-feedback-pending>",
        ]
    )


async def check(url: str = DEFAULT_URL, out: TextIO | None = None) -> int:
    count = await fetch_pending_count(url)
    notice = render_notice(count)
    if notice:
        (out or sys.stdout).write(notice + "\n")
    return count


def main(url: str = DEFAULT_URL) -> None:
    try:
        asyncio.run(check(url))
    except Exception as e:
        logger.debug("Hook error: %s", e)


if __name__ == "__main__":
    main()
