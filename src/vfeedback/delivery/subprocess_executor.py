"""Subprocess Executor: one headless agent process per Change.

Spawns the agent CLI with a rendered prompt in the change's project directory,
captures its output as the change's running log and records the outcome.
Several changes may be in flight at once; each watcher only touches its own
record. No timeout is applied to the agent.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from pathlib import Path

from vfeedback.config import FeedbackConfig
from vfeedback.delivery.base import Notifier
from vfeedback.errors import NotFoundError, PersistenceError, SpawnError
from vfeedback.models import Change, utc_now
from vfeedback.prompts import PromptTemplate, render_prompt
from vfeedback.store.requests import RequestStore
from vfeedback.store.subjects import SubjectMemoryStore

logger = logging.getLogger(__name__)

_COMMIT_PATTERNS = (
    re.compile(r"COMMIT_HASH:\s*([a-f0-9]{40})", re.IGNORECASE),
    # git commit summary line: "[main abc1234] message" or "[abc1234]"
    re.compile(r"\[(?:[^\]\s]+\s+)?([a-f0-9]{7,40})\]", re.IGNORECASE),
    re.compile(r"commit\s+([a-f0-9]{7,40})", re.IGNORECASE),
)
_GITHUB_REMOTE = re.compile(r"github\.com[:/]([^/\s]+/[^/\s]+)", re.IGNORECASE)


def extract_commit(log: str) -> tuple[str | None, str | None]:
    """Find a commit hash in agent output, and a GitHub commit URL if a remote shows up.

    The explicit ``COMMIT_HASH:`` marker wins over generic git output.
    """
    for pattern in _COMMIT_PATTERNS:
        match = pattern.search(log)
        if match:
            break
    else:
        return None, None

    commit_hash = match.group(1)
    remote = _GITHUB_REMOTE.search(log)
    if not remote:
        return commit_hash, None
    repo = re.sub(r"\.git$", "", remote.group(1).rstrip(".,;:)"))
    return commit_hash, f"https://github.com/{repo}/commit/{commit_hash}"


class SubprocessExecutor:
    """Delivery strategy that spawns the agent for every submitted change."""

    def __init__(
        self,
        store: RequestStore,
        config: FeedbackConfig,
        notifier: Notifier,
        template: PromptTemplate | None = None,
    ) -> None:
        self._store = store
        self._agent = config.agent
        self._beads_fallback = config.beads_dir
        self._notifier = notifier
        self._template = template or PromptTemplate()
        self._tasks: set[asyncio.Task] = set()
        self._logs: dict[str, list[str]] = {}

    @property
    def name(self) -> str:
        return "subprocess"

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    # ── Command construction ─────────────────────────────────

    def build_command(self, prompt: str, model: str | None = None) -> list[str]:
        cmd = [self._agent.binary]
        model = model or self._agent.model
        if model:
            cmd.extend(["--model", model])
        cmd.extend(["-p", prompt])
        if self._agent.skip_permissions:
            cmd.append("--dangerously-skip-permissions")
        return cmd

    def build_env(self) -> dict[str, str]:
        """Minimal environment: home, a PATH with common install dirs, the API key."""
        home = str(Path.home())
        path_parts = list(self._agent.extra_path)
        if os.environ.get("PATH"):
            path_parts.append(os.environ["PATH"])
        env = {
            "HOME": home,
            "PATH": os.pathsep.join(path_parts),
            "TERM": "xterm-256color",
        }
        if os.environ.get("USER"):
            env["USER"] = os.environ["USER"]
        api_key = os.environ.get(self._agent.api_key_env)
        if api_key:
            env[self._agent.api_key_env] = api_key
        return env

    # ── Strategy protocol ─────────────────────────────────────

    async def submit(self, change: Change) -> None:
        await self._broadcast(change, status="queued")
        task = asyncio.create_task(self.execute(change), name=f"agent-{change.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def live_log(self, change_id: str) -> str | None:
        chunks = self._logs.get(change_id)
        return "".join(chunks) if chunks is not None else None

    async def close(self) -> None:
        if not self._tasks:
            return
        logger.warning("Abandoning %d in-flight agent watcher(s)", len(self._tasks))
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

    # ── Execution ─────────────────────────────────────────────

    async def execute(self, change: Change) -> Change:
        """Run the agent for ``change`` to completion and record the outcome.

        Any failure, including one that is not a spawn error, ends with the
        change marked failed and an ``AUTO_APPLY_FAILED`` notification.
        """
        subjects = SubjectMemoryStore.for_project(change.project_path, self._beads_fallback)
        try:
            return await self._execute(change, subjects)
        except SpawnError as e:
            logger.error("Spawn error for %s: %s", change.id, e)
            return await self._abort(change, subjects, str(e))
        except Exception as e:
            logger.exception("Agent run for %s failed", change.id)
            return await self._abort(change, subjects, f"Unexpected error: {e}")

    async def _execute(self, change: Change, subjects: SubjectMemoryStore) -> Change:
        bead_context = await asyncio.to_thread(subjects.context_for, change.element)
        if bead_context:
            logger.info("Found previous changes to element %s", change.element.selector)
        prompt = render_prompt(change, self._template, bead_context)
        logger.debug("Prompt for %s:\n%s", change.id, prompt)

        change = await self._update(change, status="processing", started_at=utc_now())
        await self._broadcast(change)

        self._logs[change.id] = []
        exit_code = await self._run(change, prompt)

        log = self.live_log(change.id) or ""
        self._logs.pop(change.id, None)
        success = exit_code == 0
        logger.info("Agent for %s exited with code %s", change.id, exit_code)

        commit_hash, commit_url = extract_commit(log)
        fields = dict(
            log=log,
            exit_code=exit_code,
            completed_at=utc_now(),
            commit_hash=commit_hash,
            commit_url=commit_url,
        )
        if success:
            change = await self._update(change, status="complete", **fields)
        else:
            change = await self._fail(change, f"Process exited with code {exit_code}", **fields)

        await asyncio.to_thread(subjects.save, change.element, change.feedback, change.id, success)
        await self._broadcast(change)
        if not success:
            await self._notifier.send(
                {
                    "type": "AUTO_APPLY_FAILED",
                    "changeId": change.id,
                    "error": change.failure_reason,
                }
            )
        return change

    async def _abort(self, change: Change, subjects: SubjectMemoryStore, reason: str) -> Change:
        log = self.live_log(change.id) or ""
        self._logs.pop(change.id, None)
        change = await self._fail(
            change, reason, log=f"{log}\nError: {reason}", completed_at=utc_now()
        )
        await asyncio.to_thread(subjects.save, change.element, change.feedback, change.id, False)
        await self._broadcast(change)
        await self._notifier.send(
            {"type": "AUTO_APPLY_FAILED", "changeId": change.id, "error": reason}
        )
        return change

    async def _run(self, change: Change, prompt: str) -> int:
        cmd = self.build_command(prompt, change.model)
        logger.info("Spawning agent for %s (%s)", change.id, cmd[0])
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=change.project_path or None,
                env=self.build_env(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError) as e:
            raise SpawnError(f"Failed to spawn {cmd[0]}: {e}") from e

        logger.info("Agent process started (pid=%d) for %s", process.pid, change.id)
        await asyncio.gather(
            self._pump(process.stdout, change.id),
            self._pump(process.stderr, change.id),
        )
        return await process.wait()

    async def _pump(self, stream: asyncio.StreamReader | None, change_id: str) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                return
            text = chunk.decode("utf-8", errors="replace")
            logger.debug("[%s] %s", change_id, text.rstrip())
            self._logs.setdefault(change_id, []).append(text)

    # ── Store helpers ─────────────────────────────────────────

    async def _update(self, change: Change, **fields) -> Change:
        """Persist fields; if the record is gone (cleared) keep going on the local copy."""
        try:
            return await asyncio.to_thread(self._store.update, change.id, **fields)
        except (NotFoundError, PersistenceError) as e:
            logger.warning("Could not persist %s update: %s", change.id, e)
            for name, value in fields.items():
                setattr(change, name, value)
            return change

    async def _fail(self, change: Change, reason: str, **fields) -> Change:
        try:
            await asyncio.to_thread(self._store.mark_failed, change.id, reason)
        except (NotFoundError, PersistenceError) as e:
            logger.warning("Could not persist %s failure: %s", change.id, e)
            change.status = "failed"
            change.failure_reason = reason
            change.retry_count += 1
        return await self._update(change, **fields)

    async def _broadcast(self, change: Change, status: str | None = None) -> None:
        task = change.to_dict()
        if status:
            task["status"] = status
        logger.debug("Broadcasting task_update for %s (status: %s)", change.id, task["status"])
        await self._notifier.send({"type": "task_update", "task": task})
