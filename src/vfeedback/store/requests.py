"""Request Store: durable queue of Change records.

The backing file is the only source of truth: every query re-reads it and
every mutation is a full read-modify-write of the whole table under the file
lock. Nothing is cached in memory between calls.
"""

from __future__ import annotations

import logging
from pathlib import Path

from vfeedback.errors import NotFoundError, PersistenceError
from vfeedback.models import PENDING_STATUSES, STATUSES, Change
from vfeedback.store.files import locked, read_json, write_json

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


class RequestStore:
    """File-backed id → Change table."""

    def __init__(self, path: Path, max_tasks: int = 50) -> None:
        self.path = path
        self.max_tasks = max_tasks

    # ── Raw table I/O ─────────────────────────────────────────

    def _read(self) -> dict[str, Change]:
        """Read the whole table. Unreadable files are logged and read as empty."""
        try:
            data = read_json(self.path)
        except PersistenceError as e:
            logger.error("%s", e)
            return {}
        if not data:
            return {}
        if not isinstance(data, dict):
            logger.error("Unexpected change queue format in %s, ignoring", self.path)
            return {}

        # Legacy files are a bare id → change map without a version field
        raw = data.get("changes", {}) if "version" in data else data
        changes: dict[str, Change] = {}
        for change_id, entry in raw.items():
            try:
                changes[change_id] = Change.from_dict(entry)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed change %s: %s", change_id, e)
        return changes

    def _write(self, changes: dict[str, Change]) -> None:
        write_json(
            self.path,
            {
                "version": SCHEMA_VERSION,
                "changes": {cid: change.to_dict() for cid, change in changes.items()},
            },
        )

    # ── Queries ───────────────────────────────────────────────

    def get(self, change_id: str) -> Change | None:
        return self._read().get(change_id)

    def get_pending(self, include_applied: bool = False) -> list[Change]:
        """Changes awaiting the agent (confirmed or failed), in insertion order.

        With ``include_applied`` every record is returned.
        """
        changes = self._read().values()
        if include_applied:
            return list(changes)
        return [c for c in changes if c.status in PENDING_STATUSES]

    def list_all(self, newest_first: bool = False) -> list[Change]:
        changes = list(self._read().values())
        return changes[::-1] if newest_first else changes

    def get_status_counts(self) -> dict[str, int]:
        counts = {status: 0 for status in STATUSES}
        for change in self._read().values():
            counts[change.status] = counts.get(change.status, 0) + 1
        return counts

    # ── Mutations ─────────────────────────────────────────────

    def add(self, change: Change) -> Change:
        """Insert ``change`` with a zero retry count, evicting the oldest overflow.

        Raises PersistenceError if the table cannot be written.
        """
        change.retry_count = 0
        with locked(self.path):
            changes = self._read()
            changes.pop(change.id, None)
            changes[change.id] = change
            while len(changes) > self.max_tasks:
                oldest = next(iter(changes))
                del changes[oldest]
                logger.info("Evicted oldest change %s (max %d)", oldest, self.max_tasks)
            self._write(changes)
        return change

    def update(self, change_id: str, **fields) -> Change:
        """Set mutable fields on a stored change. Element and feedback never change."""
        illegal = set(fields) - Change.MUTABLE_FIELDS
        if illegal:
            raise ValueError(f"Immutable change fields: {sorted(illegal)}")
        with locked(self.path):
            changes = self._read()
            change = changes.get(change_id)
            if change is None:
                raise NotFoundError(change_id)
            for name, value in fields.items():
                setattr(change, name, value)
            self._write(changes)
        return change

    def mark_applied(self, change_id: str) -> tuple[Change, bool]:
        """Transition to applied. Returns the record and whether its status changed.

        A repeat call on an applied change is a no-op and reports ``False``.
        """
        with locked(self.path):
            changes = self._read()
            change = changes.get(change_id)
            if change is None:
                raise NotFoundError(change_id)
            if change.status == "applied":
                return change, False
            change.status = "applied"
            self._write(changes)
        return change, True

    def mark_failed(self, change_id: str, reason: str | None = None) -> Change:
        """Transition to failed, bumping the retry count and replacing the reason."""
        with locked(self.path):
            changes = self._read()
            change = changes.get(change_id)
            if change is None:
                raise NotFoundError(change_id)
            change.status = "failed"
            change.failure_reason = reason
            change.retry_count += 1
            self._write(changes)
        return change

    def remove(self, change_id: str) -> bool:
        with locked(self.path):
            changes = self._read()
            if changes.pop(change_id, None) is None:
                return False
            self._write(changes)
        return True

    def clear(self) -> None:
        with locked(self.path):
            self._write({})
