"""Subject Memory Store: per-element edit history ("beads").

A subject id is derived from the element's structure alone, so a reload of the
page, or a different process, maps the same element to the same bead file.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime
from pathlib import Path

from vfeedback.errors import PersistenceError
from vfeedback.models import BeadEntry, ElementDescriptor, SubjectBead, utc_now
from vfeedback.store.files import locked, read_json, write_json

logger = logging.getLogger(__name__)

MAX_BEAD_CHANGES = 10
CONTEXT_CHANGES = 3


def subject_id(element: ElementDescriptor) -> str:
    """Stable id from tag, DOM id, sorted classes and selector."""
    key = "|".join(
        [
            element.tag or "",
            element.id or "",
            ".".join(sorted(element.classes)),
            element.selector or "",
        ]
    )
    return "el-" + hashlib.sha256(key.encode("utf-8")).hexdigest()[:8]


def format_context(bead: SubjectBead | None) -> str | None:
    """Render the last few history entries for a prompt, or None if there are none."""
    if not bead or not bead.changes:
        return None

    lines = [
        "## Previous Changes to This Element",
        f"This element has been modified {len(bead.changes)} time(s) before. Recent history:",
    ]
    for entry in bead.changes[-CONTEXT_CHANGES:]:
        status = "✓" if entry.success else "✗"
        lines.append(f'- [{_format_date(entry.timestamp)}] {status} "{entry.feedback}"')

    lines.extend(["", "Consider this context when making your changes."])
    return "\n".join(lines)


def _format_date(timestamp: str) -> str:
    try:
        return datetime.fromisoformat(timestamp.replace("Z", "+00:00")).strftime("%Y-%m-%d")
    except ValueError:
        return timestamp[:10]


class SubjectMemoryStore:
    """One JSON file per subject under ``root``."""

    def __init__(self, root: Path) -> None:
        self.root = root

    @classmethod
    def for_project(cls, project_path: str | None, fallback: Path) -> SubjectMemoryStore:
        """Beads live inside the project when one is known, else under ``fallback``."""
        if project_path:
            return cls(Path(project_path) / ".beads" / "elements")
        return cls(fallback)

    def _path(self, sid: str) -> Path:
        return self.root / f"{sid}.json"

    def load(self, element: ElementDescriptor) -> SubjectBead | None:
        try:
            data = read_json(self._path(subject_id(element)))
        except PersistenceError as e:
            logger.error("Failed to load bead: %s", e)
            return None
        if not isinstance(data, dict):
            return None
        return SubjectBead.from_dict(data)

    def save(
        self,
        element: ElementDescriptor,
        feedback: str,
        task_id: str,
        success: bool,
    ) -> SubjectBead:
        """Append a capped history entry, creating the bead on first write.

        Write failures are logged; the updated bead is returned either way.
        """
        sid = subject_id(element)
        path = self._path(sid)
        entry = BeadEntry(task_id=task_id, feedback=feedback, timestamp=utc_now(), success=success)
        bead = SubjectBead(subject_id=sid, element=element.light(), changes=[entry])
        try:
            with locked(path):
                existing = self.load(element)
                if existing:
                    existing.changes.append(entry)
                    existing.changes = existing.changes[-MAX_BEAD_CHANGES:]
                    bead = existing
                write_json(path, bead.to_dict())
        except (PersistenceError, OSError) as e:
            logger.error("Failed to save bead %s: %s", sid, e)
        return bead

    def context_for(self, element: ElementDescriptor) -> str | None:
        return format_context(self.load(element))
