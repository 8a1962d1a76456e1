"""Shared record types: element descriptors, changes, beads, server entries.

Records serialize with camelCase keys, matching what the browser client sends
and expects back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

ChangeStatus = Literal[
    "draft",
    "staged",
    "confirmed",
    "queued",
    "processing",
    "complete",
    "applied",
    "failed",
]

STATUSES: tuple[str, ...] = (
    "draft",
    "staged",
    "confirmed",
    "queued",
    "processing",
    "complete",
    "applied",
    "failed",
)

PENDING_STATUSES = frozenset({"confirmed", "failed"})


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _class_list(value: Any) -> list[str]:
    # A className string ("cta primary") rather than a list
    if isinstance(value, str):
        return value.split()
    if isinstance(value, list):
        return list(value)
    return []


@dataclass
class ElementDescriptor:
    """Immutable snapshot of the picked page element."""

    selector: str = ""
    tag: str = ""
    id: str | None = None
    classes: list[str] = field(default_factory=list)
    computed_styles: dict[str, str] = field(default_factory=dict)
    source_hint: str | None = None
    smart_summary: str | None = None
    screenshot: str | None = None
    path: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict | None) -> ElementDescriptor:
        data = data or {}
        return cls(
            selector=data.get("selector") or "",
            tag=data.get("tag") or "",
            id=data.get("id"),
            classes=_class_list(data.get("classes")),
            computed_styles=dict(data.get("computedStyles") or {}),
            source_hint=data.get("sourceHint"),
            smart_summary=data.get("smartSummary"),
            screenshot=data.get("screenshot"),
            path=list(data.get("path") or []),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "selector": self.selector,
            "tag": self.tag,
            "id": self.id,
            "classes": list(self.classes),
            "computedStyles": dict(self.computed_styles),
            "sourceHint": self.source_hint,
            "smartSummary": self.smart_summary,
            "screenshot": self.screenshot,
            "path": list(self.path),
        }

    def light(self) -> dict[str, Any]:
        """The subset used in bead records and task listings."""
        return {
            "tag": self.tag,
            "id": self.id,
            "classes": list(self.classes),
            "selector": self.selector,
        }


@dataclass
class Change:
    """A single requested edit and its lifecycle status."""

    id: str
    element: ElementDescriptor
    feedback: str
    visual_adjustments: dict[str, str] = field(default_factory=dict)
    css_framework: str = ""
    original_units: dict[str, str] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now)
    status: ChangeStatus = "confirmed"
    failure_reason: str | None = None
    retry_count: int = 0
    project_path: str | None = None
    page_url: str | None = None
    model: str | None = None
    log: str = ""
    exit_code: int | None = None
    commit_hash: str | None = None
    commit_url: str | None = None
    started_at: str | None = None
    completed_at: str | None = None

    # Fields the store allows to change after creation
    MUTABLE_FIELDS = frozenset(
        {
            "status",
            "failure_reason",
            "retry_count",
            "log",
            "exit_code",
            "commit_hash",
            "commit_url",
            "started_at",
            "completed_at",
        }
    )

    @classmethod
    def from_dict(cls, data: dict) -> Change:
        return cls(
            id=str(data["id"]),
            element=ElementDescriptor.from_dict(data.get("element")),
            feedback=data.get("feedback") or "",
            visual_adjustments=dict(data.get("visualAdjustments") or {}),
            css_framework=data.get("cssFramework") or "",
            original_units=dict(data.get("originalUnits") or {}),
            timestamp=data["timestamp"] if "timestamp" in data else utc_now(),
            status=data.get("status") or "confirmed",
            failure_reason=data.get("failureReason"),
            retry_count=int(data.get("retryCount") or 0),
            project_path=data.get("projectPath"),
            page_url=data.get("pageUrl"),
            model=data.get("model"),
            log=data.get("log") or "",
            exit_code=data.get("exitCode"),
            commit_hash=data.get("commitHash"),
            commit_url=data.get("commitUrl"),
            started_at=data.get("startedAt"),
            completed_at=data.get("completedAt"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "element": self.element.to_dict(),
            "feedback": self.feedback,
            "visualAdjustments": dict(self.visual_adjustments),
            "cssFramework": self.css_framework,
            "originalUnits": dict(self.original_units),
            "timestamp": self.timestamp,
            "status": self.status,
            "failureReason": self.failure_reason,
            "retryCount": self.retry_count,
            "projectPath": self.project_path,
            "pageUrl": self.page_url,
            "model": self.model,
            "log": self.log,
            "exitCode": self.exit_code,
            "commitHash": self.commit_hash,
            "commitUrl": self.commit_url,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
        }

    def summary(self) -> dict[str, Any]:
        """Compact form served to the notification hook."""
        return {
            "id": self.id,
            "feedback": self.feedback,
            "element": {
                "tag": self.element.tag,
                "selector": self.element.selector,
                "classes": list(self.element.classes),
            },
            "timestamp": self.timestamp,
            "status": self.status,
        }


@dataclass
class BeadEntry:
    task_id: str
    feedback: str
    timestamp: str
    success: bool

    @classmethod
    def from_dict(cls, data: dict) -> BeadEntry:
        return cls(
            task_id=str(data.get("taskId", "")),
            feedback=data.get("feedback", ""),
            timestamp=data.get("timestamp", ""),
            success=bool(data.get("success", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "taskId": self.task_id,
            "feedback": self.feedback,
            "timestamp": self.timestamp,
            "success": self.success,
        }


@dataclass
class SubjectBead:
    """Edit history for one page element, keyed by its derived subject id."""

    subject_id: str
    element: dict[str, Any] = field(default_factory=dict)
    changes: list[BeadEntry] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> SubjectBead:
        return cls(
            subject_id=data.get("id") or data.get("subjectId", ""),
            element=dict(data.get("element") or {}),
            changes=[BeadEntry.from_dict(c) for c in data.get("changes", [])],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.subject_id,
            "element": dict(self.element),
            "changes": [c.to_dict() for c in self.changes],
        }


@dataclass
class ServerEntry:
    """Discovery record for one running server process."""

    token: str
    project_path: str
    project_name: str
    port: int
    pid: int
    started_at: str = field(default_factory=utc_now)

    @classmethod
    def from_dict(cls, data: dict) -> ServerEntry:
        return cls(
            token=data.get("token", ""),
            project_path=data.get("projectPath", ""),
            project_name=data.get("projectName", ""),
            port=int(data.get("port", 0)),
            pid=int(data.get("pid", 0)),
            started_at=data.get("startedAt", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "projectPath": self.project_path,
            "projectName": self.project_name,
            "port": self.port,
            "pid": self.pid,
            "startedAt": self.started_at,
        }
