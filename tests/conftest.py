"""Shared fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from vfeedback.config import FeedbackConfig
from vfeedback.models import Change, ElementDescriptor
from vfeedback.store.requests import RequestStore


class RecordingNotifier:
    """Collects every message pushed to the client."""

    def __init__(self, connected: bool = True):
        self.sent: list[dict] = []
        self.connected = connected

    async def send(self, message: dict) -> bool:
        self.sent.append(message)
        return self.connected

    def of_type(self, msg_type: str) -> list[dict]:
        return [m for m in self.sent if m.get("type") == msg_type]


def make_change(change_id: str = "1", feedback: str = "make button blue", **kwargs) -> Change:
    element = kwargs.pop(
        "element",
        ElementDescriptor(tag="button", selector=".cta", classes=["cta"]),
    )
    return Change(id=change_id, element=element, feedback=feedback, **kwargs)


@pytest.fixture
def config(tmp_path: Path) -> FeedbackConfig:
    return FeedbackConfig(data_dir=tmp_path / "data")


@pytest.fixture
def store(config: FeedbackConfig) -> RequestStore:
    return RequestStore(config.queue_file, max_tasks=config.max_tasks)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()
