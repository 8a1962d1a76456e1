"""Delivery strategy protocol and shared types."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from vfeedback.models import Change


@runtime_checkable
class Notifier(Protocol):
    """Pushes server → client messages over the socket."""

    async def send(self, message: dict[str, Any]) -> bool:
        """Send to the current client. Returns False if nobody is connected."""
        ...


class NullNotifier:
    """Notifier used when no socket transport is running."""

    async def send(self, message: dict[str, Any]) -> bool:
        return False


@runtime_checkable
class DeliveryStrategy(Protocol):
    """How a stored Change reaches the external agent."""

    @property
    def name(self) -> str: ...

    async def submit(self, change: Change) -> None:
        """Hand a freshly stored change to the agent side."""
        ...

    def live_log(self, change_id: str) -> str | None:
        """Output captured so far for a change still in flight, if any."""
        ...

    async def close(self) -> None:
        """Release anything the strategy holds."""
        ...
