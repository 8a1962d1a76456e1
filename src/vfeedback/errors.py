"""Error taxonomy shared across the store, gateway and delivery layers."""

from __future__ import annotations


class FeedbackError(Exception):
    """Base class for all vfeedback errors."""


class PersistenceError(FeedbackError):
    """A backing file could not be read or written."""


class AuthError(FeedbackError):
    """A client presented a missing or wrong connection token."""


class NotFoundError(FeedbackError):
    """An operation referenced a change id the store does not know."""

    def __init__(self, change_id: str) -> None:
        super().__init__(f"Change {change_id} not found.")
        self.change_id = change_id


class SpawnError(FeedbackError):
    """The agent binary is missing or could not be executed."""


class ProtocolError(FeedbackError):
    """An inbound message could not be parsed or had no known shape."""
