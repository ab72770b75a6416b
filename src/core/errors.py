"""Bridge error taxonomy (core domain).

Adapters translate integration-specific failures into these types so the
registry and router can decide on retries without inspecting message text.
"""

from __future__ import annotations

from typing import Optional


class BridgeError(Exception):
    """Base class for all bridge failures."""


class PersistenceError(BridgeError):
    """The storage backend failed to read or write."""


class DestinationError(BridgeError):
    """A destination-platform call failed."""

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


class TopicMissing(DestinationError):
    """The destination reports that the target topic no longer exists."""


class TopicNameConflict(DestinationError):
    """Topic creation was refused because the title is already taken."""


class TopicCreationFailed(BridgeError):
    """The destination refused to create a topic, even after the rename retry."""

    def __init__(self, conversation_id: str, reason: str) -> None:
        super().__init__(f"Topic creation failed for {conversation_id}: {reason}")
        self.conversation_id = conversation_id
        self.reason = reason


class RelayFailed(BridgeError):
    """A relay attempt failed and will not be retried."""


class TranscodeFailed(BridgeError):
    """Media conversion between two formats failed."""
