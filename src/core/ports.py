"""Ports (interfaces) used by the core bridge.

Ports define the minimal contracts for storage, both chat platforms, and the
media helpers so that the core can be reused with different backends.
"""

from __future__ import annotations

from typing import Dict, Optional, Protocol

from core.models import (
    ConversationInfo,
    ProfileSnapshot,
    RelayRecord,
    SourcePayload,
    TopicMapping,
)


class StoragePort(Protocol):
    """Storage operations required by the core.

    Implementations raise ``PersistenceError`` when the backend fails.
    """

    def init_db(self) -> None:
        ...

    def save_topic_mapping(self, conversation_id: str, topic_id: int, display_name: str) -> None:
        ...

    def get_all_topic_mappings(self) -> Dict[str, TopicMapping]:
        ...

    def save_special_topic(self, kind: str, topic_id: int) -> None:
        ...

    def get_special_topics(self) -> Dict[str, Optional[int]]:
        ...

    def save_profile_snapshot(self, subject_id: str, image_url: str, image_hash: str) -> None:
        ...

    def get_profile_snapshot(self, subject_id: str) -> Optional[ProfileSnapshot]:
        ...

    def save_relay(self, record: RelayRecord) -> None:
        ...


class DestinationPort(Protocol):
    """Calls into the container chat on the destination platform.

    Every send returns the destination message id. Failures are raised as
    ``DestinationError`` subclasses so callers can react to ``TopicMissing``.
    """

    async def create_topic(self, title: str, icon_color: int) -> int:
        ...

    async def send_text(self, text: str, *, topic_id: int, reply_to: Optional[int] = None) -> int:
        ...

    async def send_media(
        self,
        kind: str,
        data: bytes,
        *,
        topic_id: int,
        caption: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> int:
        ...

    async def send_contact(self, phone_number: str, display_name: str, *, topic_id: int) -> int:
        ...

    async def send_location(self, latitude: float, longitude: float, *, topic_id: int) -> int:
        ...

    async def pin_message(self, message_id: int) -> None:
        ...

    async def set_reaction(self, message_id: int, emoji: str) -> None:
        ...


class SourcePort(Protocol):
    """Calls into the source platform client.

    Implementations build the conversation ids they hand to the router with
    ``core.conversation_ids``: ``normalize_contact_number`` for contacts and
    ``group_conversation_id`` for groups.
    """

    async def send_message(self, conversation_id: str, payload: SourcePayload) -> Optional[str]:
        ...

    async def fetch_profile_image_url(self, conversation_id: str) -> Optional[str]:
        ...

    async def fetch_conversation_info(self, conversation_id: str) -> Optional[ConversationInfo]:
        ...

    async def download_media(self, ref: object) -> bytes:
        ...

    async def listen(self, router: object) -> None:
        """Deliver decoded source events to the router until disconnected."""
        ...


class Transcoder(Protocol):
    """Converts media between container formats, raising ``TranscodeFailed``."""

    async def transcode(self, data: bytes, from_kind: str, to_kind: str) -> bytes:
        ...


class ImageFetcher(Protocol):
    async def fetch(self, url: str) -> bytes:
        ...
