"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Tuple


@dataclass(frozen=True)
class TopicMapping:
    """Live link between one conversation and its destination topic."""

    conversation_id: str
    topic_id: int
    display_name: str
    created_at: datetime


@dataclass(frozen=True)
class ProfileSnapshot:
    """Last observed profile image reference for a subject."""

    subject_id: str
    image_url: str
    image_hash: str
    updated_at: datetime


@dataclass(frozen=True)
class MediaAttachment:
    """Media carried by a message on either platform.

    ``kind`` is one of image, video, audio, voice, document, sticker,
    animation or video_note. Source-side media is downloaded lazily through
    ``ref``; destination-side media arrives with ``data`` already filled.
    """

    kind: str
    data: Optional[bytes] = None
    mimetype: Optional[str] = None
    filename: Optional[str] = None
    animated: bool = False
    ref: Any = None


@dataclass(frozen=True)
class ContactCard:
    display_name: str
    phone_number: Optional[str]
    vcard: Optional[str] = None


@dataclass(frozen=True)
class GeoLocation:
    latitude: float
    longitude: float
    name: Optional[str] = None
    address: Optional[str] = None


@dataclass(frozen=True)
class SourceMessage:
    """A decoded message from a contact or group on the source platform."""

    conversation_id: str
    message_id: Optional[str]
    is_group: bool
    sender_name: Optional[str]
    body: str = ""
    chat_name: Optional[str] = None
    media: Optional[MediaAttachment] = None
    contacts: Tuple[ContactCard, ...] = ()
    location: Optional[GeoLocation] = None


@dataclass(frozen=True)
class StatusUpdate:
    """A broadcast status post. ``timestamp`` is in milliseconds."""

    sender_id: str
    sender_name: Optional[str]
    timestamp: int
    caption: str = ""
    media: Optional[MediaAttachment] = None


@dataclass(frozen=True)
class CallEvent:
    caller_id: str
    caller_name: Optional[str]
    is_video: bool = False


@dataclass(frozen=True)
class DestinationMessage:
    """Minimal destination-side message context used by the router."""

    chat_id: int
    message_id: int
    topic_id: Optional[int]
    from_bot: bool = False
    text: str = ""
    reply_to_message_id: Optional[int] = None
    reply_to_text: Optional[str] = None
    contact: Optional[ContactCard] = None
    location: Optional[GeoLocation] = None
    media: Optional[MediaAttachment] = None


@dataclass(frozen=True)
class StatusTarget:
    """Synthetic address of a status post on the source platform."""

    conversation_id: str
    timestamp: int

    @property
    def key(self) -> str:
        return f"{self.conversation_id}_{self.timestamp}"

    @property
    def message_key(self) -> str:
        return f"status_{self.timestamp}"


@dataclass(frozen=True)
class StatusReaction:
    target: StatusTarget
    emoji: str


@dataclass(frozen=True)
class SourcePayload:
    """Outbound message for the source platform."""

    text: Optional[str] = None
    media: Optional[MediaAttachment] = None
    contact: Optional[ContactCard] = None
    location: Optional[GeoLocation] = None
    quoted_message_id: Optional[str] = None
    quoted_text: Optional[str] = None
    reaction: Optional[StatusReaction] = None


@dataclass(frozen=True)
class ConversationInfo:
    """Extra details shown on a topic's information card."""

    title: Optional[str] = None
    about: Optional[str] = None
    description: Optional[str] = None
    participants_count: int = 0


@dataclass(frozen=True)
class ProfileChange:
    subject_id: str
    display_name: str
    image_url: str
    participants_count: Optional[int] = None


@dataclass(frozen=True)
class RelayRecord:
    """Persisted representation of one successful source-to-destination send."""

    conversation_id: str
    topic_id: int
    destination_message_id: int
    source_message_id: Optional[str]
    kind: str
