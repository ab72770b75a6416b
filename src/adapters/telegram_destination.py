"""Telethon destination adapter.

Sends everything into forum topics of a single supergroup and translates
Telegram RPC errors into the core error taxonomy.
"""

from __future__ import annotations

import asyncio
import io
import logging
import random
from typing import Optional

from telethon import errors, functions, types

from core.errors import DestinationError, TopicMissing, TopicNameConflict

LOGGER = logging.getLogger(__name__)

# RPC error codes meaning the topic thread is gone or unusable.
TOPIC_MISSING_CODES = frozenset(
    {
        "TOPIC_DELETED",
        "TOPIC_ID_INVALID",
        "MESSAGE_THREAD_INVALID",
        "TOPIC_CLOSED",
    }
)

TOPIC_NAME_CONFLICT_CODES = frozenset(
    {
        "TOPIC_TITLE_DUPLICATE",
        "TOPIC_NAME_DUPLICATE",
    }
)

# Telethon call failures, including transport errors such as
# "Cannot send requests while disconnected".
_CLIENT_ERRORS = (errors.RPCError, ValueError, ConnectionError, OSError, asyncio.TimeoutError)

# Default upload names; Telethon infers the media type from the extension.
_UPLOAD_NAMES = {
    "image": "image.jpg",
    "video": "video.mp4",
    "animation": "animation.mp4",
    "sticker": "sticker.webp",
    "audio": "audio.mp3",
    "voice": "voice.ogg",
    "video_note": "video_note.mp4",
    "document": "document.bin",
}


def classify_error(exc: Exception) -> DestinationError:
    """Map a Telethon exception onto a structured destination error."""

    if isinstance(exc, DestinationError):
        return exc
    if isinstance(exc, errors.RPCError):
        code = (exc.message or "").upper()
        if code in TOPIC_MISSING_CODES:
            return TopicMissing(str(exc), code=code)
        if code in TOPIC_NAME_CONFLICT_CODES:
            return TopicNameConflict(str(exc), code=code)
        return DestinationError(str(exc), code=code or None)
    return DestinationError(f"{type(exc).__name__}: {exc}")


def _topic_id_from_updates(result) -> Optional[int]:
    """Pull the topic id (the id of its service message) out of an Updates result."""

    for update in getattr(result, "updates", None) or ():
        if isinstance(update, types.UpdateMessageID):
            return update.id
        message = getattr(update, "message", None)
        if message is not None and getattr(message, "id", None):
            return message.id
    return None


def _create_topic_request(chat, title: str, icon_color: int):
    random_id = random.randint(1, 2**63 - 1)
    request_cls = getattr(functions.messages, "CreateForumTopicRequest", None)
    if request_cls is not None:
        return request_cls(peer=chat, title=title, icon_color=icon_color, random_id=random_id)
    # Older API layers expose forum topics on channels.
    return functions.channels.CreateForumTopicRequest(
        channel=chat,
        title=title,
        icon_color=icon_color,
        random_id=random_id,
    )


class TelethonDestination:
    """DestinationPort implementation bound to one forum supergroup."""

    def __init__(self, client, chat_id: int) -> None:
        self._client = client
        self._chat_id = chat_id
        self._entity = None

    async def _chat(self):
        if self._entity is None:
            try:
                self._entity = await self._client.get_input_entity(self._chat_id)
            except _CLIENT_ERRORS as exc:
                raise classify_error(exc) from exc
        return self._entity

    async def create_topic(self, title: str, icon_color: int) -> int:
        chat = await self._chat()
        try:
            result = await self._client(_create_topic_request(chat, title, icon_color))
        except _CLIENT_ERRORS as exc:
            raise classify_error(exc) from exc

        topic_id = _topic_id_from_updates(result)
        if topic_id is None:
            raise DestinationError(f"Topic {title!r} was created but no id was returned")
        LOGGER.debug("Topic %r created with id %s", title, topic_id)
        return topic_id

    async def send_text(self, text: str, *, topic_id: int, reply_to: Optional[int] = None) -> int:
        chat = await self._chat()
        try:
            message = await self._client.send_message(
                chat,
                text,
                reply_to=reply_to or topic_id,
                parse_mode="md",
                link_preview=False,
            )
        except _CLIENT_ERRORS as exc:
            raise classify_error(exc) from exc
        return message.id

    async def send_media(
        self,
        kind: str,
        data: bytes,
        *,
        topic_id: int,
        caption: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> int:
        chat = await self._chat()
        upload = io.BytesIO(data)
        upload.name = filename or _UPLOAD_NAMES.get(kind, _UPLOAD_NAMES["document"])

        options = {}
        if kind == "voice":
            options["voice_note"] = True
        elif kind == "video_note":
            options["video_note"] = True
        elif kind == "video":
            options["supports_streaming"] = True
        elif kind == "animation":
            options["attributes"] = [types.DocumentAttributeAnimated()]
        elif kind == "sticker":
            options["attributes"] = [
                types.DocumentAttributeSticker(alt="", stickerset=types.InputStickerSetEmpty())
            ]
        elif kind == "document":
            options["force_document"] = True

        try:
            message = await self._client.send_file(
                chat,
                upload,
                caption=caption,
                reply_to=topic_id,
                parse_mode="md",
                **options,
            )
        except _CLIENT_ERRORS as exc:
            raise classify_error(exc) from exc
        return message.id

    async def send_contact(self, phone_number: str, display_name: str, *, topic_id: int) -> int:
        chat = await self._chat()
        media = types.InputMediaContact(
            phone_number=phone_number,
            first_name=display_name,
            last_name="",
            vcard="",
        )
        try:
            message = await self._client.send_file(chat, media, reply_to=topic_id)
        except _CLIENT_ERRORS as exc:
            raise classify_error(exc) from exc
        return message.id

    async def send_location(self, latitude: float, longitude: float, *, topic_id: int) -> int:
        chat = await self._chat()
        media = types.InputMediaGeoPoint(types.InputGeoPoint(lat=latitude, long=longitude))
        try:
            message = await self._client.send_file(chat, media, reply_to=topic_id)
        except _CLIENT_ERRORS as exc:
            raise classify_error(exc) from exc
        return message.id

    async def pin_message(self, message_id: int) -> None:
        chat = await self._chat()
        try:
            await self._client.pin_message(chat, message_id, notify=False)
        except _CLIENT_ERRORS as exc:
            raise classify_error(exc) from exc

    async def set_reaction(self, message_id: int, emoji: str) -> None:
        chat = await self._chat()
        try:
            await self._client(
                functions.messages.SendReactionRequest(
                    peer=chat,
                    msg_id=message_id,
                    reaction=[types.ReactionEmoji(emoticon=emoji)],
                )
            )
        except _CLIENT_ERRORS as exc:
            raise classify_error(exc) from exc
