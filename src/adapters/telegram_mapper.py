"""Telegram-to-core message mapping adapter.

This keeps Telethon-specific details out of the core router.
"""

from __future__ import annotations

import logging
from typing import Optional

from telethon.tl.custom import Message

from core.models import ContactCard, DestinationMessage, GeoLocation, MediaAttachment

LOGGER = logging.getLogger(__name__)

ANIMATED_STICKER_MIMETYPES = ("application/x-tgsticker", "video/webm")


def _topic_id_from_message(message: Message) -> Optional[int]:
    reply_to = getattr(message, "reply_to", None)
    if not reply_to or not getattr(reply_to, "forum_topic", False):
        return None
    top_id = getattr(reply_to, "reply_to_top_id", None)
    if top_id:
        return top_id
    return getattr(reply_to, "reply_to_msg_id", None)


def _reply_target_id(message: Message) -> Optional[int]:
    """Return the replied-to message id, ignoring the implicit reply to the topic root."""

    reply_to = getattr(message, "reply_to", None)
    if not reply_to:
        return None
    if getattr(reply_to, "forum_topic", False) and not getattr(reply_to, "reply_to_top_id", None):
        # A plain message in a topic only "replies" to the topic's service message.
        return None
    return getattr(reply_to, "reply_to_msg_id", None)


def _is_from_bot(message: Message) -> bool:
    if getattr(message, "out", False):
        return True
    sender = getattr(message, "sender", None)
    return bool(getattr(sender, "bot", False))


def _media_kind(message: Message) -> Optional[str]:
    if message.sticker:
        return "sticker"
    if message.photo:
        return "image"
    if message.voice:
        return "voice"
    if message.video_note:
        return "video_note"
    if message.gif:
        return "animation"
    if message.video:
        return "video"
    if message.audio:
        return "audio"
    if message.document:
        return "document"
    return None


def _contact_from_message(message: Message) -> Optional[ContactCard]:
    contact = getattr(message, "contact", None)
    if contact is None:
        return None
    name = " ".join(part for part in (contact.first_name, contact.last_name) if part).strip()
    return ContactCard(
        display_name=name or "Contact",
        phone_number=contact.phone_number or None,
        vcard=contact.vcard or None,
    )


def _location_from_message(message: Message) -> Optional[GeoLocation]:
    geo = getattr(message, "geo", None)
    if geo is None:
        return None
    venue = getattr(message, "venue", None)
    return GeoLocation(
        latitude=geo.lat,
        longitude=geo.long,
        name=getattr(venue, "title", None) or None,
        address=getattr(venue, "address", None) or None,
    )


async def _media_from_message(message: Message) -> Optional[MediaAttachment]:
    kind = _media_kind(message)
    if kind is None:
        return None
    file = message.file
    mimetype = getattr(file, "mime_type", None)
    try:
        data = await message.download_media(file=bytes)
    except Exception:
        LOGGER.error("Error downloading %s from message %s", kind, message.id, exc_info=True)
        data = None
    return MediaAttachment(
        kind=kind,
        data=data,
        mimetype=mimetype,
        filename=getattr(file, "name", None),
        animated=kind == "sticker" and mimetype in ANIMATED_STICKER_MIMETYPES,
    )


async def build_destination_message(message: Message) -> DestinationMessage:
    """Build a core DestinationMessage from a Telethon Message."""

    topic_id = _topic_id_from_message(message)
    from_bot = _is_from_bot(message)
    reply_to_message_id = _reply_target_id(message)

    reply_to_text = None
    if reply_to_message_id is not None and not from_bot:
        reply = await message.get_reply_message()
        if reply is not None:
            reply_to_text = reply.raw_text or None

    contact = _contact_from_message(message)
    location = None if contact is not None else _location_from_message(message)
    media = None
    if contact is None and location is None and not from_bot:
        media = await _media_from_message(message)

    return DestinationMessage(
        chat_id=message.chat_id,
        message_id=message.id,
        topic_id=topic_id,
        from_bot=from_bot,
        text=message.raw_text or "",
        reply_to_message_id=reply_to_message_id,
        reply_to_text=reply_to_text,
        contact=contact,
        location=location,
        media=media,
    )
