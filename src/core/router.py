"""Bridge routing between the source platform and destination topics.

This module is integration-agnostic. It only relies on ports for both chat
platforms, storage and media helpers. Every public handler contains its own
failures: one broken conversation never stops the next event.

Source -> destination, per message:
1) Classify the conversation and pick its topic display name
2) Resolve or create the topic through the registry
3) Send text, contacts, location and media (each step independent)
4) Record the reply correlation for every id the destination returned

Destination -> source, per message:
1) Ignore bot messages and messages outside a topic
2) Status topic replies become reactions, the call topic is read-only
3) Resolve the conversation and quoted message, send, then confirm
"""

from __future__ import annotations

import logging
import re
import time
from typing import Awaitable, Callable, Optional

from core import formatting
from core.config import BridgeConfig
from core.confirmation import ConfirmationService
from core.conversation_ids import (
    CALL_CONVERSATION,
    KIND_GROUP,
    STATUS_CONVERSATION,
    classify,
    default_contact_name,
    default_group_name,
    split_group_id,
)
from core.correlation import MessageCorrelationMap
from core.errors import BridgeError, DestinationError, PersistenceError, TranscodeFailed
from core.models import (
    CallEvent,
    ContactCard,
    DestinationMessage,
    MediaAttachment,
    ProfileChange,
    RelayRecord,
    SourceMessage,
    SourcePayload,
    StatusReaction,
    StatusUpdate,
)
from core.ports import DestinationPort, ImageFetcher, SourcePort, StoragePort, Transcoder
from core.topic_registry import TopicRegistry

LOGGER = logging.getLogger(__name__)

SendFn = Callable[[int], Awaitable[int]]

STATUS_REACTION_OK = "✅"
STATUS_REACTION_FAILED = "❌"

_VCARD_PHONE = re.compile(r"TEL[^:]*:([^\n\r]+)", re.IGNORECASE)

_MIME_FORMATS = {
    "image/webp": "webp",
    "image/png": "png",
    "image/jpeg": "jpeg",
    "image/gif": "gif",
    "video/webm": "webm",
    "video/mp4": "mp4",
    "application/x-tgsticker": "tgs",
}


def contact_phone(card: ContactCard) -> Optional[str]:
    """Return the contact's phone number, falling back to the vCard TEL line."""

    raw = card.phone_number
    if not raw and card.vcard:
        match = _VCARD_PHONE.search(card.vcard)
        if match:
            raw = match.group(1)
    if not raw:
        return None
    phone = re.sub(r"[^\d+]", "", raw.strip())
    return phone or None


def build_vcard(display_name: str, phone_number: str) -> str:
    return f"BEGIN:VCARD\nVERSION:3.0\nFN:{display_name}\nTEL:{phone_number}\nEND:VCARD"


def media_format(media: MediaAttachment, default: str) -> str:
    if media.mimetype:
        mimetype = media.mimetype.split(";", 1)[0].strip().lower()
        if mimetype in _MIME_FORMATS:
            return _MIME_FORMATS[mimetype]
    return default


class BridgeRouter:
    """Orchestrates topic resolution, relays, correlation and confirmation."""

    def __init__(
        self,
        registry: TopicRegistry,
        destination: DestinationPort,
        source: SourcePort,
        correlation: MessageCorrelationMap,
        confirmation: ConfirmationService,
        storage: StoragePort,
        images: Optional[ImageFetcher] = None,
        transcoder: Optional[Transcoder] = None,
        config: Optional[BridgeConfig] = None,
    ) -> None:
        self._registry = registry
        self._destination = destination
        self._source = source
        self._correlation = correlation
        self._confirmation = confirmation
        self._storage = storage
        self._images = images
        self._transcoder = transcoder
        self._config = config or BridgeConfig()

    # -- source -> destination ---------------------------------------------

    async def handle_source_message(self, message: SourceMessage) -> None:
        """Forward one contact or group message into its topic."""

        conversation_id = message.conversation_id
        is_group = message.is_group or classify(conversation_id) == KIND_GROUP
        sender = message.sender_name or "Unknown"

        if is_group:
            group_id = split_group_id(conversation_id) or conversation_id
            display_name = formatting.group_display_name(default_group_name(group_id, message.chat_name))
            LOGGER.info("Processing group message from %s in %s", sender, display_name)
            text = formatting.group_message_text(sender, message.body, has_media=message.media is not None)
        else:
            display_name = default_contact_name(conversation_id, message.sender_name)
            LOGGER.info("Processing individual message from %s (%s)", display_name, conversation_id)
            text = message.body if message.body.strip() and message.media is None else None

        if text:
            await self._forward(
                conversation_id,
                display_name,
                self._text_send(text),
                source_message_id=message.message_id,
                kind="text",
            )

        group_sender = sender if is_group else None
        if message.contacts:
            await self._forward_contacts(message, display_name, group_sender)
        if message.location is not None:
            await self._forward_location(message, display_name, group_sender)
        if message.media is not None and self._config.forward_media:
            await self._forward_media(message, display_name, group_sender)

    async def handle_status(self, update: StatusUpdate) -> None:
        """Forward a status post into the status topic."""

        caption = update.caption or ""
        if not caption.strip() and update.media is None:
            LOGGER.info("Skipping status without caption or media from %s", update.sender_name)
            return

        text = formatting.status_text(update.sender_name or update.sender_id, caption)
        send: Optional[SendFn] = None
        if update.media is not None and self._config.forward_media:
            data = await self._download(update.media)
            if data is not None:
                kind = update.media.kind if update.media.kind in ("image", "video") else "document"
                filename = None
                if kind == "document":
                    filename = f"status_{update.timestamp}.{media_format(update.media, 'bin')}"
                send = self._media_send(kind, data, caption=text, filename=filename)
        if send is None and caption.strip():
            send = self._text_send(text)
        if send is None:
            return

        message_id = await self._forward(
            STATUS_CONVERSATION,
            formatting.STATUS_TOPIC_TITLE,
            send,
            source_message_id=None,
            kind="status",
        )
        if message_id is not None:
            self._correlation.record_status(message_id, update.sender_id, update.timestamp)
            LOGGER.info("Status forwarded from %s", update.sender_name or update.sender_id)

    async def handle_call(self, event: CallEvent) -> None:
        text = formatting.call_text(event.caller_name or event.caller_id, event.caller_id, event.is_video)
        message_id = await self._forward(
            CALL_CONVERSATION,
            formatting.CALL_TOPIC_TITLE,
            self._text_send(text),
            source_message_id=None,
            kind="call",
        )
        if message_id is not None:
            LOGGER.info("Call logged: %s", text)

    async def deliver_profile_change(self, change: ProfileChange) -> None:
        """Post a changed profile picture, creating or recreating the topic as needed."""

        if self._images is None:
            LOGGER.warning("No image fetcher configured, skipping picture change for %s", change.display_name)
            return
        try:
            data = await self._images.fetch(change.image_url)
        except Exception:
            LOGGER.warning("Failed to download new profile picture for %s", change.display_name, exc_info=True)
            return

        if classify(change.subject_id) == KIND_GROUP:
            count = change.participants_count
            if count is None:
                count = await self._participants_count(change.subject_id)
            caption = formatting.group_picture_changed_caption(change.display_name, count)
        else:
            caption = formatting.profile_changed_caption(change.display_name)

        message_id = await self._forward(
            change.subject_id,
            change.display_name,
            self._media_send("image", data, caption=caption),
            source_message_id=None,
            kind="profile_change",
        )
        if message_id is not None:
            LOGGER.info("Profile picture change notification sent for %s", change.display_name)

    # -- destination -> source ---------------------------------------------

    async def handle_destination_message(self, message: DestinationMessage) -> None:
        """Relay a reply written inside a topic back to the source conversation."""

        if message.from_bot or message.topic_id is None:
            return

        conversation_id = self._registry.resolve_conversation(message.topic_id)
        if conversation_id == STATUS_CONVERSATION:
            await self._handle_status_reply(message)
            return
        if conversation_id == CALL_CONVERSATION:
            LOGGER.debug("Ignoring message in read-only call topic %s", message.topic_id)
            return
        if conversation_id is None:
            LOGGER.warning("No conversation found for topic %s", message.topic_id)
            return

        payload = await self._build_payload(message)
        success = False
        if payload is not None:
            try:
                result = await self._source.send_message(conversation_id, payload)
                success = bool(result)
                LOGGER.info("Message sent to %s", conversation_id)
            except Exception as exc:
                LOGGER.error("Failed to send message to %s: %s", conversation_id, exc)
        await self._confirmation.confirm(message, success)

    # -- internals -----------------------------------------------------------

    async def _forward(
        self,
        conversation_id: str,
        display_name: str,
        send: SendFn,
        *,
        source_message_id: Optional[str],
        kind: str,
        correlate: bool = True,
    ) -> Optional[int]:
        """Relay through the registry; returns the destination message id or None."""

        async def attempt(topic_id: int):
            return topic_id, await send(topic_id)

        try:
            topic_id, message_id = await self._registry.relay(conversation_id, display_name, attempt)
        except BridgeError as exc:
            LOGGER.error("Failed to forward %s to %s: %s", kind, conversation_id, exc)
            return None
        except Exception:
            LOGGER.exception("Unexpected error forwarding %s to %s", kind, conversation_id)
            return None

        # Correlation is recorded only after the destination accepted the message.
        if correlate and source_message_id:
            self._correlation.record(message_id, source_message_id)
        try:
            self._storage.save_relay(
                RelayRecord(
                    conversation_id=conversation_id,
                    topic_id=topic_id,
                    destination_message_id=message_id,
                    source_message_id=source_message_id,
                    kind=kind,
                )
            )
        except PersistenceError:
            LOGGER.exception("Failed to record relay for %s", conversation_id)
        return message_id

    async def _participants_count(self, conversation_id: str) -> Optional[int]:
        try:
            info = await self._source.fetch_conversation_info(conversation_id)
        except Exception:
            LOGGER.debug("Could not fetch group info for %s", conversation_id, exc_info=True)
            return None
        return info.participants_count if info else None

    def _media_send(
        self,
        kind: str,
        data: bytes,
        *,
        caption: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> SendFn:
        async def send(topic_id: int) -> int:
            return await self._destination.send_media(
                kind,
                data,
                topic_id=topic_id,
                caption=caption,
                filename=filename,
            )

        return send

    async def _download(self, media: MediaAttachment) -> Optional[bytes]:
        if media.data is not None:
            return media.data
        try:
            return await self._source.download_media(media.ref)
        except Exception:
            LOGGER.error("Error downloading %s media", media.kind, exc_info=True)
            return None

    async def _transcode(self, data: bytes, from_kind: str, to_kind: str) -> bytes:
        if self._transcoder is None:
            raise TranscodeFailed(f"No transcoder configured for {from_kind} -> {to_kind}")
        return await self._transcoder.transcode(data, from_kind, to_kind)

    async def _forward_contacts(
        self,
        message: SourceMessage,
        display_name: str,
        group_sender: Optional[str],
    ) -> None:
        correlated = False
        for index, card in enumerate(message.contacts, start=1):
            phone = contact_phone(card)
            if phone:
                name = card.display_name or f"Contact {index}"
                send = self._contact_send(phone, name)
            else:
                text = formatting.contact_fallback_text(card, group_sender)
                send = self._text_send(text)
            message_id = await self._forward(
                message.conversation_id,
                display_name,
                send,
                source_message_id=message.message_id,
                kind="contact",
                correlate=not correlated,
            )
            correlated = correlated or message_id is not None

        if group_sender:
            await self._forward(
                message.conversation_id,
                display_name,
                self._text_send(formatting.shared_contacts_text(group_sender, len(message.contacts))),
                source_message_id=None,
                kind="text",
            )
        LOGGER.info("%s contact(s) forwarded", len(message.contacts))

    async def _forward_location(
        self,
        message: SourceMessage,
        display_name: str,
        group_sender: Optional[str],
    ) -> None:
        location = message.location
        message_id = await self._forward(
            message.conversation_id,
            display_name,
            lambda topic_id: self._destination.send_location(
                location.latitude,
                location.longitude,
                topic_id=topic_id,
            ),
            source_message_id=message.message_id,
            kind="location",
        )
        if message_id is None:
            return

        details = formatting.location_details_text(location, group_sender)
        if details is None and group_sender:
            details = formatting.shared_location_text(group_sender)
        if details:
            await self._forward(
                message.conversation_id,
                display_name,
                self._text_send(details),
                source_message_id=None,
                kind="text",
            )

    async def _forward_media(
        self,
        message: SourceMessage,
        display_name: str,
        group_sender: Optional[str],
    ) -> None:
        media = message.media
        data = await self._download(media)
        if data is None:
            return

        if group_sender:
            caption: Optional[str] = formatting.group_media_caption(group_sender, message.body)
        else:
            caption = message.body if message.body.strip() else None

        if media.kind == "sticker":
            await self._forward_sticker(message, display_name, data, caption)
            return

        kind, filename = self._destination_kind(media)
        message_id = await self._forward(
            message.conversation_id,
            display_name,
            self._media_send(kind, data, caption=caption, filename=filename),
            source_message_id=message.message_id,
            kind=kind,
        )
        if message_id is not None:
            LOGGER.info("Media forwarded to topic for %s", display_name)

    async def _forward_sticker(
        self,
        message: SourceMessage,
        display_name: str,
        data: bytes,
        caption: Optional[str],
    ) -> None:
        media = message.media
        send: Optional[SendFn] = None
        try:
            if media.animated:
                converted = await self._transcode(data, media_format(media, "webp"), "mp4")
                send = self._media_send(
                    "animation",
                    converted,
                    caption=caption or formatting.ANIMATED_STICKER_CAPTION,
                )
            elif media_format(media, "webp") != "webp":
                converted = await self._transcode(data, media_format(media, "webp"), "webp")
                send = self._media_send("sticker", converted)
            else:
                send = self._media_send("sticker", data)
        except TranscodeFailed as exc:
            LOGGER.warning("Sticker conversion failed, sending as image: %s", exc)

        if send is not None:
            message_id = await self._forward(
                message.conversation_id,
                display_name,
                send,
                source_message_id=message.message_id,
                kind="sticker",
            )
            if message_id is not None:
                return

        await self._forward(
            message.conversation_id,
            display_name,
            self._media_send("image", data, caption=caption or formatting.STICKER_AS_IMAGE_CAPTION),
            source_message_id=message.message_id,
            kind="image",
        )

    def _destination_kind(self, media: MediaAttachment):
        """Map a source media kind to the destination call and an optional filename."""

        if media.kind == "image":
            if media_format(media, "") == "gif":
                return "animation", None
            return "image", None
        if media.kind in ("video", "audio", "voice", "video_note", "animation"):
            return media.kind, None
        extension = "bin"
        if media.mimetype and "/" in media.mimetype:
            extension = media.mimetype.split("/", 1)[1].split(";", 1)[0] or "bin"
        filename = media.filename or f"document_{int(time.time() * 1000)}.{extension}"
        return "document", filename

    def _text_send(self, text: str) -> SendFn:
        return lambda topic_id: self._destination.send_text(text, topic_id=topic_id)

    def _contact_send(self, phone: str, name: str) -> SendFn:
        return lambda topic_id: self._destination.send_contact(phone, name, topic_id=topic_id)

    async def _handle_status_reply(self, message: DestinationMessage) -> None:
        target = self._correlation.resolve_status(message.reply_to_message_id)
        if target is None:
            try:
                await self._destination.send_text(
                    formatting.STATUS_REPLY_HINT,
                    topic_id=message.topic_id,
                    reply_to=message.message_id,
                )
            except DestinationError as exc:
                LOGGER.debug("Could not post status reply hint: %s", exc)
            return

        emoji = formatting.first_reaction_character(message.text)
        payload = SourcePayload(reaction=StatusReaction(target=target, emoji=emoji))
        try:
            await self._source.send_message(target.conversation_id, payload)
            outcome = STATUS_REACTION_OK
            LOGGER.info("Status reaction %s sent to %s", emoji, target.conversation_id)
        except Exception as exc:
            LOGGER.error("Failed to send status reaction: %s", exc)
            outcome = STATUS_REACTION_FAILED

        try:
            await self._destination.set_reaction(message.message_id, outcome)
        except DestinationError as exc:
            LOGGER.debug("Failed to set status reaction outcome: %s", exc)

    async def _build_payload(self, message: DestinationMessage) -> Optional[SourcePayload]:
        quoted_id = self._correlation.resolve(message.reply_to_message_id)
        quoted_text = None
        if quoted_id is not None:
            quoted_text = message.reply_to_text or "Media message"
            LOGGER.info("Replying to source message %s", quoted_id)

        if message.contact is not None:
            card = message.contact
            phone = card.phone_number or ""
            contact = ContactCard(
                display_name=card.display_name,
                phone_number=phone,
                vcard=card.vcard or build_vcard(card.display_name, phone),
            )
            return SourcePayload(contact=contact, quoted_message_id=quoted_id, quoted_text=quoted_text)

        if message.location is not None:
            return SourcePayload(location=message.location, quoted_message_id=quoted_id, quoted_text=quoted_text)

        if message.media is not None:
            media = await self._outbound_media(message.media)
            if media is None:
                return None
            return SourcePayload(
                text=message.text,
                media=media,
                quoted_message_id=quoted_id,
                quoted_text=quoted_text,
            )

        text = message.text or formatting.EMPTY_RELAY_TEXT
        return SourcePayload(text=text, quoted_message_id=quoted_id, quoted_text=quoted_text)

    async def _outbound_media(self, media: MediaAttachment) -> Optional[MediaAttachment]:
        if media.data is None:
            LOGGER.error("Media from topic could not be downloaded")
            return None
        if media.kind != "sticker":
            return media

        source_format = media_format(media, "webm" if media.animated else "webp")
        try:
            converted = await self._transcode(media.data, source_format, "webp")
        except TranscodeFailed as exc:
            LOGGER.warning("Failed to convert sticker, sending as image: %s", exc)
            return MediaAttachment(kind="image", data=media.data, mimetype=media.mimetype)
        return MediaAttachment(kind="sticker", data=converted, mimetype="image/webp", animated=media.animated)
