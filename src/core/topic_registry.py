"""Conversation-to-topic registry.

The registry owns the only cross-handler mutable state in the bridge: the
conversation -> topic map and its reverse. It creates destination topics on
demand, persists every change, and transparently recreates a topic when the
destination reports it gone (for example after an admin deleted it).

Creation and recreation are serialised per conversation id, so concurrent
handlers for one conversation never provision two topics.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar

from core import formatting
from core.config import TopicConfig
from core.conversation_ids import (
    CALL_CONVERSATION,
    KIND_CALL,
    KIND_GROUP,
    KIND_INDIVIDUAL,
    KIND_STATUS,
    STATUS_CONVERSATION,
    classify,
    is_special,
)
from core.errors import (
    DestinationError,
    PersistenceError,
    RelayFailed,
    TopicCreationFailed,
    TopicMissing,
    TopicNameConflict,
)
from core.models import ConversationInfo, TopicMapping
from core.ports import DestinationPort, ImageFetcher, SourcePort, StoragePort

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

ICON_COLORS = {
    KIND_INDIVIDUAL: 0x6FB9F0,
    KIND_GROUP: 0x00FF00,
    KIND_STATUS: 0x00FF00,
    KIND_CALL: 0xFF0000,
}

SPECIAL_TITLES = {
    STATUS_CONVERSATION: formatting.STATUS_TOPIC_TITLE,
    CALL_CONVERSATION: formatting.CALL_TOPIC_TITLE,
}

SPECIAL_CARDS = {
    STATUS_CONVERSATION: formatting.STATUS_TOPIC_CARD,
    CALL_CONVERSATION: formatting.CALL_TOPIC_CARD,
}


class TopicRegistry:
    """Maps conversation ids to destination topic ids and keeps them alive."""

    def __init__(
        self,
        destination: DestinationPort,
        storage: StoragePort,
        source: Optional[SourcePort] = None,
        images: Optional[ImageFetcher] = None,
        config: Optional[TopicConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._destination = destination
        self._storage = storage
        self._source = source
        self._images = images
        self._config = config or TopicConfig()
        self._clock = clock
        self._topics: Dict[str, TopicMapping] = {}
        self._reverse: Dict[int, str] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    # -- lookups ---------------------------------------------------------

    def load(self) -> int:
        """Restore persisted mappings. Returns the number of topics loaded."""

        try:
            mappings = self._storage.get_all_topic_mappings()
            specials = self._storage.get_special_topics()
        except PersistenceError:
            LOGGER.exception("Failed to load topic mappings, starting with an empty registry")
            return 0

        for mapping in mappings.values():
            self._bind(mapping)
        for kind, topic_id in specials.items():
            if topic_id is None or kind not in SPECIAL_TITLES:
                continue
            self._bind(
                TopicMapping(
                    conversation_id=kind,
                    topic_id=int(topic_id),
                    display_name=SPECIAL_TITLES[kind],
                    created_at=self._now(),
                )
            )

        LOGGER.info("Loaded %s topic mappings from storage", len(mappings))
        for kind in SPECIAL_TITLES:
            if kind in self._topics:
                LOGGER.info("%s topic loaded: %s", kind.capitalize(), self._topics[kind].topic_id)
        return len(self._topics)

    def topic_for(self, conversation_id: str) -> Optional[int]:
        mapping = self._topics.get(conversation_id)
        return mapping.topic_id if mapping else None

    def resolve_conversation(self, topic_id: int) -> Optional[str]:
        return self._reverse.get(topic_id)

    def mappings(self) -> List[TopicMapping]:
        """Snapshot of the per-conversation mappings (singleton topics excluded)."""

        return [m for m in self._topics.values() if not is_special(m.conversation_id)]

    # -- mutation --------------------------------------------------------

    async def resolve_or_create(self, conversation_id: str, display_name: str) -> int:
        """Return the live topic for a conversation, creating it on first use."""

        mapping = self._topics.get(conversation_id)
        if mapping is not None:
            return mapping.topic_id

        async with self._lock_for(conversation_id):
            # Another handler may have created it while we waited.
            mapping = self._topics.get(conversation_id)
            if mapping is not None:
                return mapping.topic_id
            return await self._create(conversation_id, display_name)

    def invalidate(self, conversation_id: str) -> None:
        """Forget a mapping in both directions without contacting the destination."""

        mapping = self._topics.pop(conversation_id, None)
        if mapping is None:
            return
        if self._reverse.get(mapping.topic_id) == conversation_id:
            del self._reverse[mapping.topic_id]
        LOGGER.info("Invalidated topic %s for %s", mapping.topic_id, conversation_id)

    async def relay(
        self,
        conversation_id: str,
        display_name: str,
        send: Callable[[int], Awaitable[T]],
    ) -> T:
        """Run ``send`` against the conversation's topic, recreating it once if missing.

        Raises ``TopicCreationFailed`` when no topic can be provisioned and
        ``RelayFailed`` for any send failure that survives the single retry.
        """

        topic_id = await self.resolve_or_create(conversation_id, display_name)
        try:
            return await send(topic_id)
        except TopicMissing as exc:
            LOGGER.warning("Topic %s for %s is gone (%s), recreating", topic_id, conversation_id, exc)
        except DestinationError as exc:
            raise RelayFailed(f"Send to topic {topic_id} failed: {exc}") from exc

        new_topic_id = await self._recreate(conversation_id, display_name, stale_topic_id=topic_id)
        try:
            result = await send(new_topic_id)
        except DestinationError as exc:
            LOGGER.error("Send failed even after topic recreation for %s: %s", conversation_id, exc)
            raise RelayFailed(f"Send to recreated topic {new_topic_id} failed: {exc}") from exc
        LOGGER.info("Delivered to %s after topic recreation (%s -> %s)", conversation_id, topic_id, new_topic_id)
        return result

    # -- internals -------------------------------------------------------

    def _lock_for(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def _bind(self, mapping: TopicMapping) -> None:
        previous = self._topics.get(mapping.conversation_id)
        if previous is not None and self._reverse.get(previous.topic_id) == mapping.conversation_id:
            del self._reverse[previous.topic_id]
        self._topics[mapping.conversation_id] = mapping
        self._reverse[mapping.topic_id] = mapping.conversation_id

    async def _recreate(self, conversation_id: str, display_name: str, stale_topic_id: int) -> int:
        async with self._lock_for(conversation_id):
            current = self._topics.get(conversation_id)
            if current is not None and current.topic_id != stale_topic_id:
                # A concurrent handler already replaced the stale topic.
                return current.topic_id
            self.invalidate(conversation_id)
            return await self._create(conversation_id, display_name)

    def _title_for(self, conversation_id: str, display_name: str) -> str:
        kind = classify(conversation_id)
        if kind in (KIND_STATUS, KIND_CALL):
            return SPECIAL_TITLES[conversation_id]
        if kind == KIND_GROUP:
            return display_name
        return formatting.individual_topic_title(display_name, conversation_id)

    def _unique_title(self, conversation_id: str, display_name: str) -> str:
        suffix = str(int(self._clock() * 1000))[-4:]
        title = self._title_for(conversation_id, display_name)
        if classify(conversation_id) == KIND_INDIVIDUAL:
            return f"{title} {suffix}"
        return f"{title} ({suffix})"

    async def _create(self, conversation_id: str, display_name: str) -> int:
        if not self._config.create_topics:
            raise TopicCreationFailed(conversation_id, "topic creation is disabled")

        kind = classify(conversation_id)
        if is_special(conversation_id):
            display_name = SPECIAL_TITLES[conversation_id]
        title = self._title_for(conversation_id, display_name)
        icon_color = ICON_COLORS[kind]

        LOGGER.info("Creating topic: %s", title)
        topic_id = await self._create_topic(conversation_id, title, icon_color, allow_rename=True)
        if topic_id is None:
            title = self._unique_title(conversation_id, display_name)
            LOGGER.info("Retrying with unique name: %s", title)
            topic_id = await self._create_topic(conversation_id, title, icon_color, allow_rename=False)

        mapping = TopicMapping(
            conversation_id=conversation_id,
            topic_id=topic_id,
            display_name=display_name,
            created_at=self._now(),
        )
        self._bind(mapping)
        self._persist(mapping)
        await self._post_welcome(mapping)
        LOGGER.info("Created topic for %s: %s", display_name, topic_id)
        return topic_id

    async def _create_topic(
        self,
        conversation_id: str,
        title: str,
        icon_color: int,
        allow_rename: bool,
    ) -> Optional[int]:
        """Create a topic; None means the title collided and a rename is allowed."""

        try:
            return await self._destination.create_topic(title, icon_color)
        except TopicNameConflict as exc:
            if allow_rename:
                LOGGER.warning("Topic name %r is taken: %s", title, exc)
                return None
            raise TopicCreationFailed(conversation_id, str(exc)) from exc
        except DestinationError as exc:
            LOGGER.error("Error creating topic for %s: %s", conversation_id, exc)
            raise TopicCreationFailed(conversation_id, str(exc)) from exc

    def _persist(self, mapping: TopicMapping) -> None:
        # A lost write only costs a duplicate topic after restart.
        try:
            if is_special(mapping.conversation_id):
                self._storage.save_special_topic(mapping.conversation_id, mapping.topic_id)
            else:
                self._storage.save_topic_mapping(
                    mapping.conversation_id,
                    mapping.topic_id,
                    mapping.display_name,
                )
        except PersistenceError:
            LOGGER.exception("Failed to persist topic %s for %s", mapping.topic_id, mapping.conversation_id)

    async def _post_welcome(self, mapping: TopicMapping) -> None:
        """One-time side effects for a new topic: info card first, then picture."""

        if is_special(mapping.conversation_id):
            if self._config.send_info_card:
                await self._post_special_card(mapping)
            return

        info = None
        if self._config.send_info_card or self._config.send_profile_picture:
            info = await self._conversation_info(mapping.conversation_id)
        if self._config.send_info_card:
            await self._post_info_card(mapping, info)
        if self._config.send_profile_picture:
            await self._post_profile_picture(mapping, info)

    async def _post_special_card(self, mapping: TopicMapping) -> None:
        try:
            await self._destination.send_text(
                SPECIAL_CARDS[mapping.conversation_id],
                topic_id=mapping.topic_id,
            )
        except DestinationError as exc:
            LOGGER.warning("Could not post %s topic card: %s", mapping.conversation_id, exc)
        except Exception:
            LOGGER.exception("Unexpected error posting %s topic card", mapping.conversation_id)

    async def _conversation_info(self, conversation_id: str) -> Optional[ConversationInfo]:
        if self._source is None:
            return None
        try:
            return await self._source.fetch_conversation_info(conversation_id)
        except Exception:
            LOGGER.debug("Could not fetch conversation info for %s", conversation_id, exc_info=True)
            return None

    async def _post_info_card(self, mapping: TopicMapping, info: Optional[ConversationInfo]) -> None:
        if classify(mapping.conversation_id) == KIND_GROUP:
            text = formatting.group_info_card(mapping.display_name, info)
        else:
            text = formatting.contact_info_card(mapping.display_name, mapping.conversation_id, info)

        try:
            message_id = await self._destination.send_text(text, topic_id=mapping.topic_id)
        except DestinationError as exc:
            LOGGER.error("Error posting info card for %s: %s", mapping.conversation_id, exc)
            return
        except Exception:
            LOGGER.exception("Unexpected error posting info card for %s", mapping.conversation_id)
            return

        try:
            await self._destination.pin_message(message_id)
            LOGGER.info("Pinned info card for topic %s", mapping.topic_id)
        except DestinationError as exc:
            LOGGER.warning("Could not pin info card in topic %s: %s", mapping.topic_id, exc)
        except Exception:
            LOGGER.exception("Unexpected error pinning info card in topic %s", mapping.topic_id)

    async def _post_profile_picture(self, mapping: TopicMapping, info: Optional[ConversationInfo]) -> None:
        if self._source is None or self._images is None:
            return
        try:
            url = await self._source.fetch_profile_image_url(mapping.conversation_id)
            if not url:
                LOGGER.debug("No profile picture found for %s", mapping.display_name)
                return
            data = await self._images.fetch(url)
        except Exception:
            LOGGER.warning("Could not fetch profile picture for %s", mapping.display_name, exc_info=True)
            return

        if classify(mapping.conversation_id) == KIND_GROUP:
            count = info.participants_count if info else None
            caption = formatting.group_picture_caption(mapping.display_name, count)
        else:
            caption = formatting.profile_picture_caption(mapping.display_name, mapping.conversation_id)

        try:
            await self._destination.send_media("image", data, topic_id=mapping.topic_id, caption=caption)
            LOGGER.info("Profile picture sent for %s", mapping.display_name)
        except DestinationError as exc:
            LOGGER.error("Error sending profile picture for %s: %s", mapping.display_name, exc)
        except Exception:
            LOGGER.exception("Unexpected error sending profile picture for %s", mapping.display_name)
