"""Reply correlation between destination message ids and source messages.

Entries live only for the lifetime of the process. Both maps are bounded by
entry count and age: a reply to a message that has been evicted is relayed
as a fresh, unthreaded message.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Callable, Generic, Optional, Tuple, TypeVar

from core.config import CorrelationConfig
from core.models import StatusTarget

LOGGER = logging.getLogger(__name__)

V = TypeVar("V")


class _BoundedMap(Generic[V]):
    """Insertion-ordered map with LRU eviction and a per-entry TTL."""

    def __init__(self, max_entries: int, ttl_seconds: float, clock: Callable[[], float]) -> None:
        self._max_entries = max_entries
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[int, Tuple[float, V]]" = OrderedDict()

    def put(self, key: int, value: V) -> None:
        self._entries[key] = (self._clock(), value)
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    def get(self, key: int) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at > self._ttl:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    def __len__(self) -> int:
        return len(self._entries)


def parse_status_key(key: str) -> Optional[StatusTarget]:
    """Parse ``<conversation_id>_<timestamp>`` back into a status target."""

    conversation_id, sep, timestamp = key.rpartition("_")
    if not sep or not conversation_id:
        return None
    try:
        return StatusTarget(conversation_id=conversation_id, timestamp=int(timestamp))
    except ValueError:
        return None


class MessageCorrelationMap:
    """Maps relayed destination message ids back to their source messages."""

    def __init__(
        self,
        config: Optional[CorrelationConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        config = config or CorrelationConfig()
        self._chat: _BoundedMap[str] = _BoundedMap(config.max_entries, config.ttl_seconds, clock)
        self._status: _BoundedMap[str] = _BoundedMap(config.max_entries, config.ttl_seconds, clock)

    def record(self, destination_message_id: int, source_message_id: str) -> None:
        self._chat.put(destination_message_id, source_message_id)

    def resolve(self, destination_message_id: Optional[int]) -> Optional[str]:
        if destination_message_id is None:
            return None
        return self._chat.get(destination_message_id)

    def record_status(self, destination_message_id: int, conversation_id: str, timestamp: int) -> None:
        key = StatusTarget(conversation_id=conversation_id, timestamp=timestamp).key
        self._status.put(destination_message_id, key)
        LOGGER.debug("Status mapped: destination %s -> %s", destination_message_id, key)

    def resolve_status(self, destination_message_id: Optional[int]) -> Optional[StatusTarget]:
        if destination_message_id is None:
            return None
        key = self._status.get(destination_message_id)
        if key is None:
            return None
        return parse_status_key(key)

    def __len__(self) -> int:
        return len(self._chat) + len(self._status)
