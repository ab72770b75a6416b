"""In-memory storage adapter.

Nothing survives a restart; every topic is recreated on the next run.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from core.conversation_ids import SPECIAL_CONVERSATIONS
from core.models import ProfileSnapshot, RelayRecord, TopicMapping


class MemoryStorage:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._topics: Dict[str, TopicMapping] = {}
        self._specials: Dict[str, int] = {}
        self._snapshots: Dict[str, ProfileSnapshot] = {}
        self._relays: List[RelayRecord] = []

    def init_db(self) -> None:
        return None

    def save_topic_mapping(self, conversation_id: str, topic_id: int, display_name: str) -> None:
        mapping = TopicMapping(
            conversation_id=conversation_id,
            topic_id=topic_id,
            display_name=display_name,
            created_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._topics[conversation_id] = mapping

    def get_all_topic_mappings(self) -> Dict[str, TopicMapping]:
        with self._lock:
            return dict(self._topics)

    def save_special_topic(self, kind: str, topic_id: int) -> None:
        with self._lock:
            self._specials[kind] = topic_id

    def get_special_topics(self) -> Dict[str, Optional[int]]:
        with self._lock:
            specials: Dict[str, Optional[int]] = {kind: None for kind in SPECIAL_CONVERSATIONS}
            specials.update(self._specials)
        return specials

    def save_profile_snapshot(self, subject_id: str, image_url: str, image_hash: str) -> None:
        snapshot = ProfileSnapshot(
            subject_id=subject_id,
            image_url=image_url,
            image_hash=image_hash,
            updated_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._snapshots[subject_id] = snapshot

    def get_profile_snapshot(self, subject_id: str) -> Optional[ProfileSnapshot]:
        with self._lock:
            return self._snapshots.get(subject_id)

    def save_relay(self, record: RelayRecord) -> None:
        with self._lock:
            self._relays.append(record)

    def count_relays(self, conversation_id: Optional[str] = None) -> int:
        with self._lock:
            if conversation_id is None:
                return len(self._relays)
            return sum(1 for record in self._relays if record.conversation_id == conversation_id)
