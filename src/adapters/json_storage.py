"""Local JSON storage adapter.

One file per collection inside a data directory, rewritten whole on every
write. Suitable for small deployments that do not want a database file.
"""

from __future__ import annotations

import json
import os
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from core.conversation_ids import SPECIAL_CONVERSATIONS
from core.errors import PersistenceError
from core.models import ProfileSnapshot, RelayRecord, TopicMapping

TOPICS_FILE = "topic_mappings.json"
SPECIAL_TOPICS_FILE = "special_topics.json"
PROFILES_FILE = "profile_snapshots.json"
RELAYS_FILE = "relays.json"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class LocalJSONStorage:
    """StoragePort backed by JSON files. Concurrent upserts are last-write-wins."""

    def __init__(self, data_dir: str) -> None:
        self._data_dir = data_dir
        self._lock = threading.Lock()

    def _path(self, name: str) -> str:
        return os.path.join(self._data_dir, name)

    def _read(self, name: str, default: Any) -> Any:
        path = self._path(name)
        if not os.path.exists(path):
            return default
        try:
            with open(path, "r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, ValueError) as exc:
            raise PersistenceError(f"Cannot read {path}: {exc}") from exc

    def _write(self, name: str, data: Any) -> None:
        path = self._path(name)
        tmp_path = f"{path}.tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, ensure_ascii=False)
            os.replace(tmp_path, path)
        except OSError as exc:
            raise PersistenceError(f"Cannot write {path}: {exc}") from exc

    def init_db(self) -> None:
        """Create the data directory and empty collection files."""

        try:
            os.makedirs(self._data_dir, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Cannot create {self._data_dir}: {exc}") from exc
        with self._lock:
            for name, empty in (
                (TOPICS_FILE, {}),
                (SPECIAL_TOPICS_FILE, {}),
                (PROFILES_FILE, {}),
                (RELAYS_FILE, []),
            ):
                if not os.path.exists(self._path(name)):
                    self._write(name, empty)

    def save_topic_mapping(self, conversation_id: str, topic_id: int, display_name: str) -> None:
        with self._lock:
            topics = self._read(TOPICS_FILE, {})
            topics[conversation_id] = {
                "topic_id": topic_id,
                "display_name": display_name,
                "created_at": _now(),
            }
            self._write(TOPICS_FILE, topics)

    def get_all_topic_mappings(self) -> Dict[str, TopicMapping]:
        with self._lock:
            topics = self._read(TOPICS_FILE, {})
        mappings: Dict[str, TopicMapping] = {}
        for conversation_id, entry in topics.items():
            mappings[conversation_id] = TopicMapping(
                conversation_id=conversation_id,
                topic_id=int(entry["topic_id"]),
                display_name=entry.get("display_name") or conversation_id,
                created_at=datetime.fromisoformat(entry["created_at"]) if entry.get("created_at") else datetime.now(timezone.utc),
            )
        return mappings

    def save_special_topic(self, kind: str, topic_id: int) -> None:
        with self._lock:
            specials = self._read(SPECIAL_TOPICS_FILE, {})
            specials[kind] = topic_id
            self._write(SPECIAL_TOPICS_FILE, specials)

    def get_special_topics(self) -> Dict[str, Optional[int]]:
        with self._lock:
            stored = self._read(SPECIAL_TOPICS_FILE, {})
        specials: Dict[str, Optional[int]] = {kind: None for kind in SPECIAL_CONVERSATIONS}
        for kind, topic_id in stored.items():
            specials[kind] = int(topic_id) if topic_id is not None else None
        return specials

    def save_profile_snapshot(self, subject_id: str, image_url: str, image_hash: str) -> None:
        with self._lock:
            profiles = self._read(PROFILES_FILE, {})
            profiles[subject_id] = {
                "image_url": image_url,
                "image_hash": image_hash,
                "updated_at": _now(),
            }
            self._write(PROFILES_FILE, profiles)

    def get_profile_snapshot(self, subject_id: str) -> Optional[ProfileSnapshot]:
        with self._lock:
            entry = self._read(PROFILES_FILE, {}).get(subject_id)
        if entry is None:
            return None
        return ProfileSnapshot(
            subject_id=subject_id,
            image_url=entry["image_url"],
            image_hash=entry["image_hash"],
            updated_at=datetime.fromisoformat(entry["updated_at"]),
        )

    def save_relay(self, record: RelayRecord) -> None:
        with self._lock:
            relays: List[dict] = self._read(RELAYS_FILE, [])
            relays.append(
                {
                    "conversation_id": record.conversation_id,
                    "topic_id": record.topic_id,
                    "destination_message_id": record.destination_message_id,
                    "source_message_id": record.source_message_id,
                    "kind": record.kind,
                    "created_at": _now(),
                }
            )
            self._write(RELAYS_FILE, relays)

    def count_relays(self, conversation_id: Optional[str] = None) -> int:
        with self._lock:
            relays = self._read(RELAYS_FILE, [])
        if conversation_id is None:
            return len(relays)
        return sum(1 for entry in relays if entry.get("conversation_id") == conversation_id)
