"""SQLite storage adapter.

Implements the core StoragePort using a simple SQLite database.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Dict, Optional

from core.conversation_ids import SPECIAL_CONVERSATIONS
from core.errors import PersistenceError
from core.models import ProfileSnapshot, RelayRecord, TopicMapping


def _parse_timestamp(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    return datetime.fromisoformat(value)


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the StoragePort contract."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self._db_path)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot open {self._db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        return conn

    def _execute(self, sql: str, params: tuple = ()) -> list:
        try:
            with self._connect() as conn:
                return conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - topic_mappings: conversation -> topic for contacts and groups
        - special_topics: singleton topics (status, call)
        - profile_snapshots: last seen profile picture per subject
        - relays: append-only log of relayed messages
        """

        try:
            with self._connect() as conn:
                # topic_mappings survives restarts so existing topics are reused.
                # Fields:
                # - conversation_id: contact number or group_<id> (PRIMARY KEY)
                # - topic_id: forum topic id in the destination chat
                # - display_name: name used when the topic was created
                # - created_at: ISO timestamp of the last (re)creation
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS topic_mappings (
                        conversation_id TEXT PRIMARY KEY,
                        topic_id INTEGER NOT NULL,
                        display_name TEXT NOT NULL,
                        created_at TIMESTAMP NOT NULL
                    )
                    """
                )
                # special_topics holds at most one row per singleton kind.
                # Fields:
                # - kind: "status" or "call" (PRIMARY KEY)
                # - topic_id: forum topic id in the destination chat
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS special_topics (
                        kind TEXT PRIMARY KEY,
                        topic_id INTEGER NOT NULL
                    )
                    """
                )
                # profile_snapshots is the change-detection baseline.
                # Fields:
                # - subject_id: conversation id (PRIMARY KEY)
                # - image_url: last observed profile picture URL
                # - image_hash: MD5 of image_url
                # - updated_at: when the snapshot was last written
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS profile_snapshots (
                        subject_id TEXT PRIMARY KEY,
                        image_url TEXT NOT NULL,
                        image_hash TEXT NOT NULL,
                        updated_at TIMESTAMP NOT NULL
                    )
                    """
                )
                # relays is an append-only log for auditing. Correlation itself
                # stays in memory; this table is never read back by the bridge.
                # Fields:
                # - id: auto-increment primary key
                # - conversation_id: source conversation
                # - topic_id: topic the message landed in
                # - destination_message_id: id returned by the destination
                # - source_message_id: originating source message id, if any
                # - kind: text, image, status, call, ...
                # - created_at: ISO timestamp
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS relays (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        conversation_id TEXT,
                        topic_id INTEGER,
                        destination_message_id INTEGER,
                        source_message_id TEXT,
                        kind TEXT,
                        created_at TIMESTAMP
                    )
                    """
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to initialise {self._db_path}: {exc}") from exc

    def save_topic_mapping(self, conversation_id: str, topic_id: int, display_name: str) -> None:
        """Upsert the topic for a conversation."""

        now = datetime.now(timezone.utc)
        self._execute(
            """
            INSERT INTO topic_mappings (conversation_id, topic_id, display_name, created_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(conversation_id) DO UPDATE SET
                topic_id = excluded.topic_id,
                display_name = excluded.display_name,
                created_at = excluded.created_at
            """,
            (conversation_id, topic_id, display_name, now.isoformat()),
        )

    def get_all_topic_mappings(self) -> Dict[str, TopicMapping]:
        rows = self._execute(
            "SELECT conversation_id, topic_id, display_name, created_at FROM topic_mappings"
        )
        return {
            row["conversation_id"]: TopicMapping(
                conversation_id=row["conversation_id"],
                topic_id=int(row["topic_id"]),
                display_name=row["display_name"],
                created_at=_parse_timestamp(row["created_at"]),
            )
            for row in rows
        }

    def save_special_topic(self, kind: str, topic_id: int) -> None:
        self._execute(
            """
            INSERT INTO special_topics (kind, topic_id)
            VALUES (?, ?)
            ON CONFLICT(kind) DO UPDATE SET topic_id = excluded.topic_id
            """,
            (kind, topic_id),
        )

    def get_special_topics(self) -> Dict[str, Optional[int]]:
        """Return every singleton kind, with None for those never created."""

        rows = self._execute("SELECT kind, topic_id FROM special_topics")
        specials: Dict[str, Optional[int]] = {kind: None for kind in SPECIAL_CONVERSATIONS}
        for row in rows:
            specials[row["kind"]] = int(row["topic_id"])
        return specials

    def save_profile_snapshot(self, subject_id: str, image_url: str, image_hash: str) -> None:
        now = datetime.now(timezone.utc)
        self._execute(
            """
            INSERT INTO profile_snapshots (subject_id, image_url, image_hash, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(subject_id) DO UPDATE SET
                image_url = excluded.image_url,
                image_hash = excluded.image_hash,
                updated_at = excluded.updated_at
            """,
            (subject_id, image_url, image_hash, now.isoformat()),
        )

    def get_profile_snapshot(self, subject_id: str) -> Optional[ProfileSnapshot]:
        rows = self._execute(
            "SELECT subject_id, image_url, image_hash, updated_at FROM profile_snapshots WHERE subject_id = ?",
            (subject_id,),
        )
        if not rows:
            return None
        row = rows[0]
        return ProfileSnapshot(
            subject_id=row["subject_id"],
            image_url=row["image_url"],
            image_hash=row["image_hash"],
            updated_at=_parse_timestamp(row["updated_at"]),
        )

    def save_relay(self, record: RelayRecord) -> None:
        """Persist a relay to the append-only relays table."""

        created_at = datetime.now(timezone.utc)
        self._execute(
            """
            INSERT INTO relays (
                conversation_id,
                topic_id,
                destination_message_id,
                source_message_id,
                kind,
                created_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                record.conversation_id,
                record.topic_id,
                record.destination_message_id,
                record.source_message_id,
                record.kind,
                created_at.isoformat(),
            ),
        )

    def count_relays(self, conversation_id: Optional[str] = None) -> int:
        """Return how many relays were logged, optionally for one conversation."""

        if conversation_id is None:
            rows = self._execute("SELECT COUNT(*) AS total FROM relays")
        else:
            rows = self._execute(
                "SELECT COUNT(*) AS total FROM relays WHERE conversation_id = ?",
                (conversation_id,),
            )
        return int(rows[0]["total"])
