"""Periodic profile picture change detection.

Each registered conversation moves from "unknown" to "tracked" on its first
observed picture; later polls compare URL hashes and emit a change only when
the hash differs. Content changes are inferred from the URL, not from the
image bytes.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from typing import Awaitable, Callable, Optional

from core.config import MonitorConfig
from core.errors import PersistenceError
from core.models import ProfileChange
from core.ports import SourcePort, StoragePort
from core.topic_registry import TopicRegistry

LOGGER = logging.getLogger(__name__)


def image_fingerprint(url: Optional[str]) -> Optional[str]:
    """Return a deterministic digest of an image URL."""

    if not url:
        return None
    return hashlib.md5(url.encode("utf-8")).hexdigest()


class ProfileSnapshotMonitor:
    """Polls source profile pictures and reports changes."""

    def __init__(
        self,
        source: SourcePort,
        storage: StoragePort,
        registry: TopicRegistry,
        on_change: Callable[[ProfileChange], Awaitable[None]],
        config: Optional[MonitorConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._source = source
        self._storage = storage
        self._registry = registry
        self._on_change = on_change
        self._config = config or MonitorConfig()
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    async def check_subject(self, subject_id: str, display_name: str) -> bool:
        """Poll one subject. Returns True when a change was emitted."""

        url = await self._source.fetch_profile_image_url(subject_id)
        if not url:
            return False

        current_hash = image_fingerprint(url)
        stored = self._storage.get_profile_snapshot(subject_id)
        if stored is None:
            # First observation establishes the baseline; it is not a change.
            self._storage.save_profile_snapshot(subject_id, url, current_hash)
            LOGGER.debug("Stored initial profile picture for %s", display_name)
            return False

        if stored.image_hash == current_hash:
            return False

        LOGGER.info("Profile picture changed for %s (%s)", display_name, subject_id)
        self._storage.save_profile_snapshot(subject_id, url, current_hash)
        await self._on_change(
            ProfileChange(subject_id=subject_id, display_name=display_name, image_url=url)
        )
        return True

    async def sweep(self) -> int:
        """Check every registered conversation once. Returns the number of changes."""

        LOGGER.info("Checking for profile picture changes...")
        changes = 0
        for mapping in self._registry.mappings():
            try:
                if await self.check_subject(mapping.conversation_id, mapping.display_name):
                    changes += 1
            except PersistenceError:
                LOGGER.exception("Snapshot storage failed for %s", mapping.conversation_id)
            except Exception:
                LOGGER.exception("Error checking profile picture for %s", mapping.display_name)
            # Throttle per subject to stay under destination rate limits.
            await self._sleep(self._config.subject_delay)
        LOGGER.info("Profile picture check completed: changes=%s", changes)
        return changes

    async def run(self) -> None:
        """Defer the first sweep past startup provisioning, then poll forever."""

        await self._sleep(self._config.initial_delay)
        while True:
            await self.sweep()
            await self._sleep(self._config.interval)

    def start(self) -> Optional[asyncio.Task]:
        if not self._config.enabled:
            LOGGER.info("Profile picture monitoring is disabled")
            return None
        if self._task is None or self._task.done():
            self._task = asyncio.ensure_future(self.run())
            LOGGER.info(
                "Profile picture monitoring started (checking every %s minutes)",
                int(self._config.interval // 60),
            )
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        LOGGER.info("Profile picture monitoring stopped")
