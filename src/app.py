"""Application entry point for the topicbridge relay."""

from __future__ import annotations

import argparse
import asyncio
import importlib
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint
from dotenv import load_dotenv
from telethon import events

import settings
from adapters.ffmpeg_transcoder import FFmpegTranscoder
from adapters.http_images import HttpImageFetcher
from adapters.json_storage import LocalJSONStorage
from adapters.memory_storage import MemoryStorage
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_destination import TelethonDestination
from adapters.telegram_mapper import build_destination_message
from client import build_client, start_client
from core.config import BridgeConfig, CorrelationConfig, MonitorConfig, TopicConfig
from core.confirmation import ConfirmationService
from core.correlation import MessageCorrelationMap
from core.profile_monitor import ProfileSnapshotMonitor
from core.router import BridgeRouter
from core.topic_registry import TopicRegistry

NAME = "TOPICBRIDGE"
FONT = "tarty-1"

LOGGER = logging.getLogger(__name__)


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    """Masks secret values (tokens, hashes) that end up in log lines."""

    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", True):
        return []
    values = []
    for name in redact_cfg.get("patterns", ["API_HASH", "BOT_TOKEN"]):
        value = os.getenv(name)
        if value:
            values.append(value)
    # Longest first so a secret containing another is masked whole.
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", True):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    formatter = _RedactingFormatter(_collect_redaction_values(config), fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/topicbridge.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        file_handler = RotatingFileHandler(
            path,
            maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
            backupCount=int(file_cfg.get("backup_count", 5)),
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)
    # Telethon is chatty at INFO (reconnects, update gaps).
    logging.getLogger("telethon").setLevel(max(level, logging.WARNING))


def _build_storage():
    """Select the persistence adapter configured in config.json."""

    backend = settings.STORAGE_BACKEND
    if backend == "sqlite":
        directory = os.path.dirname(settings.DB_PATH)
        if directory:
            os.makedirs(directory, exist_ok=True)
        storage = SQLiteStorage(settings.DB_PATH)
    elif backend == "json":
        storage = LocalJSONStorage(settings.JSON_DATA_DIR)
    elif backend == "memory":
        LOGGER.warning("Using in-memory storage: topic mappings will not survive a restart")
        storage = MemoryStorage()
    else:
        raise RuntimeError("storage.backend must be 'sqlite', 'json' or 'memory'")
    storage.init_db()
    LOGGER.info("Selected storage backend - %s", backend)
    return storage


def _load_source(path: Optional[str]):
    """Import and instantiate the source platform client from a dotted path."""

    if not path:
        raise RuntimeError("source.client is required (dotted path to a SourcePort factory)")
    module_name, _, attr = path.rpartition(".")
    if not module_name:
        raise RuntimeError(f"source.client must be a dotted path, got {path!r}")
    module = importlib.import_module(module_name)
    factory = getattr(module, attr)
    LOGGER.info("Loaded source client %s", path)
    return factory()


def _run() -> None:
    _print_banner()
    _configure_logging()

    LOGGER.info("Starting topicbridge")

    if settings.DESTINATION_CHAT_ID is None:
        raise RuntimeError("telegram.group_id is required")
    chat_id = int(settings.DESTINATION_CHAT_ID)

    storage = _build_storage()
    source = _load_source(settings.SOURCE_CLIENT)

    client = build_client(settings.SESSION_NAME)
    client.loop.run_until_complete(start_client(client))

    destination = TelethonDestination(client, chat_id)
    images = HttpImageFetcher(timeout=settings.IMAGE_FETCH_TIMEOUT_SECONDS)
    transcoder = FFmpegTranscoder(settings.FFMPEG_BINARY, timeout=settings.FFMPEG_TIMEOUT_SECONDS)
    if not transcoder.available():
        LOGGER.warning("%s not found: stickers will be sent as images", settings.FFMPEG_BINARY)

    registry = TopicRegistry(
        destination,
        storage,
        source=source,
        images=images,
        config=TopicConfig(
            create_topics=settings.CREATE_TOPICS,
            send_info_card=settings.SEND_INFO_CARD,
            send_profile_picture=settings.SEND_PROFILE_PICTURE,
        ),
    )
    registry.load()

    bridge_config = BridgeConfig(
        forward_media=settings.FORWARD_MEDIA,
        confirmation_mode=settings.CONFIRMATION_MODE,
    )
    router = BridgeRouter(
        registry=registry,
        destination=destination,
        source=source,
        correlation=MessageCorrelationMap(
            CorrelationConfig(
                max_entries=settings.CORRELATION_MAX_ENTRIES,
                ttl_seconds=settings.CORRELATION_TTL_HOURS * 3600,
            )
        ),
        confirmation=ConfirmationService(destination, bridge_config.confirmation_mode),
        storage=storage,
        images=images,
        transcoder=transcoder,
        config=bridge_config,
    )
    monitor = ProfileSnapshotMonitor(
        source,
        storage,
        registry,
        on_change=router.deliver_profile_change,
        config=MonitorConfig(
            enabled=settings.MONITOR_ENABLED,
            interval=settings.MONITOR_INTERVAL_MINUTES * 60,
            initial_delay=settings.MONITOR_INITIAL_DELAY_MINUTES * 60,
            subject_delay=settings.MONITOR_SUBJECT_DELAY_SECONDS,
        ),
    )

    # Single handler keeps Telethon integration minimal and defers all routing
    # decisions to the core router.
    @client.on(events.NewMessage(chats=chat_id, incoming=True))
    async def handler(event) -> None:
        try:
            message = await build_destination_message(event.message)
            await router.handle_destination_message(message)
        except Exception:
            LOGGER.exception("Error while processing topic message")

    async def _serve() -> None:
        monitor.start()
        listener = asyncio.ensure_future(source.listen(router))
        LOGGER.info("Bridge running. Listening for messages in both directions...")
        try:
            await client.run_until_disconnected()
        finally:
            await monitor.stop()
            listener.cancel()
            try:
                await listener
            except asyncio.CancelledError:
                pass

    client.loop.run_until_complete(_serve())


def _topics() -> None:
    """Print the persisted conversation -> topic mappings."""

    storage = _build_storage()
    mappings = storage.get_all_topic_mappings()
    specials = storage.get_special_topics()

    for kind, topic_id in sorted(specials.items()):
        print(f"{kind} | {topic_id if topic_id is not None else '-'}")
    if not mappings:
        print("No topic mappings stored yet.")
        return
    for index, mapping in enumerate(sorted(mappings.values(), key=lambda m: m.topic_id), start=1):
        relays = storage.count_relays(mapping.conversation_id)
        print(f"{index}. {mapping.topic_id} | {mapping.display_name} | {mapping.conversation_id} | relays={relays}")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="topicbridge")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the bridge")
    subparsers.add_parser("topics", help="List stored conversation topics")

    args = parser.parse_args(argv)
    if args.command == "topics":
        _topics()
        return
    _run()


if __name__ == "__main__":
    main()
