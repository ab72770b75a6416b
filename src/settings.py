"""Static configuration for topicbridge.

All user-editable settings (destination chat, topic provisioning, relay
behaviour, storage, monitoring, logging) live in a single JSON file for quick
edits without touching Python. Secrets stay in the environment (.env).
"""

import json
import os

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# config.json sits at the project root; TOPICBRIDGE_CONFIG points elsewhere.
CONFIG_PATH = os.getenv("TOPICBRIDGE_CONFIG") or os.path.join(PROJECT_ROOT, "config.json")


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _project_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Destination forum supergroup. Topics are created inside this chat.
_telegram = _CONFIG.get("telegram", {})
DESTINATION_CHAT_ID = _telegram.get("group_id")
SESSION_NAME = _telegram.get("session_name", "topicbridge")

# Topic provisioning switches.
CREATE_TOPICS = bool(_telegram.get("create_topics", True))
SEND_INFO_CARD = bool(_telegram.get("send_info_card", True))
SEND_PROFILE_PICTURE = bool(_telegram.get("send_profile_picture", True))

# Relay behaviour.
# - FORWARD_MEDIA: relay media from the source, text only otherwise
# - CONFIRMATION_MODE: "reaction", "message" or "none"
FORWARD_MEDIA = bool(_telegram.get("forward_media", True))
CONFIRMATION_MODE = _telegram.get("confirmation_mode", "reaction")

# Profile picture change monitoring.
_monitor = _CONFIG.get("profile_monitor", {})
MONITOR_ENABLED = bool(_monitor.get("enabled", True))
MONITOR_INTERVAL_MINUTES = float(_monitor.get("interval_minutes", 30))
MONITOR_INITIAL_DELAY_MINUTES = float(_monitor.get("initial_delay_minutes", 5))
MONITOR_SUBJECT_DELAY_SECONDS = float(_monitor.get("subject_delay_seconds", 1))

# Bounds for the in-memory reply correlation cache.
_correlation = _CONFIG.get("correlation", {})
CORRELATION_MAX_ENTRIES = int(_correlation.get("max_entries", 10_000))
CORRELATION_TTL_HOURS = float(_correlation.get("ttl_hours", 7 * 24))

# Storage backend: "sqlite", "json" or "memory".
_storage = _CONFIG.get("storage", {})
STORAGE_BACKEND = _storage.get("backend", "sqlite")
DB_PATH = _project_path(_storage.get("sqlite_path", "data/topicbridge.db"))
JSON_DATA_DIR = _project_path(_storage.get("json_dir", "data/local_db"))

# Source platform client, given as a dotted "package.module.Factory" path.
# The factory is called with no arguments and must return a SourcePort.
SOURCE_CLIENT = _CONFIG.get("source", {}).get("client")

# Media conversion.
_media = _CONFIG.get("media", {})
FFMPEG_BINARY = _media.get("ffmpeg_binary", "ffmpeg")
FFMPEG_TIMEOUT_SECONDS = float(_media.get("ffmpeg_timeout_seconds", 60))
IMAGE_FETCH_TIMEOUT_SECONDS = float(_media.get("image_fetch_timeout_seconds", 30))

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
