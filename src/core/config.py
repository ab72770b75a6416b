"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass

CONFIRMATION_REACTION = "reaction"
CONFIRMATION_MESSAGE = "message"
CONFIRMATION_NONE = "none"
CONFIRMATION_MODES = (CONFIRMATION_REACTION, CONFIRMATION_MESSAGE, CONFIRMATION_NONE)


@dataclass(frozen=True)
class TopicConfig:
    """Topic provisioning switches consumed by the topic registry."""

    create_topics: bool = True
    send_info_card: bool = True
    send_profile_picture: bool = True


@dataclass(frozen=True)
class BridgeConfig:
    """Relay behaviour for the bridge router."""

    forward_media: bool = True
    confirmation_mode: str = CONFIRMATION_REACTION


@dataclass(frozen=True)
class MonitorConfig:
    """Profile picture polling settings. All durations are in seconds."""

    enabled: bool = True
    interval: float = 30 * 60
    initial_delay: float = 5 * 60
    subject_delay: float = 1.0


@dataclass(frozen=True)
class CorrelationConfig:
    """Bounds for the in-memory reply correlation cache."""

    max_entries: int = 10_000
    ttl_seconds: float = 7 * 24 * 60 * 60
