from __future__ import annotations

from core.config import CorrelationConfig
from core.correlation import MessageCorrelationMap, parse_status_key
from core.models import StatusTarget


class ManualClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_record_and_resolve() -> None:
    correlation = MessageCorrelationMap()
    correlation.record(1001, "ABCD1234")

    assert correlation.resolve(1001) == "ABCD1234"
    assert correlation.resolve(1002) is None
    assert correlation.resolve(None) is None


def test_status_entries_are_kept_apart_from_chat_entries() -> None:
    correlation = MessageCorrelationMap()
    correlation.record_status(2001, "15551234", 1700000000000)

    assert correlation.resolve(2001) is None
    assert correlation.resolve_status(2001) == StatusTarget("15551234", 1700000000000)
    assert correlation.resolve_status(None) is None


def test_evicts_least_recently_used_entry() -> None:
    correlation = MessageCorrelationMap(CorrelationConfig(max_entries=2, ttl_seconds=3600))
    correlation.record(1, "a")
    correlation.record(2, "b")
    correlation.resolve(1)
    correlation.record(3, "c")

    assert correlation.resolve(1) == "a"
    assert correlation.resolve(2) is None
    assert correlation.resolve(3) == "c"


def test_entries_expire_after_ttl() -> None:
    clock = ManualClock()
    correlation = MessageCorrelationMap(CorrelationConfig(max_entries=10, ttl_seconds=60), clock=clock)
    correlation.record(1, "a")
    correlation.record_status(2, "15551234", 99)

    clock.now = 61.0

    assert correlation.resolve(1) is None
    assert correlation.resolve_status(2) is None
    assert len(correlation) == 0


def test_parse_status_key_keeps_underscores_in_conversation_id() -> None:
    assert parse_status_key("group_abc_1700") == StatusTarget("group_abc", 1700)
    assert parse_status_key("nounderscore") is None
    assert parse_status_key("15551234_notanumber") is None
