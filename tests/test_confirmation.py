from __future__ import annotations

import asyncio

from core.confirmation import ConfirmationService
from core.errors import DestinationError
from core.models import DestinationMessage
from fakes import FakeDestination


def _message() -> DestinationMessage:
    return DestinationMessage(chat_id=-100123, message_id=55, topic_id=101, text="hello")


def test_reaction_mode_marks_success_and_failure() -> None:
    destination = FakeDestination()
    service = ConfirmationService(destination, "reaction")

    asyncio.run(service.confirm(_message(), True))
    asyncio.run(service.confirm(_message(), False))

    assert destination.reactions == [(55, "👍"), (55, "❌")]
    assert destination.sent == []


def test_message_mode_replies_in_topic() -> None:
    destination = FakeDestination()
    service = ConfirmationService(destination, "message")

    asyncio.run(service.confirm(_message(), True))

    assert destination.sent[0]["text"] == "✅ Message sent"
    assert destination.sent[0]["topic_id"] == 101
    assert destination.sent[0]["reply_to"] == 55
    assert destination.reactions == []


def test_none_mode_is_silent() -> None:
    destination = FakeDestination()
    service = ConfirmationService(destination, "none")

    asyncio.run(service.confirm(_message(), False))

    assert destination.sent == []
    assert destination.reactions == []


def test_unknown_mode_falls_back_to_reaction() -> None:
    service = ConfirmationService(FakeDestination(), "carrier-pigeon")

    assert service.mode == "reaction"


def test_destination_failure_is_swallowed() -> None:
    destination = FakeDestination()
    destination.send_errors.append(DestinationError("CHAT_WRITE_FORBIDDEN"))
    service = ConfirmationService(destination, "message")

    asyncio.run(service.confirm(_message(), True))

    assert destination.sent == []
