from __future__ import annotations

import asyncio

import pytest
from telethon import errors, types

from adapters.telegram_destination import TelethonDestination, classify_error
from core.errors import DestinationError, TopicMissing, TopicNameConflict


def _rpc_error(message: str) -> errors.RPCError:
    return errors.RPCError(None, message, 400)


class DummySentMessage:
    def __init__(self, message_id: int) -> None:
        self.id = message_id


class DummyClient:
    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.fail_with = None

    async def get_input_entity(self, chat_id):
        return f"peer:{chat_id}"

    async def send_message(self, entity, text, **kwargs):
        if self.fail_with is not None:
            raise self.fail_with
        self.calls.append(("send_message", entity, text, kwargs))
        return DummySentMessage(501)

    async def send_file(self, entity, file, **kwargs):
        self.calls.append(("send_file", entity, file, kwargs))
        return DummySentMessage(502)

    async def pin_message(self, entity, message_id, notify=False):
        self.calls.append(("pin_message", entity, message_id, notify))

    async def __call__(self, request):
        self.calls.append(("request", request))
        return types.Updates(
            updates=[types.UpdateMessageID(id=77, random_id=1)],
            users=[],
            chats=[],
            date=None,
            seq=0,
        )


def test_topic_gone_codes_map_to_topic_missing() -> None:
    for code in ("TOPIC_DELETED", "TOPIC_ID_INVALID", "MESSAGE_THREAD_INVALID"):
        error = classify_error(_rpc_error(code))
        assert isinstance(error, TopicMissing)
        assert error.code == code


def test_duplicate_title_maps_to_name_conflict() -> None:
    assert isinstance(classify_error(_rpc_error("TOPIC_TITLE_DUPLICATE")), TopicNameConflict)


def test_other_errors_stay_generic() -> None:
    error = classify_error(_rpc_error("CHAT_ADMIN_REQUIRED"))
    assert type(error) is DestinationError
    assert error.code == "CHAT_ADMIN_REQUIRED"

    wrapped = classify_error(ValueError("Could not find the input entity"))
    assert type(wrapped) is DestinationError
    assert wrapped.code is None


def test_send_text_targets_topic() -> None:
    client = DummyClient()
    destination = TelethonDestination(client, -100123)

    message_id = asyncio.run(destination.send_text("hi", topic_id=101))

    assert message_id == 501
    _, entity, text, kwargs = client.calls[0]
    assert entity == "peer:-100123"
    assert text == "hi"
    assert kwargs["reply_to"] == 101


def test_send_text_reply_overrides_topic_root() -> None:
    client = DummyClient()
    destination = TelethonDestination(client, -100123)

    asyncio.run(destination.send_text("ok", topic_id=101, reply_to=900))

    assert client.calls[0][3]["reply_to"] == 900


def test_send_failure_is_classified() -> None:
    client = DummyClient()
    client.fail_with = _rpc_error("TOPIC_DELETED")
    destination = TelethonDestination(client, -100123)

    with pytest.raises(TopicMissing):
        asyncio.run(destination.send_text("hi", topic_id=101))


@pytest.mark.parametrize(
    "failure",
    [
        ConnectionError("Cannot send requests while disconnected"),
        OSError("Connection reset by peer"),
        asyncio.TimeoutError(),
    ],
)
def test_transport_failure_becomes_destination_error(failure) -> None:
    client = DummyClient()
    client.fail_with = failure
    destination = TelethonDestination(client, -100123)

    with pytest.raises(DestinationError) as excinfo:
        asyncio.run(destination.send_text("hi", topic_id=101))
    assert excinfo.value.__cause__ is failure
    assert not isinstance(excinfo.value, TopicMissing)


def test_voice_note_upload() -> None:
    client = DummyClient()
    destination = TelethonDestination(client, -100123)

    asyncio.run(destination.send_media("voice", b"ogg", topic_id=101, caption="listen"))

    _, _, upload, kwargs = client.calls[0]
    assert upload.name == "voice.ogg"
    assert kwargs["voice_note"] is True
    assert kwargs["caption"] == "listen"
    assert kwargs["reply_to"] == 101


def test_document_keeps_filename() -> None:
    client = DummyClient()
    destination = TelethonDestination(client, -100123)

    asyncio.run(destination.send_media("document", b"%PDF", topic_id=101, filename="report.pdf"))

    _, _, upload, kwargs = client.calls[0]
    assert upload.name == "report.pdf"
    assert kwargs["force_document"] is True


def test_create_topic_reads_id_from_updates() -> None:
    client = DummyClient()
    destination = TelethonDestination(client, -100123)

    topic_id = asyncio.run(destination.create_topic("Alice (+15551234)", 0x6FB9F0))

    assert topic_id == 77
    request = client.calls[0][1]
    assert request.title == "Alice (+15551234)"
    assert request.icon_color == 0x6FB9F0
