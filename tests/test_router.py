from __future__ import annotations

import asyncio

from adapters.memory_storage import MemoryStorage
from core.config import BridgeConfig
from core.confirmation import ConfirmationService
from core.correlation import MessageCorrelationMap
from core.models import (
    CallEvent,
    ContactCard,
    DestinationMessage,
    GeoLocation,
    MediaAttachment,
    ProfileChange,
    SourceMessage,
    StatusTarget,
    StatusUpdate,
)
from core.router import BridgeRouter, contact_phone
from core.topic_registry import TopicRegistry
from fakes import FailingStorage, FakeDestination, FakeImages, FakeSource, FakeTranscoder

CONTACT = "15551234"
GROUP = "group_120363"
CHAT_ID = -1001234567890
WELCOME_PREFIXES = (
    "👤 **Contact Information**",
    "🏷️ **Group Information**",
    "📱 **Status Updates**",
    "📞 **Call Logs**",
)


class Harness:
    def __init__(self, storage=None, transcoder=None, config=None) -> None:
        self.destination = FakeDestination()
        self.source = FakeSource()
        self.storage = storage if storage is not None else MemoryStorage()
        self.images = FakeImages()
        self.transcoder = transcoder or FakeTranscoder()
        self.correlation = MessageCorrelationMap()
        self.registry = TopicRegistry(self.destination, self.storage)
        self.router = BridgeRouter(
            registry=self.registry,
            destination=self.destination,
            source=self.source,
            correlation=self.correlation,
            confirmation=ConfirmationService(self.destination, "reaction"),
            storage=self.storage,
            images=self.images,
            transcoder=self.transcoder,
            config=config,
        )

    def relayed(self, kind=None):
        """Sent entries minus the topic welcome cards."""

        entries = [e for e in self.destination.sent if not str(e.get("text", "")).startswith(WELCOME_PREFIXES)]
        if kind is None:
            return entries
        return [e for e in entries if e["kind"] == kind]


def _incoming(**fields) -> SourceMessage:
    defaults = dict(conversation_id=CONTACT, message_id="MSG1", is_group=False, sender_name="Alice")
    defaults.update(fields)
    return SourceMessage(**defaults)


def _reply(topic_id, **fields) -> DestinationMessage:
    return DestinationMessage(chat_id=CHAT_ID, message_id=fields.pop("message_id", 900), topic_id=topic_id, **fields)


def test_individual_text_creates_topic_and_correlates() -> None:
    harness = Harness()

    asyncio.run(harness.router.handle_source_message(_incoming(body="hi")))

    assert harness.destination.created == [("Alice (+15551234)", 0x6FB9F0)]
    sent = harness.relayed("text")
    assert [e["text"] for e in sent] == ["hi"]
    assert harness.correlation.resolve(sent[0]["message_id"]) == "MSG1"
    assert harness.storage.count_relays(CONTACT) == 1


def test_reply_in_topic_is_quoted_and_confirmed() -> None:
    harness = Harness()
    asyncio.run(harness.router.handle_source_message(_incoming(body="hi")))
    relayed_id = harness.relayed("text")[0]["message_id"]

    reply = _reply(101, text="hello back", reply_to_message_id=relayed_id, reply_to_text="hi")
    asyncio.run(harness.router.handle_destination_message(reply))

    conversation_id, payload = harness.source.sent[0]
    assert conversation_id == CONTACT
    assert payload.text == "hello back"
    assert payload.quoted_message_id == "MSG1"
    assert payload.quoted_text == "hi"
    assert harness.destination.reactions == [(900, "👍")]


def test_group_message_is_attributed_to_sender() -> None:
    harness = Harness()

    asyncio.run(
        harness.router.handle_source_message(
            _incoming(conversation_id=GROUP, is_group=True, chat_name="Team", body="hi")
        )
    )

    assert harness.destination.created[0][0] == "🏷️ Team"
    assert [e["text"] for e in harness.relayed("text")] == ["👤 **Alice**: hi"]


def test_group_media_without_body() -> None:
    harness = Harness()
    media = MediaAttachment(kind="image", mimetype="image/jpeg", ref="media-1")

    asyncio.run(
        harness.router.handle_source_message(
            _incoming(conversation_id=GROUP, is_group=True, chat_name="Team", media=media)
        )
    )

    assert [e["text"] for e in harness.relayed("text")] == ["👤 **Alice**: __sent media__"]
    image = harness.relayed("image")[0]
    assert image["data"] == b"downloaded:media-1"
    assert image["caption"] == "👤 **Alice**"


def test_individual_media_uses_body_as_caption() -> None:
    harness = Harness()
    media = MediaAttachment(kind="image", data=b"jpeg", mimetype="image/jpeg")

    asyncio.run(harness.router.handle_source_message(_incoming(body="look", media=media)))

    assert harness.relayed("text") == []
    assert harness.relayed("image")[0]["caption"] == "look"


def test_media_forwarding_can_be_disabled() -> None:
    harness = Harness(config=BridgeConfig(forward_media=False))
    media = MediaAttachment(kind="image", data=b"jpeg")

    asyncio.run(harness.router.handle_source_message(_incoming(media=media)))

    assert harness.relayed("image") == []


def test_document_gets_a_filename() -> None:
    harness = Harness()
    media = MediaAttachment(kind="document", data=b"%PDF", mimetype="application/pdf", filename="report.pdf")

    asyncio.run(harness.router.handle_source_message(_incoming(media=media)))

    assert harness.relayed("document")[0]["filename"] == "report.pdf"


def test_static_sticker_is_sent_as_is() -> None:
    harness = Harness()
    media = MediaAttachment(kind="sticker", data=b"webp", mimetype="image/webp")

    asyncio.run(harness.router.handle_source_message(_incoming(media=media)))

    assert harness.relayed("sticker")[0]["data"] == b"webp"
    assert harness.transcoder.calls == []


def test_animated_sticker_is_converted() -> None:
    harness = Harness()
    media = MediaAttachment(kind="sticker", data=b"webp", mimetype="image/webp", animated=True)

    asyncio.run(harness.router.handle_source_message(_incoming(media=media)))

    assert harness.transcoder.calls == [("webp", "mp4")]
    assert harness.relayed("animation")[0]["data"] == b"converted-mp4"


def test_sticker_falls_back_to_image_when_conversion_fails() -> None:
    harness = Harness(transcoder=FakeTranscoder(fail=True))
    media = MediaAttachment(kind="sticker", data=b"webp", mimetype="image/webp", animated=True)

    asyncio.run(harness.router.handle_source_message(_incoming(media=media)))

    image = harness.relayed("image")[0]
    assert image["data"] == b"webp"
    assert image["caption"] == "🎭 Sticker (as image)"
    assert harness.relayed("animation") == []


def test_contact_card_uses_vcard_phone() -> None:
    harness = Harness()
    card = ContactCard(display_name="Bob", phone_number=None, vcard="BEGIN:VCARD\nTEL;type=CELL:+1 555 0100\nEND:VCARD")

    asyncio.run(harness.router.handle_source_message(_incoming(contacts=(card,))))

    contact = harness.relayed("contact")[0]
    assert contact["phone"] == "+15550100"
    assert contact["name"] == "Bob"


def test_contact_without_phone_falls_back_to_text() -> None:
    harness = Harness()
    card = ContactCard(display_name="Bob", phone_number=None)

    asyncio.run(harness.router.handle_source_message(_incoming(contacts=(card,))))

    assert harness.relayed("contact") == []
    assert "📝 **Name:** Bob" in harness.relayed("text")[0]["text"]


def test_location_with_details() -> None:
    harness = Harness()
    location = GeoLocation(latitude=52.37, longitude=4.89, name="Dam Square", address="Amsterdam")

    asyncio.run(harness.router.handle_source_message(_incoming(location=location)))

    assert harness.relayed("location")[0]["latitude"] == 52.37
    assert harness.relayed("text")[0]["text"] == "📝 **Name:** Dam Square\n🏠 **Address:** Amsterdam"


def test_status_without_caption_or_media_is_dropped() -> None:
    harness = Harness()

    asyncio.run(harness.router.handle_status(StatusUpdate(sender_id="15559999", sender_name="Bob", timestamp=1700)))

    assert harness.destination.created == []
    assert harness.destination.sent == []


def test_status_reply_becomes_reaction() -> None:
    harness = Harness()
    update = StatusUpdate(sender_id="15559999", sender_name="Bob", timestamp=1700000000000, caption="sunset")
    asyncio.run(harness.router.handle_status(update))

    status_post = harness.relayed("text")[0]
    assert status_post["text"] == "📱 **Bob**\n\nsunset"
    topic_id = harness.registry.topic_for("status")

    reply = _reply(topic_id, text="🔥 nice", reply_to_message_id=status_post["message_id"])
    asyncio.run(harness.router.handle_destination_message(reply))

    conversation_id, payload = harness.source.sent[0]
    assert conversation_id == "15559999"
    assert payload.reaction.target == StatusTarget("15559999", 1700000000000)
    assert payload.reaction.target.message_key == "status_1700000000000"
    assert payload.reaction.emoji == "🔥"
    assert harness.destination.reactions == [(900, "✅")]


def test_status_message_without_reply_gets_hint() -> None:
    harness = Harness()
    asyncio.run(
        harness.router.handle_status(StatusUpdate(sender_id="15559999", sender_name="Bob", timestamp=1, caption="x"))
    )
    topic_id = harness.registry.topic_for("status")

    asyncio.run(harness.router.handle_destination_message(_reply(topic_id, text="hello?")))

    assert harness.source.sent == []
    assert harness.destination.sent[-1]["text"] == "💡 Reply to a status message to react to it"
    assert harness.destination.sent[-1]["reply_to"] == 900


def test_call_is_logged_and_call_topic_is_read_only() -> None:
    harness = Harness()
    asyncio.run(harness.router.handle_call(CallEvent(caller_id="15559999", caller_name="Bob", is_video=True)))

    assert harness.relayed("text")[0]["text"] == "📞 Video Call from Bob (15559999)"
    topic_id = harness.registry.topic_for("call")

    asyncio.run(harness.router.handle_destination_message(_reply(topic_id, text="call me back")))

    assert harness.source.sent == []
    assert harness.destination.reactions == []


def test_unknown_topic_and_bot_messages_are_ignored() -> None:
    harness = Harness()

    asyncio.run(harness.router.handle_destination_message(_reply(555, text="who?")))
    asyncio.run(harness.router.handle_destination_message(_reply(None, text="general")))

    assert harness.source.sent == []
    assert harness.destination.reactions == []


def test_bot_messages_are_ignored() -> None:
    harness = Harness()
    asyncio.run(harness.router.handle_source_message(_incoming(body="hi")))

    asyncio.run(harness.router.handle_destination_message(_reply(101, text="echo", from_bot=True)))

    assert harness.source.sent == []


def test_source_failure_is_confirmed_as_failure() -> None:
    harness = Harness()
    asyncio.run(harness.router.handle_source_message(_incoming(body="hi")))
    harness.source.fail_send = True

    asyncio.run(harness.router.handle_destination_message(_reply(101, text="reply")))

    assert harness.destination.reactions == [(900, "❌")]


def test_empty_reply_gets_placeholder_text() -> None:
    harness = Harness()
    asyncio.run(harness.router.handle_source_message(_incoming(body="hi")))

    asyncio.run(harness.router.handle_destination_message(_reply(101, text="")))

    assert harness.source.sent[0][1].text == "📱 Message from Telegram"


def test_outbound_contact_gets_a_vcard() -> None:
    harness = Harness()
    asyncio.run(harness.router.handle_source_message(_incoming(body="hi")))
    card = ContactCard(display_name="Carol", phone_number="+15550199")

    asyncio.run(harness.router.handle_destination_message(_reply(101, contact=card)))

    payload = harness.source.sent[0][1]
    assert payload.contact.phone_number == "+15550199"
    assert "TEL:+15550199" in payload.contact.vcard


def test_outbound_sticker_is_converted_to_webp() -> None:
    harness = Harness()
    asyncio.run(harness.router.handle_source_message(_incoming(body="hi")))
    sticker = MediaAttachment(kind="sticker", data=b"tgs", mimetype="application/x-tgsticker", animated=True)

    asyncio.run(harness.router.handle_destination_message(_reply(101, media=sticker)))

    payload = harness.source.sent[0][1]
    assert harness.transcoder.calls == [("tgs", "webp")]
    assert payload.media.kind == "sticker"
    assert payload.media.data == b"converted-webp"


def test_outbound_sticker_falls_back_to_image() -> None:
    harness = Harness(transcoder=FakeTranscoder(fail=True))
    asyncio.run(harness.router.handle_source_message(_incoming(body="hi")))
    sticker = MediaAttachment(kind="sticker", data=b"webp", mimetype="image/webp")

    asyncio.run(harness.router.handle_destination_message(_reply(101, media=sticker)))

    assert harness.source.sent[0][1].media.kind == "image"
    assert harness.destination.reactions == [(900, "👍")]


def test_undownloadable_media_is_a_failure() -> None:
    harness = Harness()
    asyncio.run(harness.router.handle_source_message(_incoming(body="hi")))

    asyncio.run(harness.router.handle_destination_message(_reply(101, media=MediaAttachment(kind="image"))))

    assert harness.source.sent == []
    assert harness.destination.reactions == [(900, "❌")]


def test_deleted_topic_is_recreated_for_next_message() -> None:
    harness = Harness()
    asyncio.run(harness.router.handle_source_message(_incoming(body="first")))
    harness.destination.missing_topics.add(101)

    asyncio.run(harness.router.handle_source_message(_incoming(message_id="MSG2", body="second")))

    assert harness.registry.topic_for(CONTACT) == 102
    second = [e for e in harness.relayed("text") if e["text"] == "second"]
    assert len(second) == 1 and second[0]["topic_id"] == 102
    assert harness.registry.resolve_conversation(101) is None


def test_relay_log_failure_does_not_block_delivery() -> None:
    harness = Harness(storage=FailingStorage())

    asyncio.run(harness.router.handle_source_message(_incoming(body="hi")))

    assert [e["text"] for e in harness.relayed("text")] == ["hi"]
    assert harness.correlation.resolve(harness.relayed("text")[0]["message_id"]) == "MSG1"


def test_profile_change_is_posted_in_topic() -> None:
    harness = Harness()
    asyncio.run(harness.router.handle_source_message(_incoming(body="hi")))

    change = ProfileChange(subject_id=CONTACT, display_name="Alice", image_url="https://pps.example/b.jpg")
    asyncio.run(harness.router.deliver_profile_change(change))

    image = harness.relayed("image")[0]
    assert image["topic_id"] == 101
    assert image["data"] == b"image:https://pps.example/b.jpg"
    assert image["caption"].startswith("📸 **Profile Picture Updated**")


def test_contact_phone_normalisation() -> None:
    assert contact_phone(ContactCard("A", "+1 (555) 010-0")) == "+15550100"
    assert contact_phone(ContactCard("A", None, vcard="TEL:123")) == "123"
    assert contact_phone(ContactCard("A", None)) is None


def test_disconnected_destination_during_welcome_still_delivers() -> None:
    harness = Harness()
    harness.destination.send_errors.append(ConnectionError("Cannot send requests while disconnected"))

    asyncio.run(harness.router.handle_source_message(_incoming(body="hi")))

    assert harness.destination.pinned == []
    assert [e["text"] for e in harness.relayed("text")] == ["hi"]


def test_disconnected_destination_never_escapes_handlers() -> None:
    harness = Harness()

    async def disconnected(text, *, topic_id, reply_to=None):
        raise ConnectionError("Cannot send requests while disconnected")

    harness.destination.send_text = disconnected

    asyncio.run(harness.router.handle_source_message(_incoming(body="hi")))
    asyncio.run(harness.router.handle_call(CallEvent(caller_id="15559999", caller_name="Bob")))

    assert harness.registry.topic_for(CONTACT) == 101
    assert harness.destination.sent == []
    assert harness.storage.count_relays(CONTACT) == 0
