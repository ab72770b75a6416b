"""Shared text formatting for everything the bridge posts into topics.

Keeping formatting here prevents drift between the registry, the router and
the monitor. Output uses Telethon's Markdown flavour (``**bold**``,
``__italic__``).
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from core.models import ConversationInfo, ContactCard, GeoLocation

GROUP_LABEL_PREFIX = "🏷️ "
STATUS_TOPIC_TITLE = "📱 Status Updates"
CALL_TOPIC_TITLE = "📞 Call Logs"
STICKER_AS_IMAGE_CAPTION = "🎭 Sticker (as image)"
ANIMATED_STICKER_CAPTION = "🎭 Animated Sticker"
EMPTY_RELAY_TEXT = "📱 Message from Telegram"
STATUS_REPLY_HINT = "💡 Reply to a status message to react to it"

_TIMESTAMP_FORMAT = "%H:%M:%S %d-%m-%Y"


def _timestamp(now: Optional[datetime]) -> str:
    return (now or datetime.now()).astimezone().strftime(_TIMESTAMP_FORMAT)


def strip_group_label(display_name: str) -> str:
    if display_name.startswith(GROUP_LABEL_PREFIX):
        return display_name[len(GROUP_LABEL_PREFIX):]
    return display_name


def group_display_name(subject: str) -> str:
    return f"{GROUP_LABEL_PREFIX}{subject}"


def individual_topic_title(display_name: str, conversation_id: str) -> str:
    return f"{display_name} (+{conversation_id})"


def sender_prefix(sender_name: str) -> str:
    return f"👤 **{sender_name}**"


def group_message_text(sender_name: str, body: str, has_media: bool) -> str:
    """Attribute a group message to its sender; the topic stands for the whole group."""

    if body and body.strip():
        return f"{sender_prefix(sender_name)}: {body}"
    if has_media:
        return f"{sender_prefix(sender_name)}: __sent media__"
    return f"{sender_prefix(sender_name)}: __sent a message__"


def group_media_caption(sender_name: str, body: str) -> str:
    if body:
        return f"{sender_prefix(sender_name)}: {body}"
    return sender_prefix(sender_name)


def shared_contacts_text(sender_name: str, count: int) -> str:
    if count == 1:
        return f"{sender_prefix(sender_name)} shared a contact"
    return f"{sender_prefix(sender_name)} shared {count} contacts"


def shared_location_text(sender_name: str) -> str:
    return f"{sender_prefix(sender_name)} shared a location"


def contact_fallback_text(contact: ContactCard, sender_name: Optional[str] = None) -> str:
    text = f"👤 **Contact Shared**\n\n📝 **Name:** {contact.display_name or 'Unknown'}"
    if sender_name:
        return f"{sender_prefix(sender_name)}: {text}"
    return text


def location_details_text(location: GeoLocation, sender_name: Optional[str] = None) -> Optional[str]:
    lines = []
    if location.name:
        lines.append(f"📝 **Name:** {location.name}")
    if location.address:
        lines.append(f"🏠 **Address:** {location.address}")
    if not lines:
        return None
    text = "\n".join(lines)
    if sender_name:
        return f"{sender_prefix(sender_name)}: {text}"
    return text


def contact_info_card(display_name: str, conversation_id: str, info: Optional[ConversationInfo]) -> str:
    lines = [
        "👤 **Contact Information**",
        "",
        f"📝 **Name:** {display_name}",
        f"📞 **Number:** +{conversation_id}",
    ]
    if info and info.about:
        lines.append(f"💬 **About:** {info.about}")
    lines.append("")
    lines.append("🔄 __Reply in this topic to send messages back__")
    return "\n".join(lines)


def group_info_card(display_name: str, info: Optional[ConversationInfo]) -> str:
    lines = [
        "🏷️ **Group Information**",
        "",
        f"📝 **Name:** {strip_group_label(display_name)}",
    ]
    if info and info.participants_count > 0:
        lines.append(f"👥 **Members:** {info.participants_count}")
    if info and info.description:
        lines.append(f"📄 **Description:** {info.description}")
    lines.append("")
    lines.append("🔄 __Reply in this topic to send messages to the group__")
    lines.append("👥 __All group members will see your message__")
    lines.append("💬 __Reply to a message to quote it__")
    return "\n".join(lines)


STATUS_TOPIC_CARD = "\n".join(
    [
        "📱 **Status Updates**",
        "",
        "🔄 This topic shows all status updates",
        "💬 Reply to a status to react to it",
        "⚠️ Only statuses with captions or media are forwarded",
    ]
)

CALL_TOPIC_CARD = "\n".join(
    [
        "📞 **Call Logs**",
        "",
        "📋 Incoming voice and video calls are logged here",
        "⚠️ This is a read-only topic",
    ]
)


def profile_picture_caption(display_name: str, conversation_id: str) -> str:
    return f"📸 **Profile Picture**\n👤 {display_name} (+{conversation_id})"


def group_picture_caption(display_name: str, participants_count: Optional[int]) -> str:
    caption = f"📸 **Group Picture**\n🏷️ {strip_group_label(display_name)}"
    if participants_count:
        caption += f"\n👥 {participants_count} members"
    return caption


def profile_changed_caption(display_name: str, now: Optional[datetime] = None) -> str:
    return (
        "📸 **Profile Picture Updated**\n\n"
        f"👤 {display_name} changed their profile picture\n"
        f"⏰ {_timestamp(now)}"
    )


def group_picture_changed_caption(
    display_name: str,
    participants_count: Optional[int],
    now: Optional[datetime] = None,
) -> str:
    members = participants_count or "Unknown"
    return (
        "📸 **Group Picture Updated**\n\n"
        f"🏷️ {strip_group_label(display_name)} changed their group picture\n"
        f"👥 {members} members\n"
        f"⏰ {_timestamp(now)}"
    )


def status_text(sender_label: str, caption: str) -> str:
    header = f"📱 **{sender_label}**"
    if caption and caption.strip():
        return f"{header}\n\n{caption}"
    return header


def call_text(caller_label: str, caller_id: str, is_video: bool) -> str:
    kind = "Video" if is_video else "Voice"
    return f"📞 {kind} Call from {caller_label} ({caller_id})"


def confirmation_text(success: bool) -> str:
    if success:
        return "✅ Message sent"
    return "❌ Failed to send message"


def first_reaction_character(text: Optional[str], default: str = "👍") -> str:
    """Pick the reaction emoji for a status reply: the first character of the reply."""

    stripped = (text or "").strip()
    if not stripped:
        return default
    return stripped[0]
