"""Helpers for working with conversation identifiers."""

from __future__ import annotations

import re
from typing import Optional

GROUP_PREFIX = "group_"
STATUS_CONVERSATION = "status"
CALL_CONVERSATION = "call"
SPECIAL_CONVERSATIONS = (STATUS_CONVERSATION, CALL_CONVERSATION)

KIND_INDIVIDUAL = "individual"
KIND_GROUP = "group"
KIND_STATUS = "status"
KIND_CALL = "call"


def group_conversation_id(group_id: str) -> str:
    """Namespace a raw group id so it can never collide with a contact number."""

    if group_id.startswith(GROUP_PREFIX):
        return group_id
    return f"{GROUP_PREFIX}{group_id}"


def split_group_id(conversation_id: str) -> Optional[str]:
    """Return the raw group id, or None for non-group conversations."""

    if not conversation_id.startswith(GROUP_PREFIX):
        return None
    group_id = conversation_id[len(GROUP_PREFIX):]
    return group_id or None


def normalize_contact_number(raw: str) -> str:
    """Reduce a contact address to its digits (``+1 555-0100@host`` -> ``15550100``)."""

    local_part = raw.split("@", 1)[0]
    # Device suffixes such as "123:4" identify a linked device, not a contact.
    local_part = local_part.split(":", 1)[0]
    return re.sub(r"\D", "", local_part)


def is_special(conversation_id: str) -> bool:
    return conversation_id in SPECIAL_CONVERSATIONS


def classify(conversation_id: str) -> str:
    """Return the routing kind for a conversation id."""

    if conversation_id == STATUS_CONVERSATION:
        return KIND_STATUS
    if conversation_id == CALL_CONVERSATION:
        return KIND_CALL
    if split_group_id(conversation_id) is not None:
        return KIND_GROUP
    return KIND_INDIVIDUAL


def default_contact_name(conversation_id: str, name: Optional[str]) -> str:
    """Pick a usable display name for an individual conversation."""

    if name and name.strip() and name != "undefined":
        return name.strip()
    return f"Contact {conversation_id}"


def default_group_name(group_id: str, subject: Optional[str]) -> str:
    if subject and subject.strip():
        return subject.strip()
    return f"Group {group_id[:8]}"
