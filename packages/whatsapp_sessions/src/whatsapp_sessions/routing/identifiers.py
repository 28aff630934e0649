"""
WhatsApp Chat Identifiers

Helpers for provider chat ids:
- individual chats: <digits>@c.us (Evolution/Baileys uses @s.whatsapp.net)
- groups: <id>@g.us
- status broadcasts: status@broadcast
"""

import re

INDIVIDUAL_SUFFIX = "@c.us"
GROUP_SUFFIX = "@g.us"
BROADCAST_SUFFIX = "@broadcast"

_NON_DIGITS = re.compile(r"\D")


def is_group_id(chat_id: str) -> bool:
    """Check if a chat id refers to a group."""
    return chat_id.endswith(GROUP_SUFFIX)


def is_broadcast_id(chat_id: str | None) -> bool:
    """Check if a chat id is the status channel or another broadcast list."""
    if not chat_id:
        return False
    return chat_id == "status" or "status@broadcast" in chat_id or chat_id.endswith(BROADCAST_SUFFIX)


def bare_number(chat_id: str) -> str:
    """Strip the server suffix: 5511999999999@c.us -> 5511999999999."""
    return chat_id.split("@", 1)[0]


def normalize_chat_id(to: str) -> str:
    """
    Normalize a destination into the provider's chat id form.

    Ids that already carry a suffix are kept as they are; anything else is
    treated as a phone number.
    """
    if "@" in to:
        return to
    return _NON_DIGITS.sub("", to) + INDIVIDUAL_SUFFIX
