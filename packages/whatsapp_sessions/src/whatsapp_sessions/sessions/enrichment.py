"""
Contact Enrichment

Best-effort display name and avatar lookup for a chat. Provider lookups can
fail for many reasons (privacy settings, unknown contact, rate limits); the
fallback is always the raw identifier, so callers never need their own
try/except around enrichment.
"""

import logging
from dataclasses import dataclass

from whatsapp_sessions.providers.base import SessionClient
from whatsapp_sessions.routing.identifiers import bare_number

logger = logging.getLogger(__name__)


@dataclass
class ContactInfo:
    """Display data for a conversation."""

    name: str
    profile_picture: str | None = None


def fallback_name(chat_id: str, is_group: bool) -> str:
    """Groups keep the full id, individuals show the phone number."""
    return chat_id if is_group else bare_number(chat_id)


async def resolve_contact_info(
    client: SessionClient,
    chat_id: str,
    is_group: bool,
    known_name: str | None = None,
) -> ContactInfo:
    """
    Resolve the display name and profile picture of a chat.

    Args:
        client: Live session client
        chat_id: Provider chat id
        is_group: Whether the chat is a group
        known_name: Name already known (e.g. from the chat list); skips the
            name lookup when it is a real name

    Returns:
        ContactInfo; never raises
    """
    name = known_name if known_name and known_name != chat_id else None

    if name is None:
        try:
            if is_group:
                chat = await client.get_chat(chat_id)
                name = chat.name
            else:
                contact = await client.get_contact(chat_id)
                name = contact.name or contact.pushname or contact.number
        except Exception as e:
            logger.debug(f"Could not get contact info for {chat_id}: {e}")

    profile_picture = None
    try:
        profile_picture = await client.get_profile_pic_url(chat_id)
    except Exception as e:
        logger.debug(f"Could not get profile picture for {chat_id}: {e}")

    return ContactInfo(name=name or fallback_name(chat_id, is_group), profile_picture=profile_picture)
