"""
WhatsApp Routing

Chat id normalization and classification.
"""

from whatsapp_sessions.routing.identifiers import (
    bare_number,
    is_broadcast_id,
    is_group_id,
    normalize_chat_id,
)

__all__ = [
    "bare_number",
    "is_broadcast_id",
    "is_group_id",
    "normalize_chat_id",
]
