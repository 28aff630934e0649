"""
WhatsApp Session Engine Persistence

SQLAlchemy models and repository for the session engine tables.
"""

from whatsapp_sessions.persistence.models import (
    AccountStatus,
    ConversationStatus,
    MessageDirection,
    MessageStatus,
    MessageType,
    WhatsAppAccount,
    WhatsAppBase,
    WhatsAppConversation,
    WhatsAppMessage,
)
from whatsapp_sessions.persistence.repo import WhatsAppRepository, as_uuid

__all__ = [
    "WhatsAppBase",
    "WhatsAppAccount",
    "WhatsAppConversation",
    "WhatsAppMessage",
    "WhatsAppRepository",
    "as_uuid",
    "AccountStatus",
    "ConversationStatus",
    "MessageDirection",
    "MessageStatus",
    "MessageType",
]
