"""
WhatsApp Session Engine Database Models

Tables owned by the WhatsApp session engine.

Tables:
- whatsapp_accounts: One linked WhatsApp identity per row (owned by a CRM user)
- whatsapp_conversations: One thread per account + contact/group
- whatsapp_messages: Every received, sent or backfilled message
"""

from datetime import datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import declarative_base

WhatsAppBase = declarative_base()


class AccountStatus(str, Enum):
    """Connection status of a WhatsApp account."""

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    ERROR = "ERROR"


class ConversationStatus(str, Enum):
    """Status of a WhatsApp conversation."""

    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"
    BLOCKED = "BLOCKED"


class MessageDirection(str, Enum):
    """Direction of a WhatsApp message."""

    INBOUND = "INBOUND"
    OUTBOUND = "OUTBOUND"


class MessageStatus(str, Enum):
    """Delivery status of a WhatsApp message."""

    PENDING = "PENDING"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    READ = "READ"
    FAILED = "FAILED"
    RECEIVED = "RECEIVED"


class MessageType(str, Enum):
    """Types of WhatsApp messages."""

    TEXT = "TEXT"
    IMAGE = "IMAGE"
    AUDIO = "AUDIO"
    VIDEO = "VIDEO"
    DOCUMENT = "DOCUMENT"
    STICKER = "STICKER"
    LOCATION = "LOCATION"
    CONTACT = "CONTACT"
    UNKNOWN = "UNKNOWN"


class WhatsAppModelMixin:
    """Common fields for all WhatsApp engine models."""

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class WhatsAppAccount(WhatsAppBase, WhatsAppModelMixin):
    """
    A tenant's WhatsApp identity.

    Provisioned out of band; the session engine only drives `status` and the
    pairing/session columns.
    """

    __tablename__ = "whatsapp_accounts"

    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)  # Owning CRM user
    phone_number = Column(String(30), nullable=True)
    status = Column(String(20), nullable=False, default=AccountStatus.DISCONNECTED.value)
    qr_code = Column(Text, nullable=True)  # PNG data URL while pairing
    display_name = Column(String(255), nullable=True)
    last_heartbeat = Column(DateTime(timezone=True), nullable=True)
    session_data = Column(Text, nullable=True)  # Opaque, possibly encrypted

    __table_args__ = (Index("idx_whatsapp_accounts_status", "status"),)


class WhatsAppConversation(WhatsAppBase, WhatsAppModelMixin):
    """
    A thread with one contact or group.

    Identified by account_id + contact_number (the provider chat id,
    e.g. 5511999999999@c.us or 1203630@g.us).
    """

    __tablename__ = "whatsapp_conversations"

    account_id = Column(Uuid(as_uuid=True), nullable=False)
    contact_number = Column(String(100), nullable=False)
    contact_name = Column(String(255), nullable=True)
    profile_picture = Column(Text, nullable=True)
    is_group = Column(Boolean, nullable=False, default=False)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    unread_count = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=ConversationStatus.ACTIVE.value)
    assigned_user_id = Column(Uuid(as_uuid=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("account_id", "contact_number", name="uq_whatsapp_conversations_account_contact"),
        Index("idx_whatsapp_conversations_account_last_message", "account_id", "last_message_at"),
    )


class WhatsAppMessage(WhatsAppBase, WhatsAppModelMixin):
    """
    Stores all WhatsApp messages (inbound and outbound).

    Provider message IDs are used for idempotency.
    """

    __tablename__ = "whatsapp_messages"

    account_id = Column(Uuid(as_uuid=True), nullable=False)
    conversation_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    whatsapp_id = Column(String(150), nullable=False)  # Provider-native id
    direction = Column(String(10), nullable=False)
    message_type = Column(String(20), nullable=False, default=MessageType.TEXT.value)
    content = Column(Text, nullable=True)
    media_url = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=MessageStatus.PENDING.value)
    from_number = Column(String(100), nullable=True)
    to_number = Column(String(100), nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("account_id", "whatsapp_id", name="uq_whatsapp_messages_account_provider_id"),
        Index("idx_whatsapp_messages_conversation_timestamp", "conversation_id", "timestamp"),
    )
