"""
WhatsApp Session Engine Contracts

Notification types, payloads, envelope and operation results.
"""

from whatsapp_sessions.contracts.envelope import NotificationEnvelope
from whatsapp_sessions.contracts.event_types import NotificationType
from whatsapp_sessions.contracts.payloads import (
    ConnectionStatusPayload,
    MessageStatusPayload,
    NewMessagePayload,
)
from whatsapp_sessions.contracts.results import SendResult, SessionResult, SyncResult

__all__ = [
    "NotificationEnvelope",
    "NotificationType",
    "ConnectionStatusPayload",
    "MessageStatusPayload",
    "NewMessagePayload",
    "SendResult",
    "SessionResult",
    "SyncResult",
]
