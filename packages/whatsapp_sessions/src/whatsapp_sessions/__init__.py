"""
WhatsApp Session Engine

Owns one live WhatsApp Web connection per account: QR pairing, reconnection,
message persistence and conversation synchronization.

Architecture:
- sessions: connection handles, registry, state machine, lifecycle controller
- providers: live client implementations (Evolution API, Stub)
- service: inbound/outbound message handlers and the conversation synchronizer
- persistence: SQLAlchemy models and repository
- streams: owner notifications published to Redis Streams
"""

from whatsapp_sessions.config import SessionSettings
from whatsapp_sessions.contracts.results import SendResult, SessionResult, SyncResult
from whatsapp_sessions.manager import WhatsAppManager

__all__ = [
    "SessionSettings",
    "SendResult",
    "SessionResult",
    "SyncResult",
    "WhatsAppManager",
]
