"""
WhatsApp Session Providers

Live connection implementations.
Supports Evolution API (production) and Stub (development).
"""

from whatsapp_sessions.providers.base import (
    Chat,
    ClientEvent,
    ClientInfo,
    Contact,
    MessageAck,
    ProviderError,
    ProviderMessage,
    SentMessage,
    SessionClient,
    SessionClientFactory,
)

__all__ = [
    "Chat",
    "ClientEvent",
    "ClientInfo",
    "Contact",
    "MessageAck",
    "ProviderError",
    "ProviderMessage",
    "SentMessage",
    "SessionClient",
    "SessionClientFactory",
]
