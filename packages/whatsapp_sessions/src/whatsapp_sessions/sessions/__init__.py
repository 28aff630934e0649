"""
WhatsApp Sessions

Connection handles, the session registry and the connection state machine.
The lifecycle controller lives in whatsapp_sessions.sessions.lifecycle.
"""

from whatsapp_sessions.sessions.handle import ConnectionHandle
from whatsapp_sessions.sessions.registry import SessionRegistry
from whatsapp_sessions.sessions.state import InvalidTransition, SessionState, transition

__all__ = [
    "ConnectionHandle",
    "InvalidTransition",
    "SessionRegistry",
    "SessionState",
    "transition",
]
