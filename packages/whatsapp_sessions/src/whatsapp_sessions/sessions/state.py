"""
Connection State Machine

Named states of a live connection and the single transition function that
moves between them on provider events.

    NEW --qr--> PAIRING --authenticated--> AUTHENTICATED --ready--> READY
     |             |                             |
     +-------------+----- auth_failure ----------+--> FAILED
    any non-terminal state --disconnected--> CLOSED
"""

from enum import Enum

from whatsapp_sessions.providers.base import ClientEvent


class SessionState(str, Enum):
    """State of a connection handle."""

    NEW = "new"
    PAIRING = "pairing"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"


TERMINAL_STATES = frozenset({SessionState.FAILED, SessionState.CLOSED})


class InvalidTransition(Exception):
    """Event not accepted in the current state."""

    def __init__(self, state: SessionState, event: ClientEvent):
        super().__init__(f"Event {event.value} not allowed in state {state.value}")
        self.state = state
        self.event = event


_TRANSITIONS: dict[ClientEvent, dict[SessionState, SessionState]] = {
    ClientEvent.QR: {
        SessionState.NEW: SessionState.PAIRING,
        SessionState.PAIRING: SessionState.PAIRING,
    },
    ClientEvent.AUTHENTICATED: {
        SessionState.NEW: SessionState.AUTHENTICATED,
        SessionState.PAIRING: SessionState.AUTHENTICATED,
        SessionState.AUTHENTICATED: SessionState.AUTHENTICATED,
    },
    # Some providers skip the authenticated event on restore
    ClientEvent.READY: {
        SessionState.NEW: SessionState.READY,
        SessionState.PAIRING: SessionState.READY,
        SessionState.AUTHENTICATED: SessionState.READY,
        SessionState.READY: SessionState.READY,
    },
    ClientEvent.AUTH_FAILURE: {
        SessionState.NEW: SessionState.FAILED,
        SessionState.PAIRING: SessionState.FAILED,
        SessionState.AUTHENTICATED: SessionState.FAILED,
    },
    ClientEvent.DISCONNECTED: {
        SessionState.NEW: SessionState.CLOSED,
        SessionState.PAIRING: SessionState.CLOSED,
        SessionState.AUTHENTICATED: SessionState.CLOSED,
        SessionState.READY: SessionState.CLOSED,
    },
}


def transition(state: SessionState, event: ClientEvent) -> SessionState:
    """
    Next state for a lifecycle event.

    Message events do not change the state and are accepted in any
    non-terminal state.

    Raises:
        InvalidTransition: If the event is not allowed in this state
    """
    table = _TRANSITIONS.get(event)
    if table is None:
        if state in TERMINAL_STATES:
            raise InvalidTransition(state, event)
        return state

    next_state = table.get(state)
    if next_state is None:
        raise InvalidTransition(state, event)
    return next_state
