"""
Connection Handle

In-memory wrapper around one live provider client. The handle is the sole
owner of its client: once it is closed the client is destroyed.
"""

import logging

from whatsapp_sessions.providers.base import ClientEvent, SessionClient
from whatsapp_sessions.sessions.state import (
    TERMINAL_STATES,
    InvalidTransition,
    SessionState,
    transition,
)

logger = logging.getLogger(__name__)


class ConnectionHandle:
    """One account's live connection, its state and last pairing code."""

    def __init__(self, account_id: str, client: SessionClient):
        self.account_id = account_id
        self.client = client
        self.state = SessionState.NEW
        self.pairing_code: str | None = None  # PNG data URL

    @property
    def is_ready(self) -> bool:
        return self.state == SessionState.READY

    def apply(self, event: ClientEvent) -> bool:
        """
        Move the state machine on a provider event.

        Returns:
            False if the event was out of order (state is kept)
        """
        try:
            self.state = transition(self.state, event)
        except InvalidTransition as e:
            logger.warning(
                f"Ignoring provider event: {e}",
                extra={"account_id": self.account_id, "state": self.state.value},
            )
            return False
        return True

    async def close(self) -> None:
        """Destroy the client. Errors are logged, never raised."""
        if self.state not in TERMINAL_STATES:
            self.state = SessionState.CLOSED
        self.pairing_code = None
        try:
            await self.client.destroy()
        except Exception as e:
            logger.warning(
                f"Error destroying client: {e}",
                extra={"account_id": self.account_id},
            )

    def __repr__(self) -> str:
        return f"<ConnectionHandle {self.account_id} {self.state.value}>"
