"""
WhatsApp Session Client Base

Abstract interface for a live, event-driven WhatsApp Web connection.
Implementations: Evolution API, Stub (for development and tests).

A client belongs to exactly one account. It is built with a per-account
local credential path so a paired device survives process restarts, and it
reports lifecycle and message activity through events (see ClientEvent).
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from whatsapp_sessions.persistence.models import MessageStatus, MessageType

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Error from WhatsApp provider."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.code = code
        self.details = details or {}
        self.retryable = retryable


class ClientEvent(str, Enum):
    """Events emitted by a session client."""

    QR = "qr"  # (raw_pairing_payload: str)
    AUTHENTICATED = "authenticated"  # ()
    READY = "ready"  # ()
    AUTH_FAILURE = "auth_failure"  # (reason: str)
    DISCONNECTED = "disconnected"  # (reason: str)
    MESSAGE = "message"  # (message: ProviderMessage) received from others
    MESSAGE_CREATE = "message_create"  # (message: ProviderMessage) any new message, ours included
    MESSAGE_ACK = "message_ack"  # (ack: MessageAck)

    def __str__(self) -> str:
        return self.value


def from_epoch(seconds: int | float | None) -> datetime:
    """Provider epoch seconds -> naive UTC datetime (now if missing)."""
    if not seconds:
        return datetime.utcnow()
    return datetime.fromtimestamp(int(seconds), timezone.utc).replace(tzinfo=None)


@dataclass
class ClientInfo:
    """Identity of the linked device."""

    wid: str  # Serialized id, e.g. 5511999999999@c.us
    user: str  # Phone number part of wid
    pushname: str | None = None


@dataclass
class Chat:
    """A chat as listed by the provider."""

    id: str
    name: str | None = None
    is_group: bool = False
    unread_count: int = 0
    timestamp: datetime | None = None  # Last activity


@dataclass
class Contact:
    """A contact card."""

    id: str
    name: str | None = None  # Name saved in the phone's address book
    pushname: str | None = None  # Name the contact chose
    number: str | None = None


@dataclass
class ProviderMessage:
    """
    A message as delivered by the provider.

    Provider-agnostic representation used by both live events and backfill.
    """

    id: str
    from_id: str
    to_id: str
    body: str | None
    message_type: MessageType
    timestamp: datetime
    from_me: bool = False
    author: str | None = None  # Group participant who wrote it
    media_url: str | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict)

    @property
    def remote_id(self) -> str:
        """Chat id of the other party."""
        return self.to_id if self.from_me else self.from_id


@dataclass
class SentMessage:
    """Provider acknowledgement of a sent message."""

    id: str
    to: str
    timestamp: datetime


@dataclass
class MessageAck:
    """Delivery status change for a message."""

    message_id: str
    chat_id: str
    status: MessageStatus


EventHandler = Callable[..., Awaitable[None]]


class SessionClient(ABC):
    """
    Abstract live connection to WhatsApp for one account.

    Implementations must:
    - emit QR while unpaired, then AUTHENTICATED and READY once linked
    - emit AUTH_FAILURE / DISCONNECTED when the link is lost
    - emit MESSAGE for incoming messages and MESSAGE_CREATE for every new
      message including the ones sent from this device
    """

    def __init__(self, account_id: str, credentials_path: str):
        self.account_id = account_id
        self.credentials_path = credentials_path
        self._handlers: dict[ClientEvent, list[EventHandler]] = {}

    def on(self, event: ClientEvent, handler: EventHandler) -> None:
        """Register an async handler for an event."""
        self._handlers.setdefault(event, []).append(handler)

    async def emit(self, event: ClientEvent, *args: Any) -> None:
        """
        Run the handlers of an event in registration order.

        A failing handler is logged and does not stop the others.
        """
        for handler in list(self._handlers.get(event, [])):
            try:
                await handler(*args)
            except Exception as e:
                logger.error(
                    f"Handler for {event} failed: {e}",
                    exc_info=True,
                    extra={"account_id": self.account_id, "event": event.value},
                )

    @abstractmethod
    async def initialize(self) -> None:
        """Open the connection; pairing or restoring credentials follows via events."""
        ...

    @abstractmethod
    async def get_info(self) -> ClientInfo:
        """Identity of the linked device (valid once READY)."""
        ...

    @abstractmethod
    async def get_chats(self) -> list[Chat]:
        """All chats of the account."""
        ...

    @abstractmethod
    async def get_chat(self, chat_id: str) -> Chat:
        """One chat (group name lookups)."""
        ...

    @abstractmethod
    async def get_contact(self, chat_id: str) -> Contact:
        """Contact card for an individual chat id."""
        ...

    @abstractmethod
    async def get_profile_pic_url(self, chat_id: str) -> str | None:
        """Avatar URL for a contact or group."""
        ...

    @abstractmethod
    async def fetch_messages(self, chat_id: str, limit: int = 50) -> list[ProviderMessage]:
        """Most recent messages of a chat, newest first."""
        ...

    @abstractmethod
    async def send_message(self, to: str, content: str) -> SentMessage:
        """
        Send a text message.

        Args:
            to: Normalized chat id
            content: Message text

        Raises:
            ProviderError: If the provider rejects the message
        """
        ...

    @abstractmethod
    async def destroy(self) -> None:
        """Release the connection. Local credentials are kept."""
        ...


SessionClientFactory = Callable[[str, str], SessionClient]
