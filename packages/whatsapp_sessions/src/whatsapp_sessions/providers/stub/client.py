"""
Stub WhatsApp Session Client

Development client that keeps everything in memory and never talks to
WhatsApp. Useful for local development and testing: the simulate_* methods
emit the same events a real connection would.
"""

import logging
import os
from datetime import datetime
from typing import Any
from uuid import uuid4

from whatsapp_sessions.persistence.models import MessageStatus, MessageType
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
)

logger = logging.getLogger(__name__)


class StubSessionClient(SessionClient):
    """
    Stub client for development and testing.

    - initialize() emits a QR payload, or goes straight to READY when the
      credential path already exists (a device was paired before)
    - Generates fake message IDs and echoes sent messages as MESSAGE_CREATE
    - `failures` maps a method name to an exception it should raise
    """

    def __init__(
        self,
        account_id: str,
        credentials_path: str,
        info: ClientInfo | None = None,
        chats: list[Chat] | None = None,
        contacts: dict[str, Contact] | None = None,
        profile_pics: dict[str, str] | None = None,
        chat_messages: dict[str, list[ProviderMessage]] | None = None,
        qr_payload: str | None = "stub-qr-payload",
        echo_sent: bool = True,
        failures: dict[str, Exception] | None = None,
    ):
        super().__init__(account_id, credentials_path)
        self.info = info or ClientInfo(wid="5500000000000@c.us", user="5500000000000", pushname="Stub")
        self.chats = chats or []
        self.contacts = contacts or {}
        self.profile_pics = profile_pics or {}
        self.chat_messages = chat_messages or {}
        self.qr_payload = qr_payload
        self.echo_sent = echo_sent
        self.failures = failures or {}

        self.initialized = False
        self.destroyed = False
        self.sent_messages: list[dict[str, Any]] = []

    def _maybe_fail(self, method: str) -> None:
        error = self.failures.get(method)
        if error is not None:
            raise error

    # =========================================================================
    # SessionClient
    # =========================================================================

    async def initialize(self) -> None:
        """Emit QR, or restore silently from the credential path."""
        self._maybe_fail("initialize")
        self.initialized = True
        logger.info("[STUB] Initializing client", extra={"account_id": self.account_id})

        if os.path.exists(self.credentials_path):
            await self.emit(ClientEvent.AUTHENTICATED)
            await self.emit(ClientEvent.READY)
        elif self.qr_payload:
            await self.emit(ClientEvent.QR, self.qr_payload)

    async def get_info(self) -> ClientInfo:
        self._maybe_fail("get_info")
        return self.info

    async def get_chats(self) -> list[Chat]:
        self._maybe_fail("get_chats")
        return list(self.chats)

    async def get_chat(self, chat_id: str) -> Chat:
        self._maybe_fail("get_chat")
        for chat in self.chats:
            if chat.id == chat_id:
                return chat
        raise ProviderError(f"Chat not found: {chat_id}", code="NOT_FOUND")

    async def get_contact(self, chat_id: str) -> Contact:
        self._maybe_fail("get_contact")
        contact = self.contacts.get(chat_id)
        if contact is None:
            raise ProviderError(f"Contact not found: {chat_id}", code="NOT_FOUND")
        return contact

    async def get_profile_pic_url(self, chat_id: str) -> str | None:
        self._maybe_fail("get_profile_pic_url")
        return self.profile_pics.get(chat_id)

    async def fetch_messages(self, chat_id: str, limit: int = 50) -> list[ProviderMessage]:
        self._maybe_fail("fetch_messages")
        return list(self.chat_messages.get(chat_id, []))[:limit]

    async def send_message(self, to: str, content: str) -> SentMessage:
        """Log and record a text message, then echo it like WhatsApp Web does."""
        self._maybe_fail("send_message")
        message_id = f"stub_msg_{uuid4().hex[:16]}"
        now = datetime.utcnow()

        self.sent_messages.append(
            {"to": to, "text": content, "message_id": message_id, "timestamp": now.isoformat()}
        )
        logger.info(
            "[STUB] Sending text message",
            extra={
                "to": to,
                "text": content[:100] + "..." if len(content) > 100 else content,
                "message_id": message_id,
            },
        )

        if self.echo_sent:
            await self.emit(
                ClientEvent.MESSAGE_CREATE,
                ProviderMessage(
                    id=message_id,
                    from_id=self.info.wid,
                    to_id=to,
                    body=content,
                    message_type=MessageType.TEXT,
                    timestamp=now,
                    from_me=True,
                ),
            )

        return SentMessage(id=message_id, to=to, timestamp=now)

    async def destroy(self) -> None:
        self.destroyed = True
        logger.info("[STUB] Client destroyed", extra={"account_id": self.account_id})

    # =========================================================================
    # Simulation helpers
    # =========================================================================

    async def simulate_qr(self, payload: str) -> None:
        """Provider issued a (new) pairing code."""
        await self.emit(ClientEvent.QR, payload)

    async def simulate_ready(self, info: ClientInfo | None = None) -> None:
        """Phone scanned the code: authenticate, persist credentials, become ready."""
        if info is not None:
            self.info = info
        os.makedirs(os.path.dirname(self.credentials_path) or ".", exist_ok=True)
        with open(self.credentials_path, "w") as f:
            f.write(self.info.wid)
        await self.emit(ClientEvent.AUTHENTICATED)
        await self.emit(ClientEvent.READY)

    async def simulate_auth_failure(self, reason: str = "stub auth failure") -> None:
        await self.emit(ClientEvent.AUTH_FAILURE, reason)

    async def simulate_disconnect(self, reason: str = "NAVIGATION") -> None:
        await self.emit(ClientEvent.DISCONNECTED, reason)

    async def simulate_incoming(self, message: ProviderMessage) -> None:
        """Deliver a message the way WhatsApp Web does: MESSAGE then MESSAGE_CREATE."""
        await self.emit(ClientEvent.MESSAGE, message)
        await self.emit(ClientEvent.MESSAGE_CREATE, message)

    async def simulate_ack(self, message_id: str, chat_id: str, status: MessageStatus) -> None:
        await self.emit(ClientEvent.MESSAGE_ACK, MessageAck(message_id, chat_id, status))
