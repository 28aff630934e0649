"""
Outbound Message Handler

Sends text messages through an account's live session:
1. Validates the message type (text only)
2. Finds a ready session, recovering once if the account should be connected
3. Normalizes the destination chat id
4. Sends via the provider client

Sending is transport only. The provider echoes every sent message as a
message_create event, and that echo is what gets persisted.
"""

import asyncio
import logging

from sqlalchemy.orm import Session, sessionmaker

from whatsapp_sessions.config import SessionSettings
from whatsapp_sessions.contracts.results import SendResult
from whatsapp_sessions.persistence.models import AccountStatus, MessageType
from whatsapp_sessions.persistence.repo import WhatsAppRepository
from whatsapp_sessions.routing.identifiers import normalize_chat_id
from whatsapp_sessions.sessions.handle import ConnectionHandle
from whatsapp_sessions.sessions.lifecycle import SessionLifecycleController
from whatsapp_sessions.sessions.registry import SessionRegistry

logger = logging.getLogger(__name__)

SESSION_NOT_READY = "WhatsApp session not ready"
RECREATE_FAILED = "Failed to recreate WhatsApp session"
MEDIA_NOT_IMPLEMENTED = "Media messages not implemented yet"


class OutboundHandler:
    """
    Handles outbound WhatsApp messages.

    Responsibilities:
    - Send messages via the account's live session
    - One bounded recovery when the session was lost but the account is
      still marked CONNECTED
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        registry: SessionRegistry,
        lifecycle: SessionLifecycleController,
        settings: SessionSettings,
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.lifecycle = lifecycle
        self.settings = settings

    async def send(
        self,
        account_id: str,
        to: str,
        content: str,
        message_type: str = MessageType.TEXT.value,
    ) -> SendResult:
        """
        Send a message.

        Args:
            account_id: Sending account
            to: Phone number or chat id
            content: Message text
            message_type: Only TEXT is supported

        Returns:
            SendResult with the provider message id
        """
        account_id = str(account_id)
        message_type = str(getattr(message_type, "value", message_type)).upper()

        if message_type != MessageType.TEXT.value:
            return SendResult(success=False, error=MEDIA_NOT_IMPLEMENTED)

        handle = self.registry.get_handle(account_id)
        if handle is None or not handle.is_ready:
            logger.info(
                f"Session not ready, exists={handle is not None}",
                extra={"account_id": account_id},
            )

            with self.session_factory() as db:
                account = WhatsAppRepository(db).get_account(account_id)
                should_be_connected = account is not None and account.status == AccountStatus.CONNECTED.value
                owner_user_id = str(account.user_id) if account is not None else None

            if should_be_connected:
                recovered, handle = await self._recover(account_id, owner_user_id, handle)
                if not recovered:
                    return SendResult(success=False, error=RECREATE_FAILED)

            if handle is None or not handle.is_ready:
                logger.info("Session still not ready", extra={"account_id": account_id})
                return SendResult(success=False, error=SESSION_NOT_READY)

        chat_id = normalize_chat_id(to)
        try:
            sent = await handle.client.send_message(chat_id, content)
        except Exception as e:
            logger.error(
                f"Error sending message: {e}",
                exc_info=True,
                extra={"account_id": account_id, "to": chat_id},
            )
            return SendResult(success=False, error=str(e) or "Failed to send message")

        logger.info(
            "Message sent",
            extra={"account_id": account_id, "to": chat_id, "message_id": sent.id},
        )
        return SendResult(success=True, message_id=sent.id)

    async def _recover(
        self,
        account_id: str,
        owner_user_id: str,
        stale: ConnectionHandle | None,
    ) -> tuple[bool, ConnectionHandle | None]:
        """
        Tear down a stale handle, start a new session and wait for it.

        Returns:
            Tuple of (session started, current handle)
        """
        if self.registry.get_pending(account_id) is not None:
            # Another caller (e.g. restore_all) is creating it; join that attempt
            logger.info("Session creation in progress, waiting for it", extra={"account_id": account_id})
        else:
            logger.info("Account marked CONNECTED, recreating session", extra={"account_id": account_id})
            if stale is not None:
                self.registry.remove(account_id, stale)
                await stale.close()

        result = await self.lifecycle.start_session(account_id, owner_user_id)
        if not result.success:
            logger.warning(f"Failed to recreate session: {result.error}", extra={"account_id": account_id})
            return False, None

        handle = self.registry.get_handle(account_id)
        attempts = 0
        while handle is not None and not handle.is_ready and attempts < self.settings.ready_poll_attempts:
            await asyncio.sleep(self.settings.ready_poll_interval)
            attempts += 1
            handle = self.registry.get_handle(account_id)
            logger.debug(f"Wait attempt {attempts}, ready={handle is not None and handle.is_ready}")

        return True, handle
