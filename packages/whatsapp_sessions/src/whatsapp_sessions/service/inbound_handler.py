"""
Inbound Message Handler

Persists messages delivered by a live session client:
1. Filters self echoes and status broadcasts
2. Resolves or creates the conversation (best-effort contact enrichment)
3. Persists the message, keyed by provider message id
4. Bumps the conversation's unread counter and last activity
5. Notifies the account owner

Also applies delivery status updates (message_ack) to stored messages.

Provider lookups are awaited before a unit of work starts; database work
runs in short synchronous sessions that never span an await.
"""

import logging
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from whatsapp_sessions.persistence.models import (
    MessageDirection,
    MessageStatus,
    MessageType,
    WhatsAppMessage,
)
from whatsapp_sessions.persistence.repo import WhatsAppRepository, as_uuid
from whatsapp_sessions.providers.base import MessageAck, ProviderMessage
from whatsapp_sessions.routing.identifiers import is_broadcast_id, is_group_id
from whatsapp_sessions.sessions.enrichment import ContactInfo, fallback_name, resolve_contact_info
from whatsapp_sessions.sessions.registry import SessionRegistry
from whatsapp_sessions.streams.producer import WhatsAppNotifier

logger = logging.getLogger(__name__)

# A status update never moves a message back in this order
STATUS_RANK = {
    MessageStatus.PENDING.value: 0,
    MessageStatus.SENT.value: 1,
    MessageStatus.RECEIVED.value: 1,
    MessageStatus.DELIVERED.value: 2,
    MessageStatus.READ.value: 3,
    MessageStatus.FAILED.value: 4,
}


def message_content(message: ProviderMessage) -> str:
    """Text body, or a [type] placeholder for media without caption."""
    if message.body:
        return message.body
    if message.message_type != MessageType.TEXT:
        return f"[{message.message_type.value.lower()}]"
    return ""


def store_message(
    repo: WhatsAppRepository,
    account_id: str,
    conversation_id: Any,
    message: ProviderMessage,
    direction: MessageDirection,
    status: MessageStatus,
) -> tuple[WhatsAppMessage, bool]:
    """
    Insert a provider message once.

    Returns:
        Tuple of (row, created); created is False when the provider id was
        already stored
    """
    return repo.create_or_fetch(
        WhatsAppMessage,
        {"account_id": as_uuid(account_id), "whatsapp_id": message.id},
        conversation_id=conversation_id,
        direction=direction.value,
        message_type=message.message_type.value,
        content=message_content(message),
        media_url=message.media_url,
        status=status.value,
        from_number=message.author or message.from_id,
        to_number=message.to_id,
        timestamp=message.timestamp,
    )


class InboundHandler:
    """
    Handles messages and delivery updates from live sessions.

    Responsibilities:
    - Persist messages exactly once per provider id
    - Keep conversations unique per (account, contact)
    - Maintain unread counters and last activity
    - Notify the account owner
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        registry: SessionRegistry,
        notifier: WhatsAppNotifier | None = None,
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.notifier = notifier

    async def record_inbound(
        self,
        account_id: str,
        message: ProviderMessage,
        outbound: bool = False,
    ) -> dict[str, Any]:
        """
        Persist one message delivered by the provider.

        Args:
            account_id: Account the session belongs to
            message: Provider message
            outbound: True for echoes of messages this account sent

        Returns:
            Processing result dict
        """
        result: dict[str, Any] = {"message_id": message.id, "status": "processed"}

        if message.from_me and not outbound:
            return {**result, "status": "skipped", "reason": "self_echo"}

        remote_id = message.remote_id
        if is_broadcast_id(remote_id) or is_broadcast_id(message.from_id):
            return {**result, "status": "skipped", "reason": "broadcast"}

        is_group = is_group_id(remote_id)

        with self.session_factory() as db:
            repo = WhatsAppRepository(db)
            account = repo.get_account(account_id)
            if account is None:
                logger.warning(
                    f"Message for unknown account {account_id}",
                    extra={"account_id": str(account_id), "message_id": message.id},
                )
                return {**result, "status": "skipped", "reason": "account_not_found"}
            owner_user_id = account.user_id

            if repo.is_message_processed(account_id, message.id):
                logger.debug(f"Message {message.id} already processed, skipping")
                return {**result, "status": "skipped", "reason": "already_processed"}

            needs_contact = repo.get_conversation(account_id, remote_id) is None

        contact = ContactInfo(name=fallback_name(remote_id, is_group))
        if needs_contact:
            handle = self.registry.get_handle(str(account_id))
            if handle is not None:
                contact = await resolve_contact_info(handle.client, remote_id, is_group)

        direction = MessageDirection.OUTBOUND if outbound else MessageDirection.INBOUND
        status = MessageStatus.SENT if outbound else MessageStatus.RECEIVED

        with self.session_factory() as db:
            repo = WhatsAppRepository(db)
            conversation, created = repo.get_or_create_conversation(
                account_id=account_id,
                contact_number=remote_id,
                contact_name=contact.name,
                profile_picture=contact.profile_picture,
                is_group=is_group,
                last_message_at=message.timestamp,
            )
            conversation_id = conversation.id

            _, stored = store_message(repo, account_id, conversation_id, message, direction, status)
            if not stored:
                return {**result, "status": "skipped", "reason": "already_processed"}

            repo.record_conversation_activity(
                conversation_id,
                message.timestamp,
                increment_unread=not outbound,
            )
            db.commit()

        logger.info(
            f"Stored {direction.value.lower()} message",
            extra={
                "account_id": str(account_id),
                "conversation_id": str(conversation_id),
                "message_id": message.id,
                "new_conversation": created,
            },
        )

        if not outbound and self.notifier is not None:
            self.notifier.notify_new_message(
                str(owner_user_id),
                str(account_id),
                str(conversation_id),
                message_content(message),
                message.author or message.from_id,
            )

        result.update(
            {
                "conversation_id": str(conversation_id),
                "direction": direction.value,
                "new_conversation": created,
            }
        )
        return result

    def record_status(self, account_id: str, ack: MessageAck) -> dict[str, Any]:
        """
        Apply a delivery status update to a stored message.

        DELIVERED and READ on outbound messages notify the owner.
        """
        with self.session_factory() as db:
            repo = WhatsAppRepository(db)
            message = repo.get_message_by_whatsapp_id(account_id, ack.message_id)
            if message is None:
                logger.debug(f"Status update for unknown message {ack.message_id}")
                return {"status": "skipped", "reason": "message_not_found"}

            if STATUS_RANK.get(ack.status.value, 0) <= STATUS_RANK.get(message.status, 0):
                return {"status": "skipped", "reason": "stale_status"}

            repo.update_message_status(message, ack.status)
            direction = message.direction
            to_number = message.to_number
            account = repo.get_account(account_id)
            db.commit()

        logger.info(
            f"Message {ack.message_id} status -> {ack.status.value}",
            extra={"account_id": str(account_id), "message_id": ack.message_id},
        )

        if (
            direction == MessageDirection.OUTBOUND.value
            and account is not None
            and self.notifier is not None
        ):
            self.notifier.notify_message_status(
                str(account.user_id),
                ack.message_id,
                ack.status.value,
                to_number or ack.chat_id,
                account_id=str(account_id),
            )

        return {"status": "processed", "message_status": ack.status.value}
