"""
Conversation Synchronizer

Reconciles an account's remote chat list into conversation rows:
- missing conversations are created (and counted)
- existing ones get their name, picture, unread count and group flag refreshed
- one failing chat never aborts the pass

Optionally backfills recent messages per chat. A sync requires a ready
session and never creates or recovers one.
"""

import asyncio
import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from whatsapp_sessions.config import SessionSettings
from whatsapp_sessions.contracts.results import SyncResult
from whatsapp_sessions.persistence.models import MessageDirection, MessageStatus
from whatsapp_sessions.persistence.repo import WhatsAppRepository
from whatsapp_sessions.providers.base import Chat, SessionClient
from whatsapp_sessions.routing.identifiers import is_broadcast_id, is_group_id
from whatsapp_sessions.service.inbound_handler import store_message
from whatsapp_sessions.sessions.enrichment import fallback_name, resolve_contact_info
from whatsapp_sessions.sessions.registry import SessionRegistry

logger = logging.getLogger(__name__)

SESSION_NOT_READY = "WhatsApp session not ready. Please reconnect your account."


class ConversationSynchronizer:
    """Bulk chat list reconciliation for ready sessions."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        registry: SessionRegistry,
        settings: SessionSettings,
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.settings = settings
        self._in_flight: dict[str, asyncio.Future[SyncResult]] = {}

    async def sync_all(self, account_id: str) -> SyncResult:
        """
        Sync every chat of an account.

        Concurrent calls for the same account share one pass.

        Args:
            account_id: Account to sync

        Returns:
            SyncResult with the number of newly created conversations
        """
        account_id = str(account_id)

        running = self._in_flight.get(account_id)
        if running is not None:
            logger.info(f"Sync already running for account {account_id}, waiting")
            return await asyncio.shield(running)

        handle = self.registry.get_handle(account_id)
        if handle is None or not handle.is_ready:
            logger.info(f"Session not ready for account {account_id}, sync aborted")
            return SyncResult(success=False, total_synced=0, error=SESSION_NOT_READY)

        task = asyncio.ensure_future(self._sync_all(account_id, handle.client))
        self._in_flight[account_id] = task
        try:
            return await asyncio.shield(task)
        finally:
            if self._in_flight.get(account_id) is task:
                del self._in_flight[account_id]

    async def _sync_all(self, account_id: str, client: SessionClient) -> SyncResult:
        try:
            chats = await client.get_chats()
        except Exception as e:
            logger.error(f"Error fetching chats: {e}", exc_info=True, extra={"account_id": account_id})
            return SyncResult(success=False, total_synced=0, error=str(e))

        logger.info(f"Found {len(chats)} chats to sync", extra={"account_id": account_id})

        synced = 0
        for chat in chats:
            try:
                if await self._sync_chat(account_id, client, chat):
                    synced += 1
            except Exception as e:
                logger.error(
                    f"Error syncing chat {chat.id}: {e}",
                    exc_info=True,
                    extra={"account_id": account_id, "chat_id": chat.id},
                )

        logger.info(
            f"Completed sync, {synced} new conversations",
            extra={"account_id": account_id, "total_synced": synced},
        )
        return SyncResult(success=True, total_synced=synced)

    async def _sync_chat(self, account_id: str, client: SessionClient, chat: Chat) -> bool:
        """Reconcile one chat. Returns True if a conversation was created."""
        if is_broadcast_id(chat.id):
            return False

        is_group = chat.is_group or is_group_id(chat.id)
        contact = await resolve_contact_info(client, chat.id, is_group, known_name=chat.name)

        with self.session_factory() as db:
            exists = WhatsAppRepository(db).get_conversation(account_id, chat.id) is not None

        last_message_at = chat.timestamp
        if not exists and last_message_at is None:
            last_message_at = await self._newest_message_time(client, chat.id)

        with self.session_factory() as db:
            repo = WhatsAppRepository(db)
            created = False
            if exists:
                conversation = repo.get_conversation(account_id, chat.id)
                unread_count = chat.unread_count
            else:
                conversation, created = repo.get_or_create_conversation(
                    account_id=account_id,
                    contact_number=chat.id,
                    contact_name=contact.name,
                    profile_picture=contact.profile_picture,
                    is_group=is_group,
                    last_message_at=last_message_at,
                    unread_count=chat.unread_count,
                )
                # Lost a creation race to live ingress; keep its increments
                unread_count = max(conversation.unread_count or 0, chat.unread_count)

            if not created:
                repo.update_conversation_metadata(
                    conversation,
                    contact_name=contact.name,
                    profile_picture=contact.profile_picture,
                    unread_count=unread_count,
                    is_group=is_group,
                )
                db.commit()

        if created:
            logger.debug(f"Synced {'group' if is_group else 'contact'}: {contact.name}")

        if self.settings.sync_message_backfill > 0:
            await self.sync_chat_messages(account_id, chat.id, limit=self.settings.sync_message_backfill)

        return created

    async def _newest_message_time(self, client: SessionClient, chat_id: str) -> datetime:
        try:
            messages = await client.fetch_messages(chat_id, limit=1)
        except Exception as e:
            logger.debug(f"Could not fetch last message for {chat_id}: {e}")
            messages = []
        return messages[0].timestamp if messages else datetime.utcnow()

    async def sync_chat_messages(self, account_id: str, chat_id: str, limit: int = 50) -> int:
        """
        Import the most recent messages of one chat, oldest first.

        Messages already stored are skipped, so this is safe to repeat and to
        overlap with live ingress.

        Returns:
            Number of new message rows
        """
        account_id = str(account_id)
        handle = self.registry.get_handle(account_id)
        if handle is None or not handle.is_ready:
            logger.info(f"Session not ready for account {account_id}, message sync skipped")
            return 0

        try:
            messages = await handle.client.fetch_messages(chat_id, limit=limit)
        except Exception as e:
            logger.error(f"Error fetching messages for {chat_id}: {e}", extra={"account_id": account_id})
            return 0

        synced = 0
        with self.session_factory() as db:
            repo = WhatsAppRepository(db)
            conversation, _ = repo.get_or_create_conversation(
                account_id=account_id,
                contact_number=chat_id,
                contact_name=fallback_name(chat_id, is_group_id(chat_id)),
                is_group=is_group_id(chat_id),
            )
            conversation_id = conversation.id

            for message in reversed(messages):
                direction = MessageDirection.OUTBOUND if message.from_me else MessageDirection.INBOUND
                try:
                    _, created = store_message(
                        repo, account_id, conversation_id, message, direction, MessageStatus.RECEIVED
                    )
                except SQLAlchemyError as e:
                    db.rollback()
                    logger.error(f"Error syncing message {message.id}: {e}", extra={"account_id": account_id})
                    continue
                if created:
                    synced += 1
                    repo.record_conversation_activity(conversation_id, message.timestamp, increment_unread=False)
                    db.commit()

        return synced
