"""
WhatsApp Repository

Repository pattern for WhatsApp session engine database operations.
Provides CRUD operations, the create-or-fetch primitive used for every
unique-keyed insert, and atomic counter updates.
"""

import logging
from datetime import datetime
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from whatsapp_sessions.persistence.models import (
    AccountStatus,
    ConversationStatus,
    MessageStatus,
    WhatsAppAccount,
    WhatsAppConversation,
    WhatsAppMessage,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")


def as_uuid(value: UUID | str) -> UUID:
    """Account and conversation ids arrive as strings from the API and CLI."""
    return value if isinstance(value, UUID) else UUID(str(value))


class WhatsAppRepository:
    """Repository for WhatsApp session engine database operations."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # Generic
    # =========================================================================

    def create_or_fetch(
        self,
        model: type[ModelT],
        key: dict[str, Any],
        **values: Any,
    ) -> tuple[ModelT, bool]:
        """
        Insert a row, or return the existing one if the unique key is taken.

        The insert is committed immediately so a concurrent writer's row is
        detected through the unique constraint. Any other pending changes in
        the session are committed or discarded with it, so call this first in
        a unit of work.

        Args:
            model: Mapped class to insert
            key: Columns forming the unique key
            **values: Remaining column values for a new row

        Returns:
            Tuple of (row, created)
        """
        instance = model(**key, **values)
        self.db.add(instance)
        try:
            self.db.commit()
            return instance, True
        except IntegrityError:
            self.db.rollback()
            existing = self.db.execute(select(model).filter_by(**key)).scalars().first()
            if existing is None:
                # Violation was not on `key`
                raise
            logger.debug(
                "Unique conflict, using existing row",
                extra={"model": model.__name__, "key": {k: str(v) for k, v in key.items()}},
            )
            return existing, False

    # =========================================================================
    # Accounts
    # =========================================================================

    def get_account(self, account_id: UUID | str) -> WhatsAppAccount | None:
        """Get account by ID."""
        return self.db.get(WhatsAppAccount, as_uuid(account_id))

    def list_accounts(self, status: AccountStatus | None = None) -> list[WhatsAppAccount]:
        """List accounts, optionally filtered by status."""
        query = select(WhatsAppAccount)
        if status:
            query = query.where(WhatsAppAccount.status == status.value)
        return list(self.db.execute(query.order_by(WhatsAppAccount.created_at)).scalars())

    def update_account(self, account_id: UUID | str, **fields: Any) -> bool:
        """
        Update account columns.

        Returns:
            True if a row was updated
        """
        if isinstance(fields.get("status"), AccountStatus):
            fields["status"] = fields["status"].value
        fields["updated_at"] = datetime.utcnow()
        result = self.db.execute(
            update(WhatsAppAccount).where(WhatsAppAccount.id == as_uuid(account_id)).values(**fields)
        )
        return result.rowcount > 0

    # =========================================================================
    # Conversations
    # =========================================================================

    def get_conversation(self, account_id: UUID | str, contact_number: str) -> WhatsAppConversation | None:
        """Get conversation by account and contact number."""
        return (
            self.db.execute(
                select(WhatsAppConversation).where(
                    WhatsAppConversation.account_id == as_uuid(account_id),
                    WhatsAppConversation.contact_number == contact_number,
                )
            )
            .scalars()
            .first()
        )

    def get_conversation_by_id(self, conversation_id: UUID | str) -> WhatsAppConversation | None:
        """Get conversation by ID."""
        return self.db.get(WhatsAppConversation, as_uuid(conversation_id))

    def get_or_create_conversation(
        self,
        account_id: UUID | str,
        contact_number: str,
        contact_name: str | None = None,
        profile_picture: str | None = None,
        is_group: bool = False,
        last_message_at: datetime | None = None,
        unread_count: int = 0,
    ) -> tuple[WhatsAppConversation, bool]:
        """
        Get existing conversation or create a new one.

        Returns:
            Tuple of (conversation, created) where created is True if new.
        """
        return self.create_or_fetch(
            WhatsAppConversation,
            {"account_id": as_uuid(account_id), "contact_number": contact_number},
            contact_name=contact_name,
            profile_picture=profile_picture,
            is_group=is_group,
            last_message_at=last_message_at,
            unread_count=unread_count,
            status=ConversationStatus.ACTIVE.value,
        )

    def record_conversation_activity(
        self,
        conversation_id: UUID | str,
        timestamp: datetime,
        increment_unread: bool = True,
    ) -> None:
        """
        Bump last_message_at (never backwards) and the unread counter.

        Both are computed in SQL so concurrent writers cannot lose updates.
        """
        values: dict[str, Any] = {
            "last_message_at": case(
                (WhatsAppConversation.last_message_at.is_(None), timestamp),
                (WhatsAppConversation.last_message_at < timestamp, timestamp),
                else_=WhatsAppConversation.last_message_at,
            ),
            "updated_at": datetime.utcnow(),
        }
        if increment_unread:
            values["unread_count"] = WhatsAppConversation.unread_count + 1

        self.db.execute(
            update(WhatsAppConversation)
            .where(WhatsAppConversation.id == as_uuid(conversation_id))
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    def update_conversation_metadata(
        self,
        conversation: WhatsAppConversation,
        contact_name: str | None,
        profile_picture: str | None,
        unread_count: int,
        is_group: bool,
    ) -> None:
        """Refresh the fields a sync pass owns. last_message_at is left alone."""
        conversation.contact_name = contact_name
        conversation.profile_picture = profile_picture
        conversation.unread_count = unread_count
        conversation.is_group = is_group
        conversation.updated_at = datetime.utcnow()

    def mark_conversation_read(self, conversation_id: UUID | str) -> bool:
        """
        Reset the unread counter.

        Returns:
            True if the conversation exists
        """
        result = self.db.execute(
            update(WhatsAppConversation)
            .where(WhatsAppConversation.id == as_uuid(conversation_id))
            .values(unread_count=0, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    def list_conversations(
        self,
        account_id: UUID | str,
        status: ConversationStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[WhatsAppConversation]:
        """List conversations for an account, most recent first."""
        query = select(WhatsAppConversation).where(WhatsAppConversation.account_id == as_uuid(account_id))

        if status:
            query = query.where(WhatsAppConversation.status == status.value)

        query = (
            query.order_by(WhatsAppConversation.last_message_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(self.db.execute(query).scalars())

    def count_conversations(self, account_id: UUID | str) -> int:
        """Count conversations for an account."""
        return len(
            self.db.execute(
                select(WhatsAppConversation.id).where(WhatsAppConversation.account_id == as_uuid(account_id))
            ).all()
        )

    # =========================================================================
    # Messages
    # =========================================================================

    def get_message_by_whatsapp_id(
        self, account_id: UUID | str, whatsapp_id: str
    ) -> WhatsAppMessage | None:
        """Get message by provider message ID (for idempotency)."""
        return (
            self.db.execute(
                select(WhatsAppMessage).where(
                    WhatsAppMessage.account_id == as_uuid(account_id),
                    WhatsAppMessage.whatsapp_id == whatsapp_id,
                )
            )
            .scalars()
            .first()
        )

    def is_message_processed(self, account_id: UUID | str, whatsapp_id: str) -> bool:
        """Check if a message has already been stored (idempotency)."""
        return self.get_message_by_whatsapp_id(account_id, whatsapp_id) is not None

    def update_message_status(self, message: WhatsAppMessage, status: MessageStatus) -> None:
        """Update message delivery status."""
        message.status = status.value
        message.updated_at = datetime.utcnow()

    def list_messages(
        self,
        conversation_id: UUID | str,
        limit: int = 50,
    ) -> list[WhatsAppMessage]:
        """The most recent messages of a conversation, in chronological order."""
        newest_first = self.db.execute(
            select(WhatsAppMessage)
            .where(WhatsAppMessage.conversation_id == as_uuid(conversation_id))
            .order_by(WhatsAppMessage.timestamp.desc())
            .limit(limit)
        ).scalars()
        return list(reversed(list(newest_first)))
