"""
Tests for inbound message persistence and delivery status updates.
"""

from datetime import datetime
from uuid import uuid4

import pytest
from sqlalchemy import select

from whatsapp_sessions.persistence.models import (
    MessageDirection,
    MessageStatus,
    MessageType,
    WhatsAppConversation,
    WhatsAppMessage,
)
from whatsapp_sessions.persistence.repo import WhatsAppRepository
from whatsapp_sessions.providers.base import Chat, Contact, MessageAck, ProviderError
from whatsapp_sessions.providers.stub import StubSessionClient

BRUNO = "5511888888888@c.us"
GROUP = "120363012345678901@g.us"


def stored_conversations(session_factory) -> list[WhatsAppConversation]:
    with session_factory() as db:
        return list(db.execute(select(WhatsAppConversation)).scalars())


def stored_messages(session_factory) -> list[WhatsAppMessage]:
    with session_factory() as db:
        return list(db.execute(select(WhatsAppMessage).order_by(WhatsAppMessage.timestamp)).scalars())


class InterleavingClient(StubSessionClient):
    """Delivers a live message while a sync pass is fetching history."""

    during_fetch = None

    async def fetch_messages(self, chat_id, limit=50):
        if self.during_fetch is not None:
            callback, self.during_fetch = self.during_fetch, None
            await callback()
        return await super().fetch_messages(chat_id, limit)


class TestRecordInbound:
    """Tests for InboundHandler.record_inbound."""

    @pytest.mark.asyncio
    async def test_message_from_new_contact(
        self, manager, connect, client_factory, account_id, make_message, session_factory, notifier, sample_user_id
    ):
        """Test the first message creates an enriched conversation."""
        client_factory.client_kwargs["contacts"] = {BRUNO: Contact(id=BRUNO, name="Bruno")}
        client_factory.client_kwargs["profile_pics"] = {BRUNO: "https://pps.whatsapp.net/bruno.jpg"}
        client = await connect(account_id)

        await client.simulate_incoming(make_message())

        [conversation] = stored_conversations(session_factory)
        assert conversation.contact_number == BRUNO
        assert conversation.contact_name == "Bruno"
        assert conversation.profile_picture == "https://pps.whatsapp.net/bruno.jpg"
        assert conversation.is_group is False
        assert conversation.unread_count == 1

        [message] = stored_messages(session_factory)
        assert message.whatsapp_id == "msg_1"
        assert message.direction == MessageDirection.INBOUND.value
        assert message.status == MessageStatus.RECEIVED.value
        assert message.content == "Oi, tudo bem?"
        assert message.conversation_id == conversation.id

        notifier.notify_new_message.assert_called_once_with(
            str(sample_user_id), account_id, str(conversation.id), "Oi, tudo bem?", BRUNO
        )

    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_stored_once(self, manager, connect, account_id, make_message, session_factory):
        """Test the same provider message id never increments twice."""
        await connect(account_id)
        message = make_message()

        first = await manager.inbound.record_inbound(account_id, message)
        second = await manager.inbound.record_inbound(account_id, message)

        assert first["status"] == "processed"
        assert first["new_conversation"] is True
        assert second["status"] == "skipped"
        assert second["reason"] == "already_processed"
        assert len(stored_messages(session_factory)) == 1
        assert stored_conversations(session_factory)[0].unread_count == 1

    @pytest.mark.asyncio
    async def test_follow_up_message_reuses_conversation(
        self, manager, connect, account_id, make_message, session_factory
    ):
        await connect(account_id)
        await manager.inbound.record_inbound(account_id, make_message("msg_1"))
        result = await manager.inbound.record_inbound(
            account_id, make_message("msg_2", timestamp=datetime(2024, 1, 1, 12, 5, 0))
        )

        assert result["new_conversation"] is False
        [conversation] = stored_conversations(session_factory)
        assert conversation.unread_count == 2
        assert conversation.last_message_at == datetime(2024, 1, 1, 12, 5, 0)

    @pytest.mark.asyncio
    async def test_self_echo_is_skipped(self, manager, account_id, make_message, session_factory):
        result = await manager.inbound.record_inbound(account_id, make_message(from_me=True))

        assert result["status"] == "skipped"
        assert result["reason"] == "self_echo"
        assert stored_messages(session_factory) == []

    @pytest.mark.asyncio
    async def test_status_broadcast_is_skipped(self, manager, account_id, make_message, session_factory):
        result = await manager.inbound.record_inbound(account_id, make_message(remote="status@broadcast"))

        assert result["reason"] == "broadcast"
        assert stored_conversations(session_factory) == []

    @pytest.mark.asyncio
    async def test_unknown_account(self, manager, make_message):
        result = await manager.inbound.record_inbound(str(uuid4()), make_message())

        assert result["status"] == "skipped"
        assert result["reason"] == "account_not_found"

    @pytest.mark.asyncio
    async def test_without_session_name_falls_back_to_number(
        self, manager, account_id, make_message, session_factory
    ):
        """Test a message recorded with no live session uses the bare number."""
        await manager.inbound.record_inbound(account_id, make_message())

        assert stored_conversations(session_factory)[0].contact_name == "5511888888888"

    @pytest.mark.asyncio
    async def test_enrichment_failure_falls_back_to_number(
        self, manager, connect, client_factory, account_id, make_message, session_factory
    ):
        client_factory.client_kwargs["failures"] = {
            "get_contact": ProviderError("privacy settings"),
            "get_profile_pic_url": ProviderError("privacy settings"),
        }
        await connect(account_id)

        result = await manager.inbound.record_inbound(account_id, make_message())

        assert result["status"] == "processed"
        [conversation] = stored_conversations(session_factory)
        assert conversation.contact_name == "5511888888888"
        assert conversation.profile_picture is None

    @pytest.mark.asyncio
    async def test_group_message(self, manager, connect, account_id, make_message, session_factory):
        """Test group conversations are named after the group subject."""
        client = await connect(account_id)
        client.chats = [Chat(id=GROUP, name="Obra Centro", is_group=True)]

        await manager.inbound.record_inbound(account_id, make_message(remote=GROUP))

        [conversation] = stored_conversations(session_factory)
        assert conversation.contact_number == GROUP
        assert conversation.contact_name == "Obra Centro"
        assert conversation.is_group is True

    @pytest.mark.asyncio
    async def test_media_without_caption(self, manager, account_id, make_message, session_factory):
        message = make_message(body=None, message_type=MessageType.IMAGE)

        await manager.inbound.record_inbound(account_id, message)

        [stored] = stored_messages(session_factory)
        assert stored.content == "[image]"
        assert stored.message_type == MessageType.IMAGE.value

    @pytest.mark.asyncio
    async def test_sent_message_echo_is_stored_as_outbound(
        self, manager, connect, client_factory, account_id, session_factory, notifier
    ):
        """Test the provider echo of a sent message is the outbound row."""
        await connect(account_id)

        result = await manager.send(account_id, "5511888888888", "Olá!")

        [message] = stored_messages(session_factory)
        assert message.whatsapp_id == result.message_id
        assert message.direction == MessageDirection.OUTBOUND.value
        assert message.status == MessageStatus.SENT.value
        assert message.to_number == BRUNO

        [conversation] = stored_conversations(session_factory)
        assert conversation.contact_number == BRUNO
        assert conversation.unread_count == 0
        notifier.notify_new_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_live_message_during_sync_creates_one_conversation(
        self, manager, connect, client_factory, account_id, make_message, session_factory
    ):
        """Test live ingress racing a sync pass yields one row with one unread."""
        client_factory.client_class = InterleavingClient
        client = await connect(account_id)
        client.chats = [Chat(id=BRUNO, unread_count=1)]
        client.during_fetch = lambda: manager.inbound.record_inbound(account_id, make_message())

        result = await manager.sync_all(account_id)

        assert result.success is True
        assert result.total_synced == 0
        [conversation] = stored_conversations(session_factory)
        assert conversation.unread_count == 1
        assert len(stored_messages(session_factory)) == 1


class TestRecordStatus:
    """Tests for delivery status updates."""

    @pytest.mark.asyncio
    async def test_delivered_outbound_message(
        self, manager, connect, account_id, session_factory, notifier, sample_user_id
    ):
        """Test a delivery ack updates the row and notifies the owner."""
        client = await connect(account_id)
        sent = await manager.send(account_id, BRUNO, "Orçamento enviado")

        await client.simulate_ack(sent.message_id, BRUNO, MessageStatus.DELIVERED)

        [message] = stored_messages(session_factory)
        assert message.status == MessageStatus.DELIVERED.value
        notifier.notify_message_status.assert_called_once_with(
            str(sample_user_id), sent.message_id, "DELIVERED", BRUNO, account_id=account_id
        )

    @pytest.mark.asyncio
    async def test_status_never_moves_backwards(self, manager, connect, account_id, session_factory):
        client = await connect(account_id)
        sent = await manager.send(account_id, BRUNO, "Oi")
        await client.simulate_ack(sent.message_id, BRUNO, MessageStatus.READ)

        result = manager.inbound.record_status(account_id, MessageAck(sent.message_id, BRUNO, MessageStatus.DELIVERED))

        assert result["reason"] == "stale_status"
        assert stored_messages(session_factory)[0].status == MessageStatus.READ.value

    def test_unknown_message(self, manager, account_id):
        result = manager.inbound.record_status(account_id, MessageAck("nope", BRUNO, MessageStatus.READ))

        assert result == {"status": "skipped", "reason": "message_not_found"}

    @pytest.mark.asyncio
    async def test_inbound_message_read_is_not_notified(
        self, manager, account_id, make_message, session_factory, notifier
    ):
        await manager.inbound.record_inbound(account_id, make_message())

        result = manager.inbound.record_status(account_id, MessageAck("msg_1", BRUNO, MessageStatus.READ))

        assert result["status"] == "processed"
        notifier.notify_message_status.assert_not_called()


class TestConversationReads:
    """Tests for reading back a conversation and clearing its unread counter."""

    def test_list_messages_is_chronological(self, session_factory, seeded_conversation):
        with session_factory() as db:
            rows = WhatsAppRepository(db).list_messages(seeded_conversation)

        assert [m.whatsapp_id for m in rows] == ["msg_1", "msg_2", "msg_3"]
        assert rows[1].direction == MessageDirection.OUTBOUND.value

    def test_list_messages_keeps_latest(self, session_factory, seeded_conversation):
        with session_factory() as db:
            rows = WhatsAppRepository(db).list_messages(seeded_conversation, limit=2)

        assert [m.whatsapp_id for m in rows] == ["msg_2", "msg_3"]

    def test_mark_read(self, session_factory, seeded_conversation):
        with session_factory() as db:
            assert WhatsAppRepository(db).mark_conversation_read(seeded_conversation) is True
            db.commit()

        [conversation] = stored_conversations(session_factory)
        assert conversation.unread_count == 0

    def test_mark_read_unknown_conversation(self, session_factory):
        with session_factory() as db:
            assert WhatsAppRepository(db).mark_conversation_read(uuid4()) is False
