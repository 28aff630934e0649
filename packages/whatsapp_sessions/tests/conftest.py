"""
Pytest fixtures for WhatsApp session engine tests.
"""

from datetime import datetime
from unittest.mock import MagicMock
from uuid import UUID

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from whatsapp_sessions.config import SessionSettings
from whatsapp_sessions.manager import WhatsAppManager
from whatsapp_sessions.persistence.models import (
    AccountStatus,
    MessageType,
    WhatsAppAccount,
    WhatsAppBase,
)
from whatsapp_sessions.providers.base import ClientInfo, ProviderMessage
from whatsapp_sessions.providers.stub import StubSessionClient
from whatsapp_sessions.streams.producer import WhatsAppNotifier

OWN_WID = "5500000000000@c.us"


class RecordingFactory:
    """Client factory that builds stub clients and keeps every one it built."""

    def __init__(self, client_class=StubSessionClient, **client_kwargs):
        self.client_class = client_class
        self.client_kwargs = client_kwargs
        self.per_account: dict[str, dict] = {}
        self.clients: list[StubSessionClient] = []

    def __call__(self, account_id: str, credentials_path: str) -> StubSessionClient:
        kwargs = {**self.client_kwargs, **self.per_account.get(account_id, {})}
        client = self.client_class(account_id, credentials_path, **kwargs)
        self.clients.append(client)
        return client

    def for_account(self, account_id) -> list[StubSessionClient]:
        return [c for c in self.clients if c.account_id == str(account_id)]

    @property
    def last(self) -> StubSessionClient:
        return self.clients[-1]


class FlakySessionFactory:
    """Session factory whose first `failures` calls raise OperationalError."""

    def __init__(self, factory, failures: int):
        self.factory = factory
        self.failures = failures
        self.calls = 0

    def __call__(self):
        from sqlalchemy.exc import OperationalError

        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise OperationalError("UPDATE whatsapp_accounts", {}, Exception("database is locked"))
        return self.factory()


@pytest.fixture
def engine(tmp_path):
    """SQLite database with the session engine tables."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'whatsapp.db'}",
        connect_args={"check_same_thread": False},
    )
    WhatsAppBase.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def flaky_factory(session_factory):
    """Build a session factory that fails its first N calls."""

    def _make(failures: int) -> FlakySessionFactory:
        return FlakySessionFactory(session_factory, failures)

    return _make


@pytest.fixture
def settings(tmp_path):
    """Settings with every delay removed."""
    return SessionSettings(
        provider="stub",
        sessions_dir=str(tmp_path / "sessions"),
        qr_persist_backoff=0,
        ready_poll_interval=0,
        post_ready_sync_delay=0,
    )


@pytest.fixture
def notifier():
    """Notifier double recording every notify_* call."""
    return MagicMock(spec=WhatsAppNotifier)


@pytest.fixture
def client_factory():
    return RecordingFactory()


@pytest.fixture
def manager(session_factory, settings, client_factory, notifier):
    return WhatsAppManager(
        session_factory,
        settings=settings,
        client_factory=client_factory,
        notifier=notifier,
    )


@pytest.fixture
def connect(manager, client_factory, sample_user_id):
    """Start a session, scan the QR code and wait for the post-ready sync."""

    async def _connect(account_id: str, info: ClientInfo | None = None) -> StubSessionClient:
        await manager.start_session(account_id, sample_user_id)
        client = client_factory.for_account(account_id)[-1]
        await client.simulate_ready(info)
        task = manager.lifecycle.sync_task(account_id)
        if task is not None:
            await task
        return client

    return _connect


@pytest.fixture
def sample_user_id():
    """Sample owner UUID."""
    return UUID("12345678-1234-1234-1234-123456789012")


@pytest.fixture
def make_account(session_factory, sample_user_id):
    """Create an account row with the given status."""

    def _make(status: AccountStatus = AccountStatus.DISCONNECTED, **fields) -> WhatsAppAccount:
        with session_factory() as db:
            account = WhatsAppAccount(user_id=sample_user_id, status=status.value, **fields)
            db.add(account)
            db.commit()
            return account

    return _make


@pytest.fixture
def account(make_account):
    """A provisioned, never connected account."""
    return make_account()


@pytest.fixture
def account_id(account):
    return str(account.id)


@pytest.fixture
def load_account(session_factory):
    """Fresh copy of an account row."""

    def _load(account_id) -> WhatsAppAccount:
        with session_factory() as db:
            return db.get(WhatsAppAccount, UUID(str(account_id)))

    return _load


@pytest.fixture
def make_message():
    """Build a provider message from a contact (or from us with from_me=True)."""

    def _make(
        message_id: str = "msg_1",
        remote: str = "5511888888888@c.us",
        body: str | None = "Oi, tudo bem?",
        from_me: bool = False,
        message_type: MessageType = MessageType.TEXT,
        timestamp: datetime | None = None,
    ) -> ProviderMessage:
        return ProviderMessage(
            id=message_id,
            from_id=OWN_WID if from_me else remote,
            to_id=remote if from_me else OWN_WID,
            body=body,
            message_type=message_type,
            timestamp=timestamp or datetime(2024, 1, 1, 12, 0, 0),
            from_me=from_me,
        )

    return _make


@pytest.fixture
def seeded_conversation(session_factory, account_id, make_message):
    """Conversation with three messages stored out of order and two unread."""
    from whatsapp_sessions.persistence.models import MessageDirection, MessageStatus
    from whatsapp_sessions.persistence.repo import WhatsAppRepository
    from whatsapp_sessions.service.inbound_handler import store_message

    history = [
        ("msg_3", False, "Quanto custa?", 3),
        ("msg_1", False, "Oi", 1),
        ("msg_2", True, "Olá, em que posso ajudar?", 2),
    ]
    with session_factory() as db:
        repo = WhatsAppRepository(db)
        conversation, _ = repo.get_or_create_conversation(
            account_id, "5511888888888@c.us", contact_name="Bruno", last_message_at=datetime(2024, 1, 1, 12, 3)
        )
        for message_id, from_me, body, minute in history:
            message = make_message(
                message_id, body=body, from_me=from_me, timestamp=datetime(2024, 1, 1, 12, minute)
            )
            direction = MessageDirection.OUTBOUND if from_me else MessageDirection.INBOUND
            status = MessageStatus.SENT if from_me else MessageStatus.RECEIVED
            store_message(repo, account_id, conversation.id, message, direction, status)
        conversation.unread_count = 2
        db.commit()
        return str(conversation.id)
