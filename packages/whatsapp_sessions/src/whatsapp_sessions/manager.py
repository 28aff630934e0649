"""
WhatsApp Session Manager

Service object wiring the session registry, lifecycle controller, message
handlers and conversation synchronizer. Build one per process and pass it to
the API or CLI; nothing here is a module-level singleton.
"""

import logging
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from whatsapp_sessions.config import SessionSettings
from whatsapp_sessions.contracts.results import SendResult, SessionResult, SyncResult
from whatsapp_sessions.providers.base import SessionClientFactory
from whatsapp_sessions.providers.evolution import EvolutionSessionClient
from whatsapp_sessions.providers.factory import build_client_factory
from whatsapp_sessions.service.inbound_handler import InboundHandler
from whatsapp_sessions.service.outbound_handler import OutboundHandler
from whatsapp_sessions.service.sync import ConversationSynchronizer
from whatsapp_sessions.sessions.handle import ConnectionHandle
from whatsapp_sessions.sessions.lifecycle import SessionLifecycleController
from whatsapp_sessions.sessions.registry import SessionRegistry
from whatsapp_sessions.streams.producer import WhatsAppNotifier

logger = logging.getLogger(__name__)


class WhatsAppManager:
    """
    Entry point for every session operation.

    Example:
        manager = WhatsAppManager.from_env()
        result = await manager.start_session(account_id, user_id)
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        settings: SessionSettings | None = None,
        client_factory: SessionClientFactory | None = None,
        notifier: WhatsAppNotifier | None = None,
    ):
        self.settings = settings or SessionSettings.from_env()
        self.session_factory = session_factory
        self.registry = SessionRegistry()

        self.inbound = InboundHandler(session_factory, self.registry, notifier)
        self.synchronizer = ConversationSynchronizer(session_factory, self.registry, self.settings)
        self.lifecycle = SessionLifecycleController(
            registry=self.registry,
            session_factory=session_factory,
            client_factory=client_factory or build_client_factory(self.settings),
            settings=self.settings,
            inbound=self.inbound,
            synchronizer=self.synchronizer,
            notifier=notifier,
        )
        self.outbound = OutboundHandler(session_factory, self.registry, self.lifecycle, self.settings)

    @classmethod
    def from_env(cls) -> "WhatsAppManager":
        """Build a manager from basecore settings and WHATSAPP_* variables."""
        from basecore.db import get_sessionmaker
        from basecore.redis import get_redis_client

        settings = SessionSettings.from_env()
        notifier = WhatsAppNotifier(get_redis_client(), stream_name=settings.notification_stream)
        return cls(get_sessionmaker(), settings=settings, notifier=notifier)

    # =========================================================================
    # Session operations
    # =========================================================================

    async def start_session(self, account_id: str, owner_user_id: str) -> SessionResult:
        return await self.lifecycle.start_session(account_id, owner_user_id)

    async def stop_session(self, account_id: str) -> bool:
        return await self.lifecycle.stop_session(account_id)

    async def restore_all(self) -> dict[str, SessionResult]:
        return await self.lifecycle.restore_all()

    async def send(
        self,
        account_id: str,
        to: str,
        content: str,
        message_type: str = "TEXT",
    ) -> SendResult:
        return await self.outbound.send(account_id, to, content, message_type)

    async def sync_all(self, account_id: str) -> SyncResult:
        return await self.synchronizer.sync_all(account_id)

    async def sync_chat_messages(self, account_id: str, chat_id: str, limit: int = 50) -> int:
        return await self.synchronizer.sync_chat_messages(account_id, chat_id, limit)

    def get_handle(self, account_id: str) -> ConnectionHandle | None:
        return self.registry.get_handle(str(account_id))

    def session_status(self, account_id: str) -> dict[str, Any]:
        """In-memory view of an account's connection."""
        handle = self.registry.get_handle(str(account_id))
        return {
            "has_session": handle is not None,
            "state": handle.state.value if handle else None,
            "is_ready": bool(handle and handle.is_ready),
        }

    async def dispatch_webhook(self, account_id: str, payload: dict[str, Any]) -> bool:
        """
        Feed an Evolution API webhook to the account's live client.

        Returns:
            False if the account has no Evolution session
        """
        handle = self.registry.get_handle(str(account_id))
        if handle is None or not isinstance(handle.client, EvolutionSessionClient):
            logger.debug(f"No Evolution session for account {account_id}, webhook ignored")
            return False
        await handle.client.dispatch_webhook(payload)
        return True

    async def shutdown(self) -> None:
        """Release every client without changing persisted account status."""
        for account_id, handle in self.registry.all_handles():
            self.lifecycle.cancel_sync(account_id)
            self.registry.remove(account_id, handle)
            await handle.close()
