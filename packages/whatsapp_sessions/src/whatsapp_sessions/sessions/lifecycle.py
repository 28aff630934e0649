"""
Session Lifecycle Controller

Creates, authenticates, tears down and restores live connections, and
reacts to provider events:

- qr: render the pairing code and persist it (status CONNECTING)
- ready: persist CONNECTED with identity, notify, then run a sync pass
- auth_failure / disconnected: persist the new status, notify, drop the handle
- message / message_create / message_ack: delegate to the inbound handler

Only one creation attempt per account is ever in flight; concurrent callers
await the same attempt.
"""

import asyncio
import logging
from datetime import datetime
from functools import partial
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from whatsapp_sessions.config import SessionSettings
from whatsapp_sessions.contracts.results import SessionResult
from whatsapp_sessions.persistence.models import AccountStatus
from whatsapp_sessions.persistence.repo import WhatsAppRepository
from whatsapp_sessions.persistence.session_blob import encode_session_blob
from whatsapp_sessions.providers.base import (
    ClientEvent,
    ClientInfo,
    MessageAck,
    ProviderMessage,
    SessionClientFactory,
)
from whatsapp_sessions.service.inbound_handler import InboundHandler
from whatsapp_sessions.service.sync import ConversationSynchronizer
from whatsapp_sessions.sessions.handle import ConnectionHandle
from whatsapp_sessions.sessions.pairing import render_pairing_code
from whatsapp_sessions.sessions.registry import SessionRegistry
from whatsapp_sessions.sessions.state import SessionState
from whatsapp_sessions.streams.producer import WhatsAppNotifier

logger = logging.getLogger(__name__)

NOTIFICATION_LABEL = "WhatsApp"


class SessionLifecycleController:
    """
    Owns connection creation and teardown for every account.

    Persistence runs in short synchronous units of work; provider calls are
    awaited outside of them.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        session_factory: sessionmaker[Session],
        client_factory: SessionClientFactory,
        settings: SessionSettings,
        inbound: InboundHandler,
        synchronizer: ConversationSynchronizer,
        notifier: WhatsAppNotifier | None = None,
    ):
        self.registry = registry
        self.session_factory = session_factory
        self.client_factory = client_factory
        self.settings = settings
        self.inbound = inbound
        self.synchronizer = synchronizer
        self.notifier = notifier
        self._sync_tasks: dict[str, asyncio.Task[Any]] = {}

    # =========================================================================
    # Public operations
    # =========================================================================

    async def start_session(self, account_id: str, owner_user_id: str) -> SessionResult:
        """
        Start (or join) a connection attempt for an account.

        Args:
            account_id: Account to connect
            owner_user_id: User notified about connection changes

        Returns:
            SessionResult; qr_code is set while the account waits for pairing
        """
        account_id = str(account_id)

        pending = self.registry.get_pending(account_id)
        if pending is not None:
            logger.info(f"Session creation already in progress for account {account_id}, waiting")
            return await asyncio.shield(pending)

        handle = self.registry.get_handle(account_id)
        if handle is not None:
            if handle.is_ready:
                return SessionResult(success=True)
            if handle.pairing_code:
                return SessionResult(success=True, qr_code=handle.pairing_code)
            if handle.state not in (SessionState.FAILED, SessionState.CLOSED):
                # Still initializing; the pairing code or ready event follows
                return SessionResult(success=True)

        task = asyncio.ensure_future(self._create_session(account_id, str(owner_user_id)))
        self.registry.set_pending(account_id, task)
        try:
            return await asyncio.shield(task)
        except Exception as e:
            logger.error(f"Error creating session: {e}", exc_info=True, extra={"account_id": account_id})
            return SessionResult(success=False, error=str(e))
        finally:
            self.registry.clear_pending(account_id, task)

    async def stop_session(self, account_id: str) -> bool:
        """
        Tear down an account's connection and mark it DISCONNECTED.

        Returns:
            False only if the new status could not be persisted
        """
        account_id = str(account_id)
        self.cancel_sync(account_id)

        handle = self.registry.remove(account_id)
        if handle is not None:
            await handle.close()

        try:
            self._persist_account(
                account_id,
                status=AccountStatus.DISCONNECTED,
                last_heartbeat=None,
                qr_code=None,
                session_data=None,
            )
        except SQLAlchemyError as e:
            logger.error(f"Error disconnecting session: {e}", exc_info=True, extra={"account_id": account_id})
            return False

        logger.info("Session stopped", extra={"account_id": account_id})
        return True

    async def restore_all(self) -> dict[str, SessionResult]:
        """
        Start sessions for every account persisted as CONNECTED.

        One failing account never blocks the others.
        """
        with self.session_factory() as db:
            accounts = [
                (str(account.id), str(account.user_id))
                for account in WhatsAppRepository(db).list_accounts(status=AccountStatus.CONNECTED)
            ]

        results: dict[str, SessionResult] = {}
        for account_id, user_id in accounts:
            logger.info(f"Restoring session for account {account_id}")
            try:
                results[account_id] = await self.start_session(account_id, user_id)
            except Exception as e:
                logger.error(f"Error restoring session: {e}", exc_info=True, extra={"account_id": account_id})
                results[account_id] = SessionResult(success=False, error=str(e))
        return results

    def sync_task(self, account_id: str) -> asyncio.Task[Any] | None:
        """The post-ready sync pass scheduled for an account, if any."""
        return self._sync_tasks.get(str(account_id))

    # =========================================================================
    # Creation
    # =========================================================================

    async def _create_session(self, account_id: str, owner_user_id: str) -> SessionResult:
        logger.info("Creating session client", extra={"account_id": account_id})

        try:
            client = self.client_factory(account_id, self.settings.credentials_path(account_id))
        except Exception as e:
            logger.error(f"Error creating client: {e}", exc_info=True, extra={"account_id": account_id})
            return SessionResult(success=False, error=str(e))

        handle = ConnectionHandle(account_id, client)
        client.on(ClientEvent.QR, partial(self._on_qr, handle))
        client.on(ClientEvent.AUTHENTICATED, partial(self._on_authenticated, handle))
        client.on(ClientEvent.READY, partial(self._on_ready, handle, owner_user_id))
        client.on(ClientEvent.AUTH_FAILURE, partial(self._on_auth_failure, handle, owner_user_id))
        client.on(ClientEvent.DISCONNECTED, partial(self._on_disconnected, handle, owner_user_id))
        client.on(ClientEvent.MESSAGE, partial(self._on_message, handle))
        client.on(ClientEvent.MESSAGE_CREATE, partial(self._on_message_create, handle))
        client.on(ClientEvent.MESSAGE_ACK, partial(self._on_message_ack, handle))

        self.registry.add(handle)

        try:
            await client.initialize()
        except Exception as e:
            logger.error(f"Error initializing client: {e}", exc_info=True, extra={"account_id": account_id})
            self.registry.remove(account_id, handle)
            await handle.close()
            return SessionResult(success=False, error=str(e))

        if handle.state == SessionState.FAILED:
            return SessionResult(success=False, error="WhatsApp authentication failed")

        return SessionResult(success=True, qr_code=handle.pairing_code)

    # =========================================================================
    # Provider events
    # =========================================================================

    async def _on_qr(self, handle: ConnectionHandle, payload: str) -> None:
        if not handle.apply(ClientEvent.QR):
            return
        account_id = handle.account_id
        logger.info("QR code generated", extra={"account_id": account_id})

        qr_code = render_pairing_code(payload)
        handle.pairing_code = qr_code

        await self._persist_with_retry(
            account_id,
            status=AccountStatus.CONNECTING,
            qr_code=qr_code,
            last_heartbeat=datetime.utcnow(),
        )

    async def _on_authenticated(self, handle: ConnectionHandle) -> None:
        if handle.apply(ClientEvent.AUTHENTICATED):
            logger.info("Client authenticated", extra={"account_id": handle.account_id})

    async def _on_ready(self, handle: ConnectionHandle, owner_user_id: str) -> None:
        if not handle.apply(ClientEvent.READY):
            return
        account_id = handle.account_id
        handle.pairing_code = None
        logger.info("Client ready", extra={"account_id": account_id})

        info: ClientInfo | None = None
        try:
            info = await handle.client.get_info()
        except Exception as e:
            logger.warning(f"Could not read client info: {e}", extra={"account_id": account_id})

        now = datetime.utcnow()
        fields: dict[str, Any] = {
            "status": AccountStatus.CONNECTED,
            "qr_code": None,
            "last_heartbeat": now,
        }
        if info is not None:
            fields["display_name"] = info.pushname or info.user
            fields["session_data"] = encode_session_blob(
                {"wid": info.wid, "pushname": info.pushname, "connected_at": now.isoformat()},
                self.settings.encryption_key,
            )

        try:
            self._persist_account(account_id, **fields)
        except SQLAlchemyError as e:
            logger.error(f"Error updating account on ready: {e}", exc_info=True, extra={"account_id": account_id})

        if self.notifier is not None:
            self.notifier.notify_connection_status(
                owner_user_id,
                account_id,
                info.user if info else NOTIFICATION_LABEL,
                AccountStatus.CONNECTED.value,
            )

        logger.info("Account connected successfully", extra={"account_id": account_id})
        self._schedule_sync(account_id)

    async def _on_auth_failure(self, handle: ConnectionHandle, owner_user_id: str, reason: str = "") -> None:
        if not handle.apply(ClientEvent.AUTH_FAILURE):
            return
        account_id = handle.account_id
        logger.error(f"Authentication failed: {reason}", extra={"account_id": account_id})

        try:
            self._persist_account(account_id, status=AccountStatus.ERROR, qr_code=None, session_data=None)
        except SQLAlchemyError as e:
            logger.error(f"Error updating account on auth failure: {e}", extra={"account_id": account_id})

        if self.notifier is not None:
            self.notifier.notify_connection_status(
                owner_user_id, account_id, NOTIFICATION_LABEL, AccountStatus.ERROR.value
            )

        await self._drop(handle)

    async def _on_disconnected(self, handle: ConnectionHandle, owner_user_id: str, reason: str = "") -> None:
        if not handle.apply(ClientEvent.DISCONNECTED):
            return
        account_id = handle.account_id
        logger.info(f"Client disconnected: {reason}", extra={"account_id": account_id})
        self.cancel_sync(account_id)

        try:
            self._persist_account(
                account_id,
                status=AccountStatus.DISCONNECTED,
                last_heartbeat=None,
                qr_code=None,
                session_data=None,
            )
        except SQLAlchemyError as e:
            logger.error(f"Error updating account on disconnect: {e}", extra={"account_id": account_id})

        if self.notifier is not None:
            self.notifier.notify_connection_status(
                owner_user_id, account_id, NOTIFICATION_LABEL, AccountStatus.DISCONNECTED.value
            )

        await self._drop(handle)

    async def _on_message(self, handle: ConnectionHandle, message: ProviderMessage) -> None:
        await self.inbound.record_inbound(handle.account_id, message)

    async def _on_message_create(self, handle: ConnectionHandle, message: ProviderMessage) -> None:
        # Messages from others already arrived through the message event
        if message.from_me:
            await self.inbound.record_inbound(handle.account_id, message, outbound=True)

    async def _on_message_ack(self, handle: ConnectionHandle, ack: MessageAck) -> None:
        self.inbound.record_status(handle.account_id, ack)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _drop(self, handle: ConnectionHandle) -> None:
        """Unregister a handle and destroy its client."""
        self.registry.remove(handle.account_id, handle)
        await handle.close()

    def _persist_account(self, account_id: str, **fields: Any) -> bool:
        with self.session_factory() as db:
            updated = WhatsAppRepository(db).update_account(account_id, **fields)
            db.commit()
        if not updated:
            logger.warning(f"Account {account_id} not found", extra={"account_id": account_id})
        return updated

    async def _persist_with_retry(self, account_id: str, **fields: Any) -> bool:
        attempts = self.settings.qr_persist_attempts
        for attempt in range(1, attempts + 1):
            try:
                return self._persist_account(account_id, **fields)
            except SQLAlchemyError as e:
                logger.warning(
                    f"Failed to save QR code (attempt {attempt}/{attempts}): {e}",
                    extra={"account_id": account_id},
                )
                if attempt < attempts:
                    await asyncio.sleep(self.settings.qr_persist_backoff)

        logger.error("Giving up saving QR code", extra={"account_id": account_id})
        return False

    def _schedule_sync(self, account_id: str) -> None:
        self.cancel_sync(account_id)
        task = asyncio.ensure_future(self._post_ready_sync(account_id))
        self._sync_tasks[account_id] = task
        task.add_done_callback(partial(self._forget_sync, account_id))

    def _forget_sync(self, account_id: str, task: asyncio.Task[Any]) -> None:
        if self._sync_tasks.get(account_id) is task:
            del self._sync_tasks[account_id]

    def cancel_sync(self, account_id: str) -> None:
        task = self._sync_tasks.pop(account_id, None)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _post_ready_sync(self, account_id: str) -> None:
        await asyncio.sleep(self.settings.post_ready_sync_delay)
        try:
            result = await self.synchronizer.sync_all(account_id)
        except Exception as e:
            logger.error(f"Auto-sync failed: {e}", exc_info=True, extra={"account_id": account_id})
            return

        if result.success:
            logger.info(f"Auto-sync completed: {result.total_synced} conversations synced")
        else:
            logger.warning(f"Auto-sync failed: {result.error}", extra={"account_id": account_id})
