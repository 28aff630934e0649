"""
Tests for session creation, provider events, teardown and restore.
"""

import asyncio
import os

import pytest

from whatsapp_sessions.persistence.models import AccountStatus
from whatsapp_sessions.persistence.session_blob import decode_session_blob
from whatsapp_sessions.providers.base import ClientEvent, ClientInfo, ProviderError
from whatsapp_sessions.providers.stub import StubSessionClient
from whatsapp_sessions.sessions import SessionState

ANA = ClientInfo(wid="5511999999999@c.us", user="5511999999999", pushname="Ana")


class RejectingClient(StubSessionClient):
    """Client whose stored credentials are refused on initialize."""

    async def initialize(self) -> None:
        self.initialized = True
        await self.emit(ClientEvent.AUTH_FAILURE, "invalid session")


class TestStartSession:
    """Tests for start_session."""

    @pytest.mark.asyncio
    async def test_new_account_gets_qr_code(self, manager, client_factory, account_id, sample_user_id, load_account):
        """Test a never-paired account ends in CONNECTING with a QR image."""
        result = await manager.start_session(account_id, sample_user_id)

        assert result.success is True
        assert result.qr_code.startswith("data:image/png;base64,")

        account = load_account(account_id)
        assert account.status == AccountStatus.CONNECTING.value
        assert account.qr_code == result.qr_code
        assert account.last_heartbeat is not None

        handle = manager.get_handle(account_id)
        assert handle.state == SessionState.PAIRING
        assert len(client_factory.clients) == 1

    @pytest.mark.asyncio
    async def test_concurrent_starts_share_one_client(self, manager, client_factory, account_id, sample_user_id):
        """Test N concurrent callers create exactly one client."""
        results = await asyncio.gather(
            *(manager.start_session(account_id, sample_user_id) for _ in range(5))
        )

        assert len(client_factory.clients) == 1
        assert all(result.success for result in results)
        assert len({result.qr_code for result in results}) == 1
        assert len(manager.registry) == 1
        assert manager.registry.get_pending(account_id) is None

    @pytest.mark.asyncio
    async def test_start_while_pairing_returns_current_qr(self, manager, client_factory, account_id, sample_user_id):
        first = await manager.start_session(account_id, sample_user_id)
        second = await manager.start_session(account_id, sample_user_id)

        assert second.success is True
        assert second.qr_code == first.qr_code
        assert len(client_factory.clients) == 1

    @pytest.mark.asyncio
    async def test_start_when_ready_is_a_no_op(self, connect, manager, client_factory, account_id, sample_user_id):
        await connect(account_id, ANA)

        result = await manager.start_session(account_id, sample_user_id)

        assert result.success is True
        assert result.qr_code is None
        assert len(client_factory.clients) == 1

    @pytest.mark.asyncio
    async def test_initialize_failure(self, manager, client_factory, account_id, sample_user_id):
        """Test a client that cannot start is discarded."""
        client_factory.per_account[account_id] = {
            "failures": {"initialize": ProviderError("Evolution API unreachable")}
        }

        result = await manager.start_session(account_id, sample_user_id)

        assert result.success is False
        assert result.error == "Evolution API unreachable"
        assert manager.get_handle(account_id) is None
        assert client_factory.last.destroyed is True

    @pytest.mark.asyncio
    async def test_auth_failure_during_initialize(
        self, manager, account_id, sample_user_id, load_account
    ):
        """Test rejected credentials fail the start and mark the account ERROR."""
        manager.lifecycle.client_factory = RejectingClient

        result = await manager.start_session(account_id, sample_user_id)

        assert result.success is False
        assert result.error == "WhatsApp authentication failed"
        assert manager.get_handle(account_id) is None
        assert load_account(account_id).status == AccountStatus.ERROR.value

    @pytest.mark.asyncio
    async def test_qr_persist_retries(self, manager, flaky_factory, account_id, sample_user_id, load_account):
        """Test transient database errors while saving the QR code are retried."""
        flaky = flaky_factory(2)
        manager.lifecycle.session_factory = flaky

        result = await manager.start_session(account_id, sample_user_id)

        assert result.success is True
        assert flaky.calls == 3
        assert load_account(account_id).status == AccountStatus.CONNECTING.value

    @pytest.mark.asyncio
    async def test_qr_persist_gives_up(self, manager, flaky_factory, account_id, sample_user_id, load_account):
        """Test the QR code is still returned when it cannot be saved."""
        flaky = flaky_factory(3)
        manager.lifecycle.session_factory = flaky

        result = await manager.start_session(account_id, sample_user_id)

        assert result.success is True
        assert result.qr_code is not None
        assert flaky.calls == 3
        assert load_account(account_id).status == AccountStatus.DISCONNECTED.value


class TestProviderEvents:
    """Tests for ready, auth_failure and disconnected handling."""

    @pytest.mark.asyncio
    async def test_ready_marks_account_connected(
        self, manager, client_factory, account_id, sample_user_id, notifier, load_account
    ):
        """Test scanning the QR code connects the account."""
        await manager.start_session(account_id, sample_user_id)
        await client_factory.last.simulate_ready(ANA)

        account = load_account(account_id)
        assert account.status == AccountStatus.CONNECTED.value
        assert account.display_name == "Ana"
        assert account.qr_code is None
        assert account.last_heartbeat is not None
        assert decode_session_blob(account.session_data)["wid"] == "5511999999999@c.us"

        assert manager.get_handle(account_id).is_ready
        notifier.notify_connection_status.assert_called_once_with(
            str(sample_user_id), account_id, "5511999999999", "CONNECTED"
        )

        task = manager.lifecycle.sync_task(account_id)
        assert task is not None
        await task

    @pytest.mark.asyncio
    async def test_ready_triggers_sync(self, connect, client_factory, account_id, session_factory):
        """Test the chat list is imported after the account connects."""
        from whatsapp_sessions.persistence.repo import WhatsAppRepository
        from whatsapp_sessions.providers.base import Chat

        client_factory.client_kwargs["chats"] = [Chat(id="5511888888888@c.us", name="Bruno")]

        await connect(account_id, ANA)

        with session_factory() as db:
            conversations = WhatsAppRepository(db).list_conversations(account_id)
        assert [c.contact_name for c in conversations] == ["Bruno"]

    @pytest.mark.asyncio
    async def test_finished_sync_is_forgotten(self, connect, manager, account_id):
        await connect(account_id, ANA)
        await asyncio.sleep(0)

        assert manager.lifecycle.sync_task(account_id) is None
        assert manager.lifecycle._sync_tasks == {}

    @pytest.mark.asyncio
    async def test_ready_without_client_info(self, connect, manager, client_factory, account_id, sample_user_id, notifier, load_account):
        """Test identity lookup failure still connects the account."""
        client_factory.per_account[account_id] = {"failures": {"get_info": ProviderError("not yet")}}

        await connect(account_id, ANA)

        account = load_account(account_id)
        assert account.status == AccountStatus.CONNECTED.value
        assert account.session_data is None
        notifier.notify_connection_status.assert_called_once_with(
            str(sample_user_id), account_id, "WhatsApp", "CONNECTED"
        )

    @pytest.mark.asyncio
    async def test_auth_failure(self, manager, client_factory, account_id, sample_user_id, notifier, load_account):
        """Test auth failure marks ERROR and drops the session."""
        await manager.start_session(account_id, sample_user_id)
        client = client_factory.last

        await client.simulate_auth_failure()

        account = load_account(account_id)
        assert account.status == AccountStatus.ERROR.value
        assert account.qr_code is None
        assert manager.get_handle(account_id) is None
        assert client.destroyed is True
        notifier.notify_connection_status.assert_called_with(
            str(sample_user_id), account_id, "WhatsApp", "ERROR"
        )

        # Next start builds a fresh client
        await manager.start_session(account_id, sample_user_id)
        assert len(client_factory.clients) == 2

    @pytest.mark.asyncio
    async def test_disconnect(self, connect, manager, client_factory, account_id, sample_user_id, notifier, load_account):
        """Test a lost connection marks DISCONNECTED and drops the session."""
        client = await connect(account_id, ANA)

        await client.simulate_disconnect()

        account = load_account(account_id)
        assert account.status == AccountStatus.DISCONNECTED.value
        assert account.last_heartbeat is None
        assert account.session_data is None
        assert manager.get_handle(account_id) is None
        assert client.destroyed is True
        notifier.notify_connection_status.assert_called_with(
            str(sample_user_id), account_id, "WhatsApp", "DISCONNECTED"
        )

    @pytest.mark.asyncio
    async def test_late_event_from_replaced_client(self, connect, manager, account_id, load_account):
        """Test events from a dropped client never touch its successor."""
        old_client = await connect(account_id, ANA)
        await old_client.simulate_disconnect()
        new_client = await connect(account_id, ANA)

        await old_client.simulate_disconnect("late")

        assert manager.get_handle(account_id).client is new_client
        assert load_account(account_id).status == AccountStatus.CONNECTED.value


class TestStopSession:
    """Tests for stop_session."""

    @pytest.mark.asyncio
    async def test_stop_connected_session(self, connect, manager, account_id, load_account):
        client = await connect(account_id, ANA)

        assert await manager.stop_session(account_id) is True

        account = load_account(account_id)
        assert account.status == AccountStatus.DISCONNECTED.value
        assert account.session_data is None
        assert account.qr_code is None
        assert manager.get_handle(account_id) is None
        assert client.destroyed is True

    @pytest.mark.asyncio
    async def test_stop_without_session(self, manager, make_account, load_account):
        """Test stopping an account with no live session still persists."""
        account = make_account(AccountStatus.CONNECTED)

        assert await manager.stop_session(str(account.id)) is True
        assert load_account(account.id).status == AccountStatus.DISCONNECTED.value

    @pytest.mark.asyncio
    async def test_stop_persistence_failure(self, manager, flaky_factory, account_id):
        manager.lifecycle.session_factory = flaky_factory(10)

        assert await manager.stop_session(account_id) is False


class TestRestoreAll:
    """Tests for restore_all."""

    @pytest.mark.asyncio
    async def test_restore_connected_accounts(self, manager, client_factory, make_account, settings):
        """Test only CONNECTED accounts are restored and failures are isolated."""
        good = make_account(AccountStatus.CONNECTED)
        bad = make_account(AccountStatus.CONNECTED)
        idle = make_account(AccountStatus.DISCONNECTED)

        # Previously paired device
        credentials = settings.credentials_path(str(good.id))
        os.makedirs(os.path.dirname(credentials), exist_ok=True)
        with open(credentials, "w") as f:
            f.write("paired")

        client_factory.per_account[str(bad.id)] = {"failures": {"initialize": ProviderError("boom")}}

        results = await manager.restore_all()

        assert set(results) == {str(good.id), str(bad.id)}
        assert results[str(good.id)].success is True
        assert results[str(bad.id)].success is False
        assert results[str(bad.id)].error == "boom"

        assert manager.get_handle(str(good.id)).is_ready
        assert manager.get_handle(str(bad.id)) is None
        assert client_factory.for_account(idle.id) == []

        task = manager.lifecycle.sync_task(str(good.id))
        if task is not None:
            await task

    @pytest.mark.asyncio
    async def test_restore_nothing(self, manager, account):
        assert await manager.restore_all() == {}

    @pytest.mark.asyncio
    async def test_shutdown_keeps_status(self, connect, manager, account_id, load_account):
        """Test shutdown releases clients without touching the account."""
        client = await connect(account_id, ANA)

        await manager.shutdown()

        assert client.destroyed is True
        assert manager.get_handle(account_id) is None
        assert load_account(account_id).status == AccountStatus.CONNECTED.value
