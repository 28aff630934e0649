"""
Tests for the connection state machine, handles and the registry.
"""

import asyncio

import pytest

from whatsapp_sessions.providers.base import ClientEvent
from whatsapp_sessions.providers.stub import StubSessionClient
from whatsapp_sessions.sessions import (
    ConnectionHandle,
    InvalidTransition,
    SessionRegistry,
    SessionState,
    transition,
)


@pytest.fixture
def handle(tmp_path):
    client = StubSessionClient("acc-1", str(tmp_path / "session-acc-1"))
    return ConnectionHandle("acc-1", client)


class TestTransition:
    """Tests for the transition function."""

    def test_pairing_flow(self):
        """Test the QR -> authenticated -> ready path."""
        state = transition(SessionState.NEW, ClientEvent.QR)
        assert state == SessionState.PAIRING
        state = transition(state, ClientEvent.QR)
        assert state == SessionState.PAIRING
        state = transition(state, ClientEvent.AUTHENTICATED)
        assert state == SessionState.AUTHENTICATED
        state = transition(state, ClientEvent.READY)
        assert state == SessionState.READY

    def test_restore_goes_straight_to_ready(self):
        """Test a restored session that skips the QR step."""
        assert transition(SessionState.NEW, ClientEvent.READY) == SessionState.READY

    def test_auth_failure_is_terminal(self):
        """Test auth failure before ready."""
        state = transition(SessionState.PAIRING, ClientEvent.AUTH_FAILURE)
        assert state == SessionState.FAILED

        with pytest.raises(InvalidTransition):
            transition(state, ClientEvent.READY)

    def test_auth_failure_after_ready_is_rejected(self):
        """Test a ready session only leaves through disconnect."""
        with pytest.raises(InvalidTransition):
            transition(SessionState.READY, ClientEvent.AUTH_FAILURE)

    def test_disconnect_from_any_live_state(self):
        """Test disconnect closes every non-terminal state."""
        for state in (SessionState.NEW, SessionState.PAIRING, SessionState.AUTHENTICATED, SessionState.READY):
            assert transition(state, ClientEvent.DISCONNECTED) == SessionState.CLOSED

        with pytest.raises(InvalidTransition):
            transition(SessionState.CLOSED, ClientEvent.DISCONNECTED)

    def test_qr_after_ready_is_rejected(self):
        with pytest.raises(InvalidTransition):
            transition(SessionState.READY, ClientEvent.QR)

    def test_message_events_keep_state(self):
        """Test message events never move the state."""
        assert transition(SessionState.READY, ClientEvent.MESSAGE) == SessionState.READY
        assert transition(SessionState.PAIRING, ClientEvent.MESSAGE_ACK) == SessionState.PAIRING

        with pytest.raises(InvalidTransition):
            transition(SessionState.CLOSED, ClientEvent.MESSAGE)


class TestConnectionHandle:
    """Tests for ConnectionHandle."""

    def test_apply_valid_event(self, handle):
        assert handle.apply(ClientEvent.READY) is True
        assert handle.is_ready

    def test_apply_invalid_event_keeps_state(self, handle):
        """Test an out-of-order event is ignored."""
        handle.apply(ClientEvent.READY)

        assert handle.apply(ClientEvent.QR) is False
        assert handle.state == SessionState.READY

    @pytest.mark.asyncio
    async def test_close_destroys_client(self, handle):
        """Test close releases the client and forgets the pairing code."""
        handle.apply(ClientEvent.QR)
        handle.pairing_code = "data:image/png;base64,abc"

        await handle.close()

        assert handle.state == SessionState.CLOSED
        assert handle.pairing_code is None
        assert handle.client.destroyed is True

    @pytest.mark.asyncio
    async def test_close_keeps_failed_state(self, handle):
        handle.apply(ClientEvent.AUTH_FAILURE)

        await handle.close()

        assert handle.state == SessionState.FAILED

    @pytest.mark.asyncio
    async def test_close_swallows_destroy_errors(self, tmp_path):
        """Test a failing destroy does not propagate."""
        client = StubSessionClient("acc-1", str(tmp_path / "s"))

        async def broken_destroy():
            raise RuntimeError("browser already gone")

        client.destroy = broken_destroy
        handle = ConnectionHandle("acc-1", client)

        await handle.close()

        assert handle.state == SessionState.CLOSED


class TestSessionRegistry:
    """Tests for SessionRegistry."""

    def test_add_and_get(self, handle):
        registry = SessionRegistry()
        registry.add(handle)

        assert registry.get_handle("acc-1") is handle
        assert registry.get_handle("acc-2") is None
        assert len(registry) == 1

    def test_remove_checks_identity(self, handle, tmp_path):
        """Test a replaced handle cannot evict its successor."""
        registry = SessionRegistry()
        registry.add(handle)
        successor = ConnectionHandle("acc-1", StubSessionClient("acc-1", str(tmp_path / "s2")))
        registry.add(successor)

        assert registry.remove("acc-1", handle) is None
        assert registry.get_handle("acc-1") is successor

        assert registry.remove("acc-1", successor) is successor
        assert registry.get_handle("acc-1") is None

    def test_remove_without_handle(self, handle):
        registry = SessionRegistry()
        registry.add(handle)

        assert registry.remove("acc-1") is handle
        assert registry.remove("acc-1") is None

    def test_all_handles_is_a_snapshot(self, handle):
        registry = SessionRegistry()
        registry.add(handle)

        snapshot = registry.all_handles()
        registry.remove("acc-1")

        assert snapshot == [("acc-1", handle)]
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_pending_is_cleared_only_by_its_owner(self):
        """Test clear_pending with a stale future leaves the current one."""
        registry = SessionRegistry()
        loop = asyncio.get_running_loop()
        first, second = loop.create_future(), loop.create_future()

        registry.set_pending("acc-1", second)
        registry.clear_pending("acc-1", first)
        assert registry.get_pending("acc-1") is second

        registry.clear_pending("acc-1", second)
        assert registry.get_pending("acc-1") is None
