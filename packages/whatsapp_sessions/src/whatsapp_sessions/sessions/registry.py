"""
Session Registry

Maps account ids to live connection handles, plus the in-flight creation
task per account so concurrent creators share one attempt.

Both maps are only touched from the event loop thread.
"""

import asyncio
import logging
from typing import Any

from whatsapp_sessions.sessions.handle import ConnectionHandle

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Account id -> ConnectionHandle, and account id -> pending creation."""

    def __init__(self):
        self._handles: dict[str, ConnectionHandle] = {}
        self._pending: dict[str, asyncio.Future[Any]] = {}

    def get_handle(self, account_id: str) -> ConnectionHandle | None:
        return self._handles.get(account_id)

    def all_handles(self) -> list[tuple[str, ConnectionHandle]]:
        """Snapshot of every registered handle."""
        return list(self._handles.items())

    def add(self, handle: ConnectionHandle) -> None:
        existing = self._handles.get(handle.account_id)
        if existing is not None and existing is not handle:
            logger.warning(
                "Replacing connection handle",
                extra={"account_id": handle.account_id},
            )
        self._handles[handle.account_id] = handle

    def remove(self, account_id: str, handle: ConnectionHandle | None = None) -> ConnectionHandle | None:
        """
        Remove a handle.

        When `handle` is given, only that exact handle is removed, so a late
        event from a replaced client cannot evict its successor.
        """
        current = self._handles.get(account_id)
        if current is None or (handle is not None and current is not handle):
            return None
        return self._handles.pop(account_id)

    def get_pending(self, account_id: str) -> asyncio.Future[Any] | None:
        return self._pending.get(account_id)

    def set_pending(self, account_id: str, future: asyncio.Future[Any]) -> None:
        self._pending[account_id] = future

    def clear_pending(self, account_id: str, future: asyncio.Future[Any] | None = None) -> None:
        if future is None or self._pending.get(account_id) is future:
            self._pending.pop(account_id, None)

    def __len__(self) -> int:
        return len(self._handles)
