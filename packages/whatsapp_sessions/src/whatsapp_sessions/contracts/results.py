"""
Operation Results

Public session operations report failures as values instead of raising.
"""

from dataclasses import asdict, dataclass
from typing import Any


@dataclass
class SessionResult:
    """Result of start_session."""

    success: bool
    qr_code: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SendResult:
    """Result of send."""

    success: bool
    message_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SyncResult:
    """Result of sync_all."""

    success: bool
    total_synced: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
