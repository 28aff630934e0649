"""
WhatsApp Notification Envelope

Wrapper for user notifications published to a Redis stream. Stream entries
are flat string maps, so the payload and metadata travel as JSON text.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

_JSON_FIELDS = ("payload", "metadata")


@dataclass
class NotificationEnvelope:
    """
    A notification addressed to the owner of a WhatsApp account.

    Attributes:
        event_type: NotificationType value
        user_id: Owner of the account the notification is about
        payload: title/message texts plus event-specific ids
        metadata: Source service; stream_msg_id once read back
    """

    event_type: str
    user_id: str
    payload: dict[str, Any]
    event_id: UUID = field(default_factory=uuid4)
    occurred_at: datetime = field(default_factory=datetime.utcnow)
    version: int = 1
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        event_type: str,
        user_id: str,
        payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> "NotificationEnvelope":
        return cls(event_type=event_type, user_id=str(user_id), payload=payload, metadata=metadata or {})

    def to_stream_data(self) -> dict[str, str]:
        data = {
            "event_id": str(self.event_id),
            "event_type": self.event_type,
            "user_id": self.user_id,
            "occurred_at": self.occurred_at.isoformat(),
            "version": str(self.version),
        }
        for name in _JSON_FIELDS:
            data[name] = json.dumps(getattr(self, name), default=str)
        return data

    @classmethod
    def from_stream_message(cls, msg_id: str, data: dict[str, str]) -> "NotificationEnvelope":
        """Rebuild an envelope from a stream entry (used by consumers and tests)."""
        decoded = {name: json.loads(data.get(name) or "{}") for name in _JSON_FIELDS}
        decoded["metadata"]["stream_msg_id"] = msg_id

        occurred_at = data.get("occurred_at")
        return cls(
            event_type=data["event_type"],
            user_id=data["user_id"],
            event_id=UUID(data["event_id"]),
            occurred_at=datetime.fromisoformat(occurred_at) if occurred_at else datetime.utcnow(),
            version=int(data.get("version") or 1),
            **decoded,
        )
