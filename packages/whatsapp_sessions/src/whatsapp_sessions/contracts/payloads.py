"""
WhatsApp Notification Payloads

Pydantic models for notification payloads. Titles and messages are
user-facing (Portuguese) and ready to display.
"""

from pydantic import BaseModel, Field


class NotificationPayload(BaseModel):
    """Fields shared by every notification."""

    title: str = Field(..., description="Short user-facing title")
    message: str = Field(..., description="User-facing body")
    account_id: str | None = Field(None, description="WhatsApp account the notification is about")


class ConnectionStatusPayload(NotificationPayload):
    """Payload for CONNECTION_STATUS notifications."""

    phone_number: str = Field(..., description="Phone number or label of the account")
    status: str = Field(..., description="New account status")


class NewMessagePayload(NotificationPayload):
    """Payload for NEW_MESSAGE notifications."""

    conversation_id: str = Field(..., description="Conversation the message belongs to")
    from_number: str = Field(..., description="Sender chat id")
    content: str | None = Field(None, description="Full message text")


class MessageStatusPayload(NotificationPayload):
    """Payload for MESSAGE_STATUS notifications."""

    message_id: str = Field(..., description="Provider message id")
    to_number: str = Field(..., description="Recipient")
    status: str = Field(..., description="DELIVERED or READ")
