"""
WhatsApp Notification Types

Notifications published by the session engine for account owners.
"""

from enum import Enum


class NotificationType(str, Enum):
    """
    Notification types published to the notification stream.

    - CONNECTION_STATUS: Account connected, disconnected or failed
    - NEW_MESSAGE: A contact sent a message
    - MESSAGE_STATUS: An outbound message was delivered or read
    """

    CONNECTION_STATUS = "whatsapp_connection_status"
    NEW_MESSAGE = "whatsapp_new_message"
    MESSAGE_STATUS = "whatsapp_message_status"

    def __str__(self) -> str:
        return self.value
