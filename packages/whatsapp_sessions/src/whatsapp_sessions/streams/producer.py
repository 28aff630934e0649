"""
WhatsApp Notification Producer

Publishes owner notifications to a Redis Stream. Notifications are
fire-and-forget: a Redis outage never fails the operation that caused it.
"""

import logging

import redis

from whatsapp_sessions.contracts.envelope import NotificationEnvelope
from whatsapp_sessions.contracts.event_types import NotificationType
from whatsapp_sessions.contracts.payloads import (
    ConnectionStatusPayload,
    MessageStatusPayload,
    NewMessagePayload,
)
from whatsapp_sessions.persistence.models import MessageStatus

logger = logging.getLogger(__name__)

NOTIFICATION_STREAM = "bc:whatsapp:notifications"

CONNECTION_STATUS_MESSAGES = {
    "CONNECTED": "conectado com sucesso",
    "DISCONNECTED": "foi desconectado",
    "ERROR": "encontrou um erro na conexão",
    "CONNECTING": "está conectando",
}

PREVIEW_LENGTH = 50


def preview(content: str | None) -> str:
    """First characters of a message for notification bodies."""
    content = content or ""
    if len(content) > PREVIEW_LENGTH:
        return content[:PREVIEW_LENGTH] + "..."
    return content


class WhatsAppNotifier:
    """
    Notification publisher for account owners.

    Every notify_* method returns the stream message id, or None when
    publishing failed or nothing had to be published.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        stream_name: str = NOTIFICATION_STREAM,
        max_len: int = 100000,
    ):
        self.redis = redis_client
        self.stream_name = stream_name
        self.max_len = max_len

    def notify_connection_status(
        self,
        user_id: str,
        account_id: str,
        phone_number: str,
        status: str,
    ) -> str | None:
        """Account connected, disconnected, failed or is connecting."""
        status = getattr(status, "value", status)
        text = CONNECTION_STATUS_MESSAGES.get(status, f"mudou para {status}")
        payload = ConnectionStatusPayload(
            title="Status WhatsApp alterado",
            message=f"{phone_number} {text}",
            account_id=str(account_id),
            phone_number=phone_number,
            status=status,
        )
        return self._publish(NotificationType.CONNECTION_STATUS, user_id, payload.model_dump())

    def notify_new_message(
        self,
        user_id: str,
        account_id: str,
        conversation_id: str,
        content: str | None,
        from_number: str,
    ) -> str | None:
        """A contact sent a message."""
        payload = NewMessagePayload(
            title="Nova mensagem WhatsApp",
            message=f"Mensagem de {from_number}: {preview(content)}",
            account_id=str(account_id),
            conversation_id=str(conversation_id),
            from_number=from_number,
            content=content,
        )
        return self._publish(NotificationType.NEW_MESSAGE, user_id, payload.model_dump())

    def notify_message_status(
        self,
        user_id: str,
        message_id: str,
        status: str,
        to_number: str,
        account_id: str | None = None,
    ) -> str | None:
        """Outbound message delivered or read. Other statuses are not notified."""
        status = getattr(status, "value", status)
        if status not in (MessageStatus.DELIVERED.value, MessageStatus.READ.value):
            return None

        status_text = "lida" if status == MessageStatus.READ.value else "entregue"
        payload = MessageStatusPayload(
            title=f"Mensagem {status_text}",
            message=f"Sua mensagem para {to_number} foi {status_text}",
            account_id=str(account_id) if account_id else None,
            message_id=message_id,
            to_number=to_number,
            status=status,
        )
        return self._publish(NotificationType.MESSAGE_STATUS, user_id, payload.model_dump())

    def _publish(self, event_type: NotificationType, user_id: str, payload: dict) -> str | None:
        envelope = NotificationEnvelope.create(
            event_type=event_type.value,
            user_id=user_id,
            payload=payload,
            metadata={"source": "whatsapp_sessions"},
        )

        try:
            msg_id = self.redis.xadd(
                self.stream_name,
                envelope.to_stream_data(),
                maxlen=self.max_len,
                approximate=True,
            )
        except redis.RedisError as e:
            logger.warning(
                f"Failed to publish notification: {e}",
                extra={"event_type": event_type.value, "user_id": str(user_id)},
            )
            return None

        logger.debug(
            f"Published to {self.stream_name}",
            extra={
                "stream": self.stream_name,
                "event_type": envelope.event_type,
                "event_id": str(envelope.event_id),
                "msg_id": msg_id,
            },
        )
        return msg_id
