"""
Evolution API Session Client

Session client backed by Evolution API (Baileys-based WhatsApp Web
integration). REST calls go out over httpx; connection and message events
come back as webhooks and are fed in through dispatch_webhook().

Documentation: https://doc.evolution-api.com/
"""

import json
import logging
import os
from datetime import datetime
from typing import Any

import httpx

from whatsapp_sessions.persistence.models import MessageStatus, MessageType
from whatsapp_sessions.providers.base import (
    Chat,
    ClientEvent,
    ClientInfo,
    Contact,
    MessageAck,
    ProviderError,
    ProviderMessage,
    SentMessage,
    SessionClient,
    from_epoch,
)
from whatsapp_sessions.providers.evolution.webhook import (
    CONNECTION_UPDATE,
    MESSAGES_UPDATE,
    MESSAGES_UPSERT,
    QRCODE_UPDATED,
    normalize_event_name,
)
from whatsapp_sessions.routing.identifiers import bare_number, is_group_id

logger = logging.getLogger(__name__)

BAILEYS_SUFFIX = "@s.whatsapp.net"

# Map Evolution message types
TYPE_MAPPING = {
    "conversation": MessageType.TEXT,
    "extendedTextMessage": MessageType.TEXT,
    "imageMessage": MessageType.IMAGE,
    "videoMessage": MessageType.VIDEO,
    "audioMessage": MessageType.AUDIO,
    "documentMessage": MessageType.DOCUMENT,
    "stickerMessage": MessageType.STICKER,
    "locationMessage": MessageType.LOCATION,
    "contactMessage": MessageType.CONTACT,
    "contactsArrayMessage": MessageType.CONTACT,
}

ACK_MAPPING = {
    "SERVER_ACK": MessageStatus.SENT,
    "DELIVERY_ACK": MessageStatus.DELIVERED,
    "READ": MessageStatus.READ,
    "PLAYED": MessageStatus.READ,
    "ERROR": MessageStatus.FAILED,
}


def to_chat_id(jid: str) -> str:
    """Baileys jid -> chat id (5511...@s.whatsapp.net -> 5511...@c.us)."""
    if jid.endswith(BAILEYS_SUFFIX):
        return jid[: -len(BAILEYS_SUFFIX)] + "@c.us"
    return jid


class EvolutionSessionClient(SessionClient):
    """
    Evolution API session client.

    Each account owns one Evolution instance. The instance name and token
    are kept in the account's credential file, so after a restart the
    existing (already paired) instance is reused instead of asking for a
    new QR code.
    """

    def __init__(
        self,
        account_id: str,
        credentials_path: str,
        api_url: str,
        api_key: str,
        instance_name: str,
        webhook_url: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize Evolution session client.

        Args:
            account_id: Account this connection belongs to
            credentials_path: Local file holding the instance credentials
            api_url: Base URL of Evolution API (e.g., "https://evolution-api.example.com")
            api_key: Global API key for authentication
            instance_name: Name of the Evolution instance
            webhook_url: Where Evolution should post events for this instance
            timeout: HTTP request timeout
            transport: Custom httpx transport (tests)
        """
        super().__init__(account_id, credentials_path)
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.instance_name = instance_name
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._connected = False
        self._own_wid: str | None = None  # Known once get_info succeeded

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    "Content-Type": "application/json",
                    "apikey": self.api_key,
                },
            )
        return self._client

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        json_data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Make an authenticated API request."""
        client = await self._get_client()
        url = f"{self.api_url}{endpoint}"

        try:
            response = await client.request(method.upper(), url, json=json_data, params=params)
        except httpx.RequestError as e:
            logger.error(f"HTTP request failed: {e}")
            raise ProviderError(
                message=f"HTTP request failed: {e}",
                code="HTTP_ERROR",
                retryable=True,
            )

        try:
            response_data = response.json()
        except ValueError:
            response_data = {}

        if response.status_code >= 400:
            error = "Unknown error"
            if isinstance(response_data, dict):
                error = response_data.get("error") or response_data.get("message", error)
            raise ProviderError(
                message=str(error),
                code=str(response.status_code),
                details=response_data if isinstance(response_data, dict) else {"body": response_data},
                retryable=response.status_code >= 500,
            )

        return response_data

    # =========================================================================
    # Credentials
    # =========================================================================

    def _load_credentials(self) -> dict[str, Any] | None:
        if not os.path.exists(self.credentials_path):
            return None
        with open(self.credentials_path) as f:
            return json.load(f)

    def _save_credentials(self, token: str | None) -> None:
        os.makedirs(os.path.dirname(self.credentials_path) or ".", exist_ok=True)
        with open(self.credentials_path, "w") as f:
            json.dump({"instance_name": self.instance_name, "token": token}, f)

    # =========================================================================
    # SessionClient
    # =========================================================================

    async def initialize(self) -> None:
        """
        Create or reattach the Evolution instance.

        Emits QR when the instance needs pairing, or AUTHENTICATED + READY
        when the stored instance is still linked.
        """
        if self._load_credentials() is not None:
            state = await self._connection_state()
            if state == "open":
                await self._mark_connected()
                return
            try:
                response = await self._make_request("GET", f"/instance/connect/{self.instance_name}")
            except ProviderError as e:
                if e.code != "404":
                    raise
                # Instance was deleted on the server; pair from scratch
                logger.warning(
                    f"Evolution instance {self.instance_name} no longer exists, recreating",
                    extra={"account_id": self.account_id},
                )
                os.remove(self.credentials_path)
            else:
                await self._emit_qr(response)
                return

        payload: dict[str, Any] = {
            "instanceName": self.instance_name,
            "qrcode": True,
            "integration": "WHATSAPP-BAILEYS",
        }
        if self.webhook_url:
            payload["webhook"] = {
                "url": self.webhook_url,
                "byEvents": False,
                "events": ["QRCODE_UPDATED", "CONNECTION_UPDATE", "MESSAGES_UPSERT", "MESSAGES_UPDATE"],
            }

        response = await self._make_request("POST", "/instance/create", payload)
        token = response.get("hash")
        if isinstance(token, dict):
            token = token.get("apikey")
        self._save_credentials(token)

        logger.info(
            "Created Evolution instance",
            extra={"account_id": self.account_id, "instance": self.instance_name},
        )
        await self._emit_qr(response)

    async def _connection_state(self) -> str | None:
        try:
            response = await self._make_request(
                "GET", f"/instance/connectionState/{self.instance_name}"
            )
        except ProviderError as e:
            logger.warning(f"Failed to get connection state: {e}")
            return None
        return (response.get("instance") or {}).get("state")

    async def _emit_qr(self, response: dict[str, Any]) -> None:
        qrcode = response.get("qrcode") if isinstance(response.get("qrcode"), dict) else response
        code = (qrcode or {}).get("code")
        if code:
            await self.emit(ClientEvent.QR, code)

    async def _mark_connected(self) -> None:
        if self._connected:
            return
        self._connected = True
        await self.emit(ClientEvent.AUTHENTICATED)
        await self.emit(ClientEvent.READY)

    async def get_info(self) -> ClientInfo:
        response = await self._make_request(
            "GET", "/instance/fetchInstances", params={"instanceName": self.instance_name}
        )
        instances = response if isinstance(response, list) else [response]
        for instance in instances:
            data = instance.get("instance", instance)
            owner = data.get("ownerJid") or data.get("owner") or ""
            if owner:
                wid = to_chat_id(owner)
                self._own_wid = wid
                return ClientInfo(
                    wid=wid,
                    user=bare_number(wid),
                    pushname=data.get("profileName"),
                )
        raise ProviderError(f"Instance not found: {self.instance_name}", code="NOT_FOUND")

    async def get_chats(self) -> list[Chat]:
        response = await self._make_request("POST", f"/chat/findChats/{self.instance_name}", {})
        chats = []
        for item in response or []:
            chat_id = to_chat_id(item.get("remoteJid") or item.get("id") or "")
            if not chat_id:
                continue
            updated_at = item.get("updatedAt")
            chats.append(
                Chat(
                    id=chat_id,
                    name=item.get("name") or item.get("pushName"),
                    is_group=is_group_id(chat_id),
                    unread_count=int(item.get("unreadCount") or item.get("unreadMessages") or 0),
                    timestamp=(
                        datetime.fromisoformat(updated_at.replace("Z", "+00:00")).replace(tzinfo=None)
                        if updated_at
                        else None
                    ),
                )
            )
        return chats

    async def get_chat(self, chat_id: str) -> Chat:
        if is_group_id(chat_id):
            response = await self._make_request(
                "GET",
                f"/group/findGroupInfos/{self.instance_name}",
                params={"groupJid": chat_id},
            )
            return Chat(id=chat_id, name=response.get("subject"), is_group=True)

        contact = await self.get_contact(chat_id)
        return Chat(id=chat_id, name=contact.name or contact.pushname)

    async def get_contact(self, chat_id: str) -> Contact:
        jid = chat_id.replace("@c.us", BAILEYS_SUFFIX)
        response = await self._make_request(
            "POST", f"/chat/findContacts/{self.instance_name}", {"where": {"remoteJid": jid}}
        )
        if not response:
            raise ProviderError(f"Contact not found: {chat_id}", code="NOT_FOUND")
        item = response[0]
        return Contact(
            id=chat_id,
            name=item.get("name"),
            pushname=item.get("pushName"),
            number=bare_number(chat_id),
        )

    async def get_profile_pic_url(self, chat_id: str) -> str | None:
        response = await self._make_request(
            "POST",
            f"/chat/fetchProfilePictureUrl/{self.instance_name}",
            {"number": bare_number(chat_id) if not is_group_id(chat_id) else chat_id},
        )
        return response.get("profilePictureUrl")

    async def fetch_messages(self, chat_id: str, limit: int = 50) -> list[ProviderMessage]:
        jid = chat_id.replace("@c.us", BAILEYS_SUFFIX)
        response = await self._make_request(
            "POST",
            f"/chat/findMessages/{self.instance_name}",
            {"where": {"key": {"remoteJid": jid}}, "limit": limit},
        )
        records = response.get("messages", {}).get("records", []) if isinstance(response, dict) else response
        messages = [m for m in (self.parse_message(r) for r in records) if m is not None]
        messages.sort(key=lambda m: m.timestamp, reverse=True)
        return messages[:limit]

    async def send_message(self, to: str, content: str) -> SentMessage:
        """Send a text message via Evolution API."""
        number = to if is_group_id(to) else bare_number(to)
        response = await self._make_request(
            "POST",
            f"/message/sendText/{self.instance_name}",
            {"number": number, "text": content},
        )
        message_id = response.get("key", {}).get("id") or response.get("id")
        if not message_id:
            raise ProviderError("Evolution API returned no message id", details=response)

        logger.info(
            "Sent text message via Evolution API",
            extra={"to": to, "message_id": message_id, "instance": self.instance_name},
        )
        return SentMessage(
            id=message_id,
            to=to,
            timestamp=from_epoch(response.get("messageTimestamp")),
        )

    async def destroy(self) -> None:
        """Close the HTTP client. The Evolution instance stays paired."""
        self._connected = False
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    # =========================================================================
    # Webhooks
    # =========================================================================

    async def dispatch_webhook(self, payload: dict[str, Any]) -> None:
        """
        Translate an Evolution webhook into client events.

        Evolution API webhook format:
        {
            "event": "messages.upsert",
            "instance": "instance_name",
            "data": {...}
        }
        """
        event = normalize_event_name(payload.get("event"))
        data = payload.get("data") or {}

        if event == QRCODE_UPDATED:
            await self._emit_qr(data)

        elif event == CONNECTION_UPDATE:
            state = data.get("state")
            if state == "open":
                await self._mark_connected()
            elif state == "close":
                was_connected = self._connected
                self._connected = False
                if data.get("statusReason") == 401 and not was_connected:
                    await self.emit(ClientEvent.AUTH_FAILURE, "logged out")
                else:
                    await self.emit(ClientEvent.DISCONNECTED, str(data.get("statusReason", "close")))

        elif event == MESSAGES_UPSERT:
            message = self.parse_message(data)
            if message is None:
                return
            if not message.from_me:
                await self.emit(ClientEvent.MESSAGE, message)
            await self.emit(ClientEvent.MESSAGE_CREATE, message)

        elif event == MESSAGES_UPDATE:
            raw_status = data.get("status") or (data.get("update") or {}).get("status", "")
            status = ACK_MAPPING.get(str(raw_status).upper())
            message_id = data.get("keyId") or data.get("key", {}).get("id")
            if status and message_id:
                await self.emit(
                    ClientEvent.MESSAGE_ACK,
                    MessageAck(
                        message_id=message_id,
                        chat_id=to_chat_id(data.get("remoteJid") or data.get("key", {}).get("remoteJid", "")),
                        status=status,
                    ),
                )

        else:
            logger.debug(f"Ignoring Evolution event {event}", extra={"instance": self.instance_name})

    def parse_message(self, data: dict[str, Any]) -> ProviderMessage | None:
        """Parse a single message record from a webhook or findMessages."""
        key = data.get("key") or {}
        message_id = key.get("id")
        remote = to_chat_id(key.get("remoteJid") or "")
        if not message_id or not remote:
            return None

        message_data = data.get("message") or {}
        message_type_str = data.get("messageType", "conversation")
        msg_type = TYPE_MAPPING.get(message_type_str, MessageType.UNKNOWN)

        body = None
        if msg_type == MessageType.TEXT:
            body = message_data.get("conversation") or message_data.get("extendedTextMessage", {}).get("text")
        elif message_type_str in message_data:
            body = message_data[message_type_str].get("caption")

        from_me = bool(key.get("fromMe"))
        participant = key.get("participant")
        own_id = self._own_wid or self.instance_name
        return ProviderMessage(
            id=message_id,
            from_id=own_id if from_me else remote,
            to_id=remote if from_me else own_id,
            body=body,
            message_type=msg_type,
            timestamp=from_epoch(data.get("messageTimestamp")),
            from_me=from_me,
            author=to_chat_id(participant) if participant and not from_me else None,
            raw_payload=data,
        )
