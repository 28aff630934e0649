"""
WhatsApp Sessions API

FastAPI app exposing the session engine.

Responsibilities:
- Start/stop sessions and report their status (QR code while pairing)
- Send text messages through live sessions
- Trigger conversation syncs and list conversations
- Read a conversation's recent messages and mark it as read
- Receive Evolution API webhooks and feed them to the live clients
- Restore sessions of CONNECTED accounts on startup
"""

import json
import logging
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from basecore.logging import setup_logging

from whatsapp_sessions.manager import WhatsAppManager
from whatsapp_sessions.persistence.models import ConversationStatus, WhatsAppAccount, WhatsAppConversation
from whatsapp_sessions.persistence.repo import WhatsAppRepository
from whatsapp_sessions.providers.evolution.webhook import (
    account_id_from_instance,
    extract_instance_name,
    validate_api_key,
)

setup_logging()
logger = logging.getLogger(__name__)


class SendMessageRequest(BaseModel):
    """Body of POST /accounts/{account_id}/send."""

    to: str = Field(..., min_length=1, description="Phone number or chat id")
    content: str = Field(..., min_length=1, description="Message text")
    message_type: str = Field("TEXT", description="Only TEXT is supported")


def get_manager(request: Request) -> WhatsAppManager:
    """Session manager attached to the app."""
    return request.app.state.manager


def load_account(manager: WhatsAppManager, account_id: str) -> WhatsAppAccount:
    with manager.session_factory() as db:
        try:
            account = WhatsAppRepository(db).get_account(account_id)
        except ValueError:
            account = None
    if account is None:
        raise HTTPException(status_code=404, detail="Account not found")
    return account


def load_conversation(manager: WhatsAppManager, conversation_id: str) -> WhatsAppConversation:
    with manager.session_factory() as db:
        try:
            conversation = WhatsAppRepository(db).get_conversation_by_id(conversation_id)
        except ValueError:
            conversation = None
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


def create_app(manager: WhatsAppManager | None = None) -> FastAPI:
    """
    Build the API.

    Args:
        manager: Session manager; built from the environment on startup when
            not given
    """
    app = FastAPI(
        title="WhatsApp Sessions",
        description="Live WhatsApp session management",
        version="1.0.0",
    )
    app.state.manager = manager

    @app.on_event("startup")
    async def startup():
        """Build the manager if needed and restore CONNECTED sessions."""
        if app.state.manager is None:
            app.state.manager = WhatsAppManager.from_env()

        results = await app.state.manager.restore_all()
        restored = sum(1 for result in results.values() if result.success)
        logger.info(
            f"WhatsApp sessions service started, restored {restored}/{len(results)} sessions"
        )

    @app.on_event("shutdown")
    async def shutdown():
        if app.state.manager is not None:
            await app.state.manager.shutdown()

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy", "service": "whatsapp-sessions"}

    @app.post("/accounts/{account_id}/connect")
    async def connect(account_id: str, manager: WhatsAppManager = Depends(get_manager)):
        """Start a session; returns the QR code while the device is not linked."""
        account = load_account(manager, account_id)
        result = await manager.start_session(str(account.id), str(account.user_id))
        return JSONResponse(result.to_dict(), status_code=200 if result.success else 500)

    @app.post("/accounts/{account_id}/disconnect")
    async def disconnect(account_id: str, manager: WhatsAppManager = Depends(get_manager)):
        account = load_account(manager, account_id)
        success = await manager.stop_session(str(account.id))
        return JSONResponse({"success": success}, status_code=200 if success else 500)

    @app.get("/accounts/{account_id}/status")
    async def status(account_id: str, manager: WhatsAppManager = Depends(get_manager)):
        """Persisted account status plus the in-memory session state."""
        account = load_account(manager, account_id)
        return {
            "success": True,
            "id": str(account.id),
            "status": account.status,
            "phone_number": account.phone_number,
            "display_name": account.display_name,
            "last_heartbeat": account.last_heartbeat.isoformat() if account.last_heartbeat else None,
            "qr_code": account.qr_code,
            "session": manager.session_status(str(account.id)),
        }

    @app.post("/accounts/{account_id}/send")
    async def send(
        account_id: str,
        body: SendMessageRequest,
        manager: WhatsAppManager = Depends(get_manager),
    ):
        account = load_account(manager, account_id)
        result = await manager.send(str(account.id), body.to, body.content, body.message_type)
        return JSONResponse(result.to_dict(), status_code=200 if result.success else 400)

    @app.post("/accounts/{account_id}/sync")
    async def sync(account_id: str, manager: WhatsAppManager = Depends(get_manager)):
        account = load_account(manager, account_id)
        result = await manager.sync_all(str(account.id))
        return JSONResponse(result.to_dict(), status_code=200 if result.success else 400)

    @app.get("/accounts/{account_id}/conversations")
    async def conversations(
        account_id: str,
        status: str | None = Query(None, description="ACTIVE, ARCHIVED or BLOCKED"),
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
        manager: WhatsAppManager = Depends(get_manager),
    ):
        account = load_account(manager, account_id)

        status_filter = None
        if status:
            try:
                status_filter = ConversationStatus(status.upper())
            except ValueError:
                raise HTTPException(status_code=400, detail=f"Unknown status: {status}")

        with manager.session_factory() as db:
            repo = WhatsAppRepository(db)
            rows = repo.list_conversations(account.id, status=status_filter, limit=limit, offset=offset)
            total = repo.count_conversations(account.id)

        return {
            "success": True,
            "total": total,
            "conversations": [_conversation_to_dict(conv) for conv in rows],
        }

    @app.get("/conversations/{conversation_id}/messages")
    async def conversation_messages(
        conversation_id: str,
        limit: int = Query(50, ge=1, le=500),
        manager: WhatsAppManager = Depends(get_manager),
    ):
        """Latest messages of a conversation, oldest first."""
        conversation = load_conversation(manager, conversation_id)

        with manager.session_factory() as db:
            rows = WhatsAppRepository(db).list_messages(conversation.id, limit=limit)

        return {
            "success": True,
            "conversation_id": str(conversation.id),
            "messages": [_message_to_dict(message) for message in rows],
        }

    @app.post("/conversations/{conversation_id}/read")
    async def mark_read(conversation_id: str, manager: WhatsAppManager = Depends(get_manager)):
        conversation = load_conversation(manager, conversation_id)

        with manager.session_factory() as db:
            WhatsAppRepository(db).mark_conversation_read(conversation.id)
            db.commit()

        return {"success": True}

    @app.post("/webhook/evolution")
    async def evolution_webhook(request: Request, manager: WhatsAppManager = Depends(get_manager)):
        """
        Receive Evolution API webhooks.

        The instance name identifies the account; the payload is handed to
        that account's live client, which turns it into session events.
        """
        api_key = manager.settings.evolution_api_key
        if api_key and not validate_api_key(dict(request.headers), api_key):
            logger.warning("Invalid Evolution API key")
            raise HTTPException(status_code=403, detail="Invalid API key")

        try:
            payload = json.loads(await request.body())
        except json.JSONDecodeError:
            logger.warning("Invalid JSON payload")
            raise HTTPException(status_code=400, detail="Invalid JSON")

        instance_name = extract_instance_name(payload)
        account_id = account_id_from_instance(manager.settings.evolution_instance_prefix, instance_name)
        if account_id is None:
            logger.debug(f"Webhook for unknown instance {instance_name}")
            return {"status": "ignored", "reason": "unknown_instance"}

        dispatched = await manager.dispatch_webhook(account_id, payload)
        if not dispatched:
            return {"status": "ignored", "reason": "no_session"}
        return {"status": "ok"}

    return app


def _conversation_to_dict(conv) -> dict[str, Any]:
    return {
        "id": str(conv.id),
        "contact_number": conv.contact_number,
        "contact_name": conv.contact_name,
        "profile_picture": conv.profile_picture,
        "is_group": conv.is_group,
        "unread_count": conv.unread_count,
        "status": conv.status,
        "last_message_at": conv.last_message_at.isoformat() if conv.last_message_at else None,
    }


def _message_to_dict(message) -> dict[str, Any]:
    return {
        "id": str(message.id),
        "whatsapp_id": message.whatsapp_id,
        "direction": message.direction,
        "message_type": message.message_type,
        "content": message.content,
        "media_url": message.media_url,
        "status": message.status,
        "from_number": message.from_number,
        "to_number": message.to_number,
        "timestamp": message.timestamp.isoformat() if message.timestamp else None,
    }


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8010)
