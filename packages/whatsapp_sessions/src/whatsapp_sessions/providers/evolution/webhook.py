"""
Evolution API Webhook Utilities

Helper functions for routing Evolution API webhooks to session clients.
"""

import logging
from typing import Any

logger = logging.getLogger(__name__)

QRCODE_UPDATED = "qrcode.updated"
CONNECTION_UPDATE = "connection.update"
MESSAGES_UPSERT = "messages.upsert"
MESSAGES_UPDATE = "messages.update"


def normalize_event_name(event: str | None) -> str:
    """
    Normalize an event name.

    Evolution sends "messages.upsert" or, depending on configuration,
    "MESSAGES_UPSERT".
    """
    if not event:
        return ""
    return event.strip().lower().replace("_", ".")


def extract_instance_name(payload: dict[str, Any]) -> str | None:
    """
    Extract instance name from webhook payload.

    This is used to find the session before full parsing.
    """
    return payload.get("instance")


def instance_name_for(prefix: str, account_id: str) -> str:
    """Evolution instance name of an account."""
    return f"{prefix}-{account_id}"


def account_id_from_instance(prefix: str, instance_name: str | None) -> str | None:
    """Inverse of instance_name_for; None for instances we did not create."""
    if not instance_name or not instance_name.startswith(f"{prefix}-"):
        return None
    return instance_name[len(prefix) + 1 :]


def validate_api_key(request_headers: dict[str, str], expected_api_key: str) -> bool:
    """
    Validate API key from request headers.

    Evolution API can send API key in:
    - Header: "apikey"
    - Header: "Authorization: Bearer <key>"
    """
    apikey_header = request_headers.get("apikey") or request_headers.get("Apikey")
    if apikey_header == expected_api_key:
        return True

    auth_header = request_headers.get("authorization") or request_headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:]
        if token == expected_api_key:
            return True

    return False
