"""
Session Blob Encoding

The account's session summary is stored as JSON, Fernet-encrypted when an
encryption key is configured.
"""

import json
import logging
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


def encode_session_blob(data: dict[str, Any], encryption_key: str | None = None) -> str:
    """Serialize (and encrypt if a key is given) a session summary."""
    raw = json.dumps(data, default=str)
    if not encryption_key:
        return raw
    return Fernet(encryption_key.encode()).encrypt(raw.encode()).decode()


def decode_session_blob(blob: str | None, encryption_key: str | None = None) -> dict[str, Any] | None:
    """
    Inverse of encode_session_blob.

    Returns None for an empty blob or one that cannot be decrypted.
    """
    if not blob:
        return None
    if encryption_key:
        try:
            blob = Fernet(encryption_key.encode()).decrypt(blob.encode()).decode()
        except InvalidToken:
            logger.warning("Failed to decrypt session blob")
            return None
    return json.loads(blob)
