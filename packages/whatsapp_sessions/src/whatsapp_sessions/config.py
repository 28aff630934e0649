"""
WhatsApp Session Engine Configuration

Named tunables for the session engine. Defaults match production behaviour;
tests build their own SessionSettings with shorter delays.
"""

import os
from dataclasses import dataclass


@dataclass
class SessionSettings:
    """Settings for providers, retries and polling."""

    provider: str = "stub"  # evolution or stub
    sessions_dir: str = "./whatsapp-sessions"

    # Evolution API
    evolution_api_url: str = ""
    evolution_api_key: str = ""
    evolution_instance_prefix: str = "crm"
    evolution_webhook_url: str = ""

    # Fernet key for the persisted session blob (optional)
    encryption_key: str | None = None

    # Pairing code persistence
    qr_persist_attempts: int = 3
    qr_persist_backoff: float = 1.0

    # Send-side recovery
    ready_poll_attempts: int = 10
    ready_poll_interval: float = 1.0

    # Sync
    post_ready_sync_delay: float = 2.0
    sync_message_backfill: int = 0  # messages per chat, 0 disables

    notification_stream: str = "bc:whatsapp:notifications"

    @classmethod
    def from_env(cls) -> "SessionSettings":
        """Build settings from WHATSAPP_* / EVOLUTION_* environment variables."""
        return cls(
            provider=os.getenv("WHATSAPP_PROVIDER", "stub"),
            sessions_dir=os.getenv("WHATSAPP_SESSIONS_DIR", "./whatsapp-sessions"),
            evolution_api_url=os.getenv("EVOLUTION_API_URL", ""),
            evolution_api_key=os.getenv("EVOLUTION_API_KEY", ""),
            evolution_instance_prefix=os.getenv("EVOLUTION_INSTANCE_PREFIX", "crm"),
            evolution_webhook_url=os.getenv("EVOLUTION_WEBHOOK_URL", ""),
            encryption_key=os.getenv("WHATSAPP_ENCRYPTION_KEY") or None,
            qr_persist_attempts=int(os.getenv("WHATSAPP_QR_PERSIST_ATTEMPTS", "3")),
            qr_persist_backoff=float(os.getenv("WHATSAPP_QR_PERSIST_BACKOFF", "1.0")),
            ready_poll_attempts=int(os.getenv("WHATSAPP_READY_POLL_ATTEMPTS", "10")),
            ready_poll_interval=float(os.getenv("WHATSAPP_READY_POLL_INTERVAL", "1.0")),
            post_ready_sync_delay=float(os.getenv("WHATSAPP_POST_READY_SYNC_DELAY", "2.0")),
            sync_message_backfill=int(os.getenv("WHATSAPP_SYNC_MESSAGE_BACKFILL", "0")),
            notification_stream=os.getenv(
                "WHATSAPP_NOTIFICATION_STREAM", "bc:whatsapp:notifications"
            ),
        )

    def credentials_path(self, account_id: str) -> str:
        """Local credential store for one account."""
        return os.path.join(self.sessions_dir, f"session-{account_id}")
