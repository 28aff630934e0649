"""
Process-wide settings for basecore.

Values are read from the environment once and cached.
"""

import functools
import os


class Settings:
    """Infrastructure settings shared by every service."""

    def __init__(self) -> None:
        self.DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./whatsapp.db")
        self.REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
        self.LOG_FORMAT = os.getenv("LOG_FORMAT", "text")  # text or json
        self.SERVICE_NAME = os.getenv("SERVICE_NAME", "whatsapp-sessions")


@functools.lru_cache()
def get_settings() -> Settings:
    """Get settings (cached)."""
    return Settings()
