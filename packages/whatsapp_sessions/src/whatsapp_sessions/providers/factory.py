"""
Session Client Factory

Builds a SessionClientFactory from settings. The lifecycle controller only
ever sees the factory, so tests can hand in their own.
"""

import logging

from whatsapp_sessions.config import SessionSettings
from whatsapp_sessions.providers.base import SessionClient, SessionClientFactory
from whatsapp_sessions.providers.evolution import EvolutionSessionClient, instance_name_for
from whatsapp_sessions.providers.stub import StubSessionClient

logger = logging.getLogger(__name__)


def build_client_factory(settings: SessionSettings) -> SessionClientFactory:
    """
    Get the client factory for the configured provider.

    Falls back to the stub when Evolution API is selected but not configured.
    """
    if settings.provider == "evolution":
        if not settings.evolution_api_url or not settings.evolution_api_key:
            logger.warning(
                "Evolution provider missing configuration: "
                f"api_url={bool(settings.evolution_api_url)}, api_key={bool(settings.evolution_api_key)}"
            )
        else:
            def evolution_factory(account_id: str, credentials_path: str) -> SessionClient:
                return EvolutionSessionClient(
                    account_id=account_id,
                    credentials_path=credentials_path,
                    api_url=settings.evolution_api_url,
                    api_key=settings.evolution_api_key,
                    instance_name=instance_name_for(settings.evolution_instance_prefix, account_id),
                    webhook_url=settings.evolution_webhook_url or None,
                )

            return evolution_factory

    elif settings.provider != "stub":
        logger.warning(f"Unknown WhatsApp provider {settings.provider!r}, using stub")

    return StubSessionClient
