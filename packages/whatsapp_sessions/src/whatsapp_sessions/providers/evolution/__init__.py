"""Evolution API session client."""

from whatsapp_sessions.providers.evolution.client import EvolutionSessionClient
from whatsapp_sessions.providers.evolution.webhook import (
    account_id_from_instance,
    extract_instance_name,
    instance_name_for,
    validate_api_key,
)

__all__ = [
    "EvolutionSessionClient",
    "account_id_from_instance",
    "extract_instance_name",
    "instance_name_for",
    "validate_api_key",
]
