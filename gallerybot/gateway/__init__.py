"""Baileys gateway integration (REST client, webhook events, signing)."""

from .client import GatewayClient
from .events import (
    EVENT_CONNECTION_UPDATE,
    EVENT_CREDS_UPDATE,
    EVENT_MESSAGES_UPSERT,
    GatewayEvent,
)

__all__ = [
    "EVENT_CONNECTION_UPDATE",
    "EVENT_CREDS_UPDATE",
    "EVENT_MESSAGES_UPSERT",
    "GatewayClient",
    "GatewayEvent",
]
