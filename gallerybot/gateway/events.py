"""Event payloads pushed by the gateway webhook."""

from typing import Any, Dict

from pydantic import BaseModel, Field

EVENT_MESSAGES_UPSERT = "messages.upsert"
EVENT_CONNECTION_UPDATE = "connection.update"
EVENT_CREDS_UPDATE = "creds.update"


class GatewayEvent(BaseModel):
    """One Baileys event forwarded as ``{"event": ..., "data": ...}``."""

    event: str = Field(..., description="Baileys event name")
    data: Dict[str, Any] = Field(default_factory=dict)
