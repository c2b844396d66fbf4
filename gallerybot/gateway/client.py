"""HTTP client for the Baileys gateway sidecar.

The sidecar owns the WhatsApp socket. We ask it to connect, to download
media for a message envelope and to send text; it pushes socket events back
to our webhook (see :mod:`gallerybot.api.app`).
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

import httpx
import structlog

from ..bot.utils.credential_store import CredentialStore
from ..exceptions import TransportError

logger = structlog.get_logger()


class GatewayClient:
    """Messaging transport backed by the gateway's REST endpoints."""

    def __init__(
        self,
        base_url: str,
        *,
        session: str,
        api_token: Optional[str] = None,
        credential_store: Optional[CredentialStore] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session
        self.credential_store = credential_store
        headers: Dict[str, str] = {}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url, headers=headers, timeout=timeout_seconds
        )
        self._owns_client = client is None

    async def _post(self, path: str, payload: Dict[str, Any]) -> httpx.Response:
        try:
            response = await self._client.post(path, json=payload)
        except httpx.HTTPError as e:
            raise TransportError(f"Gateway request failed: {e}") from e
        if not response.is_success:
            raise TransportError(
                f"Gateway {path} failed ({response.status_code}): "
                f"{response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    async def connect(self) -> None:
        """Start or resume the WhatsApp socket with the stored credentials."""
        creds = None
        if self.credential_store is not None:
            creds = self.credential_store.creds
            if creds is None:
                try:
                    creds = self.credential_store.load()
                except Exception as e:
                    logger.warning(
                        "Failed to load stored credentials, linking from scratch",
                        state_file=str(self.credential_store.state_file),
                        error=str(e),
                    )
        await self._post("/session/connect", {"session": self.session, "creds": creds})
        logger.info(
            "Gateway connect requested",
            session=self.session,
            has_creds=bool(creds),
        )

    async def resolve_media_bytes(self, envelope: Mapping[str, Any]) -> bytes:
        """Download and decrypt the media of one message envelope."""
        response = await self._post(
            "/messages/download",
            {"session": self.session, "message": dict(envelope)},
        )
        return response.content

    async def send_text(self, conversation_id: str, text: str) -> None:
        await self._post(
            "/messages/text",
            {"session": self.session, "jid": conversation_id, "text": text},
        )

    def save_credentials(self, update: Mapping[str, Any]) -> None:
        """Persist a ``creds.update`` payload through the credential store."""
        if self.credential_store is None:
            return
        self.credential_store.save(update)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
