"""WhatsApp send helpers with retry and long-text split."""

from __future__ import annotations

from typing import Any

import structlog

logger = structlog.get_logger()

_WHATSAPP_SAFE_SPLIT_LIMIT = 4000


def split_text_for_whatsapp(
    text: str, limit: int = _WHATSAPP_SAFE_SPLIT_LIMIT
) -> list[str]:
    """Split long plain text into readable chunks."""
    if len(text) <= limit:
        return [text]

    chunks: list[str] = []
    remaining = text
    while remaining:
        if len(remaining) <= limit:
            chunks.append(remaining)
            break

        split_at = remaining.rfind("\n", 0, limit + 1)
        if split_at <= 0:
            split_at = remaining.rfind(" ", 0, limit + 1)
        if split_at <= 0:
            split_at = limit

        chunk = remaining[:split_at].rstrip()
        if not chunk:
            chunk = remaining[:limit]
            split_at = len(chunk)

        chunks.append(chunk)
        remaining = remaining[split_at:].lstrip("\n")

    return chunks


async def send_text_resilient(
    transport: Any,
    *,
    conversation_id: str,
    text: str,
    attempts: int = 2,
) -> bool:
    """Send a reply, retrying transient failures; returns delivery status.

    Replies are the last step of command handling, so a failed send is logged
    rather than raised.
    """
    for chunk in split_text_for_whatsapp(text):
        last_error: Exception | None = None
        for attempt in range(1, max(1, attempts) + 1):
            try:
                await transport.send_text(conversation_id, chunk)
                last_error = None
                break
            except Exception as send_error:
                last_error = send_error
                logger.warning(
                    "Reply send failed",
                    conversation_id=conversation_id,
                    attempt=attempt,
                    error=str(send_error),
                    error_type=type(send_error).__name__,
                )
        if last_error is not None:
            logger.error(
                "Giving up on reply",
                conversation_id=conversation_id,
                error=str(last_error),
            )
            return False
    return True
