"""HMAC verification for events pushed by the gateway."""

from __future__ import annotations

import hashlib
import hmac
import time
from typing import Optional

_MAX_CLOCK_SKEW_MS = 5 * 60 * 1000


def sign_body(body: bytes, timestamp: int, secret: str) -> str:
    """Sign a request body with HMAC-SHA256."""
    payload = f"{timestamp}.".encode() + body
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_signature(
    body: bytes,
    *,
    signature: Optional[str],
    timestamp: Optional[str],
    secret: str,
    now_ms: Optional[int] = None,
) -> bool:
    """Check ``X-Signature``/``X-Timestamp`` headers against the body."""
    if not signature or not timestamp:
        return False
    try:
        timestamp_ms = int(timestamp)
    except ValueError:
        return False

    current_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    if abs(current_ms - timestamp_ms) > _MAX_CLOCK_SKEW_MS:
        return False

    expected = sign_body(body, timestamp_ms, secret)
    return hmac.compare_digest(expected, signature)
