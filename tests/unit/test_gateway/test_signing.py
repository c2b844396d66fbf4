"""Tests for gateway webhook signatures."""

from gallerybot.gateway.signing import sign_body, verify_signature


def test_verify_signature_accepts_fresh_valid_signature():
    """A matching signature inside the skew window is accepted."""
    body = b'{"event":"connection.update","data":{}}'
    signature = sign_body(body, 1_700_000_000_000, "secret")

    assert verify_signature(
        body,
        signature=signature,
        timestamp="1700000000000",
        secret="secret",
        now_ms=1_700_000_060_000,
    )


def test_verify_signature_rejects_tampering_and_stale_requests():
    """Tampered or stale requests are rejected."""
    body = b"{}"
    signature = sign_body(body, 1_700_000_000_000, "secret")
    now_ms = 1_700_000_000_000

    assert not verify_signature(
        b"{ }", signature=signature, timestamp=str(now_ms), secret="secret", now_ms=now_ms
    )
    assert not verify_signature(
        body, signature=signature, timestamp=str(now_ms), secret="other", now_ms=now_ms
    )
    assert not verify_signature(
        body,
        signature=signature,
        timestamp=str(now_ms),
        secret="secret",
        now_ms=now_ms + 10 * 60 * 1000,
    )
    assert not verify_signature(body, signature=None, timestamp=None, secret="secret")
    assert not verify_signature(
        body, signature=signature, timestamp="soon", secret="secret"
    )
