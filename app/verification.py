"""Webhook subscription handshake."""

from __future__ import annotations

import hmac

SUBSCRIBE_MODE = "subscribe"


def verify_subscription(
    mode: str | None,
    token: str | None,
    challenge: str | None,
    expected_token: str | None,
) -> str | None:
    """Return the challenge to echo back, or None when the handshake is rejected."""
    if mode != SUBSCRIBE_MODE or not token or not expected_token:
        return None
    if not hmac.compare_digest(token.encode(), expected_token.encode()):
        return None
    return challenge or ""
