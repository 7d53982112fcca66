"""Meta X-Hub-Signature-256 verification middleware."""

from __future__ import annotations

import hashlib
import hmac

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import Settings

SIGNATURE_HEADER = "X-Hub-Signature-256"


def sign_body(secret: str, body: bytes) -> str:
    """Header value the platform sends for ``body`` signed with the app secret."""
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class SignatureMiddleware(BaseHTTPMiddleware):
    """Rejects webhook deliveries whose signature does not match APP_SECRET.

    Only POST /webhook is checked, and only when APP_SECRET is set.
    """

    def __init__(self, app, settings: Settings):
        super().__init__(app)
        self.settings = settings

    async def dispatch(self, request: Request, call_next):
        if not self.settings.app_secret:
            return await call_next(request)
        if request.method != "POST" or request.url.path != "/webhook":
            return await call_next(request)

        body = await request.body()

        async def _receive():
            return {"type": "http.request", "body": body, "more_body": False}

        request._receive = _receive  # type: ignore[attr-defined]
        expected = sign_body(self.settings.app_secret, body)
        received = request.headers.get(SIGNATURE_HEADER, "")
        if not hmac.compare_digest(expected.encode(), received.encode()):
            return JSONResponse({"detail": "Invalid signature"}, status_code=401)
        return await call_next(request)
