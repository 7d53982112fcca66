"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from uuid import uuid4

import redis.asyncio as aioredis
from fastapi import FastAPI, Query, Request, Response
from fastapi.responses import PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import Settings, get_settings
from app.dedup import DedupCache, RedisDedupCache
from app.logging import clear_request_id, configure_logging, set_request_id
from app.middleware.signature import SignatureMiddleware
from app.relay import RelayService
from app.schemas import HealthResponse, WebhookAck
from app.verification import verify_subscription

LOGGER = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach request id to logging context and response headers."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        token = set_request_id(request_id)
        try:
            response = await call_next(request)
        finally:
            clear_request_id(token)
        response.headers["X-Request-ID"] = request_id
        return response


async def build_dedup(settings: Settings) -> DedupCache | RedisDedupCache:
    """Use Redis when REDIS_URL is set, otherwise an in-process cache."""
    if not settings.redis_url:
        return DedupCache(ttl_seconds=settings.dedup_ttl_seconds, max_entries=settings.dedup_max_entries)

    redis_client = aioredis.from_url(settings.redis_url)
    try:
        await redis_client.ping()
    except Exception as exc:
        raise RuntimeError(f"Redis unavailable at startup: {settings.redis_url}") from exc
    return RedisDedupCache(redis_client, ttl_seconds=settings.dedup_ttl_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize runtime dependencies on startup."""
    settings = get_settings()
    configure_logging(settings.log_level, service=settings.app_name)
    if not settings.app_secret:
        LOGGER.warning(
            "webhook signature verification disabled",
            extra={
                "event": "security_degraded",
                "context": {"reason": "APP_SECRET not set - inbound signature verification skipped"},
            },
        )

    dedup = await build_dedup(settings)
    app.state.settings = settings
    app.state.dedup = dedup
    app.state.relay = RelayService(settings=settings, dedup=dedup)
    LOGGER.info(
        "relay started",
        extra={
            "event": "relay_started",
            "context": {"dedup": type(dedup).__name__, "model": settings.gemini_model},
        },
    )
    yield
    if isinstance(dedup, RedisDedupCache):
        await dedup.close()


app = FastAPI(title="wa-gemini-relay", lifespan=lifespan)
_middleware_settings = Settings()

# Starlette adds latest middleware first, so add reverse of desired runtime order.
app.add_middleware(SignatureMiddleware, settings=_middleware_settings)
app.add_middleware(RequestIDMiddleware)


@app.get("/", response_class=PlainTextResponse)
def root() -> str:
    return "OK"


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    """Service health endpoint."""
    return HealthResponse()


@app.get("/webhook")
def verify_webhook(
    request: Request,
    mode: str | None = Query(default=None, alias="hub.mode"),
    token: str | None = Query(default=None, alias="hub.verify_token"),
    challenge: str | None = Query(default=None, alias="hub.challenge"),
) -> Response:
    """Subscription handshake from the Meta dashboard."""
    echoed = verify_subscription(mode, token, challenge, request.app.state.settings.verify_token)
    if echoed is None:
        LOGGER.warning(
            "webhook verification rejected",
            extra={"event": "verification_failed", "context": {"mode": mode}},
        )
        return Response(status_code=403)
    return PlainTextResponse(echoed)


@app.post("/webhook", response_model=WebhookAck)
async def receive_webhook(request: Request) -> WebhookAck:
    """Inbound message delivery; always acknowledged so the platform does not redeliver."""
    try:
        payload = await request.json()
    except ValueError:
        payload = None

    outcomes = await request.app.state.relay.handle(payload)
    for outcome in outcomes:
        LOGGER.info(
            "webhook outcome",
            extra={"event": "webhook_outcome", "context": outcome.model_dump()},
        )
    return WebhookAck()
