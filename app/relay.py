"""Webhook handling: dedupe, generate a reply, deliver it, always acknowledge."""

from __future__ import annotations

import logging
import time
from typing import Any

from app.config import Settings
from app.dedup import DedupCache, RedisDedupCache
from app.errors import ConfigurationError, MalformedPayload, UpstreamError
from app.integrations.gemini import GeminiClient
from app.integrations.whatsapp import WhatsAppClient
from app.schemas import InboundMessage, RelayOutcome, parse_envelope

LOGGER = logging.getLogger(__name__)


class RelayService:
    """Relays inbound chat messages to the model and sends the reply back.

    Failures never escape ``handle``: each one becomes a ``failed`` outcome so
    the HTTP layer can acknowledge the delivery and the platform stops retrying.
    """

    def __init__(
        self,
        settings: Settings,
        dedup: DedupCache | RedisDedupCache,
        inference: GeminiClient | None = None,
        delivery: WhatsAppClient | None = None,
    ) -> None:
        self.settings = settings
        self.dedup = dedup
        self.inference = inference or GeminiClient(settings)
        self.delivery = delivery or WhatsAppClient(settings)

    async def handle(self, payload: Any) -> list[RelayOutcome]:
        """Process one webhook delivery and report an outcome per message."""
        try:
            envelope = parse_envelope(payload)
        except MalformedPayload as exc:
            LOGGER.info(
                "ignoring malformed webhook payload",
                extra={"event": "malformed_payload", "context": {"error": str(exc)[:500]}},
            )
            return [RelayOutcome(status="no_message", detail="malformed payload")]

        if envelope.rejected:
            LOGGER.info(
                "skipping malformed batch elements",
                extra={
                    "event": "malformed_payload",
                    "context": {"rejected": envelope.rejected[:20], "accepted": len(envelope.messages)},
                },
            )
        if not envelope.messages:
            detail = "malformed payload" if envelope.rejected else None
            return [RelayOutcome(status="no_message", detail=detail)]

        outcomes = []
        for raw in envelope.messages:
            outcomes.append(await self.handle_message(InboundMessage.from_webhook(raw)))
        return outcomes

    async def handle_message(self, message: InboundMessage) -> RelayOutcome:
        """Run one message through dedupe, inference and delivery."""
        if await self.dedup.is_duplicate(message.id):
            LOGGER.info(
                "dedup hit",
                extra={"event": "dedup_hit", "context": {"message_id": message.id}},
            )
            return RelayOutcome(status="duplicate", message_id=message.id)

        text = self.prompt_text(message)
        if not message.sender_id or not text.strip():
            LOGGER.info(
                "message skipped",
                extra={
                    "event": "message_skipped",
                    "context": {"message_id": message.id, "has_sender": bool(message.sender_id)},
                },
            )
            return RelayOutcome(status="skipped", message_id=message.id)

        start = time.monotonic()
        try:
            reply = await self.inference.generate_reply(text)
            await self.delivery.send_text(message.sender_id, reply)
        except ConfigurationError as exc:
            LOGGER.error(
                "relay not configured",
                extra={"event": "configuration_error", "context": {"message_id": message.id, "error": str(exc)}},
            )
            return RelayOutcome(status="failed", message_id=message.id, detail=type(exc).__name__)
        except UpstreamError as exc:
            LOGGER.error(
                "upstream call failed",
                extra={
                    "event": "upstream_error",
                    "context": {
                        "message_id": message.id,
                        "service": exc.service,
                        "status_code": exc.status_code,
                        "body": exc.body[:1000],
                    },
                },
            )
            return RelayOutcome(status="failed", message_id=message.id, detail=type(exc).__name__)
        except Exception as exc:
            LOGGER.error(
                "relay failed",
                exc_info=True,
                extra={"event": "relay_failed", "context": {"message_id": message.id}},
            )
            return RelayOutcome(status="failed", message_id=message.id, detail=type(exc).__name__)

        latency_ms = round((time.monotonic() - start) * 1000)
        LOGGER.info(
            "reply sent",
            extra={
                "event": "reply_sent",
                "context": {"message_id": message.id, "kind": message.kind, "latency_ms": latency_ms},
            },
        )
        return RelayOutcome(status="replied", message_id=message.id)

    def prompt_text(self, message: InboundMessage) -> str:
        """Text sent to the model: the message body, or a notice for unsupported types."""
        if message.kind == "text":
            return message.text_body or ""
        return self.settings.unsupported_message_template.format(message_type=message.message_type)
