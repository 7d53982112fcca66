"""Pydantic schemas for the WhatsApp webhook envelope and relay results."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.errors import MalformedPayload

MessageKind = Literal["text", "other"]
OutcomeStatus = Literal["no_message", "duplicate", "skipped", "replied", "failed"]


class _Envelope(BaseModel):
    model_config = ConfigDict(extra="ignore")


class TextBody(_Envelope):
    body: str | None = None


class WebhookMessage(_Envelope):
    """One element of ``value.messages`` as sent by the WhatsApp Cloud API."""

    id: str | None = None
    sender: str | None = Field(default=None, alias="from")
    type: str | None = None
    text: TextBody | None = None


class ParsedEnvelope(BaseModel):
    """Messages recovered from one delivery plus the elements that were skipped."""

    messages: list[WebhookMessage] = Field(default_factory=list)
    rejected: list[str] = Field(default_factory=list)


class InboundMessage(BaseModel):
    """Normalized inbound chat message."""

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    sender_id: str | None = None
    kind: MessageKind
    message_type: str
    text_body: str | None = None

    @classmethod
    def from_webhook(cls, message: WebhookMessage) -> InboundMessage:
        message_type = message.type or "unknown"
        kind: MessageKind = "text" if message_type == "text" else "other"
        text_body = message.text.body if kind == "text" and message.text else None
        return cls(
            id=message.id,
            sender_id=message.sender,
            kind=kind,
            message_type=message_type,
            text_body=text_body,
        )


def _list_at(container: dict[str, Any], key: str, path: str, rejected: list[str]) -> list[Any]:
    value = container.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        rejected.append(f"{path}.{key}: expected array")
        return []
    return value


def parse_envelope(payload: Any) -> ParsedEnvelope:
    """Collect messages from every entry and change, in delivery order.

    Each entry, change and message is checked on its own; a bad element is
    recorded in ``rejected`` and its siblings are still returned. Only a body
    that is not an object, or whose ``entry`` is not an array, raises
    MalformedPayload.
    """
    if not isinstance(payload, dict):
        raise MalformedPayload(f"expected JSON object, got {type(payload).__name__}")
    entries = payload.get("entry")
    if entries is not None and not isinstance(entries, list):
        raise MalformedPayload(f"entry: expected array, got {type(entries).__name__}")

    parsed = ParsedEnvelope()
    for i, entry in enumerate(entries or []):
        entry_path = f"entry[{i}]"
        if not isinstance(entry, dict):
            parsed.rejected.append(f"{entry_path}: expected object")
            continue
        for j, change in enumerate(_list_at(entry, "changes", entry_path, parsed.rejected)):
            change_path = f"{entry_path}.changes[{j}]"
            if not isinstance(change, dict):
                parsed.rejected.append(f"{change_path}: expected object")
                continue
            value = change.get("value")
            if value is None:
                continue
            if not isinstance(value, dict):
                parsed.rejected.append(f"{change_path}.value: expected object")
                continue
            for k, raw in enumerate(_list_at(value, "messages", f"{change_path}.value", parsed.rejected)):
                try:
                    parsed.messages.append(WebhookMessage.model_validate(raw))
                except ValidationError as exc:
                    parsed.rejected.append(
                        f"{change_path}.value.messages[{k}]: {exc.error_count()} validation error(s)"
                    )
    return parsed


class RelayOutcome(BaseModel):
    """What happened to one inbound message."""

    status: OutcomeStatus
    message_id: str | None = None
    detail: str | None = None


class WebhookAck(BaseModel):
    """Response returned by POST /webhook."""

    status: Literal["ok"] = "ok"


class HealthResponse(BaseModel):
    """Healthcheck response model."""

    ok: bool = True
