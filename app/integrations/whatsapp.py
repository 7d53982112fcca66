"""WhatsApp Cloud API integration."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from app.config import Settings
from app.errors import ConfigurationError, UpstreamError

LOGGER = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.facebook.com"


class WhatsAppClient:
    """Sends plain text messages through the Graph API."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.settings = settings
        self._transport = transport

    async def send_text(self, recipient_id: str, body: str) -> dict[str, Any]:
        """Send one text message and return the Graph API receipt."""
        phone_number_id = self.settings.wa_phone_number_id
        access_token = self.settings.wa_access_token
        if not phone_number_id:
            raise ConfigurationError("Missing WA_PHONE_NUMBER_ID")
        if not access_token:
            raise ConfigurationError("Missing WA_ACCESS_TOKEN")

        url = f"{GRAPH_BASE_URL}/{self.settings.graph_api_version}/{quote(phone_number_id, safe='')}/messages"
        payload = {
            "messaging_product": "whatsapp",
            "to": recipient_id,
            "type": "text",
            "text": {"body": body},
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.http_timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(
                    url,
                    json=payload,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.HTTPError as exc:
            raise UpstreamError("WhatsApp", None, str(exc)) from exc

        if not response.is_success:
            raise UpstreamError("WhatsApp", response.status_code, response.text)

        # 2xx means the message was accepted, whatever the body says.
        try:
            return response.json()
        except ValueError:
            LOGGER.warning(
                "whatsapp returned non-JSON receipt",
                extra={"event": "whatsapp_unparseable", "context": {"status_code": response.status_code}},
            )
            return {}
