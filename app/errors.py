"""Relay error taxonomy."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for relay failures."""


class ConfigurationError(RelayError):
    """A credential required by an outbound call is not configured."""


class UpstreamError(RelayError):
    """A remote API call did not succeed."""

    def __init__(self, service: str, status_code: int | None, body: str) -> None:
        super().__init__(f"{service} error {status_code}: {body}")
        self.service = service
        self.status_code = status_code
        self.body = body


class MalformedPayload(RelayError):
    """Webhook body does not have the expected envelope structure."""
