"""HTTP surface and startup lifespan tests."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import Mock

import fakeredis
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app import main
from app.config import Settings
from app.dedup import DedupCache, RedisDedupCache
from app.relay import RelayService


class RecordingRelay:
    def __init__(self) -> None:
        self.payloads: list[object] = []

    async def handle(self, payload: object) -> list:
        self.payloads.append(payload)
        return []


class FailingInference:
    def __init__(self) -> None:
        self.calls = 0

    async def generate_reply(self, prompt_text: str) -> str:
        self.calls += 1
        raise RuntimeError("model down")


class CountingDelivery:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send_text(self, recipient_id: str, body: str) -> dict:
        self.sent.append((recipient_id, body))
        return {}


@pytest.fixture
def client() -> TestClient:
    main.app.state.settings = Settings(_env_file=None, verify_token="s3cret")
    main.app.state.relay = RecordingRelay()
    return TestClient(main.app)


def test_root_and_health(client: TestClient) -> None:
    root = client.get("/")
    assert root.status_code == 200
    assert root.text == "OK"

    health = client.get("/health")
    assert health.status_code == 200
    assert health.json() == {"ok": True}


def test_verification_echoes_challenge(client: TestClient) -> None:
    res = client.get(
        "/webhook",
        params={"hub.mode": "subscribe", "hub.verify_token": "s3cret", "hub.challenge": "1158201444"},
    )
    assert res.status_code == 200
    assert res.text == "1158201444"


@pytest.mark.parametrize(
    "params",
    [
        {"hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "c"},
        {"hub.mode": "unsubscribe", "hub.verify_token": "s3cret", "hub.challenge": "c"},
        {"hub.challenge": "c"},
    ],
)
def test_verification_rejects_mismatch(client: TestClient, params: dict) -> None:
    assert client.get("/webhook", params=params).status_code == 403


def test_webhook_passes_json_to_relay(client: TestClient) -> None:
    body = {"entry": []}
    res = client.post("/webhook", json=body)

    assert res.status_code == 200
    assert res.json() == {"status": "ok"}
    assert main.app.state.relay.payloads == [body]
    assert res.headers["X-Request-ID"]


def test_webhook_invalid_json_still_acknowledged(client: TestClient) -> None:
    res = client.post("/webhook", content=b"{not json", headers={"Content-Type": "application/json"})

    assert res.status_code == 200
    assert main.app.state.relay.payloads == [None]


def test_webhook_acknowledges_when_inference_fails() -> None:
    inference = FailingInference()
    delivery = CountingDelivery()
    main.app.state.settings = Settings(_env_file=None)
    main.app.state.relay = RelayService(
        settings=Settings(_env_file=None),
        dedup=DedupCache(),
        inference=inference,  # type: ignore[arg-type]
        delivery=delivery,  # type: ignore[arg-type]
    )
    message = {"id": "wamid.1", "from": "62811", "type": "text", "text": {"body": "Halo"}}
    payload = {"entry": [{"changes": [{"value": {"messages": [message]}}]}]}

    res = TestClient(main.app).post("/webhook", json=payload)

    assert res.status_code == 200
    assert inference.calls == 1
    assert delivery.sent == []


def test_request_id_header_is_propagated(client: TestClient) -> None:
    res = client.get("/health", headers={"X-Request-ID": "req-42"})
    assert res.headers["X-Request-ID"] == "req-42"


def _stub_runtime(monkeypatch, settings: Settings) -> Mock:
    warning = Mock()
    monkeypatch.setattr(main, "get_settings", lambda: settings)
    monkeypatch.setattr(main, "configure_logging", lambda *_, **__: None)
    monkeypatch.setattr(main.LOGGER, "warning", warning)
    return warning


def _run_lifespan(app: FastAPI) -> None:
    async def _run() -> None:
        async with main.lifespan(app):
            pass

    asyncio.run(_run())


def test_startup_warns_when_app_secret_missing(monkeypatch) -> None:
    warning = _stub_runtime(monkeypatch, Settings(_env_file=None, app_secret=None))
    _run_lifespan(FastAPI())

    assert warning.call_count == 1
    assert warning.call_args.kwargs["extra"]["event"] == "security_degraded"


def test_startup_uses_in_process_cache_without_redis(monkeypatch) -> None:
    settings = Settings(_env_file=None, app_secret="secret", redis_url=None, dedup_ttl_seconds=60)
    _stub_runtime(monkeypatch, settings)
    app = FastAPI()
    _run_lifespan(app)

    assert isinstance(app.state.dedup, DedupCache)
    assert app.state.dedup.ttl_seconds == 60
    assert isinstance(app.state.relay, RelayService)


def test_startup_uses_redis_cache_when_configured(monkeypatch) -> None:
    settings = Settings(_env_file=None, app_secret="secret", redis_url="redis://cache:6379")
    warning = _stub_runtime(monkeypatch, settings)
    monkeypatch.setattr(main.aioredis, "from_url", lambda *_: fakeredis.FakeAsyncRedis())
    app = FastAPI()
    _run_lifespan(app)

    assert warning.call_count == 0
    assert isinstance(app.state.dedup, RedisDedupCache)


def test_startup_fails_when_redis_unreachable(monkeypatch) -> None:
    async def _ping() -> None:
        raise ConnectionError("refused")

    _stub_runtime(monkeypatch, Settings(_env_file=None, redis_url="redis://cache:6379"))
    monkeypatch.setattr(main.aioredis, "from_url", lambda *_: SimpleNamespace(ping=_ping))

    with pytest.raises(RuntimeError, match="Redis unavailable"):
        _run_lifespan(FastAPI())
