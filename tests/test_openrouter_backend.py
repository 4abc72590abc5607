import asyncio

import httpx
import pytest

from runners.openrouter.backend import OpenRouterBackend

MESSAGES = [
    {"role": "system", "content": "prompt"},
    {"role": "user", "content": "task"},
]


class _FakeResponse:
    def __init__(self, status_code: int, text: str, payload: dict | None = None):
        self.status_code = status_code
        self.text = text
        self._payload = payload or {}
        self.request = httpx.Request("POST", "https://openrouter.test/chat/completions")

    def json(self):
        return self._payload


def _fake_client(responder):
    class _FakeClient:
        def __init__(self, *args, **kwargs):
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def post(self, *args, **kwargs):
            return responder(*args, **kwargs)

    return _FakeClient


def test_retryable_400_then_success(monkeypatch):
    calls = {"count": 0}

    def _respond(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 1:
            return _FakeResponse(400, '{"error":{"message":"Provider returned error"}}')
        return _FakeResponse(200, "", payload={"choices": [{"message": {"content": "ok"}}]})

    monkeypatch.setattr("runners.openrouter.backend.httpx.AsyncClient", _fake_client(_respond))

    backend = OpenRouterBackend(
        api_key="test-key",
        model="openrouter/free",
        max_retries=2,
        initial_backoff_s=0,
        max_backoff_s=0,
    )
    assert asyncio.run(backend.complete(MESSAGES)) == "ok"
    assert calls["count"] == 2


def test_non_retryable_400_fails_fast(monkeypatch):
    calls = {"count": 0}

    def _respond(*args, **kwargs):
        calls["count"] += 1
        return _FakeResponse(400, '{"error":{"message":"Invalid request body"}}')

    monkeypatch.setattr("runners.openrouter.backend.httpx.AsyncClient", _fake_client(_respond))

    backend = OpenRouterBackend(
        api_key="test-key",
        model="openrouter/free",
        max_retries=5,
        initial_backoff_s=0,
        max_backoff_s=0,
    )

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(backend.complete(MESSAGES))

    assert calls["count"] == 1


def test_decoding_params_are_sent_without_nulls(monkeypatch):
    seen = {}

    def _respond(*args, **kwargs):
        seen.update(kwargs["json"])
        return _FakeResponse(200, "", payload={"choices": [{"message": {"content": "done"}}]})

    monkeypatch.setattr("runners.openrouter.backend.httpx.AsyncClient", _fake_client(_respond))

    backend = OpenRouterBackend(api_key="test-key", model="m", max_retries=0)
    asyncio.run(backend.complete(MESSAGES, decoding={"temperature": 0.1, "top_p": None}))
    assert seen["model"] == "m"
    assert seen["temperature"] == 0.1
    assert "top_p" not in seen


def test_backend_requires_api_key(monkeypatch):
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    with pytest.raises(ValueError, match="OPENROUTER_API_KEY is required"):
        OpenRouterBackend(api_key=None)
