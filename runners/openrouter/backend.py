import asyncio
import json
import os
import random
from typing import Any, Dict, List, Optional

import httpx

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
APP_TITLE = "abe-bench"


class _RetryableResponse(Exception):
    """One attempt failed in a way that another attempt may fix."""


class OpenRouterBackend:
    """Async chat-completions client for OpenRouter's OpenAI-compatible API.

    Transport errors, throttling, 5xx responses, provider hiccups reported as
    400s and unparseable bodies are retried with capped exponential backoff.
    Anything else raises on the first attempt.
    """

    _RETRYABLE_STATUSES = frozenset({408, 409, 425, 429})
    _RETRYABLE_400_MARKERS = (
        "provider returned error",
        "no providers available",
        "temporarily unavailable",
        "upstream error",
        "try again",
    )

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "openai/gpt-4o-mini",
        base_url: str = DEFAULT_BASE_URL,
        timeout_s: float = 300.0,
        max_retries: int = 4,
        initial_backoff_s: float = 1.0,
        max_backoff_s: float = 10.0,
    ) -> None:
        self.api_key = api_key or os.getenv("OPENROUTER_API_KEY")
        if not self.api_key:
            raise ValueError("OPENROUTER_API_KEY is required")
        self.model = model
        self.endpoint = f"{base_url.rstrip('/')}/chat/completions"
        self.timeout_s = float(timeout_s)
        self.max_retries = max(0, int(max_retries))
        self.initial_backoff_s = max(0.0, float(initial_backoff_s))
        self.max_backoff_s = max(0.0, float(max_backoff_s))

    def build_payload(
        self,
        messages: List[Dict[str, Any]],
        decoding: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"model": self.model, "messages": messages}
        for key, value in (decoding or {}).items():
            if value is not None:
                payload[key] = value
        return payload

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        decoding: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Return the assistant text of one chat completion."""

        payload = self.build_payload(messages, decoding)
        headers = {"Authorization": f"Bearer {self.api_key}", "X-Title": APP_TITLE}
        attempts = self.max_retries + 1

        async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_s)) as client:
            for attempt in range(attempts):
                final = attempt == attempts - 1
                try:
                    data = await self._attempt(client, payload, headers, final=final, attempt=attempt)
                except _RetryableResponse:
                    await self._backoff(attempt)
                    continue
                return self._assistant_text(data)
        raise RuntimeError("OpenRouter request exhausted retries without a valid response")

    async def _attempt(
        self,
        client: httpx.AsyncClient,
        payload: Dict[str, Any],
        headers: Dict[str, str],
        *,
        final: bool,
        attempt: int,
    ) -> Dict[str, Any]:
        try:
            response = await client.post(self.endpoint, json=payload, headers=headers)
        except httpx.RequestError:
            if final:
                raise
            raise _RetryableResponse()

        if response.status_code >= 400:
            detail = response.text[:2000]
            retryable = self._is_retryable_status(response.status_code, detail)
            if retryable and not final:
                raise _RetryableResponse()
            prefix = (
                f"OpenRouter error after {attempt + 1} attempts ({response.status_code})"
                if retryable
                else f"OpenRouter error {response.status_code}"
            )
            raise httpx.HTTPStatusError(f"{prefix}: {detail}", request=response.request, response=response)

        try:
            parsed = response.json()
        except json.JSONDecodeError:
            if final:
                raise
            raise _RetryableResponse()
        if not isinstance(parsed, dict):
            if final:
                raise ValueError("OpenRouter returned non-dict JSON response")
            raise _RetryableResponse()
        return parsed

    @staticmethod
    def _assistant_text(data: Dict[str, Any]) -> str:
        choices = data.get("choices") or [{}]
        first = choices[0] if isinstance(choices[0], dict) else {}
        message = first.get("message") or {}
        return message.get("content") or ""

    @classmethod
    def _is_retryable_status(cls, status_code: int, detail: str) -> bool:
        if status_code in cls._RETRYABLE_STATUSES or status_code >= 500:
            return True
        if status_code != 400:
            return False
        lowered = detail.lower()
        return any(marker in lowered for marker in cls._RETRYABLE_400_MARKERS)

    async def _backoff(self, attempt: int) -> None:
        delay = min(self.max_backoff_s, self.initial_backoff_s * (2**attempt))
        if delay <= 0:
            return
        await asyncio.sleep(delay + random.uniform(0.0, min(1.0, delay * 0.25)))
