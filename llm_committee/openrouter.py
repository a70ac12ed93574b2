from __future__ import annotations

import json
import os
import time
from pathlib import Path
from typing import AsyncIterator, Optional

import httpx
from loguru import logger

from .schemas import TokenDelta


# Secure key loading: environment variable first, then file fallback
def _load_key(env_var: str, file_name: str) -> str | None:
    """Load API key from environment variable or file."""
    key = os.environ.get(env_var)
    if key:
        return key.strip()

    key_file = Path(__file__).parent.parent / file_name
    if key_file.exists():
        return key_file.read_text().strip()

    return None


OPENROUTER_ENDPOINT = "https://openrouter.ai/api/v1/chat/completions"
DEFAULT_TIMEOUT_S = 60.0
MISSING_KEY_MESSAGE = "OpenRouter API key not found. Set OPENROUTER_API_KEY env var or create OpenRouterAPIKey.txt"


class SSEDecoder:
    """Incremental decoder for `data:` lines of a server-sent-events body.

    Chunks may split lines anywhere; the trailing partial line is kept until
    the next chunk (or ``flush``) completes it.
    """

    def __init__(self):
        self._buffer = ""

    def feed(self, chunk: str) -> list[str]:
        self._buffer += chunk
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return [d for d in (self._data(line) for line in lines) if d is not None]

    def flush(self) -> list[str]:
        rest, self._buffer = self._buffer, ""
        data = self._data(rest)
        return [data] if data is not None else []

    @staticmethod
    def _data(line: str) -> Optional[str]:
        line = line.strip()
        # Comments (": OPENROUTER PROCESSING") and other fields are ignored
        if not line.startswith("data:"):
            return None
        return line[5:].strip()


def _choice_content(payload, key: str) -> Optional[str]:
    """`choices[0][key].content` of a completion payload; None when the shape is unexpected."""
    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices") or [{}]
    if not isinstance(choices, list) or not isinstance(choices[0], dict):
        return None
    part = choices[0].get(key) or {}
    if not isinstance(part, dict):
        return None
    content = part.get("content") or ""
    return content if isinstance(content, str) else None


def _interpret(backend_id: str, data: str) -> Optional[TokenDelta]:
    """Turn one decoded `data:` payload into an event, or None to skip it."""
    if data == "[DONE]":
        return TokenDelta.finished(backend_id)
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError:
        return None  # malformed line
    if not isinstance(parsed, dict):
        return None
    if parsed.get("error"):
        err = parsed["error"]
        message = err.get("message") if isinstance(err, dict) else str(err)
        return TokenDelta.failed(backend_id, f"API error: {message or 'stream error'}")
    content = _choice_content(parsed, "delta")
    if content:
        return TokenDelta.fragment(backend_id, content)
    return None


def _empty_result(messages: list[dict]) -> dict:
    return {
        "status": "error",
        "text": None,
        "latency_ms": 0,
        "http_status": None,
        "error_message": None,
        "usage": None,
        "request": {"messages": messages},
    }


class BackendClient:
    """Streaming and one-shot chat completions against OpenRouter.

    Failures are returned as data: ``stream`` ends with an error event and
    ``complete`` returns a result whose ``status`` is ``error`` or ``timeout``.
    Nothing is retried here.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        endpoint: str = OPENROUTER_ENDPOINT,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        app_url: Optional[str] = None,
        app_title: str = "LLM Committee",
    ):
        self.api_key = api_key if api_key is not None else _load_key("OPENROUTER_API_KEY", "OpenRouterAPIKey.txt")
        self.endpoint = endpoint
        self.timeout_s = timeout_s
        self.headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": app_url or os.environ.get("APP_URL", "http://localhost"),
            "X-Title": app_title,
        }
        self._client = httpx.AsyncClient(timeout=timeout_s, transport=transport)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    def _body(self, backend_id, messages, temperature, max_tokens, **extra) -> dict:
        body = {"model": backend_id, "messages": messages, **extra}
        if temperature is not None:
            body["temperature"] = temperature
        if max_tokens is not None:
            body["max_tokens"] = max_tokens
        return body

    async def stream(
        self,
        backend_id: str,
        messages: list[dict],
        temperature: float | None = None,
        max_tokens: int | None = None,
        timeout_s: float | None = None,
    ) -> AsyncIterator[TokenDelta]:
        """Yield content fragments, then exactly one terminal event (done, maybe with error)."""
        if not self.api_key:
            yield TokenDelta.failed(backend_id, MISSING_KEY_MESSAGE)
            return

        timeout_s = timeout_s or self.timeout_s
        body = self._body(backend_id, messages, temperature, max_tokens, stream=True)
        decoder = SSEDecoder()

        try:
            async with self._client.stream(
                "POST", self.endpoint, headers=self.headers, json=body, timeout=timeout_s
            ) as resp:
                if resp.status_code != 200:
                    error_text = (await resp.aread()).decode("utf-8", errors="replace")
                    yield TokenDelta.failed(backend_id, f"API error: {resp.status_code} - {error_text}")
                    return

                async for chunk in resp.aiter_text():
                    for data in decoder.feed(chunk):
                        event = _interpret(backend_id, data)
                        if event is not None:
                            yield event
                            if event.done:
                                return
                for data in decoder.flush():
                    event = _interpret(backend_id, data)
                    if event is not None:
                        yield event
                        if event.done:
                            return

        except httpx.TimeoutException:
            yield TokenDelta.failed(backend_id, f"Request timed out after {timeout_s}s")
            return

        except httpx.HTTPError as e:
            yield TokenDelta.failed(backend_id, str(e) or type(e).__name__)
            return

        # Body closed without a [DONE] sentinel
        logger.debug("{} stream ended without [DONE]", backend_id)
        yield TokenDelta.finished(backend_id)

    async def complete(
        self,
        backend_id: str,
        messages: list[dict],
        json_mode: bool = False,
        temperature: float | None = None,
        max_tokens: int | None = None,
        timeout_s: float | None = None,
    ) -> dict:
        """One non-streaming completion. Returns a call record with ``status`` ok|timeout|error."""
        result = _empty_result(messages)
        if not self.api_key:
            result["error_message"] = MISSING_KEY_MESSAGE
            return result

        timeout_s = timeout_s or self.timeout_s
        extra = {"response_format": {"type": "json_object"}} if json_mode else {}
        body = self._body(backend_id, messages, temperature, max_tokens, **extra)

        start_ms = time.perf_counter() * 1000
        try:
            resp = await self._client.post(self.endpoint, headers=self.headers, json=body, timeout=timeout_s)
            result["latency_ms"] = time.perf_counter() * 1000 - start_ms
            result["http_status"] = resp.status_code

            if resp.status_code != 200:
                result["error_message"] = f"API error: {resp.status_code} - {resp.text}"
                return result

            try:
                data = resp.json()
            except ValueError:
                result["error_message"] = "Response body is not JSON"
                return result

            content = _choice_content(data, "message")
            if content is None:
                result["error_message"] = "Unexpected response shape"
                return result
            if not content.strip():
                result["error_message"] = "Empty response content"
                return result

            result["status"] = "ok"
            result["text"] = content

            usage = data.get("usage")
            if not isinstance(usage, dict):
                usage = {}
            result["usage"] = {
                "prompt_tokens": usage.get("prompt_tokens"),
                "completion_tokens": usage.get("completion_tokens"),
                "total_tokens": usage.get("total_tokens"),
                "cost_usd": usage.get("cost") or data.get("cost"),
            }

        except httpx.TimeoutException:
            result["latency_ms"] = time.perf_counter() * 1000 - start_ms
            result["status"] = "timeout"
            result["error_message"] = f"Request timed out after {timeout_s}s"

        except httpx.HTTPError as e:
            result["latency_ms"] = time.perf_counter() * 1000 - start_ms
            result["error_message"] = str(e) or type(e).__name__

        return result
