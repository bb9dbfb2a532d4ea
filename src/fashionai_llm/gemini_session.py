from __future__ import annotations

import json
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from .errors import (
    ApiError,
    AuthenticationError,
    ConnectivityError,
    ContextLengthError,
    LLMError,
    RateLimitError,
    RequestTimeoutError,
    SafetyError,
)

log = structlog.get_logger()

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"

_FINISH_REASONS = {
    "STOP": "stop",
    "MAX_TOKENS": "length",
    "SAFETY": "safety",
    "RECITATION": "recitation",
    "BLOCKLIST": "safety",
    "PROHIBITED_CONTENT": "safety",
}


def classify_gemini_error(
    message: str,
    status_code: int | None = None,
    *,
    retry_after_seconds: int | None = None,
) -> LLMError:
    """Map backend error text/status onto the error taxonomy."""
    text = (message or "").lower()

    if status_code == 429 or "rate limit" in text or "quota" in text:
        return RateLimitError(retry_after_seconds=retry_after_seconds)

    if status_code in (401, 403) or "api key" in text or "authentication" in text:
        return AuthenticationError("Authentication failed, check your API key")

    if "too many tokens" in text or "maximum context length" in text:
        return ContextLengthError("Input is too long, please reduce the length of your messages")

    if "safety" in text or "blocked" in text:
        return SafetyError("Response was blocked due to safety concerns")

    if "network" in text or "connection refused" in text or "econnrefused" in text:
        return ConnectivityError("Network error, please check your internet connection")

    if "timeout" in text or "timed out" in text or "etimedout" in text:
        return RequestTimeoutError("Request timed out, please try again")

    retryable = status_code is None or status_code >= 500
    return ApiError(
        f"Gemini API error: {message or 'Unknown error'}",
        status_code=status_code or 500,
        retryable=retryable,
    )


def _error_message(body: bytes | str) -> str:
    raw = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return raw[:500]
    if isinstance(data, list) and data:
        data = data[0]
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and isinstance(err.get("message"), str):
            return err["message"]
    return raw[:500]


def _retry_after(resp: httpx.Response) -> int | None:
    value = resp.headers.get("retry-after")
    return int(value) if value and value.isdigit() else None


def _transport_error(e: httpx.HTTPError) -> LLMError:
    if isinstance(e, httpx.TimeoutException):
        return RequestTimeoutError("Request timed out, please try again")
    if isinstance(e, httpx.TransportError):
        return ConnectivityError("Network error, please check your internet connection")
    return classify_gemini_error(str(e))


@dataclass(frozen=True)
class GeminiResult:
    text: str
    finish_reason: str
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


def _candidate_text(candidate: dict[str, Any]) -> str:
    content = candidate.get("content")
    if not isinstance(content, dict):
        return ""
    parts = content.get("parts")
    if not isinstance(parts, list):
        return ""
    return "".join(p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str))


def _finish_reason(raw: Any) -> str:
    if not raw:
        return "stop"
    return _FINISH_REASONS.get(str(raw), str(raw).lower())


def _prompt_block_reason(data: dict[str, Any]) -> str | None:
    feedback = data.get("promptFeedback")
    if isinstance(feedback, dict) and feedback.get("blockReason"):
        return str(feedback["blockReason"])
    return None


def parse_generate_response(data: dict[str, Any]) -> GeminiResult:
    block_reason = _prompt_block_reason(data)
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        if block_reason:
            raise SafetyError(f"Prompt was blocked due to safety concerns ({block_reason})")
        raise ApiError("Missing candidates in upstream response.", status_code=502, retryable=False)

    candidate = candidates[0] if isinstance(candidates[0], dict) else {}
    text = _candidate_text(candidate)
    finish_reason = _finish_reason(candidate.get("finishReason"))
    if block_reason:
        finish_reason = "safety"
    if not text and finish_reason == "safety":
        raise SafetyError("Response was blocked due to safety concerns")

    usage = data.get("usageMetadata") if isinstance(data.get("usageMetadata"), dict) else {}
    return GeminiResult(
        text=text,
        finish_reason=finish_reason,
        prompt_tokens=usage.get("promptTokenCount"),
        completion_tokens=usage.get("candidatesTokenCount"),
        total_tokens=usage.get("totalTokenCount"),
    )


class GeminiSession:
    """Single-attempt client for the Gemini Developer REST API.

    Each call makes one request and raises a classified ``LLMError`` on
    failure; retrying is left to the caller.
    """

    def __init__(
        self,
        api_key: str | None,
        *,
        client: httpx.AsyncClient | None = None,
        base_url: str | None = None,
        timeout_seconds: float = 30.0,
    ):
        self.api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._base_url = (base_url or GEMINI_API_BASE).rstrip("/")

    async def close(self) -> None:
        await self._client.aclose()

    def _params(self, **extra: str) -> dict[str, str]:
        if not self.api_key:
            raise AuthenticationError("Missing Gemini API key.")
        return {"key": self.api_key, **extra}

    async def _post(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        params = self._params()
        try:
            resp = await self._client.post(url, params=params, json=payload)
        except httpx.HTTPError as e:
            raise _transport_error(e) from e
        if resp.status_code >= 400:
            if resp.status_code >= 500:
                log.warning("gemini_upstream_5xx", status_code=resp.status_code, body=resp.text[:500])
            raise classify_gemini_error(
                _error_message(resp.content), resp.status_code, retry_after_seconds=_retry_after(resp)
            )
        try:
            data = resp.json()
        except ValueError as e:
            raise ApiError("Failed to decode upstream JSON.", status_code=502, retryable=False) from e
        if not isinstance(data, dict):
            raise ApiError("Unexpected upstream response shape.", status_code=502, retryable=False)
        return data

    async def generate(self, *, model: str, payload: dict[str, Any]) -> GeminiResult:
        data = await self._post(f"{self._base_url}/models/{model}:generateContent", payload)
        result = parse_generate_response(data)
        log.debug("gemini_generate_ok", model=model, finish_reason=result.finish_reason)
        return result

    async def stream(self, *, model: str, payload: dict[str, Any]) -> AsyncIterator[str]:
        url = f"{self._base_url}/models/{model}:streamGenerateContent"
        params = self._params(alt="sse")
        try:
            async with self._client.stream("POST", url, params=params, json=payload) as resp:
                if resp.status_code >= 400:
                    body = await resp.aread()
                    raise classify_gemini_error(
                        _error_message(body), resp.status_code, retry_after_seconds=_retry_after(resp)
                    )
                async for line in resp.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    raw = line[len("data:") :].strip()
                    if not raw:
                        continue
                    try:
                        event = json.loads(raw)
                    except json.JSONDecodeError as e:
                        raise ApiError("Failed to decode upstream SSE JSON.", status_code=502, retryable=False) from e
                    if not isinstance(event, dict):
                        continue
                    if isinstance(event.get("error"), dict):
                        err = event["error"]
                        raise classify_gemini_error(str(err.get("message", "")), err.get("code"))
                    block_reason = _prompt_block_reason(event)
                    if block_reason:
                        raise SafetyError(f"Prompt was blocked due to safety concerns ({block_reason})")
                    candidates = event.get("candidates")
                    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
                        continue
                    text = _candidate_text(candidates[0])
                    if text:
                        yield text
                    elif _finish_reason(candidates[0].get("finishReason")) == "safety":
                        raise SafetyError("Response was blocked due to safety concerns")
        except httpx.HTTPError as e:
            raise _transport_error(e) from e

    async def count_tokens(self, *, model: str, contents: list[dict[str, Any]]) -> int:
        data = await self._post(f"{self._base_url}/models/{model}:countTokens", {"contents": contents})
        total = data.get("totalTokens")
        if not isinstance(total, int):
            raise ApiError("Missing totalTokens in upstream response.", status_code=502, retryable=False)
        return total

    async def list_models(self) -> list[str]:
        params = self._params()
        try:
            resp = await self._client.get(f"{self._base_url}/models", params=params)
        except httpx.HTTPError as e:
            raise _transport_error(e) from e
        if resp.status_code >= 400:
            raise classify_gemini_error(_error_message(resp.content), resp.status_code)
        try:
            models = resp.json().get("models") or []
        except (ValueError, AttributeError) as e:
            raise ApiError("Unexpected upstream response shape.", status_code=502, retryable=False) from e
        names: list[str] = []
        for m in models:
            if not isinstance(m, dict):
                continue
            methods = m.get("supportedGenerationMethods") or []
            if "generateContent" not in methods:
                continue
            name = str(m.get("name", ""))
            names.append(name.removeprefix("models/"))
        return names
