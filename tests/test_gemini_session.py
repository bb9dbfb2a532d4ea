import json

import httpx
import pytest

from fashionai_llm.errors import (
    ApiError,
    AuthenticationError,
    ConnectivityError,
    ContextLengthError,
    LLMErrorKind,
    RateLimitError,
    RequestTimeoutError,
    SafetyError,
)
from fashionai_llm.gemini_session import GeminiSession, classify_gemini_error, parse_generate_response

BASE = "https://example.test/v1beta"
CONTENTS = [{"role": "user", "parts": [{"text": "hi"}]}]


def _session(handler, api_key="k") -> GeminiSession:
    return GeminiSession(api_key=api_key, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)), base_url=BASE)


@pytest.mark.asyncio
async def test_generate_posts_payload_and_parses_text_and_usage():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert request.url.path.endswith("/models/gemini-1.5-flash:generateContent")
        assert request.url.params.get("key") == "k"
        body = json.loads(request.content.decode("utf-8"))
        assert body["contents"][0]["parts"][0]["text"] == "hi"
        return httpx.Response(
            200,
            json={
                "candidates": [
                    {"content": {"parts": [{"text": "hello "}, {"text": "from gemini"}]}, "finishReason": "STOP"}
                ],
                "usageMetadata": {"promptTokenCount": 2, "candidatesTokenCount": 4, "totalTokenCount": 6},
            },
        )

    s = _session(handler)
    try:
        out = await s.generate(model="gemini-1.5-flash", payload={"contents": CONTENTS})
        assert out.text == "hello from gemini"
        assert out.finish_reason == "stop"
        assert (out.prompt_tokens, out.completion_tokens, out.total_tokens) == (2, 4, 6)
    finally:
        await s.close()


@pytest.mark.asyncio
async def test_generate_missing_key_raises_authentication_error():
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    s = _session(handler, api_key=None)
    try:
        with pytest.raises(AuthenticationError):
            await s.generate(model="m", payload={"contents": CONTENTS})
    finally:
        await s.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, message, expected, retryable",
    [
        (429, "Resource has been exhausted", RateLimitError, True),
        (400, "API key not valid. Please pass a valid API key.", AuthenticationError, False),
        (401, "unauthorized", AuthenticationError, False),
        (400, "The input has too many tokens", ContextLengthError, False),
        (503, "The model is overloaded", ApiError, True),
        (404, "models/nope is not found", ApiError, False),
    ],
)
async def test_http_errors_are_classified(status, message, expected, retryable):
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"error": {"code": status, "message": message}})

    s = _session(handler)
    try:
        with pytest.raises(expected) as exc:
            await s.generate(model="m", payload={"contents": CONTENTS})
        assert exc.value.retryable is retryable
    finally:
        await s.close()


@pytest.mark.asyncio
async def test_429_keeps_retry_after_header():
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(429, headers={"retry-after": "12"}, json={"error": {"message": "rl"}})

    s = _session(handler)
    try:
        with pytest.raises(RateLimitError) as exc:
            await s.generate(model="m", payload={"contents": CONTENTS})
        assert exc.value.retry_after_seconds == 12
    finally:
        await s.close()


@pytest.mark.asyncio
async def test_transport_timeout_maps_to_timeout_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    s = _session(handler)
    try:
        with pytest.raises(RequestTimeoutError) as exc:
            await s.generate(model="m", payload={"contents": CONTENTS})
        assert exc.value.retryable is True
    finally:
        await s.close()


@pytest.mark.asyncio
async def test_connect_error_maps_to_connectivity_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    s = _session(handler)
    try:
        with pytest.raises(ConnectivityError):
            await s.generate(model="m", payload={"contents": CONTENTS})
    finally:
        await s.close()


def test_blocked_prompt_raises_safety_error():
    with pytest.raises(SafetyError):
        parse_generate_response({"promptFeedback": {"blockReason": "SAFETY"}})


def test_missing_candidates_is_non_retryable_api_error():
    with pytest.raises(ApiError) as exc:
        parse_generate_response({"candidates": []})
    assert exc.value.retryable is False


def test_max_tokens_finish_reason_maps_to_length():
    out = parse_generate_response(
        {"candidates": [{"content": {"parts": [{"text": "cut"}]}, "finishReason": "MAX_TOKENS"}]}
    )
    assert out.finish_reason == "length"
    assert out.total_tokens is None


@pytest.mark.parametrize(
    "message, status, kind, retryable",
    [
        ("rate limit reached", None, LLMErrorKind.RATE_LIMIT, True),
        ("Quota exceeded for quota metric", 400, LLMErrorKind.RATE_LIMIT, True),
        ("forbidden", 403, LLMErrorKind.AUTHENTICATION, False),
        ("authentication failed", None, LLMErrorKind.AUTHENTICATION, False),
        ("exceeds maximum context length", None, LLMErrorKind.CONTEXT_LENGTH, False),
        ("Candidate was blocked due to SAFETY", None, LLMErrorKind.SAFETY, False),
        ("network unreachable", None, LLMErrorKind.CONNECTIVITY, True),
        ("connect ECONNREFUSED 127.0.0.1", None, LLMErrorKind.CONNECTIVITY, True),
        ("request timeout", None, LLMErrorKind.TIMEOUT, True),
        ("something else", None, LLMErrorKind.API_ERROR, True),
        ("internal", 500, LLMErrorKind.API_ERROR, True),
        ("bad argument", 400, LLMErrorKind.API_ERROR, False),
    ],
)
def test_classify_gemini_error(message, status, kind, retryable):
    err = classify_gemini_error(message, status)
    assert err.kind is kind
    assert err.retryable is retryable


def test_unclassified_error_defaults_status_to_500():
    assert classify_gemini_error("mystery").status_code == 500


@pytest.mark.asyncio
async def test_stream_parses_sse_events():
    sse = "\n".join(
        [
            'data: {"candidates":[{"content":{"parts":[{"text":"he"}]}}]}',
            "",
            'data: {"candidates":[{"content":{"parts":[{"text":"llo"}]}}]}',
            "",
        ]
    )

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith(":streamGenerateContent")
        assert request.url.params.get("alt") == "sse"
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, text=sse)

    s = _session(handler)
    try:
        pieces = [p async for p in s.stream(model="m", payload={"contents": CONTENTS})]
        assert "".join(pieces) == "hello"
    finally:
        await s.close()


@pytest.mark.asyncio
async def test_stream_error_status_is_classified():
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": {"message": "Resource has been exhausted (e.g. check quota)."}})

    s = _session(handler)
    try:
        with pytest.raises(RateLimitError):
            async for _ in s.stream(model="m", payload={"contents": CONTENTS}):
                pass
    finally:
        await s.close()


@pytest.mark.asyncio
async def test_count_tokens_and_list_models():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith(":countTokens"):
            return httpx.Response(200, json={"totalTokens": 7})
        assert request.method == "GET"
        return httpx.Response(
            200,
            json={
                "models": [
                    {"name": "models/gemini-1.5-flash", "supportedGenerationMethods": ["generateContent"]},
                    {"name": "models/text-embedding-004", "supportedGenerationMethods": ["embedContent"]},
                ]
            },
        )

    s = _session(handler)
    try:
        assert await s.count_tokens(model="m", contents=CONTENTS) == 7
        assert await s.list_models() == ["gemini-1.5-flash"]
    finally:
        await s.close()


@pytest.mark.asyncio
async def test_stream_candidate_stopped_for_safety_raises():
    sse = (
        'data: {"candidates":[{"content":{"parts":[{"text":"Try "}]}}]}\n\n'
        'data: {"candidates":[{"finishReason":"SAFETY"}]}\n\n'
    )

    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=sse)

    s = _session(handler)
    pieces = []
    try:
        with pytest.raises(SafetyError) as exc:
            async for p in s.stream(model="m", payload={"contents": CONTENTS}):
                pieces.append(p)
    finally:
        await s.close()
    assert pieces == ["Try "]
    assert exc.value.retryable is False
