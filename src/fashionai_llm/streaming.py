from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any, TypeVar

import structlog

from .errors import LLMError
from .messages import ChatCompletionChunk, CompletionChunk

log = structlog.get_logger()

T = TypeVar("T")

DONE_EVENT = b"data: [DONE]\n\n"


def sse_encode(data: str) -> bytes:
    return f"data: {data}\n\n".encode("utf-8")


def sse_json(payload: dict[str, Any]) -> bytes:
    return sse_encode(json.dumps(payload))


async def sse_from_chunks(
    chunks: AsyncIterator[CompletionChunk] | AsyncIterator[ChatCompletionChunk],
) -> AsyncIterator[bytes]:
    """Frame a provider stream as ``data: {"text": ...}`` events.

    Completion chunks carry fragments; chat chunks carry the accumulated
    content, so clients replace what they display. An ``LLMError`` raised
    mid-stream becomes a ``{"error": ...}`` event. The stream always ends
    with ``data: [DONE]``.
    """
    try:
        async for chunk in chunks:
            # The final chunk repeats the full chat content or carries an empty fragment.
            if chunk.is_final:
                continue
            text = chunk.message.content if isinstance(chunk, ChatCompletionChunk) else chunk.text
            if text:
                yield sse_json({"text": text})
    except LLMError as e:
        log.warning("stream_interrupted", **e.to_dict())
        yield sse_json({"error": e.message or str(e)})
    yield DONE_EVENT


async def prime_stream(chunks: AsyncIterator[T]) -> AsyncIterator[T]:
    """Pull the first chunk now and return a stream that replays it.

    Failures while the upstream stream opens (auth, rate limit, bad
    request) raise here, before any response bytes are committed.
    """
    iterator = chunks.__aiter__()
    try:
        first = await iterator.__anext__()
    except StopAsyncIteration:
        primed = False
    else:
        primed = True

    async def _replay() -> AsyncIterator[T]:
        if primed:
            yield first
        async for chunk in iterator:
            yield chunk

    return _replay()
