from __future__ import annotations

import inspect
import math
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping, Sequence
from contextlib import asynccontextmanager
from typing import Any, Protocol, TypeAlias, Union, runtime_checkable

import structlog

from .config import ProviderConfig
from .errors import InvalidRequestError, LLMError
from .messages import (
    ChatCompletionChunk,
    ChatCompletionOptions,
    ChatCompletionResponse,
    CompletionChunk,
    CompletionOptions,
    CompletionResponse,
    Message,
)
from .metrics import provider_request_latency_seconds, provider_requests_total

log = structlog.get_logger()

StreamingCompletionCallback: TypeAlias = Callable[[str, bool], Union[Awaitable[None], None]]
StreamingChatCompletionCallback: TypeAlias = Callable[[Message, bool], Union[Awaitable[None], None]]


@runtime_checkable
class LLMProvider(Protocol):
    """Capability set every backend implements; callers depend only on this."""

    provider_name: str

    def is_configured(self) -> bool: ...

    async def generate_completion(self, options: CompletionOptions) -> CompletionResponse: ...

    async def generate_chat_completion(self, options: ChatCompletionOptions) -> ChatCompletionResponse: ...

    def stream_completion(self, options: CompletionOptions) -> AsyncIterator[CompletionChunk]: ...

    def stream_chat_completion(self, options: ChatCompletionOptions) -> AsyncIterator[ChatCompletionChunk]: ...

    async def count_tokens(self, text: str) -> int: ...

    async def get_available_models(self) -> list[str]: ...


ProviderFactory: TypeAlias = Callable[[Union[ProviderConfig, Mapping[str, Any]]], LLMProvider]


def estimate_tokens(text: str) -> int:
    # ~4 characters per token
    return math.ceil(len(text) / 4)


def estimate_message_tokens(messages: Sequence[Message]) -> int:
    return sum(estimate_tokens(m.content) for m in messages)


def require_messages(options: ChatCompletionOptions) -> None:
    if not options.messages:
        raise InvalidRequestError("At least one message is required")


def last_user_content(messages: Sequence[Message], default: str = "No user message") -> str:
    for message in reversed(messages):
        if message.role == "user":
            return message.content
    return default


async def forward_chunks(
    stream: AsyncIterator[CompletionChunk] | AsyncIterator[ChatCompletionChunk],
    callback: StreamingCompletionCallback | StreamingChatCompletionCallback,
) -> None:
    """Drive a chunk stream into a ``(payload, is_final)`` callback.

    Errors raised by the stream propagate to the caller.
    """
    async for chunk in stream:
        payload: Any = chunk.message if isinstance(chunk, ChatCompletionChunk) else chunk.text
        result = callback(payload, chunk.is_final)
        if inspect.isawaitable(result):
            await result


@asynccontextmanager
async def observe_operation(provider: str, operation: str) -> AsyncIterator[None]:
    """Record latency and outcome of one provider operation."""
    started = time.monotonic()
    try:
        yield
    except LLMError as e:
        provider_requests_total.labels(provider=provider, operation=operation, status="error").inc()
        log.warning("provider_error", provider=provider, operation=operation, **e.to_dict())
        raise
    except Exception as e:
        provider_requests_total.labels(provider=provider, operation=operation, status="error").inc()
        log.exception("provider_error", provider=provider, operation=operation, error=str(e))
        raise
    else:
        provider_requests_total.labels(provider=provider, operation=operation, status="success").inc()
    finally:
        provider_request_latency_seconds.labels(provider=provider, operation=operation).observe(
            max(0.0, time.monotonic() - started)
        )
