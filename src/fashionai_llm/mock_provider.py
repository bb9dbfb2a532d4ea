from __future__ import annotations

import asyncio
import random
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from datetime import datetime, timezone
from typing import Any

from .config import ProviderConfig, is_valid_provider_config, validate_provider_config
from .messages import (
    ChatCompletionChunk,
    ChatCompletionOptions,
    ChatCompletionResponse,
    CompletionChunk,
    CompletionOptions,
    CompletionResponse,
    Message,
)
from .provider_base import estimate_message_tokens, estimate_tokens, last_user_content, observe_operation

ECHO_CHARS = 30
WORD_DELAY_SECONDS = 0.1


def _words(text: str) -> list[str]:
    words = text.split(" ")
    return [w + ("" if i == len(words) - 1 else " ") for i, w in enumerate(words)]


class MockProvider:
    """Deterministic provider for running without a backend credential."""

    provider_name = "mock"
    models = ("mock-model", "mock-model-large")

    def __init__(
        self,
        config: ProviderConfig | Mapping[str, Any],
        *,
        sleeper: Callable[[float], Awaitable[None]] | None = None,
        uniform: Callable[[float, float], float] | None = None,
    ):
        self.config = validate_provider_config(config)
        self._sleep: Callable[[float], Awaitable[None]] = sleeper or asyncio.sleep
        self._uniform: Callable[[float, float], float] = uniform or random.uniform

    def is_configured(self) -> bool:
        return is_valid_provider_config(self.config)

    async def _simulate_latency(self, seconds: float | None = None) -> None:
        await self._sleep(seconds if seconds is not None else self._uniform(0.2, 0.8))

    @staticmethod
    def completion_text(prompt: str) -> str:
        return f'This is a mock completion response to: "{prompt[:ECHO_CHARS]}..."'

    @staticmethod
    def chat_text(messages: list[Message]) -> str:
        return f'This is a mock chat response to: "{last_user_content(messages)[:ECHO_CHARS]}..."'

    @staticmethod
    def _response_id(kind: str) -> str:
        return f"mock-{kind}-{int(time.time() * 1000)}"

    async def generate_completion(self, options: CompletionOptions) -> CompletionResponse:
        async with observe_operation(self.provider_name, "generate_completion"):
            await self._simulate_latency()
            text = self.completion_text(options.prompt)
            prompt_tokens = estimate_tokens(options.prompt)
            completion_tokens = estimate_tokens(text)
            return CompletionResponse(
                text=text,
                id=self._response_id("completion"),
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
                finish_reason="stop",
            )

    async def generate_chat_completion(self, options: ChatCompletionOptions) -> ChatCompletionResponse:
        async with observe_operation(self.provider_name, "generate_chat_completion"):
            await self._simulate_latency()
            text = self.chat_text(options.messages)
            prompt_tokens = estimate_message_tokens(options.messages)
            completion_tokens = estimate_tokens(text)
            return ChatCompletionResponse(
                message=Message(role="assistant", content=text, timestamp=datetime.now(timezone.utc)),
                id=self._response_id("chat"),
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
                finish_reason="stop",
            )

    async def stream_completion(self, options: CompletionOptions) -> AsyncIterator[CompletionChunk]:
        async with observe_operation(self.provider_name, "stream_completion"):
            for word in _words(self.completion_text(options.prompt)):
                await self._simulate_latency(WORD_DELAY_SECONDS)
                yield CompletionChunk(text=word)
            yield CompletionChunk(text="", is_final=True)

    async def stream_chat_completion(self, options: ChatCompletionOptions) -> AsyncIterator[ChatCompletionChunk]:
        async with observe_operation(self.provider_name, "stream_chat_completion"):
            content = ""
            for word in _words(self.chat_text(options.messages)):
                await self._simulate_latency(WORD_DELAY_SECONDS)
                content += word
                yield ChatCompletionChunk(message=Message(role="assistant", content=content))
            yield ChatCompletionChunk(message=Message(role="assistant", content=content), is_final=True)

    async def count_tokens(self, text: str) -> int:
        return estimate_tokens(text)

    async def get_available_models(self) -> list[str]:
        return list(self.models)

    async def aclose(self) -> None:
        return None
