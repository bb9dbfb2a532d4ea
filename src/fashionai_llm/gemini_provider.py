from __future__ import annotations

import time
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

import structlog

from .config import ProviderConfig, is_valid_provider_config, validate_provider_config
from .errors import LLMError
from .gemini_session import GeminiResult, GeminiSession
from .messages import (
    ChatCompletionChunk,
    ChatCompletionOptions,
    ChatCompletionResponse,
    CompletionChunk,
    CompletionOptions,
    CompletionResponse,
    HarmCategory,
    HarmThreshold,
    Message,
    SafetySetting,
    SamplingOptions,
)
from .provider_base import estimate_message_tokens, estimate_tokens, observe_operation, require_messages
from .retry import RetryPolicy, with_retry

log = structlog.get_logger()

KNOWN_MODELS = (
    "gemini-1.5-flash",
    "gemini-1.5-pro",
    "gemini-1.5-flash-latest",
    "gemini-pro",
)

DEFAULT_SAFETY_SETTINGS = tuple(
    SafetySetting(category=category, threshold=HarmThreshold.BLOCK_MEDIUM_AND_ABOVE) for category in HarmCategory
)

_GEMINI_ROLES = {"user": "user", "assistant": "model", "system": "user"}


def to_gemini_contents(messages: Sequence[Message]) -> list[dict[str, Any]]:
    # Gemini has no system role; system turns are sent as user turns.
    return [{"role": _GEMINI_ROLES[m.role], "parts": [{"text": m.content}]} for m in messages]


def to_generation_config(options: SamplingOptions) -> dict[str, Any]:
    generation_config: dict[str, Any] = {}
    if options.max_tokens is not None:
        generation_config["maxOutputTokens"] = options.max_tokens
    if options.temperature is not None:
        generation_config["temperature"] = options.temperature
    if options.top_p is not None:
        generation_config["topP"] = options.top_p
    if options.stop:
        generation_config["stopSequences"] = list(options.stop)
    if options.n is not None:
        generation_config["candidateCount"] = options.n
    if options.presence_penalty is not None:
        generation_config["presencePenalty"] = options.presence_penalty
    if options.frequency_penalty is not None:
        generation_config["frequencyPenalty"] = options.frequency_penalty
    return generation_config


def to_safety_settings(settings: Sequence[SafetySetting] | None = None) -> list[dict[str, str]]:
    chosen = settings or DEFAULT_SAFETY_SETTINGS
    return [{"category": s.category.value, "threshold": s.threshold.value} for s in chosen]


def build_payload(
    contents: list[dict[str, Any]],
    options: SamplingOptions,
    safety_settings: Sequence[SafetySetting] | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {"contents": contents, "safetySettings": to_safety_settings(safety_settings)}
    generation_config = to_generation_config(options)
    if generation_config:
        payload["generationConfig"] = generation_config
    return payload


class GeminiProvider:
    provider_name = "gemini"

    def __init__(
        self,
        config: ProviderConfig | Mapping[str, Any],
        *,
        session: GeminiSession | None = None,
        sleeper: Callable[[float], Awaitable[None]] | None = None,
    ):
        self.config = validate_provider_config(config)
        timeout_ms = self.config.timeout_ms or 0
        self.session = session or GeminiSession(
            api_key=self.config.api_key,
            base_url=self.config.api_url,
            timeout_seconds=timeout_ms / 1000,
        )
        # The httpx client enforces the request timeout; no second deadline per attempt.
        self._retry_policy = RetryPolicy.from_config(self.config, attempt_timeout_seconds=None)
        self._sleep = sleeper

    def is_configured(self) -> bool:
        return is_valid_provider_config(self.config)

    def _model(self, options: SamplingOptions) -> str:
        return options.model or self.config.default_model or ""

    async def _generate(self, operation: str, model: str, payload: dict[str, Any]) -> GeminiResult:
        async def _attempt() -> GeminiResult:
            return await self.session.generate(model=model, payload=payload)

        return await with_retry(_attempt, self._retry_policy, operation_name=operation, sleeper=self._sleep)

    async def generate_completion(self, options: CompletionOptions) -> CompletionResponse:
        async with observe_operation(self.provider_name, "generate_completion"):
            contents = to_gemini_contents([Message(role="user", content=options.prompt)])
            result = await self._generate(
                "generate_completion", self._model(options), build_payload(contents, options)
            )
            prompt_tokens = result.prompt_tokens if result.prompt_tokens is not None else estimate_tokens(options.prompt)
            completion_tokens = (
                result.completion_tokens if result.completion_tokens is not None else estimate_tokens(result.text)
            )
            return CompletionResponse(
                text=result.text,
                id=f"gemini-{int(time.time() * 1000)}",
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=result.total_tokens or prompt_tokens + completion_tokens,
                finish_reason=result.finish_reason,
            )

    async def generate_chat_completion(self, options: ChatCompletionOptions) -> ChatCompletionResponse:
        async with observe_operation(self.provider_name, "generate_chat_completion"):
            require_messages(options)
            # History is everything before the last message; the last message triggers the reply.
            contents = to_gemini_contents(options.messages)
            result = await self._generate(
                "generate_chat_completion",
                self._model(options),
                build_payload(contents, options, options.safety_settings),
            )
            prompt_tokens = (
                result.prompt_tokens if result.prompt_tokens is not None else estimate_message_tokens(options.messages)
            )
            completion_tokens = (
                result.completion_tokens if result.completion_tokens is not None else estimate_tokens(result.text)
            )
            return ChatCompletionResponse(
                message=Message(role="assistant", content=result.text, timestamp=datetime.now(timezone.utc)),
                id=f"gemini-{int(time.time() * 1000)}",
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=result.total_tokens or prompt_tokens + completion_tokens,
                finish_reason=result.finish_reason,
            )

    async def stream_completion(self, options: CompletionOptions) -> AsyncIterator[CompletionChunk]:
        async with observe_operation(self.provider_name, "stream_completion"):
            contents = to_gemini_contents([Message(role="user", content=options.prompt)])
            async for piece in self.session.stream(
                model=self._model(options), payload=build_payload(contents, options)
            ):
                yield CompletionChunk(text=piece)
            yield CompletionChunk(text="", is_final=True)

    async def stream_chat_completion(self, options: ChatCompletionOptions) -> AsyncIterator[ChatCompletionChunk]:
        async with observe_operation(self.provider_name, "stream_chat_completion"):
            require_messages(options)
            payload = build_payload(to_gemini_contents(options.messages), options, options.safety_settings)
            content = ""
            async for piece in self.session.stream(model=self._model(options), payload=payload):
                content += piece
                yield ChatCompletionChunk(message=Message(role="assistant", content=content))
            yield ChatCompletionChunk(message=Message(role="assistant", content=content), is_final=True)

    async def count_tokens(self, text: str) -> int:
        try:
            return await self.session.count_tokens(
                model=self.config.default_model or "",
                contents=to_gemini_contents([Message(role="user", content=text)]),
            )
        except LLMError as e:
            log.info("gemini_count_tokens_fallback", **e.to_dict())
            return estimate_tokens(text)

    async def get_available_models(self) -> list[str]:
        try:
            models = await self.session.list_models()
        except LLMError as e:
            log.info("gemini_list_models_fallback", **e.to_dict())
            return list(KNOWN_MODELS)
        return models or list(KNOWN_MODELS)

    async def aclose(self) -> None:
        await self.session.close()
