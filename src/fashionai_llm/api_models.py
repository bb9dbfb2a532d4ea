from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from .errors import LLMError
from .messages import (
    ChatCompletionOptions,
    ChatCompletionResponse,
    CompletionOptions,
    CompletionResponse,
    Message,
    SafetySetting,
)

_SAMPLING_FIELDS = (
    "model",
    "max_tokens",
    "temperature",
    "top_p",
    "n",
    "stop",
    "presence_penalty",
    "frequency_penalty",
)


class _ApiModel(BaseModel):
    # JSON bodies use camelCase; Python code may use field names.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _SamplingRequest(_ApiModel):
    model: str | None = None
    stream: bool = False
    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    n: int | None = None
    stop: list[str] | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None

    def _sampling(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in _SAMPLING_FIELDS if getattr(self, name) is not None}


class CompletionRequest(_SamplingRequest):
    prompt: str

    @field_validator("prompt")
    @classmethod
    def _validate_prompt(cls, v: str) -> str:
        if not v:
            raise ValueError("Prompt is required.")
        return v

    def to_options(self) -> CompletionOptions:
        return CompletionOptions(prompt=self.prompt, **self._sampling())


class ChatRequest(_SamplingRequest):
    messages: list[Message]
    safety_settings: list[SafetySetting] | None = None

    @field_validator("messages")
    @classmethod
    def _validate_messages(cls, v: list[Message]) -> list[Message]:
        if not v:
            raise ValueError("At least one message is required.")
        return v

    def to_options(self) -> ChatCompletionOptions:
        return ChatCompletionOptions(
            messages=self.messages,
            safety_settings=self.safety_settings,
            **self._sampling(),
        )


class TextReply(_ApiModel):
    text: str
    finish_reason: str | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None

    @classmethod
    def from_response(cls, response: CompletionResponse | ChatCompletionResponse) -> TextReply:
        text = response.message.content if isinstance(response, ChatCompletionResponse) else response.text
        return cls(
            text=text,
            finish_reason=response.finish_reason,
            prompt_tokens=response.prompt_tokens,
            completion_tokens=response.completion_tokens,
            total_tokens=response.total_tokens,
        )


class ErrorDetail(BaseModel):
    message: str
    type: str = "api_error"
    retryable: bool = False
    code: str | None = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


def make_error_response(exc: LLMError, *, code: str | None = None) -> ErrorResponse:
    return ErrorResponse(
        error=ErrorDetail(
            message=exc.message or str(exc),
            type=exc.kind.value,
            retryable=exc.retryable,
            code=code,
        )
    )
