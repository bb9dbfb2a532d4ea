from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

MessageRole = Literal["user", "assistant", "system"]

_ROLES = ("user", "assistant", "system")


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str
    name: str | None = None
    id: str | None = None
    timestamp: datetime | None = None


def is_message(obj: Any) -> bool:
    if isinstance(obj, Message):
        return True
    if not isinstance(obj, Mapping):
        return False
    role = obj.get("role")
    content = obj.get("content")
    return isinstance(role, str) and isinstance(content, str) and role in _ROLES


class Conversation(BaseModel):
    """Ordered message history; list order is chronological order."""

    messages: list[Message] = Field(default_factory=list)
    id: str | None = None
    metadata: dict[str, Any] | None = None


class HarmCategory(str, Enum):
    HARASSMENT = "HARM_CATEGORY_HARASSMENT"
    HATE_SPEECH = "HARM_CATEGORY_HATE_SPEECH"
    SEXUALLY_EXPLICIT = "HARM_CATEGORY_SEXUALLY_EXPLICIT"
    DANGEROUS_CONTENT = "HARM_CATEGORY_DANGEROUS_CONTENT"


class HarmThreshold(str, Enum):
    BLOCK_NONE = "BLOCK_NONE"
    BLOCK_LOW_AND_ABOVE = "BLOCK_LOW_AND_ABOVE"
    BLOCK_MEDIUM_AND_ABOVE = "BLOCK_MEDIUM_AND_ABOVE"
    BLOCK_ONLY_HIGH = "BLOCK_ONLY_HIGH"


class SafetySetting(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: HarmCategory
    threshold: HarmThreshold


class SamplingOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    # None selects the provider's default model.
    model: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    n: int | None = None
    stop: list[str] | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None

    @field_validator("temperature", "top_p")
    @classmethod
    def _validate_unit_interval(cls, v: float | None) -> float | None:
        if v is None:
            return None
        if not (0.0 <= v <= 1.0):
            raise ValueError("must be between 0 and 1.")
        return v

    @field_validator("max_tokens", "n")
    @classmethod
    def _validate_positive(cls, v: int | None) -> int | None:
        if v is None:
            return None
        if v <= 0:
            raise ValueError("must be > 0.")
        return v

    @field_validator("stop")
    @classmethod
    def _validate_stop(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return None
        if any(not s for s in v):
            raise ValueError("stop sequences must be non-empty strings.")
        return v

    @field_validator("presence_penalty", "frequency_penalty")
    @classmethod
    def _validate_penalties(cls, v: float | None) -> float | None:
        if v is None:
            return None
        if not (-2.0 <= v <= 2.0):
            raise ValueError("penalty must be between -2 and 2.")
        return v


class CompletionOptions(SamplingOptions):
    prompt: str


class ChatCompletionOptions(SamplingOptions):
    messages: list[Message]
    safety_settings: list[SafetySetting] | None = None


class CompletionResponse(BaseModel):
    text: str
    id: str | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    finish_reason: str | None = None


class ChatCompletionResponse(BaseModel):
    message: Message
    id: str | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    finish_reason: str | None = None


@dataclass(frozen=True)
class CompletionChunk:
    text: str
    is_final: bool = False


@dataclass(frozen=True)
class ChatCompletionChunk:
    # Accumulated assistant message so far, not a delta.
    message: Message
    is_final: bool = False
