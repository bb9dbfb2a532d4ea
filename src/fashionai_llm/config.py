from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import AuthenticationError, InvalidRequestError, LLMError

DEFAULT_TIMEOUT_MS = 30000
DEFAULT_MAX_RETRIES = 3


class ProviderConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    api_key: str | None = None
    api_url: str | None = None
    default_model: str | None = None
    timeout_ms: int | None = None
    max_retries: int | None = None


def validate_provider_config(config: ProviderConfig | Mapping[str, Any]) -> ProviderConfig:
    """Check required fields and fill defaults for absent ones.

    Raises ``AuthenticationError`` without an API key and
    ``InvalidRequestError`` without a default model.
    """
    if not isinstance(config, ProviderConfig):
        try:
            config = ProviderConfig.model_validate(dict(config))
        except ValidationError as e:
            raise InvalidRequestError(f"Invalid provider configuration: {e}") from e

    if not config.api_key:
        raise AuthenticationError("API key is required")
    if not config.default_model:
        raise InvalidRequestError("Default model is required")
    if config.timeout_ms is not None and config.timeout_ms <= 0:
        raise InvalidRequestError("timeout_ms must be > 0")
    if config.max_retries is not None and config.max_retries < 0:
        raise InvalidRequestError("max_retries must be >= 0")

    return config.model_copy(
        update={
            "timeout_ms": config.timeout_ms if config.timeout_ms is not None else DEFAULT_TIMEOUT_MS,
            "max_retries": config.max_retries if config.max_retries is not None else DEFAULT_MAX_RETRIES,
        }
    )


def is_valid_provider_config(config: ProviderConfig | Mapping[str, Any]) -> bool:
    try:
        validate_provider_config(config)
    except LLMError:
        return False
    return True


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


def _gemini_api_key_from_env() -> str | None:
    return os.getenv("GEMINI_API_KEY") or os.getenv("NEXT_PUBLIC_GEMINI_API_KEY")


class ServiceSettings(BaseModel):
    # Provider selection
    llm_provider: str = Field(default_factory=lambda: os.getenv("LLM_PROVIDER", "gemini"))

    # Gemini
    gemini_api_key: str | None = Field(default_factory=_gemini_api_key_from_env)
    gemini_api_url: str | None = Field(default_factory=lambda: os.getenv("GEMINI_API_URL"))
    gemini_model: str = Field(default_factory=lambda: os.getenv("GEMINI_MODEL", "gemini-1.5-flash"))
    gemini_timeout_ms: int = Field(
        default_factory=lambda: int(os.getenv("GEMINI_TIMEOUT_MS", str(DEFAULT_TIMEOUT_MS)))
    )
    gemini_max_retries: int = Field(
        default_factory=lambda: int(os.getenv("GEMINI_MAX_RETRIES", str(DEFAULT_MAX_RETRIES)))
    )

    # Observability
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = Field(default_factory=lambda: os.getenv("LOG_FORMAT", "json"))
    enable_metrics: bool = Field(default_factory=lambda: _env_bool("ENABLE_METRICS"))
    metrics_bind: str = Field(default_factory=lambda: os.getenv("METRICS_BIND", "127.0.0.1"))
    metrics_port: int = Field(default_factory=lambda: int(os.getenv("METRICS_PORT", "9109")))

    # HTTP
    enable_api_docs: bool = Field(default_factory=lambda: _env_bool("ENABLE_API_DOCS"))
    max_request_body_bytes: int = Field(
        default_factory=lambda: int(os.getenv("MAX_REQUEST_BODY_BYTES", str(1024 * 1024)))
    )


@dataclass(frozen=True)
class LLMServiceConfig:
    provider: str
    provider_config: ProviderConfig


def get_provider_config(provider: str, settings: ServiceSettings | None = None) -> ProviderConfig:
    settings = settings or ServiceSettings()
    if provider == "gemini":
        if not settings.gemini_api_key:
            raise AuthenticationError(
                "Gemini API key not found in environment variables "
                "(GEMINI_API_KEY or NEXT_PUBLIC_GEMINI_API_KEY)"
            )
        return ProviderConfig(
            api_key=settings.gemini_api_key,
            api_url=settings.gemini_api_url,
            default_model=settings.gemini_model,
            timeout_ms=settings.gemini_timeout_ms,
            max_retries=settings.gemini_max_retries,
        )
    if provider == "mock":
        return ProviderConfig(
            api_key="mock-api-key",
            default_model="mock-model",
            timeout_ms=1000,
            max_retries=0,
        )
    raise InvalidRequestError(f"Unknown provider type: {provider}")


def get_llm_service_config(settings: ServiceSettings | None = None) -> LLMServiceConfig:
    settings = settings or ServiceSettings()
    return LLMServiceConfig(
        provider=settings.llm_provider,
        provider_config=get_provider_config(settings.llm_provider, settings),
    )


def is_provider_configured(provider: str, settings: ServiceSettings | None = None) -> bool:
    try:
        get_provider_config(provider, settings)
    except LLMError:
        return False
    return True
