from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog

from .config import ProviderConfig
from .errors import InvalidRequestError
from .gemini_provider import GeminiProvider
from .mock_provider import MockProvider
from .provider_base import LLMProvider, ProviderFactory

log = structlog.get_logger()


class ProviderRegistry:
    """Name-to-factory mapping for LLM providers.

    Registering an existing name replaces the previous factory.
    """

    def __init__(self) -> None:
        self._factories: dict[str, ProviderFactory] = {}

    def register(self, name: str, factory: ProviderFactory) -> None:
        if name in self._factories:
            log.warning("llm_provider_overwritten", provider=name)
        self._factories[name] = factory

    def create(self, name: str, config: ProviderConfig | Mapping[str, Any]) -> LLMProvider:
        factory = self._factories.get(name)
        if factory is None:
            raise InvalidRequestError(f"Provider type '{name}' is not registered")
        return factory(config)

    def names(self) -> list[str]:
        return list(self._factories)

    def __contains__(self, name: object) -> bool:
        return name in self._factories


def register_builtin_providers(registry: ProviderRegistry) -> ProviderRegistry:
    registry.register("mock", MockProvider)
    registry.register("gemini", GeminiProvider)
    return registry


default_registry = ProviderRegistry()


def register_provider(name: str, factory: ProviderFactory, *, registry: ProviderRegistry | None = None) -> None:
    (registry or default_registry).register(name, factory)


def create_llm_provider(
    name: str,
    config: ProviderConfig | Mapping[str, Any],
    *,
    registry: ProviderRegistry | None = None,
) -> LLMProvider:
    return (registry or default_registry).create(name, config)


def get_available_providers(*, registry: ProviderRegistry | None = None) -> list[str]:
    return (registry or default_registry).names()
