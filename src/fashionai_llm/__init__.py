from .config import (
    LLMServiceConfig,
    ProviderConfig,
    ServiceSettings,
    get_llm_service_config,
    get_provider_config,
    is_provider_configured,
    validate_provider_config,
)
from .errors import (
    ApiError,
    AuthenticationError,
    ConnectivityError,
    ContextLengthError,
    InvalidRequestError,
    LLMError,
    LLMErrorKind,
    RateLimitError,
    RequestTimeoutError,
    SafetyError,
)
from .gemini_provider import GeminiProvider
from .messages import (
    ChatCompletionChunk,
    ChatCompletionOptions,
    ChatCompletionResponse,
    CompletionChunk,
    CompletionOptions,
    CompletionResponse,
    Conversation,
    HarmCategory,
    HarmThreshold,
    Message,
    SafetySetting,
    is_message,
)
from .mock_provider import MockProvider
from .provider_base import LLMProvider, forward_chunks
from .registry import (
    ProviderRegistry,
    create_llm_provider,
    default_registry,
    get_available_providers,
    register_builtin_providers,
    register_provider,
)
from .retry import RetryPolicy, with_retry

__all__ = [
    "ApiError",
    "AuthenticationError",
    "ChatCompletionChunk",
    "ChatCompletionOptions",
    "ChatCompletionResponse",
    "CompletionChunk",
    "CompletionOptions",
    "CompletionResponse",
    "ConnectivityError",
    "ContextLengthError",
    "Conversation",
    "GeminiProvider",
    "HarmCategory",
    "HarmThreshold",
    "InvalidRequestError",
    "LLMError",
    "LLMErrorKind",
    "LLMProvider",
    "LLMServiceConfig",
    "Message",
    "MockProvider",
    "ProviderConfig",
    "ProviderRegistry",
    "RateLimitError",
    "RequestTimeoutError",
    "RetryPolicy",
    "SafetyError",
    "SafetySetting",
    "ServiceSettings",
    "create_llm_provider",
    "default_registry",
    "forward_chunks",
    "get_available_providers",
    "get_llm_service_config",
    "get_provider_config",
    "is_message",
    "is_provider_configured",
    "register_builtin_providers",
    "register_provider",
    "validate_provider_config",
    "with_retry",
]
