import pytest

from fashionai_llm.config import (
    ProviderConfig,
    ServiceSettings,
    get_llm_service_config,
    get_provider_config,
    is_provider_configured,
    is_valid_provider_config,
    validate_provider_config,
)
from fashionai_llm.errors import AuthenticationError, InvalidRequestError, LLMErrorKind


def test_validate_fills_defaults_when_absent():
    cfg = validate_provider_config(ProviderConfig(api_key="k", default_model="m"))
    assert cfg.timeout_ms == 30000
    assert cfg.max_retries == 3


def test_validate_keeps_explicit_zero_retries():
    cfg = validate_provider_config({"api_key": "k", "default_model": "m", "max_retries": 0, "timeout_ms": 500})
    assert cfg.max_retries == 0
    assert cfg.timeout_ms == 500


@pytest.mark.parametrize("api_key", [None, ""])
def test_missing_api_key_is_authentication_error(api_key):
    with pytest.raises(AuthenticationError) as exc:
        validate_provider_config({"api_key": api_key, "default_model": "m"})
    assert exc.value.kind is LLMErrorKind.AUTHENTICATION


@pytest.mark.parametrize("default_model", [None, ""])
def test_missing_default_model_is_invalid_request(default_model):
    with pytest.raises(InvalidRequestError) as exc:
        validate_provider_config({"api_key": "k", "default_model": default_model})
    assert exc.value.kind is LLMErrorKind.INVALID_REQUEST


def test_malformed_mapping_is_invalid_request():
    with pytest.raises(InvalidRequestError):
        validate_provider_config({"api_key": "k", "default_model": "m", "timeout_ms": "soon"})


def test_is_valid_provider_config_never_raises():
    assert is_valid_provider_config({"api_key": "k", "default_model": "m"})
    assert not is_valid_provider_config({})


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "gemini")
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.setenv("NEXT_PUBLIC_GEMINI_API_KEY", "public-key")
    monkeypatch.setenv("GEMINI_MODEL", "gemini-1.5-pro")
    monkeypatch.setenv("GEMINI_TIMEOUT_MS", "1500")
    monkeypatch.setenv("GEMINI_MAX_RETRIES", "5")

    service = get_llm_service_config(ServiceSettings())
    assert service.provider == "gemini"
    assert service.provider_config == ProviderConfig(
        api_key="public-key",
        default_model="gemini-1.5-pro",
        timeout_ms=1500,
        max_retries=5,
    )


def test_gemini_config_requires_api_key():
    settings = ServiceSettings(gemini_api_key=None)
    with pytest.raises(AuthenticationError):
        get_provider_config("gemini", settings)
    assert not is_provider_configured("gemini", settings)


def test_mock_config_is_fixed():
    cfg = get_provider_config("mock", ServiceSettings(gemini_api_key=None))
    assert cfg.api_key == "mock-api-key"
    assert cfg.default_model == "mock-model"
    assert cfg.max_retries == 0


def test_unknown_provider_config_is_invalid_request():
    with pytest.raises(InvalidRequestError):
        get_provider_config("openai", ServiceSettings())
    assert not is_provider_configured("openai", ServiceSettings())
