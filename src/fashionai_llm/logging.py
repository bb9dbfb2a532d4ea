from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping, MutableMapping
from typing import Any, TypeAlias, cast

import structlog

ProcessorReturn: TypeAlias = Mapping[str, Any] | str | bytes | bytearray | tuple[Any, ...]
Processor: TypeAlias = Callable[[Any, str, MutableMapping[str, Any]], ProcessorReturn]

_REDACTED = "[REDACTED]"

# Field names (by suffix) whose values are never logged.
_SECRET_FIELD_SUFFIXES = ("key", "token", "secret", "password", "authorization", "cookie")

# Gemini takes the API key as a `key=` query parameter.
_KEY_PARAM_RE = re.compile(r"(?i)([?&]key=)[^&\s\"']+")
_BEARER_RE = re.compile(r"(?i)\bBearer\s+[A-Za-z0-9._-]{6,}")


def _is_secret_field(name: Any) -> bool:
    lowered = str(name).lower()
    return lowered.endswith(_SECRET_FIELD_SUFFIXES)


def redact(value: Any, secrets: Iterable[str] = ()) -> Any:
    if isinstance(value, str):
        for secret in secrets:
            value = value.replace(secret, _REDACTED)
        value = _KEY_PARAM_RE.sub(r"\1" + _REDACTED, value)
        return _BEARER_RE.sub("Bearer " + _REDACTED, value)
    if isinstance(value, Mapping):
        return {
            k: (_REDACTED if _is_secret_field(k) and v is not None else redact(v, secrets))
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(redact(v, secrets) for v in value)
    return value


def _redaction_processor(secrets: list[str]) -> Processor:
    def _processor(_logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]) -> ProcessorReturn:
        return cast(dict[str, Any], redact(event_dict, secrets))

    return _processor


def configure_logging(level: str = "INFO", fmt: str = "json", *, secrets: list[str] | None = None) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level)

    processors: list[Processor] = [
        cast(Processor, structlog.contextvars.merge_contextvars),
        cast(Processor, structlog.processors.add_log_level),
        cast(Processor, structlog.processors.TimeStamper(fmt="iso")),
        _redaction_processor([s for s in secrets or [] if s]),
    ]

    if fmt == "json":
        processors.append(cast(Processor, structlog.processors.JSONRenderer()))
    else:
        processors.append(cast(Processor, structlog.dev.ConsoleRenderer()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=True,
    )
