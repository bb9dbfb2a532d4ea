from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog

from .config import DEFAULT_MAX_RETRIES, ProviderConfig
from .errors import LLMError, RequestTimeoutError
from .metrics import provider_retries_total

log = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = DEFAULT_MAX_RETRIES
    initial_delay_seconds: float = 1.0
    backoff_factor: float = 1.5
    jitter_low: float = 0.9
    jitter_high: float = 1.1
    # Per-attempt deadline; None disables it.
    attempt_timeout_seconds: float | None = None

    @classmethod
    def from_config(cls, config: ProviderConfig, **overrides) -> RetryPolicy:
        values: dict = {}
        if config.max_retries is not None:
            values["max_retries"] = config.max_retries
        if config.timeout_ms is not None:
            values["attempt_timeout_seconds"] = config.timeout_ms / 1000
        values.update(overrides)
        return cls(**values)

    def compute_delay(self, attempt: int, uniform: Callable[[float, float], float] = random.uniform) -> float:
        # attempt: 0-based retry count (0 before the first retry)
        base = self.initial_delay_seconds * (self.backoff_factor**attempt)
        return base * uniform(self.jitter_low, self.jitter_high)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    operation_name: str = "call",
    sleeper: Callable[[float], Awaitable[None]] | None = None,
    uniform: Callable[[float, float], float] | None = None,
) -> T:
    """Run ``operation`` with exponential backoff.

    Non-retryable ``LLMError`` instances propagate on the first attempt. Any
    other failure is retried ``policy.max_retries`` times; the last error is
    re-raised unchanged once retries are exhausted.
    """
    sleep = sleeper or asyncio.sleep
    draw = uniform or random.uniform
    max_retries = max(0, policy.max_retries)

    for attempt in range(max_retries + 1):
        try:
            if policy.attempt_timeout_seconds:
                try:
                    return await asyncio.wait_for(operation(), timeout=policy.attempt_timeout_seconds)
                except asyncio.TimeoutError as e:
                    raise RequestTimeoutError("Request timed out, please try again") from e
            return await operation()
        except Exception as e:
            if isinstance(e, LLMError) and not e.retryable:
                raise
            if attempt >= max_retries:
                raise
            delay = policy.compute_delay(attempt, draw)
            provider_retries_total.labels(operation=operation_name).inc()
            log.warning(
                "llm_retry_scheduled",
                operation=operation_name,
                attempt=attempt + 1,
                max_retries=max_retries,
                delay_seconds=round(delay, 3),
                error=str(e),
                error_type=getattr(getattr(e, "kind", None), "value", type(e).__name__),
            )
            await sleep(delay)

    raise AssertionError("unreachable")  # pragma: no cover
