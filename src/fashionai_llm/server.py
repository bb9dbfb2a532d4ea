from __future__ import annotations

import os
import time
from contextlib import asynccontextmanager

from pydantic import ValidationError

from .api_models import ChatRequest, CompletionRequest, TextReply, make_error_response
from .config import ServiceSettings, get_llm_service_config
from .errors import InvalidRequestError, LLMError
from .http_security import install_middlewares
from .logging import configure_logging
from .metrics import maybe_start_metrics, server_errors_total, server_request_latency_seconds, server_requests_total
from .provider_base import LLMProvider
from .registry import ProviderRegistry, register_builtin_providers
from .streaming import prime_stream, sse_from_chunks


def _first_validation_message(errors) -> str:
    if not errors:
        return "Invalid request body."
    first = errors[0]
    loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    msg = str(first.get("msg", "invalid value"))
    return f"{loc}: {msg}" if loc else msg


def create_app(
    settings: ServiceSettings | None = None,
    *,
    registry: ProviderRegistry | None = None,
    provider: LLMProvider | None = None,
):
    try:
        from fastapi import FastAPI
        from fastapi.exceptions import RequestValidationError
        from fastapi.responses import JSONResponse, StreamingResponse
    except ImportError as e:  # pragma: no cover
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    settings = settings or ServiceSettings()
    configure_logging(
        level=settings.log_level,
        fmt=settings.log_format,
        secrets=[s for s in (settings.gemini_api_key,) if s],
    )
    # The app owns its registry; registration happens here, before any request.
    registry = registry or register_builtin_providers(ProviderRegistry())
    state: dict[str, LLMProvider | None] = {"provider": provider}

    def _provider() -> LLMProvider:
        if state["provider"] is None:
            service = get_llm_service_config(settings)
            state["provider"] = registry.create(service.provider, service.provider_config)
        return state["provider"]

    def _request_id(request) -> str | None:
        return getattr(getattr(request, "state", None), "request_id", None)

    def _observe(path: str, status_code: int, started_at: float) -> None:
        server_requests_total.labels(path=path, status=str(status_code)).inc()
        server_request_latency_seconds.labels(path=path).observe(max(0.0, time.monotonic() - started_at))

    def _options(req: ChatRequest | CompletionRequest):
        try:
            return req.to_options()
        except ValidationError as e:
            raise InvalidRequestError(str(e)) from e

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        maybe_start_metrics(enable=settings.enable_metrics, bind=settings.metrics_bind, port=settings.metrics_port)
        try:
            yield
        finally:
            current = state["provider"]
            aclose = getattr(current, "aclose", None)
            if callable(aclose):
                await aclose()

    app = FastAPI(
        title="fashionai-llm",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.enable_api_docs else None,
        redoc_url="/redoc" if settings.enable_api_docs else None,
        openapi_url="/openapi.json" if settings.enable_api_docs else None,
    )
    install_middlewares(app, settings=settings)

    @app.exception_handler(LLMError)
    async def _llm_error_handler(request, exc: LLMError):
        server_errors_total.labels(type=exc.kind.value).inc()
        headers = {}
        retry_after = getattr(exc, "retry_after_seconds", None)
        if retry_after is not None:
            headers["Retry-After"] = str(retry_after)
        return JSONResponse(
            status_code=exc.status_code or 500,
            content=make_error_response(exc, code=_request_id(request)).model_dump(),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(request, exc: RequestValidationError):
        err = InvalidRequestError(_first_validation_message(exc.errors()))
        return await _llm_error_handler(request, err)

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/llm/providers")
    async def providers() -> dict[str, list[str]]:
        return {"providers": registry.names()}

    @app.get("/api/llm/models")
    async def models() -> dict[str, list[str]]:
        return {"models": await _provider().get_available_models()}

    @app.post("/api/llm/completions")
    async def completions(req: CompletionRequest):
        started_at = time.monotonic()
        options = _options(req)
        llm = _provider()
        if req.stream:
            chunks = await prime_stream(llm.stream_completion(options))
            _observe("/api/llm/completions", 200, started_at)
            return StreamingResponse(sse_from_chunks(chunks), media_type="text/event-stream")

        response = await llm.generate_completion(options)
        _observe("/api/llm/completions", 200, started_at)
        return TextReply.from_response(response).model_dump(by_alias=True)

    @app.post("/api/chat")
    async def chat(req: ChatRequest):
        started_at = time.monotonic()
        options = _options(req)
        llm = _provider()
        if req.stream:
            chunks = await prime_stream(llm.stream_chat_completion(options))
            _observe("/api/chat", 200, started_at)
            return StreamingResponse(
                sse_from_chunks(chunks),
                media_type="text/event-stream",
                headers={"Cache-Control": "no-cache"},
            )

        response = await llm.generate_chat_completion(options)
        _observe("/api/chat", 200, started_at)
        return TextReply.from_response(response).model_dump(by_alias=True)

    return app


app = create_app()


def main() -> None:  # pragma: no cover
    try:
        import uvicorn
    except ImportError as e:
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("fashionai_llm.server:app", host=host, port=port)


if __name__ == "__main__":  # pragma: no cover
    main()
