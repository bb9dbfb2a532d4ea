from __future__ import annotations

import re
import uuid

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{8,128}$")

_API_PREFIX = "/api/"


def coerce_request_id(value: str | None) -> str:
    if value and _REQUEST_ID_RE.fullmatch(value):
        return value
    return uuid.uuid4().hex


def install_middlewares(app, *, settings) -> None:
    """Request ids, response security headers and a request body limit."""
    import structlog
    from fastapi.responses import JSONResponse
    from starlette.middleware.base import BaseHTTPMiddleware
    from starlette.requests import Request

    from .api_models import ErrorDetail, ErrorResponse

    def _too_large(request: Request) -> JSONResponse:
        body = ErrorResponse(
            error=ErrorDetail(
                message="Request body too large.",
                type="invalid_request_error",
                code=getattr(request.state, "request_id", None),
            )
        )
        return JSONResponse(status_code=413, content=body.model_dump())

    class RequestIdMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            request_id = coerce_request_id(request.headers.get("x-request-id"))
            request.state.request_id = request_id
            structlog.contextvars.bind_contextvars(request_id=request_id)
            try:
                response = await call_next(request)
            finally:
                structlog.contextvars.unbind_contextvars("request_id")
            response.headers.setdefault("X-Request-Id", request_id)
            return response

    class SecurityHeadersMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            response = await call_next(request)
            response.headers.setdefault("X-Content-Type-Options", "nosniff")
            response.headers.setdefault("X-Frame-Options", "DENY")
            response.headers.setdefault("Referrer-Policy", "no-referrer")
            if request.url.path.startswith(_API_PREFIX):
                response.headers.setdefault("Cache-Control", "no-store")
            return response

    class MaxBodySizeMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            limit = int(settings.max_request_body_bytes or 0)
            if limit > 0 and request.method == "POST" and request.url.path.startswith(_API_PREFIX):
                content_length = request.headers.get("content-length")
                if content_length and content_length.isdigit() and int(content_length) > limit:
                    return _too_large(request)
                if len(await request.body()) > limit:
                    return _too_large(request)
            return await call_next(request)

    app.add_middleware(MaxBodySizeMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    # Outermost, so short-circuited responses still carry X-Request-Id.
    app.add_middleware(RequestIdMiddleware)
