"""HTTP middleware and exception handler wiring for the FastAPI app."""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, Response

from clinic.api.contracts import ApiErrorResponse, error_envelope
from clinic.api.errors import ApiErrorCode, to_error_payload
from clinic.core.config import AppConfig
from clinic.core.logging import clear_log_context, get_correlation_id, set_correlation_id
from clinic.web.request import is_under_prefix
from clinic.web.view import ViewNotFoundError, ViewRenderer

ERROR_HTML = (
    "<!DOCTYPE html><html><head><title>{code}</title></head>"
    "<body><h1>{code}</h1><p>{message}</p></body></html>"
)


def wants_json(request: Request, api_prefix: str) -> bool:
    """Return whether an error for this request should be a JSON envelope."""
    return (
        is_under_prefix(request.url.path, api_prefix)
        or request.headers.get("x-requested-with") == "XMLHttpRequest"
    )


def register_http_middleware(app: FastAPI, *, config: AppConfig, logger: Any) -> None:
    """Attach request size limiting and request logging middleware."""

    @app.middleware("http")
    async def request_size_limit_middleware(request: Request, call_next):
        content_length = request.headers.get("content-length")
        if content_length:
            try:
                parsed_length = int(content_length)
            except ValueError:
                parsed_length = 0
            if parsed_length > config.security.request_max_bytes:
                return JSONResponse(
                    status_code=413,
                    content=ApiErrorResponse(
                        code=413,
                        error_code=ApiErrorCode.REQUEST_TOO_LARGE,
                        message=(
                            "Request size exceeds configured limit "
                            f"({config.security.request_max_bytes} bytes)."
                        ),
                    ).model_dump(exclude_none=True),
                )
        return await call_next(request)

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        correlation_id = (
            request.headers.get("x-request-id")
            or request.headers.get("x-correlation-id")
            or uuid.uuid4().hex
        )
        set_correlation_id(correlation_id)
        clear_log_context()
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
        response.headers.setdefault("Referrer-Policy", "same-origin")
        response.headers.setdefault(
            "Permissions-Policy", "geolocation=(), microphone=(), camera=()"
        )
        logger.info(
            "request_completed",
            extra={
                "path": request.url.path,
                "method": request.method,
                "status_code": response.status_code,
            },
        )
        return response


def register_exception_handlers(
    app: FastAPI,
    *,
    config: AppConfig,
    logger: Any,
    views: ViewRenderer | None = None,
) -> None:
    """Attach the top-level handlers that turn exceptions into responses."""
    api_prefix = config.app.api_prefix

    def render_html(status_code: int, message: str) -> HTMLResponse:
        content = ERROR_HTML.format(code=status_code, message=message)
        if views is not None and status_code >= 500:
            try:
                content = views.render("errors/500", {"message": message})
            except ViewNotFoundError:
                pass
        return HTMLResponse(content=content, status_code=status_code)

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException) -> Response:
        payload = to_error_payload(exc.detail, exc.status_code)
        logger.warning(
            "http_exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "status_code": exc.status_code,
            },
        )
        if not wants_json(request, api_prefix):
            return render_html(exc.status_code, payload["message"])
        return JSONResponse(
            status_code=exc.status_code,
            content=ApiErrorResponse(**payload).model_dump(exclude_none=True),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_exception(request: Request, exc: Exception) -> Response:
        logger.exception(
            "unexpected_exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "status_code": 500,
            },
        )
        errors = None
        message = "Internal server error"
        if config.is_development:
            message = str(exc) or message
            errors = {"exception": type(exc).__name__, "request_id": get_correlation_id()}
        if not wants_json(request, api_prefix):
            return render_html(500, message)
        return JSONResponse(
            status_code=500,
            content=error_envelope(
                message, 500, errors, error_code=ApiErrorCode.INTERNAL_SERVER_ERROR
            ),
        )
