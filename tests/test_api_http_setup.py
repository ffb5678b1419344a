from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import replace
from typing import Any, Awaitable, Coroutine, cast

from fastapi import FastAPI, HTTPException
from starlette.requests import Request
from starlette.responses import Response

from clinic.api.errors import AuthError
from clinic.api.http_setup import (
    register_exception_handlers,
    register_http_middleware,
    wants_json,
)
from clinic.core.config import AppConfig
from clinic.web.view import ViewRenderer
from tests.support import make_config

LOGGER = logging.getLogger(__name__)


def _config(environment: str = "development") -> AppConfig:
    config = make_config(environment)
    return replace(config, security=replace(config.security, request_max_bytes=8))


def _request(path: str, method: str = "GET", headers: list[tuple[bytes, bytes]] | None = None) -> Request:
    scope: dict[str, Any] = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode("utf-8"),
        "query_string": b"",
        "root_path": "",
        "headers": headers or [],
        "client": ("127.0.0.1", 1234),
        "server": ("testserver", 80),
    }

    async def receive() -> dict[str, Any]:
        return {"type": "http.request", "body": b"", "more_body": False}

    return Request(scope, receive)


def _app(config: AppConfig | None = None) -> FastAPI:
    app = FastAPI()
    config = config or _config()
    register_http_middleware(app, config=config, logger=LOGGER)
    register_exception_handlers(app, config=config, logger=LOGGER, views=ViewRenderer())
    return app


def _dispatch_by_name(app: FastAPI, name: str):
    for middleware in app.user_middleware:
        dispatch = middleware.kwargs.get("dispatch")
        if callable(dispatch) and getattr(dispatch, "__name__", "") == name:
            return dispatch
    raise AssertionError(f"Dispatch {name!r} not found")


def _resolve_response(result: Response | Awaitable[Response]) -> Response:
    if inspect.iscoroutine(result):
        return asyncio.run(cast(Coroutine[Any, Any, Response], result))
    return cast(Response, result)


async def _ok(_request: Request) -> Response:
    return Response(content="ok", status_code=200)


def test_wants_json_for_api_prefix_and_ajax() -> None:
    assert wants_json(_request("/api/v1/users"), "/api/v1")
    assert wants_json(_request("/login", headers=[(b"x-requested-with", b"XMLHttpRequest")]), "/api/v1")
    assert not wants_json(_request("/login"), "/api/v1")
    assert not wants_json(_request("/api/v1x/users"), "/api/v1")
    assert wants_json(_request("/api/v1"), "/api/v1")


def test_http_setup_adds_security_headers_and_request_id() -> None:
    dispatch = _dispatch_by_name(_app(), "request_logging_middleware")
    request = _request("/ok", headers=[(b"x-request-id", b"req-123")])

    response = asyncio.run(dispatch(request, _ok))

    assert response.headers["X-Request-ID"] == "req-123"
    assert response.headers["X-Frame-Options"] == "SAMEORIGIN"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["Referrer-Policy"] == "same-origin"


def test_http_setup_generates_request_id() -> None:
    dispatch = _dispatch_by_name(_app(), "request_logging_middleware")

    response = asyncio.run(dispatch(_request("/ok"), _ok))

    assert len(response.headers["X-Request-ID"]) == 32


def test_http_setup_rejects_large_request_before_handler() -> None:
    dispatch = _dispatch_by_name(_app(), "request_size_limit_middleware")
    request = _request("/echo", method="POST", headers=[(b"content-length", b"20")])

    response = asyncio.run(dispatch(request, _ok))

    assert response.status_code == 413
    assert b"REQUEST_TOO_LARGE" in response.body


def test_http_setup_lets_small_request_through() -> None:
    dispatch = _dispatch_by_name(_app(), "request_size_limit_middleware")
    request = _request("/echo", method="POST", headers=[(b"content-length", b"4")])

    response = asyncio.run(dispatch(request, _ok))

    assert response.status_code == 200


def test_http_setup_serializes_http_exception_payload() -> None:
    handler = _app().exception_handlers[HTTPException]

    response: Response = _resolve_response(handler(_request("/api/v1/auth/profile"), AuthError()))

    payload = json.loads(response.body)
    assert response.status_code == 401
    assert payload["status"] == "error"
    assert payload["code"] == 401
    assert payload["error_code"] == "AUTH_TOKEN_INVALID"
    assert payload["message"] == "Unauthorized"


def test_http_setup_renders_html_errors_for_browsers() -> None:
    handler = _app().exception_handlers[HTTPException]

    response: Response = _resolve_response(handler(_request("/session"), AuthError()))

    assert response.status_code == 401
    assert response.headers["content-type"].startswith("text/html")
    assert b"Unauthorized" in response.body


def test_http_setup_shows_exception_details_in_development() -> None:
    handler = _app().exception_handlers[Exception]

    response: Response = _resolve_response(handler(_request("/api/v1/boom"), RuntimeError("boom")))

    payload = json.loads(response.body)
    assert response.status_code == 500
    assert payload["error_code"] == "INTERNAL_SERVER_ERROR"
    assert payload["message"] == "boom"
    assert payload["errors"]["exception"] == "RuntimeError"


def test_http_setup_hides_exception_details_in_production() -> None:
    handler = _app(_config("production")).exception_handlers[Exception]

    response: Response = _resolve_response(handler(_request("/api/v1/boom"), RuntimeError("secret")))

    payload = json.loads(response.body)
    assert payload["message"] == "Internal server error"
    assert "errors" not in payload
    assert b"secret" not in response.body


def test_http_setup_renders_500_view_for_browsers() -> None:
    handler = _app(_config("production")).exception_handlers[Exception]

    response: Response = _resolve_response(handler(_request("/boom"), RuntimeError("secret")))

    assert response.status_code == 500
    assert b"Internal server error" in response.body
    assert b"SIGECLIN" in response.body
