from __future__ import annotations

import asyncio
import json
from typing import Any

from starlette.requests import Request as StarletteRequest

from clinic.web.request import Request, normalize_path


def _starlette_request(
    path: str,
    *,
    method: str = "GET",
    body: bytes = b"",
    headers: list[tuple[bytes, bytes]] | None = None,
    query_string: bytes = b"",
) -> StarletteRequest:
    scope: dict[str, Any] = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode("utf-8"),
        "query_string": query_string,
        "root_path": "",
        "headers": headers or [],
        "client": ("10.1.1.1", 1234),
        "server": ("testserver", 80),
    }

    async def receive() -> dict[str, Any]:
        return {"type": "http.request", "body": body, "more_body": False}

    return StarletteRequest(scope, receive)


def test_normalize_path_strips_query_and_trailing_slash() -> None:
    assert normalize_path("/users/?page=2") == "/users"
    assert normalize_path("") == "/"
    assert normalize_path("/") == "/"


def test_request_derives_flags_and_headers() -> None:
    request = Request(
        "get",
        "/api/v1/users?page=2",
        headers={"X-Requested-With": "XMLHttpRequest", "Authorization": "Bearer abc"},
    )

    assert request.method == "GET"
    assert request.path == "/api/v1/users"
    assert request.get_query_param("page") == "2"
    assert request.is_ajax and request.is_api
    assert request.get_header("authorization") == "Bearer abc"
    assert request.has_header("AUTHORIZATION")
    assert request.bearer_token() == "abc"


def test_method_override_applies_to_post_only() -> None:
    assert Request("POST", "/x", body_params={"_method": "put"}).method == "PUT"
    assert Request("GET", "/x", body_params={"_method": "DELETE"}).method == "GET"


def test_input_prefers_path_then_body_then_query() -> None:
    request = Request("POST", "/users/5?id=9&q=x", body_params={"id": "7", "name": "Ana"})
    request.set_params({"id": "5"})

    assert request.input("id") == "5"
    assert request.input("name") == "Ana"
    assert request.input("q") == "x"
    assert request.input("missing", "d") == "d"
    assert dict(request.params) == {"id": "5"}


def test_from_starlette_parses_json_body() -> None:
    raw = _starlette_request(
        "/api/v1/auth/login",
        method="POST",
        body=json.dumps({"email": "a@clinic.cl"}).encode("utf-8"),
        headers=[
            (b"content-type", b"application/json"),
            (b"x-forwarded-for", b"200.1.1.1, 10.0.0.1"),
            (b"cookie", b"SIGECLIN_SESSION=abc"),
        ],
    )

    request = asyncio.run(Request.from_starlette(raw, api_prefix="/api/v1"))

    assert request.get_body_param("email") == "a@clinic.cl"
    assert request.client_ip == "10.1.1.1"
    assert request.get_cookie("SIGECLIN_SESSION") == "abc"
    assert request.is_api
    assert not request.is_secure


def test_from_starlette_parses_form_body_and_query() -> None:
    raw = _starlette_request(
        "/login",
        method="POST",
        body=b"email=a%40clinic.cl&password=x",
        headers=[(b"content-type", b"application/x-www-form-urlencoded")],
        query_string=b"next=%2Fhome",
    )

    request = asyncio.run(Request.from_starlette(raw, api_prefix="/api/v1"))

    assert request.body_params == {"email": "a@clinic.cl", "password": "x"}
    assert request.get_query_param("next") == "/home"
    assert request.uri == "/login?next=%2Fhome"
    assert request.client_ip == "10.1.1.1"
    assert not request.is_api


def test_from_starlette_tolerates_invalid_json() -> None:
    raw = _starlette_request(
        "/api/v1/x",
        method="POST",
        body=b"{not json",
        headers=[(b"content-type", b"application/json")],
    )

    request = asyncio.run(Request.from_starlette(raw, api_prefix="/api/v1"))

    assert request.json() == {}


def test_forwarded_headers_are_ignored_unless_proxy_is_trusted() -> None:
    headers = [
        (b"x-forwarded-for", b"200.1.1.1, 10.0.0.1"),
        (b"x-forwarded-proto", b"https"),
    ]

    direct = asyncio.run(
        Request.from_starlette(_starlette_request("/login", headers=headers), api_prefix="/api/v1")
    )
    proxied = asyncio.run(
        Request.from_starlette(
            _starlette_request("/login", headers=headers), api_prefix="/api/v1", trust_proxy=True
        )
    )

    assert direct.client_ip == "10.1.1.1"
    assert not direct.is_secure
    assert proxied.client_ip == "200.1.1.1"
    assert proxied.is_secure


def test_trusted_forwarded_for_must_be_an_ip_address() -> None:
    raw = _starlette_request("/login", headers=[(b"x-forwarded-for", b"attacker-<script>, 10.0.0.1")])

    request = asyncio.run(Request.from_starlette(raw, api_prefix="/api/v1", trust_proxy=True))

    assert request.client_ip == "10.1.1.1"


def test_api_prefix_matches_whole_segments() -> None:
    assert Request("GET", "/api/v1").is_api
    assert Request("GET", "/api/v1/users").is_api
    assert not Request("GET", "/api/v1x/users").is_api
    assert not Request("GET", "/api/v10").is_api
