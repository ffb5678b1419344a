"""Normalized inbound request used by the router and controllers."""

from __future__ import annotations

import ipaddress
import json
from collections.abc import Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qsl

from starlette.datastructures import Headers, UploadFile
from starlette.requests import Request as StarletteRequest

if TYPE_CHECKING:
    from clinic.users.models import User
    from clinic.web.session import SessionManager

BODY_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


def normalize_path(uri: str) -> str:
    """Strip query string and trailing slash; an empty path becomes ``/``."""
    path = uri.split("?", 1)[0].rstrip("/")
    return path or "/"


def is_under_prefix(path: str, prefix: str) -> bool:
    """Match ``prefix`` on whole path segments; ``/api/v1x`` is not under ``/api/v1``."""
    prefix = prefix.rstrip("/")
    if not prefix:
        return True
    return path == prefix or path.startswith(prefix + "/")


def _valid_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


class Request:
    """Request data parsed once per inbound call.

    Everything except the path params is fixed at construction. The
    dispatcher injects path params after matching; the application attaches
    ``session`` and the auth middleware attaches ``user``.
    """

    def __init__(
        self,
        method: str = "GET",
        uri: str = "/",
        *,
        query_params: Mapping[str, Any] | None = None,
        body_params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        cookies: Mapping[str, str] | None = None,
        files: Mapping[str, Any] | None = None,
        client_ip: str = "0.0.0.0",
        user_agent: str | None = None,
        is_secure: bool = False,
        api_prefix: str = "/api/v1",
    ) -> None:
        self._body = dict(body_params or {})
        method = (method or "GET").upper()
        override = self._body.get("_method")
        if method == "POST" and isinstance(override, str) and override.strip():
            method = override.strip().upper()
        self._method = method
        self._uri = uri or "/"
        self._path = normalize_path(self._uri)
        self._params: dict[str, str] = {}
        if query_params is None and "?" in self._uri:
            query_params = dict(parse_qsl(self._uri.split("?", 1)[1], keep_blank_values=True))
        self._query = dict(query_params or {})
        self._headers = Headers(headers=dict(headers or {}))
        self._cookies = dict(cookies or {})
        self._files = dict(files or {})
        self._client_ip = client_ip or "0.0.0.0"
        self._user_agent = user_agent if user_agent is not None else self._headers.get("user-agent", "")
        self._is_secure = is_secure
        self._is_ajax = self._headers.get("x-requested-with") == "XMLHttpRequest"
        self._is_api = is_under_prefix(self._path, api_prefix)

        self.session: SessionManager | None = None
        self.user: User | None = None

    @classmethod
    async def from_starlette(
        cls, request: StarletteRequest, *, api_prefix: str, trust_proxy: bool = False
    ) -> "Request":
        """Build a request from a Starlette request, reading the body once.

        Forwarded client headers are only read when ``trust_proxy`` is set,
        i.e. the app sits behind a proxy that overwrites them.
        """
        method = request.method.upper()
        body: dict[str, Any] = {}
        files: dict[str, Any] = {}
        if method in BODY_METHODS:
            body, files = await _parse_body(request)

        client_ip = request.client.host if request.client is not None else ""
        scheme = request.url.scheme
        if trust_proxy:
            forwarded = request.headers.get("x-forwarded-for", "").split(",", 1)[0].strip()
            if _valid_ip(forwarded):
                client_ip = forwarded
            scheme = request.headers.get("x-forwarded-proto", scheme)

        uri = request.url.path
        if request.url.query:
            uri = f"{uri}?{request.url.query}"

        return cls(
            method,
            uri,
            query_params=dict(request.query_params),
            body_params=body,
            headers=dict(request.headers),
            cookies=dict(request.cookies),
            files=files,
            client_ip=client_ip,
            is_secure=scheme.lower() == "https",
            api_prefix=api_prefix,
        )

    @property
    def method(self) -> str:
        return self._method

    @property
    def uri(self) -> str:
        return self._uri

    @property
    def path(self) -> str:
        return self._path

    @property
    def params(self) -> Mapping[str, str]:
        """Path params in declaration order (read-only view)."""
        return MappingProxyType(self._params)

    def set_params(self, params: Mapping[str, str]) -> None:
        """Replace path params; called by the dispatcher after matching."""
        self._params = dict(params)

    def get_param(self, name: str, default: Any = None) -> Any:
        return self._params.get(name, default)

    @property
    def query_params(self) -> dict[str, Any]:
        return dict(self._query)

    def get_query_param(self, name: str, default: Any = None) -> Any:
        return self._query.get(name, default)

    @property
    def body_params(self) -> dict[str, Any]:
        return dict(self._body)

    def get_body_param(self, name: str, default: Any = None) -> Any:
        return self._body.get(name, default)

    def json(self) -> dict[str, Any]:
        """Return parsed body params (JSON or form)."""
        return dict(self._body)

    @property
    def headers(self) -> Headers:
        return self._headers

    def has_header(self, name: str) -> bool:
        return name in self._headers

    def get_header(self, name: str, default: str | None = None) -> str | None:
        return self._headers.get(name, default)

    @property
    def cookies(self) -> dict[str, str]:
        return dict(self._cookies)

    def get_cookie(self, name: str, default: str | None = None) -> str | None:
        return self._cookies.get(name, default)

    @property
    def files(self) -> dict[str, Any]:
        return dict(self._files)

    def get_file(self, name: str) -> Any:
        return self._files.get(name)

    @property
    def client_ip(self) -> str:
        return self._client_ip

    @property
    def user_agent(self) -> str:
        return self._user_agent

    @property
    def is_secure(self) -> bool:
        return self._is_secure

    @property
    def is_ajax(self) -> bool:
        return self._is_ajax

    @property
    def is_api(self) -> bool:
        return self._is_api

    @property
    def wants_json(self) -> bool:
        """Return whether errors should be rendered as JSON envelopes."""
        return self._is_ajax or self._is_api

    def input(self, name: str, default: Any = None) -> Any:
        """Look a value up in path params, then body, then query string."""
        for source in (self._params, self._body, self._query):
            if source.get(name) is not None:
                return source[name]
        return default

    def bearer_token(self) -> str:
        """Extract bearer token from the Authorization header."""
        parts = (self._headers.get("authorization") or "").strip().split(None, 1)
        if len(parts) != 2 or parts[0].lower() != "bearer":
            return ""
        return parts[1].strip()


async def _parse_body(request: StarletteRequest) -> tuple[dict[str, Any], dict[str, Any]]:
    """Parse JSON, form-encoded or multipart bodies into params and files."""
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        raw = await request.body()
        if not raw:
            return {}, {}
        try:
            data = json.loads(raw)
        except (ValueError, UnicodeDecodeError):
            return {}, {}
        return (data if isinstance(data, dict) else {"data": data}), {}

    if (
        "application/x-www-form-urlencoded" in content_type
        or "multipart/form-data" in content_type
    ):
        form = await request.form()
        body: dict[str, Any] = {}
        files: dict[str, Any] = {}
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                files[key] = value
            else:
                body[key] = value
        return body, files

    raw = await request.body()
    if raw:
        return {"raw": raw.decode("utf-8", errors="replace")}, {}
    return {}, {}
