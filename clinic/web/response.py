"""Outbound response accumulator that is sent exactly once."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel
from starlette.datastructures import MutableHeaders
from starlette.responses import Response as StarletteResponse

from clinic.api.contracts import error_envelope, success_envelope

DEFAULT_HEADERS: dict[str, str] = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "X-Frame-Options": "SAMEORIGIN",
    "X-XSS-Protection": "1; mode=block",
    "X-Content-Type-Options": "nosniff",
    "Content-Type": "text/html; charset=UTF-8",
}

JSON_CONTENT_TYPE = "application/json; charset=UTF-8"


class ResponseAlreadySentError(RuntimeError):
    """Raised when a sent response is mutated."""


@dataclass(frozen=True)
class Cookie:
    """Pending ``Set-Cookie`` entry."""

    name: str
    value: str
    max_age: int | None = None
    path: str = "/"
    domain: str | None = None
    secure: bool = False
    httponly: bool = True
    samesite: Literal["lax", "strict", "none"] = "lax"


def to_jsonable(data: Any) -> Any:
    """Convert pydantic models (possibly nested in lists) to plain data."""
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    if isinstance(data, (list, tuple)):
        return [to_jsonable(item) for item in data]
    return data


class Response:
    """Status, headers, cookies and body accumulated by handlers."""

    def __init__(self) -> None:
        self._status_code = 200
        self._headers = MutableHeaders(headers=dict(DEFAULT_HEADERS))
        self._body = b""
        self._cookies: list[Cookie] = []
        self._sent = False

    # State

    @property
    def status_code(self) -> int:
        return self._status_code

    @property
    def headers(self) -> MutableHeaders:
        return self._headers

    @property
    def body(self) -> bytes:
        return self._body

    @property
    def cookies(self) -> list[Cookie]:
        return list(self._cookies)

    @property
    def is_sent(self) -> bool:
        return self._sent

    def _ensure_open(self) -> None:
        if self._sent:
            raise ResponseAlreadySentError("Response has already been sent")

    # Mutators

    def set_status(self, status_code: int) -> "Response":
        self._ensure_open()
        self._status_code = int(status_code)
        return self

    def set_header(self, name: str, value: str) -> "Response":
        self._ensure_open()
        self._headers[name] = value
        return self

    def remove_header(self, name: str) -> "Response":
        self._ensure_open()
        if name in self._headers:
            del self._headers[name]
        return self

    def set_content_type(self, content_type: str) -> "Response":
        return self.set_header("Content-Type", content_type)

    def set_body(self, body: str | bytes) -> "Response":
        self._ensure_open()
        self._body = body.encode("utf-8") if isinstance(body, str) else bytes(body)
        return self

    def set_cookie(
        self,
        name: str,
        value: str,
        *,
        max_age: int | None = None,
        path: str = "/",
        domain: str | None = None,
        secure: bool = False,
        httponly: bool = True,
        samesite: Literal["lax", "strict", "none"] = "lax",
    ) -> "Response":
        """Queue a cookie; a later cookie with the same name and path wins."""
        self._ensure_open()
        self._cookies = [
            cookie
            for cookie in self._cookies
            if not (cookie.name == name and cookie.path == path)
        ]
        self._cookies.append(
            Cookie(
                name=name,
                value=value,
                max_age=max_age,
                path=path,
                domain=domain,
                secure=secure,
                httponly=httponly,
                samesite=samesite,
            )
        )
        return self

    def remove_cookie(self, name: str, *, path: str = "/", domain: str | None = None) -> "Response":
        """Expire a cookie client-side."""
        return self.set_cookie(name, "", max_age=0, path=path, domain=domain)

    # Body helpers

    def json(self, data: Any, status_code: int | None = None) -> "Response":
        """Serialize ``data`` as the JSON body."""
        self._ensure_open()
        payload = json.dumps(to_jsonable(data), ensure_ascii=False, default=str)
        if status_code is not None:
            self.set_status(status_code)
        self.set_content_type(JSON_CONTENT_TYPE)
        return self.set_body(payload)

    def success(
        self,
        data: Any = None,
        message: str = "Operation completed successfully",
        status_code: int = 200,
    ) -> "Response":
        return self.json(success_envelope(data, message), status_code)

    def error(
        self,
        message: str,
        status_code: int = 400,
        errors: dict[str, Any] | None = None,
    ) -> "Response":
        return self.json(error_envelope(message, status_code, errors), status_code)

    def not_found(self, message: str = "Resource not found") -> "Response":
        return self.error(message, 404)

    def unauthorized(self, message: str = "Unauthorized") -> "Response":
        return self.error(message, 401)

    def forbidden(self, message: str = "Forbidden") -> "Response":
        return self.error(message, 403)

    def server_error(self, message: str = "Internal server error") -> "Response":
        return self.error(message, 500)

    def validation_error(
        self, errors: dict[str, Any], message: str = "Validation failed"
    ) -> "Response":
        return self.error(message, 422, errors)

    def text(self, content: str, status_code: int | None = None) -> "Response":
        self.set_content_type("text/plain; charset=UTF-8")
        if status_code is not None:
            self.set_status(status_code)
        return self.set_body(content)

    def html(self, content: str, status_code: int | None = None) -> "Response":
        self.set_content_type("text/html; charset=UTF-8")
        if status_code is not None:
            self.set_status(status_code)
        return self.set_body(content)

    def redirect(self, url: str, status_code: int = 302) -> "Response":
        self.set_status(status_code)
        self.set_header("Location", url)
        return self.set_body(b"")

    def download(self, path: str | Path, filename: str | None = None) -> "Response":
        """Send a file as an attachment."""
        file_path = Path(path)
        content = file_path.read_bytes()
        name = filename or file_path.name
        self.set_content_type("application/octet-stream")
        self.set_header("Content-Disposition", f'attachment; filename="{name}"')
        return self.set_body(content)

    # Sending

    def send(self) -> bool:
        """Mark the response as sent; returns ``False`` if it already was."""
        if self._sent:
            return False
        self._sent = True
        return True

    def to_starlette(self) -> StarletteResponse:
        """Build the Starlette response written to the client."""
        result = StarletteResponse(
            content=self._body,
            status_code=self._status_code,
            headers=dict(self._headers.items()),
        )
        for cookie in self._cookies:
            result.set_cookie(
                cookie.name,
                cookie.value,
                max_age=cookie.max_age,
                path=cookie.path,
                domain=cookie.domain,
                secure=cookie.secure,
                httponly=cookie.httponly,
                samesite=cookie.samesite,
            )
        return result
