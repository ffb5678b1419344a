"""Route table, middleware registry and request dispatch."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from clinic.api.contracts import error_envelope
from clinic.api.errors import AccessDeniedError, ApiErrorCode
from clinic.core.logging import bind_log_context
from clinic.web.request import Request, normalize_path
from clinic.web.response import Response
from clinic.web.view import ViewNotFoundError, ViewRenderer

LOGGER = logging.getLogger(__name__)

Handler = Callable[[Request, Response], Any]
Middleware = Callable[[Request, Response], "bool | None"]

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "ANY")

_PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")

NOT_FOUND_HTML = (
    "<!DOCTYPE html><html><head><title>404 Not Found</title></head>"
    "<body><h1>404 Not Found</h1><p>The requested page does not exist.</p></body></html>"
)


class UnknownMiddlewareError(LookupError):
    """Raised when a route names middleware missing from the registry."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown middleware: {name}")
        self.name = name


def compile_pattern(pattern: str) -> tuple[re.Pattern[str], tuple[str, ...]]:
    """Turn ``/users/{id}`` into a regex plus its placeholder names."""
    parts: list[str] = []
    names: list[str] = []
    position = 0
    for match in _PLACEHOLDER.finditer(pattern):
        parts.append(re.escape(pattern[position : match.start()]))
        parts.append("([^/]+)")
        names.append(match.group(1))
        position = match.end()
    parts.append(re.escape(pattern[position:]))
    return re.compile("".join(parts)), tuple(names)


def join_paths(*segments: str) -> str:
    """Join path segments with single slashes and a leading slash."""
    cleaned = [segment.strip("/") for segment in segments if segment.strip("/")]
    return "/" + "/".join(cleaned)


@dataclass(frozen=True)
class Route:
    """A registered route; immutable once added to the table."""

    method: str
    pattern: str
    handler: Handler
    middleware: tuple[tuple[str, Middleware], ...] = ()
    regex: re.Pattern[str] = field(init=False, repr=False, compare=False)
    param_names: tuple[str, ...] = field(init=False, compare=False)

    def __post_init__(self) -> None:
        regex, names = compile_pattern(self.pattern)
        object.__setattr__(self, "regex", regex)
        object.__setattr__(self, "param_names", names)

    @property
    def middleware_names(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self.middleware)

    def matches(self, method: str, path: str) -> dict[str, str] | None:
        """Return path params when method and full path match, else ``None``."""
        if self.method != "ANY" and self.method != method:
            return None
        found = self.regex.fullmatch(path)
        if found is None:
            return None
        return dict(zip(self.param_names, found.groups()))


class MiddlewareRegistry:
    """Explicit ``name -> callable`` map consulted at route registration."""

    def __init__(self, middleware: Mapping[str, Middleware] | None = None) -> None:
        self._middleware: dict[str, Middleware] = dict(middleware or {})

    def register(self, name: str, middleware: Middleware) -> "MiddlewareRegistry":
        self._middleware[name] = middleware
        return self

    def resolve(self, name: str) -> Middleware:
        try:
            return self._middleware[name]
        except KeyError:
            raise UnknownMiddlewareError(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._middleware

    @property
    def names(self) -> list[str]:
        return sorted(self._middleware)


class Router:
    """Ordered route table; the first matching route wins.

    There is no specificity sorting: ``/users/{id}`` registered before
    ``/users/new`` will also capture ``/users/new``. Register literal routes
    before parameterized siblings.
    """

    def __init__(
        self,
        middleware: MiddlewareRegistry | None = None,
        *,
        api_prefix: str = "/api/v1",
        views: ViewRenderer | None = None,
    ) -> None:
        self._registry = middleware or MiddlewareRegistry()
        self._api_prefix = join_paths(api_prefix)
        self._views = views
        self._routes: list[Route] = []
        self._prefix = "/"
        self._group_middleware: tuple[str, ...] = ()

    @property
    def routes(self) -> list[Route]:
        return list(self._routes)

    @property
    def middleware(self) -> MiddlewareRegistry:
        return self._registry

    # Registration

    def register(
        self,
        method: str,
        pattern: str,
        handler: Handler,
        middleware: Sequence[str] = (),
    ) -> "Router":
        """Append a route under the current group prefix and middleware."""
        method = method.upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"Unsupported HTTP method: {method}")
        names = self._group_middleware + tuple(middleware)
        resolved = tuple((name, self._registry.resolve(name)) for name in names)
        route = Route(
            method=method,
            pattern=join_paths(self._prefix, pattern),
            handler=handler,
            middleware=resolved,
        )
        self._routes.append(route)
        return self

    def get(self, pattern: str, handler: Handler, middleware: Sequence[str] = ()) -> "Router":
        return self.register("GET", pattern, handler, middleware)

    def post(self, pattern: str, handler: Handler, middleware: Sequence[str] = ()) -> "Router":
        return self.register("POST", pattern, handler, middleware)

    def put(self, pattern: str, handler: Handler, middleware: Sequence[str] = ()) -> "Router":
        return self.register("PUT", pattern, handler, middleware)

    def patch(self, pattern: str, handler: Handler, middleware: Sequence[str] = ()) -> "Router":
        return self.register("PATCH", pattern, handler, middleware)

    def delete(self, pattern: str, handler: Handler, middleware: Sequence[str] = ()) -> "Router":
        return self.register("DELETE", pattern, handler, middleware)

    def any(self, pattern: str, handler: Handler, middleware: Sequence[str] = ()) -> "Router":
        return self.register("ANY", pattern, handler, middleware)

    def group(
        self,
        prefix: str,
        fn: Callable[["Router"], Any],
        middleware: Sequence[str] = (),
    ) -> "Router":
        """Register routes from ``fn`` under a nested prefix."""
        return self._scoped(join_paths(self._prefix, prefix), fn, middleware)

    def api(self, fn: Callable[["Router"], Any], middleware: Sequence[str] = ()) -> "Router":
        """Register routes from ``fn`` under the API prefix."""
        return self._scoped(self._api_prefix, fn, middleware)

    def _scoped(
        self,
        prefix: str,
        fn: Callable[["Router"], Any],
        middleware: Iterable[str],
    ) -> "Router":
        saved_prefix, saved_middleware = self._prefix, self._group_middleware
        self._prefix = prefix
        self._group_middleware = saved_middleware + tuple(middleware)
        try:
            fn(self)
        finally:
            self._prefix, self._group_middleware = saved_prefix, saved_middleware
        return self

    # Dispatch

    def match(self, method: str, path: str) -> tuple[Route, dict[str, str]] | None:
        """Return the first route matching ``method`` and ``path``."""
        normalized = normalize_path(path)
        for route in self._routes:
            params = route.matches(method.upper(), normalized)
            if params is not None:
                return route, params
        return None

    def dispatch(self, request: Request, response: Response) -> Response:
        """Run the matching route and return the (sent) response."""
        found = self.match(request.method, request.path)
        if found is None:
            return self._not_found(request, response)

        route, params = found
        request.set_params(params)
        bind_log_context(route=route.pattern)
        for name, middleware in route.middleware:
            if middleware(request, response) is False:
                LOGGER.info(
                    "middleware_denied",
                    extra={"path": request.path, "method": request.method, "route": route.pattern, "action": name},
                )
                if response.is_sent:
                    return response
                raise AccessDeniedError(name)

        result = route.handler(request, response)
        if not response.is_sent:
            self._apply_result(result, response)
            response.send()
        return response

    @staticmethod
    def _apply_result(result: Any, response: Response) -> None:
        if result is None or result is response:
            return
        if isinstance(result, (str, bytes)):
            response.set_body(result)
            return
        if isinstance(result, (Mapping, list, tuple, BaseModel)):
            if isinstance(result, Mapping) and result.get("status") == "error":
                code = result.get("code")
                if isinstance(code, int) and 400 <= code < 600:
                    response.set_status(code)
            response.json(result)
            return
        response.set_body(b"")

    def _not_found(self, request: Request, response: Response) -> Response:
        LOGGER.info(
            "route_not_found",
            extra={"path": request.path, "method": request.method, "status_code": 404},
        )
        if response.is_sent:
            return response
        response.set_status(404)
        if request.wants_json:
            response.json(
                error_envelope(
                    "Route not found", 404, error_code=ApiErrorCode.ROUTE_NOT_FOUND
                )
            )
        else:
            response.html(self._render_not_found(request))
        response.send()
        return response

    def _render_not_found(self, request: Request) -> str:
        if self._views is None:
            return NOT_FOUND_HTML
        try:
            return self._views.render("errors/404", {"path": request.path})
        except ViewNotFoundError:
            return NOT_FOUND_HTML
