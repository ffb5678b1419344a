"""Bridge between FastAPI and the in-house router."""

from __future__ import annotations

from fastapi import FastAPI
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request as StarletteRequest
from starlette.responses import Response as StarletteResponse

from clinic.core.clock import Clock, system_clock
from clinic.core.config import AppConfig
from clinic.core.logging import clear_log_context
from clinic.web.request import Request
from clinic.web.response import Response
from clinic.web.router import Router
from clinic.web.session import SessionManager, SessionStore

ROUTED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


class WebApplication:
    """Build request-scoped objects and dispatch through the router."""

    def __init__(
        self,
        router: Router,
        session_store: SessionStore,
        config: AppConfig,
        clock: Clock = system_clock,
    ) -> None:
        self._router = router
        self._session_store = session_store
        self._config = config
        self._clock = clock

    @property
    def router(self) -> Router:
        return self._router

    def handle(self, request: Request) -> Response:
        """Dispatch one request; exceptions propagate to the app boundary."""
        clear_log_context()
        response = Response()
        request.session = SessionManager(
            self._session_store, request, response, self._config.session, self._clock
        )
        return self._router.dispatch(request, response)


def mount_web_application(
    app: FastAPI, web: WebApplication, *, api_prefix: str, trust_proxy: bool = False
) -> None:
    """Route every path of ``app`` through ``web``."""

    @app.api_route("/{path:path}", methods=ROUTED_METHODS, include_in_schema=False)
    async def dispatch(request: StarletteRequest) -> StarletteResponse:
        inbound = await Request.from_starlette(
            request, api_prefix=api_prefix, trust_proxy=trust_proxy
        )
        response = await run_in_threadpool(web.handle, inbound)
        return response.to_starlette()
