"""Application route table."""

from __future__ import annotations

from clinic.api.contracts import HealthResponse
from clinic.auth.controller import AuthController
from clinic.auth.web import SessionAuthController
from clinic.users.controller import UserController
from clinic.web.request import Request
from clinic.web.response import Response
from clinic.web.router import Router


def health(request: Request, response: Response) -> HealthResponse:
    """Return service liveness status."""
    return HealthResponse(status="ok")


def register_routes(
    router: Router,
    *,
    auth: AuthController,
    session_auth: SessionAuthController,
    users: UserController,
) -> Router:
    """Register every route; literal paths come before parameterized siblings."""

    def auth_routes(r: Router) -> None:
        r.post("/login", auth.login)
        r.post("/logout", auth.logout)
        r.post("/forgot-password", auth.request_password_reset)
        r.get("/reset-password/{token}", auth.validate_reset_token)
        r.post("/reset-password", auth.reset_password)
        r.post("/change-password", auth.change_password, ["auth"])
        r.get("/profile", auth.get_profile, ["auth"])

    def user_routes(r: Router) -> None:
        r.get("/", users.index)
        r.post("/", users.store)
        r.patch("/{id}/activate", users.activate)
        r.patch("/{id}/deactivate", users.deactivate)
        r.get("/{id}", users.show)
        r.put("/{id}", users.update)
        r.delete("/{id}", users.destroy)

    def api_routes(r: Router) -> None:
        r.get("/health", health)
        r.group("/auth", auth_routes)
        r.group("/users", user_routes, middleware=["auth", "admin"])

    router.api(api_routes)
    router.post("/login", session_auth.login)
    router.post("/logout", session_auth.logout)
    router.get("/session", session_auth.show, ["web_auth"])
    return router
