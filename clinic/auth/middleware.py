"""Route middleware enforcing bearer-token auth, roles and browser sessions."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from clinic.api.contracts import error_envelope
from clinic.api.errors import ApiErrorCode
from clinic.auth.controller import AuthController
from clinic.core.logging import bind_log_context
from clinic.users.models import UserType
from clinic.web.request import Request
from clinic.web.response import Response
from clinic.web.router import Middleware, MiddlewareRegistry

LOGGER = logging.getLogger(__name__)

LOGIN_PATH = "/login"


def _deny(response: Response, message: str, status_code: int, error_code: ApiErrorCode) -> bool:
    response.json(error_envelope(message, status_code, error_code=error_code), status_code)
    response.send()
    return False


def create_auth_middleware(controller: AuthController) -> Middleware:
    """Create middleware that attaches the bearer-token user to the request."""

    def auth(request: Request, response: Response) -> bool:
        """Require a valid bearer token."""
        if not request.bearer_token():
            return _deny(response, "Missing bearer token", 401, ApiErrorCode.AUTH_MISSING_TOKEN)
        user = controller.get_current_user(request)
        if user is None:
            return _deny(response, "Unauthorized", 401, ApiErrorCode.AUTH_TOKEN_INVALID)
        request.user = user
        bind_log_context(user_id=user.id)
        return True

    return auth


def create_role_middleware(controller: AuthController, roles: Iterable[str]) -> Middleware:
    """Create middleware that allows only the given user types."""
    allowed = frozenset(str(role) for role in roles)

    def require_role(request: Request, response: Response) -> bool:
        user = request.user or controller.get_current_user(request)
        if user is None:
            return _deny(response, "Unauthorized", 401, ApiErrorCode.AUTH_TOKEN_INVALID)
        if str(user.user_type) not in allowed:
            LOGGER.info(
                "role_denied",
                extra={"path": request.path, "user_id": user.id, "action": "role_denied"},
            )
            return _deny(response, "Forbidden", 403, ApiErrorCode.FORBIDDEN)
        request.user = user
        bind_log_context(user_id=user.id)
        return True

    return require_role


def web_auth(request: Request, response: Response) -> bool:
    """Require an authenticated browser session, redirecting to login otherwise."""
    session = request.session
    if session is not None and session.is_authenticated():
        bind_log_context(user_id=(session.get_user() or {}).get("id"))
        return True
    if request.wants_json:
        return _deny(response, "Unauthorized", 401, ApiErrorCode.AUTH_TOKEN_INVALID)
    if session is not None:
        session.flash("error", "Please log in to continue")
    response.redirect(LOGIN_PATH)
    response.send()
    return False


def build_middleware_registry(controller: AuthController) -> MiddlewareRegistry:
    """Return the registry of every middleware name routes may use."""
    return MiddlewareRegistry(
        {
            "auth": create_auth_middleware(controller),
            "admin": create_role_middleware(controller, [UserType.ADMIN]),
            "staff": create_role_middleware(
                controller, [UserType.ADMIN, UserType.COORDINATOR]
            ),
            "web_auth": web_auth,
        }
    )
