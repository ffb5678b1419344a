"""Browser login backed by the server-side session."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from clinic.api.contracts import success_envelope
from clinic.api.errors import RateLimitedError
from clinic.auth.controller import INVALID_CREDENTIALS, AuthController
from clinic.auth.models import LoginRequest
from clinic.web.request import Request
from clinic.web.response import Response
from clinic.web.session import SessionManager

LOGGER = logging.getLogger(__name__)

HOME_PATH = "/"
LOGIN_PATH = "/login"


def _session(request: Request) -> SessionManager:
    if request.session is None:
        raise RuntimeError("Session is not attached to the request")
    return request.session


class SessionAuthController:
    """Form login and logout for server-rendered pages."""

    def __init__(self, auth: AuthController) -> None:
        self._auth = auth

    def login(self, request: Request, response: Response) -> Response:
        session = _session(request)
        email = str(request.get_body_param("email") or "").strip()
        password = str(request.get_body_param("password") or "")
        if not email or not password:
            session.flash("error", "Email and password are required")
            return response.redirect(LOGIN_PATH)
        try:
            LoginRequest.model_validate({"email": email, "password": password})
            user = self._auth.authenticate(email, password, request.client_ip)
        except PydanticValidationError:
            session.flash("error", "Invalid email format")
            return response.redirect(LOGIN_PATH)
        except RateLimitedError as exc:
            session.flash("error", exc.detail["message"])
            return response.redirect(LOGIN_PATH)
        if user is None:
            session.flash("error", INVALID_CREDENTIALS)
            return response.redirect(LOGIN_PATH)

        user = self._auth.complete_login(user, request.client_ip)
        session.regenerate_id()
        session.set_user(user.public_dict())
        session.flash("success", f"Welcome, {user.name}")
        return response.redirect(HOME_PATH)

    def logout(self, request: Request, response: Response) -> Response:
        session = _session(request)
        user = session.get_user()
        session.logout()
        session.regenerate_id()
        session.flash("success", "You have been logged out")
        if user:
            LOGGER.info("web_logout", extra={"action": "logout", "user_id": user.get("id")})
        return response.redirect(LOGIN_PATH)

    def show(self, request: Request, response: Response) -> dict[str, Any]:
        """Return the session user and drain pending flash messages."""
        session = _session(request)
        return success_envelope(
            {"user": session.get_user(), "flash": session.get_all_flash()},
            "Session retrieved",
        )
