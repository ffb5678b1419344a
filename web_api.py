from __future__ import annotations

import logging

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clinic.api.http_setup import register_exception_handlers, register_http_middleware
from clinic.audit.repository import AuditLogRepository
from clinic.auth.controller import AuthController
from clinic.auth.middleware import build_middleware_registry
from clinic.auth.rate_limiter import LoginRateLimiter
from clinic.auth.web import SessionAuthController
from clinic.careers.repository import CareerRepository
from clinic.core.clock import Clock, system_clock
from clinic.core.config import AppConfig
from clinic.core.database import Database
from clinic.core.logging import setup_logging
from clinic.routes import register_routes
from clinic.students.repository import StudentProfileRepository
from clinic.users.controller import UserController
from clinic.users.repository import UserRepository
from clinic.web.application import WebApplication, mount_web_application
from clinic.web.router import Router
from clinic.web.session import SqliteSessionStore
from clinic.web.view import ViewRenderer

load_dotenv()
APP_CONFIG = AppConfig.from_env()
setup_logging(APP_CONFIG.logging.level)
LOGGER = logging.getLogger(__name__)


def create_app(
    config: AppConfig | None = None,
    *,
    database: Database | None = None,
    clock: Clock = system_clock,
) -> FastAPI:
    config = config or APP_CONFIG
    database = database or Database(config.database.path)
    database.initialize()

    app = FastAPI(title=f"{config.app.name} API", version="1.0.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.security.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Requested-With"],
    )
    views = ViewRenderer(app_name=config.app.name)
    register_http_middleware(app, config=config, logger=LOGGER)
    register_exception_handlers(app, config=config, logger=LOGGER, views=views)

    users = UserRepository(database, clock)
    audit = AuditLogRepository(database, clock)
    rate_limiter = LoginRateLimiter(
        database,
        max_attempts=config.security.login_rate_limit_max_attempts,
        window_seconds=config.security.login_rate_limit_window_seconds,
        lock_seconds=config.security.login_rate_limit_lock_seconds,
        clock=clock,
    )
    auth = AuthController(
        users,
        audit,
        StudentProfileRepository(database, clock),
        CareerRepository(database),
        config,
        rate_limiter=rate_limiter,
        clock=clock,
    )
    auth.bootstrap_admin_user()

    router = Router(
        build_middleware_registry(auth),
        api_prefix=config.app.api_prefix,
        views=views,
    )
    register_routes(
        router,
        auth=auth,
        session_auth=SessionAuthController(auth),
        users=UserController(users, audit, config.auth),
    )
    web = WebApplication(router, SqliteSessionStore(database), config, clock)
    mount_web_application(
        app,
        web,
        api_prefix=config.app.api_prefix,
        trust_proxy=config.security.trust_proxy_headers,
    )

    app.state.config = config
    app.state.database = database
    app.state.router = router
    return app


app = create_app()
