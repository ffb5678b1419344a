from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from clinic.audit.repository import AuditLogRepository
from clinic.auth.controller import AuthController
from clinic.auth.rate_limiter import LoginRateLimiter
from clinic.careers.repository import CareerRepository
from clinic.core.config import (
    AppConfig,
    AppSettings,
    AuthConfig,
    DatabaseConfig,
    LoggingConfig,
    SecurityConfig,
    SessionConfig,
)
from clinic.core.database import Database
from clinic.core.security import hash_password
from clinic.students.repository import StudentProfileRepository
from clinic.users.models import User, UserCreate, UserType
from clinic.users.repository import UserRepository

START_TS = 1_700_000_000
PASSWORD = "Secret123"


@dataclass
class FakeClock:
    now: float = START_TS
    calls: list[float] = field(default_factory=list)

    def __call__(self) -> float:
        self.calls.append(self.now)
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_config(environment: str = "development", **auth_overrides: object) -> AppConfig:
    auth = {
        "secret_key": "test-secret",
        "token_ttl_seconds": 3600,
        "reset_token_ttl_seconds": 86400,
        "password_min_length": 8,
    }
    auth.update(auth_overrides)
    return AppConfig(
        app=AppSettings(
            name="SIGECLIN",
            environment=environment,
            base_url="http://clinic.test",
            api_prefix="/api/v1",
            timezone="America/Santiago",
        ),
        auth=AuthConfig(**auth),  # type: ignore[arg-type]
        session=SessionConfig(
            cookie_name="SIGECLIN_SESSION",
            lifetime_seconds=28800,
            regenerate_interval_seconds=1800,
        ),
        database=DatabaseConfig(path=":memory:"),
        logging=LoggingConfig(level="INFO"),
        security=SecurityConfig(
            cors_allowed_origins=["http://localhost:3000"],
            request_max_bytes=1024 * 1024,
            login_rate_limit_max_attempts=5,
            login_rate_limit_window_seconds=900,
            login_rate_limit_lock_seconds=900,
        ),
    )


def make_database(tmp_path: Path) -> Database:
    database = Database(tmp_path / "clinic.sqlite")
    database.initialize()
    return database


def create_user(
    users: UserRepository,
    *,
    email: str = "ana.rojas@clinic.cl",
    national_id: str = "12345678-9",
    user_type: UserType = UserType.STUDENT,
    password: str = PASSWORD,
    active: bool = True,
    name: str = "Ana Rojas",
) -> User:
    return users.create(
        UserCreate(
            name=name,
            national_id=national_id,
            email=email,
            password=password,
            user_type=user_type,
            active=active,
        ),
        hash_password(password),
    )


@dataclass
class AuthHarness:
    database: Database
    clock: FakeClock
    config: AppConfig
    users: UserRepository
    audit: AuditLogRepository
    students: StudentProfileRepository
    careers: CareerRepository
    controller: AuthController


def make_auth(
    tmp_path: Path,
    *,
    environment: str = "development",
    clock: FakeClock | None = None,
    rate_limiter: bool = True,
    **auth_overrides: object,
) -> AuthHarness:
    database = make_database(tmp_path)
    clock = clock or FakeClock()
    config = make_config(environment, **auth_overrides)
    users = UserRepository(database, clock)
    audit = AuditLogRepository(database, clock)
    students = StudentProfileRepository(database, clock)
    careers = CareerRepository(database)
    limiter = None
    if rate_limiter:
        limiter = LoginRateLimiter(
            database,
            max_attempts=config.security.login_rate_limit_max_attempts,
            window_seconds=config.security.login_rate_limit_window_seconds,
            lock_seconds=config.security.login_rate_limit_lock_seconds,
            clock=clock,
        )
    controller = AuthController(
        users, audit, students, careers, config, rate_limiter=limiter, clock=clock
    )
    return AuthHarness(database, clock, config, users, audit, students, careers, controller)


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
