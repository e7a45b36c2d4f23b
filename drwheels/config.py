"""Runtime configuration for the service (read from env, toggleable during tests/runtime)."""
import os
from typing import NamedTuple, Tuple

from dotenv import load_dotenv

load_dotenv()

DEFAULT_JWT_SECRET = "default-secret-key-change-in-production-min-32-chars"


class Settings(NamedTuple):
    database_url: str
    jwt_secret: str
    jwt_secret_is_default: bool
    jwt_expire_seconds: int
    cors_origins: Tuple[str, ...]
    environment: str
    rate_limit_enabled: bool
    log_level: str


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    environment = os.getenv("DRWHEELS_ENV", "development").strip().lower()
    secret = os.getenv("JWT_SECRET")
    origins = os.getenv("CORS_ORIGIN", "http://localhost:3000")
    # Rate limits are skipped under test unless explicitly enabled
    rate_limit_default = "0" if environment == "test" else "1"
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./drwheels.db"),
        jwt_secret=secret or DEFAULT_JWT_SECRET,
        jwt_secret_is_default=not secret,
        jwt_expire_seconds=int(os.getenv("JWT_EXPIRE_SECONDS", str(60 * 60 * 24 * 7))),
        cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        environment=environment,
        rate_limit_enabled=_as_bool(os.getenv("RATE_LIMIT_ENABLED", rate_limit_default)),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


state = load_settings()


def set_rate_limiting(value: bool):
    global state
    state = state._replace(rate_limit_enabled=bool(value))


def is_rate_limited() -> bool:
    return state.rate_limit_enabled


def is_production() -> bool:
    return state.environment == "production"
