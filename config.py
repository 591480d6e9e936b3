import os
from dataclasses import dataclass
from functools import lru_cache
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _env_or(key: str, default: str) -> str:
    v = os.getenv(key)
    return v if v is not None else default


def _env_flag(key: str, default: bool = False) -> bool:
    v = os.getenv(key)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str
    default_tax_rate: float
    session_cookie_name: str
    csrf_cookie_name: str
    login_max_attempts: int
    login_window_seconds: int
    auth_disabled: bool
    allowed_origins: List[str]
    log_level: str
    port: int
    secure_cookies: bool


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    origins = _env_or("ALLOWED_ORIGINS", "*")
    return Settings(
        database_url=_env_or("DATABASE_URL", "sqlite:///./store.db"),
        default_tax_rate=float(_env_or("DEFAULT_TAX_RATE", "10")),
        session_cookie_name=_env_or("SESSION_COOKIE_NAME", "store_session"),
        csrf_cookie_name=_env_or("CSRF_COOKIE_NAME", "csrf_token"),
        login_max_attempts=int(_env_or("LOGIN_MAX_ATTEMPTS", "5")),
        login_window_seconds=int(_env_or("LOGIN_WINDOW_SECONDS", "900")),
        auth_disabled=_env_flag("AUTH_DISABLED"),
        allowed_origins=[o.strip() for o in origins.split(",") if o.strip()],
        log_level=_env_or("LOG_LEVEL", "INFO").upper(),
        port=int(_env_or("PORT", "8000")),
        secure_cookies=_env_or("ENV", "development") == "production",
    )
