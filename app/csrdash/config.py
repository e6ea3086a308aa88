import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    data_backend: str
    search_threshold: float
    page_size: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getfloat(name: str, default: float) -> float:
    try:
        return float(_getenv(name, str(default)))
    except ValueError:
        return default


def _getint(name: str, default: int) -> int:
    try:
        return int(_getenv(name, str(default)))
    except ValueError:
        return default


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///csrdash.db"),
        data_backend=_getenv("DATA_BACKEND", "sql").lower(),
        search_threshold=_getfloat("SEARCH_THRESHOLD", 0.3),
        page_size=_getint("PAGE_SIZE", 10),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        # "sql" (default) or "memory" (seeded demo store, resets on restart)
        "DATA_BACKEND": s.data_backend,
        "SEARCH_THRESHOLD": s.search_threshold,
        "PAGE_SIZE": max(1, s.page_size),
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        "MAX_CONTENT_LENGTH": 1 * 1024 * 1024,
    }
