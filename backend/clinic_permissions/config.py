import json
import os
import threading
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, Field


load_dotenv()

_TRUE_WORDS = {"1", "true", "yes", "on"}
_FALSE_WORDS = {"0", "false", "no", "off"}


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_WORDS:
        return True
    if value in _FALSE_WORDS:
        return False
    raise ValueError(f"{name} must be a boolean value")


def _parse_positive_int(name: str, raw: str | int) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value <= 0:
        raise ValueError(f"{name} must be greater than 0")
    return value


def _parse_allowed_origins(raw_allowed_origins: str) -> list[str]:
    # Support both CSV format and JSON array format
    allowed_origins: list[str] = []
    if raw_allowed_origins.startswith("["):
        try:
            parsed_list = json.loads(raw_allowed_origins)
        except json.JSONDecodeError as exc:
            raise ValueError(f"ALLOWED_ORIGINS JSON is malformed: {exc}") from exc
        if not isinstance(parsed_list, list):
            raise ValueError("ALLOWED_ORIGINS JSON must be an array")
        allowed_origins = [
            origin.strip() for origin in parsed_list if isinstance(origin, str) and origin.strip()
        ]
    else:
        allowed_origins = [
            origin.strip() for origin in raw_allowed_origins.split(",") if origin.strip()
        ]

    if not allowed_origins:
        raise ValueError("ALLOWED_ORIGINS must contain at least one origin")

    if "*" in allowed_origins:
        raise ValueError(
            "ALLOWED_ORIGINS cannot contain '*' when credentialed requests are used"
        )

    for origin in allowed_origins:
        parsed = urlparse(origin)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError(
                "ALLOWED_ORIGINS must contain valid http/https origins with host"
            )
    return allowed_origins


class Settings(BaseModel):
    app_name: str = Field(default="Clinic Permissions")
    debug: bool = Field(default=False)
    database_url: str = Field(default="")
    redis_url: str = Field(default="redis://localhost:6379/0")
    allowed_origins: list[str] = Field(default_factory=list)
    db_pool_size: int = Field(default=5)
    db_max_overflow: int = Field(default=10)
    db_pool_recycle: int = Field(default=1800)
    db_pool_pre_ping: bool = Field(default=True)
    secret_key: str | None = Field(default=None)
    algorithm: str = Field(default="HS256")
    permission_write_lock_enabled: bool = Field(default=True)
    permission_write_lock_ttl: int = Field(default=15)

    @classmethod
    def from_env(cls) -> "Settings":
        secret_key = os.getenv("SECRET_KEY", "").strip()
        if not secret_key:
            raise ValueError("SECRET_KEY environment variable must be set")

        raw_allowed_origins = os.getenv("ALLOWED_ORIGINS", "").strip()
        if not raw_allowed_origins:
            raise ValueError("ALLOWED_ORIGINS environment variable must be set")
        allowed_origins = _parse_allowed_origins(raw_allowed_origins)

        database_url = os.getenv("DATABASE_URL", "").strip()
        if not database_url:
            raise ValueError("DATABASE_URL environment variable must be set")

        parsed_db = urlparse(database_url)
        if parsed_db.scheme != "postgresql+asyncpg":
            raise ValueError("DATABASE_URL must start with 'postgresql+asyncpg://'")
        if not parsed_db.hostname:
            raise ValueError("DATABASE_URL must include hostname")

        db_pool_size = _parse_positive_int(
            "DB_POOL_SIZE", os.getenv("DB_POOL_SIZE", cls.model_fields["db_pool_size"].default)
        )

        db_max_overflow = int(
            os.getenv("DB_MAX_OVERFLOW", cls.model_fields["db_max_overflow"].default)
        )
        if db_max_overflow < 0:
            raise ValueError("DB_MAX_OVERFLOW must be greater than or equal to 0")

        db_pool_recycle = _parse_positive_int(
            "DB_POOL_RECYCLE",
            os.getenv("DB_POOL_RECYCLE", cls.model_fields["db_pool_recycle"].default),
        )

        db_pool_pre_ping = _parse_bool(
            "DB_POOL_PRE_PING",
            os.getenv("DB_POOL_PRE_PING", str(cls.model_fields["db_pool_pre_ping"].default)),
        )

        permission_write_lock_enabled = _parse_bool(
            "PERMISSION_WRITE_LOCK_ENABLED",
            os.getenv(
                "PERMISSION_WRITE_LOCK_ENABLED",
                str(cls.model_fields["permission_write_lock_enabled"].default),
            ),
        )
        permission_write_lock_ttl = _parse_positive_int(
            "PERMISSION_WRITE_LOCK_TTL",
            os.getenv(
                "PERMISSION_WRITE_LOCK_TTL",
                cls.model_fields["permission_write_lock_ttl"].default,
            ),
        )

        redis_url = os.getenv("REDIS_URL", cls.model_fields["redis_url"].default).strip()

        return cls(
            app_name=os.getenv("APP_NAME", cls.model_fields["app_name"].default),
            debug=os.getenv("DEBUG", "false").lower() == "true",
            database_url=database_url,
            redis_url=redis_url,
            allowed_origins=allowed_origins,
            secret_key=secret_key,
            algorithm=os.getenv("ALGORITHM", cls.model_fields["algorithm"].default),
            db_pool_size=db_pool_size,
            db_max_overflow=db_max_overflow,
            db_pool_recycle=db_pool_recycle,
            db_pool_pre_ping=db_pool_pre_ping,
            permission_write_lock_enabled=permission_write_lock_enabled,
            permission_write_lock_ttl=permission_write_lock_ttl,
        )


# Settings are validated on first access, not at import time.
_settings_instance: Settings | None = None
_settings_lock = threading.Lock()


def get_settings() -> Settings:
    """Get settings instance, creating it on first access.

    Uses double-checked locking so concurrent first access from several
    threads or tasks builds a single instance.

    Raises:
        ValueError: If required environment variables are missing or invalid
    """
    global _settings_instance

    if _settings_instance is not None:
        return _settings_instance

    with _settings_lock:
        if _settings_instance is None:
            _settings_instance = Settings.from_env()

    return _settings_instance


class _SettingsProxy:
    """Proxy to defer settings creation until first attribute access."""

    def __getattr__(self, name: str):
        return getattr(get_settings(), name)


settings = _SettingsProxy()  # type: ignore[assignment]
