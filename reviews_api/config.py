"""
Configuration management for the reviews API.

Settings are read from the environment. A `.env` file in the working
directory is loaded first so local development does not need exported vars.
"""
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return int(raw)


@dataclass
class Settings:
    """Runtime settings for the API process."""

    # Postgres (DATABASE_URL wins over the individual DB_* parts)
    database_url: Optional[str] = None
    db_user: Optional[str] = None
    db_password: Optional[str] = None
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "reviews"
    db_pool_size: int = 10
    db_max_overflow: int = 20

    # Redis
    redis_url: Optional[str] = None
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    cache_enabled: bool = True
    cache_ttl_seconds: int = 3600       # 1 hour for every entry type
    cache_namespace: str = "reviews"

    # Web server
    web_host: str = "0.0.0.0"
    web_port: int = 3000
    web_workers: Optional[int] = None   # None = one worker per CPU core

    log_level: str = "INFO"
    env: str = "development"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""
        return cls(
            database_url=os.getenv("DATABASE_URL") or None,
            db_user=os.getenv("DB_USER") or None,
            db_password=os.getenv("DB_PASSWORD") or None,
            db_host=os.getenv("DB_HOST", "localhost"),
            db_port=_env_int("DB_PORT", 5432),
            db_name=os.getenv("DB_NAME", "reviews"),
            db_pool_size=_env_int("DB_POOL_SIZE", 10),
            db_max_overflow=_env_int("DB_MAX_OVERFLOW", 20),
            redis_url=os.getenv("REDIS_URL") or None,
            redis_host=os.getenv("REDIS_HOST", "localhost"),
            redis_port=_env_int("REDIS_PORT", 6379),
            redis_db=_env_int("REDIS_DB", 0),
            cache_enabled=_env_bool("CACHE_ENABLED", True),
            cache_ttl_seconds=_env_int("CACHE_TTL_SECONDS", 3600),
            cache_namespace=os.getenv("CACHE_NAMESPACE", "reviews"),
            web_host=os.getenv("WEB_HOST", "0.0.0.0"),
            web_port=_env_int("WEB_PORT", 3000),
            web_workers=_env_int("WEB_WORKERS", None),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            env=os.getenv("ENV", "development").lower(),
        )

    @property
    def workers(self) -> int:
        """Number of server processes to fork."""
        return self.web_workers or os.cpu_count() or 1

    @property
    def is_development(self) -> bool:
        return self.env in ("development", "dev", "")


settings = Settings.from_env()
