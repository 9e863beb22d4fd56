from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    store_backend: Literal["memory", "sql"] = "memory"
    database_url: str = "sqlite+aiosqlite:///./tasks.db"
    database_echo: bool = False

    redis_dsn: str | None = None  # None keeps the cache L1 only
    redis_pool_size: int = 5

    cache_maxsize: int = 2048
    cache_ttl_seconds: int = 600  # 10 minutes
    cache_absent_ttl_seconds: int = 60
    cache_namespace: str = "taskcache:"

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()
