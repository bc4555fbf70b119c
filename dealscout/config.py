from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AnyHttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client configuration (env-friendly).

    Tip: create a .env file (it is already in .gitignore) and override settings there.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    app_name: str = "DealScout Search API"
    version: str = "0.1.0"

    api_base_url: AnyHttpUrl = "http://localhost:8000/api"
    search_path: str = "/search"
    api_token: Optional[str] = None

    user_agent: str = "dealscout/0.1.0"
    http_timeout_s: float = 20.0

    # IP based lookup used when no device fix is supplied.
    geolocation_url: Optional[AnyHttpUrl] = None
    geolocation_timeout_s: float = 10.0
    geolocation_max_age_s: float = 600.0

    # Toronto city hall.
    fallback_latitude: float = 43.6532
    fallback_longitude: float = -79.3832

    cache_ttl_minutes: float = 24 * 60
    cache_max_size: int = 512
    cache_schema_version: str = "v1"
    cache_db_path: Optional[str] = None

    default_page_limit: int = 20


@lru_cache
def get_settings() -> Settings:
    return Settings()
