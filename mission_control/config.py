"""Process-wide configuration, read once from the environment."""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


@dataclass(frozen=True)
class Settings:
    supabase_url: str = ""
    supabase_key: str = ""
    basic_auth_user: str = ""
    basic_auth_password: str = ""
    stripe_secret_key: str = ""
    jina_api_key: str = ""
    anthropic_api_key: str = ""
    cron_sync_secret: str = ""
    database_url: str = ""
    log_level: str = "INFO"

    @property
    def rest_url(self) -> str:
        return f"{self.supabase_url.rstrip('/')}/rest/v1"

    @property
    def auth_enabled(self) -> bool:
        return bool(self.basic_auth_user and self.basic_auth_password)


def _env(*names: str) -> str:
    for name in names:
        value = os.environ.get(name)
        if value:
            return value.strip()
    return ""


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings(
        supabase_url=_env("SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL"),
        supabase_key=_env("SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_KEY"),
        basic_auth_user=_env("MC_BASIC_AUTH_USER"),
        basic_auth_password=_env("MC_BASIC_AUTH_PASSWORD"),
        stripe_secret_key=_env("STRIPE_SECRET_KEY"),
        jina_api_key=_env("JINA_API_KEY"),
        anthropic_api_key=_env("ANTHROPIC_API_KEY"),
        cron_sync_secret=_env("CRON_SYNC_SECRET"),
        database_url=_env("DATABASE_URL"),
        log_level=_env("MC_LOG_LEVEL") or "INFO",
    )


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    get_settings.cache_clear()
