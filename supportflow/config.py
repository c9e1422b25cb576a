"""Runtime settings loaded from the environment."""

from __future__ import annotations

import dataclasses
import os
from functools import lru_cache


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclasses.dataclass(frozen=True)
class Settings:
    """Configuration shared by the pipeline, dispatcher and routers."""

    database_url: str | None = None
    whatsapp_access_token: str | None = None
    whatsapp_phone_number_id: str | None = None
    whatsapp_verify_token: str = ""
    whatsapp_app_secret: str | None = None
    whatsapp_api_version: str = "v18.0"
    send_timeout_seconds: float = 15.0
    campaign_send_delay_ms: int = 100
    frequency_limit_enabled: bool = True
    frequency_limit_hours: int = 24
    default_country_code: str = "55"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    system_prompt: str | None = None
    responder_history_limit: int = 20
    business_timezone: str = "America/Sao_Paulo"
    background_workers: int = 4
    auto_create_schema: bool = True

    @property
    def channel_configured(self) -> bool:
        return bool(self.whatsapp_access_token and self.whatsapp_phone_number_id)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from the environment with development defaults."""

    return Settings(
        database_url=os.getenv("DATABASE_URL"),
        whatsapp_access_token=os.getenv("WHATSAPP_ACCESS_TOKEN"),
        whatsapp_phone_number_id=os.getenv("WHATSAPP_PHONE_NUMBER_ID"),
        whatsapp_verify_token=os.getenv("WHATSAPP_VERIFY_TOKEN", "").strip(),
        whatsapp_app_secret=os.getenv("WHATSAPP_APP_SECRET"),
        whatsapp_api_version=os.getenv("WHATSAPP_API_VERSION", "v18.0"),
        send_timeout_seconds=float(os.getenv("CHANNEL_SEND_TIMEOUT_SECONDS", "15")),
        campaign_send_delay_ms=int(os.getenv("CAMPAIGN_SEND_DELAY_MS", "100")),
        frequency_limit_enabled=_env_bool("FREQUENCY_LIMIT_ENABLED", True),
        frequency_limit_hours=int(os.getenv("FREQUENCY_LIMIT_HOURS", "24")),
        default_country_code=os.getenv("DEFAULT_COUNTRY_CODE", "55"),
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        system_prompt=os.getenv("SYSTEM_PROMPT"),
        responder_history_limit=int(os.getenv("RESPONDER_HISTORY_LIMIT", "20")),
        business_timezone=os.getenv("BUSINESS_TIMEZONE", "America/Sao_Paulo"),
        background_workers=int(os.getenv("BACKGROUND_WORKERS", "4")),
        auto_create_schema=_env_bool("AUTO_CREATE_SCHEMA", True),
    )


def reset_settings_cache() -> None:
    """Clear cached settings; useful in tests when env vars change."""

    get_settings.cache_clear()
