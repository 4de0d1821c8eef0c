from __future__ import annotations

import logging
from datetime import date, datetime
from typing import List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    database_url: str = Field(..., alias="DATABASE_URL")
    backend_session_secret: str = Field(..., alias="BACKEND_SESSION_SECRET")

    app_timezone: str = Field("America/Sao_Paulo", alias="APP_TIMEZONE")
    default_water_target: float = Field(4.0, alias="DEFAULT_WATER_TARGET")

    allowed_emails_raw: str = Field("", alias="ALLOWED_EMAILS")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def allowed_emails(self) -> List[str]:
        return [email.strip().lower() for email in self.allowed_emails_raw.split(",") if email.strip()]

    def today(self) -> date:
        try:
            return datetime.now(ZoneInfo(self.app_timezone)).date()
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown APP_TIMEZONE %r, using the host's local date", self.app_timezone)
            return date.today()


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None
