from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    bot_token: Optional[str] = Field(None, alias="BOT_TOKEN")
    database_url: str = Field("sqlite+aiosqlite:///./settlement.db", alias="DATABASE_URL")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    sql_echo: bool = Field(False, alias="SQL_ECHO")

    settle_epsilon: Decimal = Field(Decimal("0.01"), alias="SETTLE_EPSILON")
    purge_after_days: int = Field(7, alias="PURGE_AFTER_DAYS")
    write_retries: int = Field(3, alias="WRITE_RETRIES")


settings = Settings()
