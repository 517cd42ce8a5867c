"""
Configuration settings for watermark-sync.

Uses Pydantic Settings to load environment variables for the database
connection, logging, and the tables a synchronization run reads and writes.
"""
from __future__ import annotations

import re
from datetime import datetime
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from watermark_sync.domain.models import as_naive_utc

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class Settings(BaseSettings):
    # Database
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("watermark_sync", alias="DB_NAME")
    db_statement_timeout_ms: int = Field(0, alias="DB_STATEMENT_TIMEOUT_MS")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Synchronization
    source_table: str = Field("orders", alias="SYNC_SOURCE_TABLE")
    destination_table: str = Field("dwh_orders", alias="SYNC_DESTINATION_TABLE")
    watermark_table: str = Field("etl_watermark", alias="SYNC_WATERMARK_TABLE")
    batch_size: int = Field(1_000, alias="SYNC_BATCH_SIZE", gt=0)
    watermark_floor: datetime = Field(datetime(2000, 1, 1), alias="SYNC_WATERMARK_FLOOR")
    failure_policy: Literal["strict", "tolerant"] = Field("strict", alias="SYNC_FAILURE_POLICY")
    use_run_lock: bool = Field(False, alias="SYNC_USE_RUN_LOCK")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("source_table", "destination_table", "watermark_table")
    @classmethod
    def _plain_identifier(cls, value: str) -> str:
        if not _IDENTIFIER.match(value):
            raise ValueError(f"'{value}' is not a plain SQL identifier")
        return value

    @field_validator("watermark_floor")
    @classmethod
    def _naive_utc_floor(cls, value: datetime) -> datetime:
        # TIMESTAMP columns hold naive UTC; an offset in the env value is converted.
        return as_naive_utc(value)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
