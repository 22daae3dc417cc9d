from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    version: str = "0.1.0"

    # Hosted document store (Appwrite REST API)
    store_endpoint: str = "https://cloud.appwrite.io/v1"
    store_project_id: str = ""
    store_api_key: str | None = None
    store_database_id: str = ""
    loyalty_cards_collection_id: str = ""
    store_timeout_seconds: float = 10.0
    store_list_limit: int = Field(default=1000, ge=1)

    # Staff scanning
    scan_dedupe_window_seconds: float = 3.0
    scan_commit_timeout_seconds: float = 30.0
    scan_activity_log_limit: int = Field(default=10, ge=1)
    max_stamps_per_scan: int = Field(default=10, ge=1)

    # Customer redemption
    redemption_poll_interval_seconds: float = 1.5

    # Logging
    log_json: bool = True


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
