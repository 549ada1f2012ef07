from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CACHESCOPE_", env_file=".env", extra="ignore")

    # Invalidation
    invalidation_debounce_ms: int = Field(default=50, ge=0)
    query_debounce_ms: int = Field(default=0, ge=0)

    # Keys
    strict_keys: bool = True

    # Observability
    log_level: str = "INFO"
    log_json: bool = False
    log_colors: bool = True


settings = Settings()
