"""
Runtime configuration, read from CROSSDOC_* environment variables or a .env file.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: Optional[str] = Field(default=None)  # None → in-memory store
    max_workers: int = Field(default=4, ge=1)
    recognition_timeout_seconds: float = Field(default=30.0, gt=0)
    recognition_slot_timeout_seconds: float = Field(default=60.0, gt=0)  # Wait for a free recognition worker
    classification_threshold: float = Field(default=0.6, ge=0, le=1)
    duplicate_scope: Literal["other_cases", "any"] = Field(default="other_cases")
    openai_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("CROSSDOC_OPENAI_API_KEY", "OPENAI_API_KEY"),
    )
    llm_model: str = Field(default="gpt-5")
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_prefix="CROSSDOC_",
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
