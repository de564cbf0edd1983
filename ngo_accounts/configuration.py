"""Runtime configuration read from ``NGO_*`` environment variables.

``get_settings`` caches a single ``NGOSettings`` instance per process; tests
that change the environment call ``get_settings.cache_clear()`` first.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class NGOSettings(BaseSettings):
    """Runtime configuration for the NGO account manager."""

    model_config = SettingsConfigDict(
        env_prefix="NGO_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        validate_default=True,
    )

    environment: str = Field(
        "development",
        description="Environment label shown in the sidebar and used for log levels.",
    )
    backend: Literal["local", "table", "hosted"] = Field(
        "local",
        description=(
            "Record store backend: a key-value blob file, SQLite tables, or a hosted"
            " PostgREST table service."
        ),
    )
    data_directory: Path = Field(
        Path(".data"),
        description="Directory holding the local SQLite files.",
    )
    hosted_url: Optional[str] = Field(
        None,
        description="REST endpoint of the hosted table service, e.g. https://<project>.supabase.co/rest/v1",
    )
    hosted_api_key: Optional[str] = Field(
        None,
        description="API key sent with every hosted table request.",
    )
    request_timeout: float = Field(
        15.0,
        description="Seconds to wait for the hosted table service.",
        gt=0,
    )
    member_code_attempts: int = Field(
        5,
        description="How many member codes to try before giving up on a collision.",
        ge=1,
    )
    log_level: str = Field("INFO", description="Root logger level.")

    @field_validator("data_directory", mode="before")
    @classmethod
    def _expand_path(cls, value: str | Path) -> Path:
        path = Path(value).expanduser().resolve()
        path.mkdir(parents=True, exist_ok=True)
        return path

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.strip().upper()


@lru_cache()
def get_settings() -> NGOSettings:
    return NGOSettings()
