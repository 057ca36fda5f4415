"""Process-wide service configuration.

Values come from ``SHIPYARD_*`` environment variables (or a ``.env`` file).
The unprefixed ``PORT``, ``TMP_DIR`` and ``MAX_UPLOAD_SIZE`` variables used by
earlier deployments are still honored.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# 100 MiB
DEFAULT_MAX_UPLOAD_SIZE = 100 * 1024 * 1024


class Settings(BaseSettings):
    """Read-only settings shared by every pipeline instance."""

    model_config = SettingsConfigDict(
        env_prefix="SHIPYARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
        frozen=True,
    )

    host: str = Field(default="0.0.0.0", description="Interface the HTTP server binds to")
    port: int = Field(
        default=8080,
        validation_alias=AliasChoices("SHIPYARD_PORT", "PORT"),
        description="Port the HTTP server listens on",
    )
    tmp_dir: Path = Field(
        default=Path("/tmp"),
        validation_alias=AliasChoices("SHIPYARD_TMP_DIR", "TMP_DIR"),
        description="Directory holding per-request archives, tars and working dirs",
    )
    max_upload_size: int = Field(
        default=DEFAULT_MAX_UPLOAD_SIZE,
        validation_alias=AliasChoices("SHIPYARD_MAX_UPLOAD_SIZE", "MAX_UPLOAD_SIZE"),
        gt=0,
        description="Largest accepted upload in bytes",
    )
    registry_url: str = Field(
        default="localhost:5000",
        description="Registry base images are pushed to",
    )
    endpoint: str = Field(
        default="http://endpointyouhit:8080",
        description="Endpoint reported back to callers after a successful publish",
    )
    node_base_image: str = Field(default="mhart/alpine-node:4")
    node_image_repo: str = Field(default="mhart/alpine-node")
    build_timeout: float = Field(default=600.0, gt=0, description="Seconds allowed for a build")
    push_timeout: float = Field(default=600.0, gt=0, description="Seconds allowed for tag + push")
    max_concurrent_builds: int = Field(
        default=4,
        ge=1,
        description="Builds/pushes allowed in flight; further requests queue for a slot",
    )
    log_level: str = Field(default="INFO")

    @field_validator("registry_url")
    @classmethod
    def _strip_registry_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return v.upper()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
