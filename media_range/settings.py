from __future__ import annotations

from typing import Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .ranges import DEFAULT_CHUNK_SIZE


class MediaSettings(BaseSettings):
    """Configuration for range resolution, caching and signed access."""

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    storage_mode: Literal["filesystem", "s3"] = Field(
        default="filesystem",
        validation_alias="MEDIA_RANGE_STORAGE_MODE",
    )
    storage_path: str = Field(
        default="./media",
        validation_alias=AliasChoices(
            "MEDIA_RANGE_STORAGE_PATH",
            "MEDIA_STORAGE_PATH",
        ),
    )
    chunk_size: int = Field(
        default=DEFAULT_CHUNK_SIZE,
        gt=0,
        validation_alias="MEDIA_RANGE_CHUNK_SIZE",
    )
    metadata_ttl: float = Field(
        default=600.0,
        gt=0,
        validation_alias="MEDIA_RANGE_METADATA_TTL",
    )
    catalog_refresh_interval: float = Field(
        default=30.0,
        gt=0,
        validation_alias=AliasChoices(
            "MEDIA_RANGE_CATALOG_REFRESH",
            "MEDIA_CACHE_REFRESH",
        ),
    )
    token_secret: str | None = Field(
        default=None,
        validation_alias="MEDIA_RANGE_TOKEN_SECRET",
    )
    token_ttl: int = Field(
        default=600,
        gt=0,
        validation_alias="MEDIA_RANGE_TOKEN_TTL",
    )
    breaker_fail_max: int = Field(
        default=5,
        ge=1,
        validation_alias="MEDIA_RANGE_BREAKER_FAIL_MAX",
    )
    breaker_reset_timeout: float = Field(
        default=30.0,
        gt=0,
        validation_alias="MEDIA_RANGE_BREAKER_RESET_TIMEOUT",
    )
    breaker_success_threshold: int = Field(
        default=1,
        ge=1,
        validation_alias="MEDIA_RANGE_BREAKER_SUCCESS_THRESHOLD",
    )


class ObjectStoreSettings(BaseSettings):
    """Configuration for the S3-compatible object store backend."""

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    bucket: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "MEDIA_RANGE_S3_BUCKET",
            "AWS_S3_BUCKET",
        ),
    )
    prefix: str = Field(
        default="videos",
        validation_alias="MEDIA_RANGE_S3_PREFIX",
    )
    endpoint: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "MEDIA_RANGE_S3_ENDPOINT",
            "AWS_S3_ENDPOINT",
        ),
    )
    access_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "MEDIA_RANGE_S3_ACCESS_KEY_ID",
            "AWS_ACCESS_KEY_ID",
        ),
    )
    secret_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "MEDIA_RANGE_S3_SECRET_ACCESS_KEY",
            "AWS_SECRET_ACCESS_KEY",
        ),
    )
    session_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "MEDIA_RANGE_S3_SESSION_TOKEN",
            "AWS_SESSION_TOKEN",
        ),
    )
    region: str = Field(
        default="us-east-1",
        validation_alias=AliasChoices(
            "MEDIA_RANGE_S3_REGION",
            "AWS_REGION",
        ),
    )
    addressing_style: Literal["auto", "virtual", "path"] = Field(
        default="path",
        validation_alias="MEDIA_RANGE_S3_ADDRESSING_STYLE",
    )
    connect_timeout: float = Field(
        default=5.0,
        gt=0,
        validation_alias="MEDIA_RANGE_S3_CONNECT_TIMEOUT",
    )
    read_timeout: float = Field(
        default=30.0,
        gt=0,
        validation_alias="MEDIA_RANGE_S3_READ_TIMEOUT",
    )
    max_attempts: int = Field(
        default=3,
        ge=1,
        validation_alias="MEDIA_RANGE_S3_MAX_ATTEMPTS",
    )
    max_pool_connections: int = Field(
        default=50,
        ge=1,
        validation_alias="MEDIA_RANGE_S3_MAX_CONNECTIONS",
    )

    @field_validator("prefix", mode="before")
    @classmethod
    def _strip_prefix(cls, value: object) -> str:
        if value is None:
            return ""
        if not isinstance(value, str):
            msg = "Invalid prefix"
            raise ValueError(msg)
        prefix = value.strip().strip("/")
        if ".." in prefix.split("/"):
            msg = f"prefix must not contain '..': {value!r}"
            raise ValueError(msg)
        return prefix


def load_media_settings_from_env() -> MediaSettings:
    """Load core media settings from environment variables.

    Returns:
        MediaSettings instance populated from environment variables.
    """
    return MediaSettings()


def load_object_store_settings_from_env() -> ObjectStoreSettings:
    """Load object store settings from environment variables.

    Returns:
        ObjectStoreSettings instance populated from environment variables.
    """
    return ObjectStoreSettings()
