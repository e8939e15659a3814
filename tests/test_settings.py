"""Unit tests for configuration loading and backend wiring."""

from __future__ import annotations

import os

import pytest
from media_range.resilience import ResilientBackend
from media_range.settings import (
    MediaSettings,
    ObjectStoreSettings,
    load_media_settings_from_env,
    load_object_store_settings_from_env,
)
from media_range.storage import FilesystemBackend, ObjectStoreBackend
from media_range.streaming import MediaStreamer, build_backend
from pydantic import ValidationError


class TestMediaSettings:
    """Test MediaSettings configuration."""

    def test_default_settings(self):
        """Test that MediaSettings has the documented defaults."""
        settings = MediaSettings()
        assert settings.chunk_size == 1024 * 1024
        assert settings.metadata_ttl == 600.0
        assert settings.catalog_refresh_interval == 30.0
        assert settings.token_ttl == 600
        assert settings.breaker_fail_max == 5
        assert settings.breaker_success_threshold == 1

    def test_load_from_env(self, media_env_vars):
        """Test that settings load from environment."""
        settings = load_media_settings_from_env()
        assert settings.storage_mode == "filesystem"
        assert settings.storage_path == media_env_vars["MEDIA_RANGE_STORAGE_PATH"]
        assert settings.chunk_size == 16
        assert settings.metadata_ttl == 120.0
        assert settings.catalog_refresh_interval == 3600.0

    def test_legacy_refresh_alias(self):
        original = os.environ.get("MEDIA_CACHE_REFRESH")
        try:
            os.environ["MEDIA_CACHE_REFRESH"] = "45"
            assert load_media_settings_from_env().catalog_refresh_interval == 45.0
        finally:
            if original is None:
                os.environ.pop("MEDIA_CACHE_REFRESH", None)
            else:
                os.environ["MEDIA_CACHE_REFRESH"] = original

    def test_rejects_invalid_chunk_size(self):
        with pytest.raises(ValidationError):
            MediaSettings(chunk_size=0)

    def test_rejects_unknown_storage_mode(self):
        with pytest.raises(ValidationError):
            MediaSettings(storage_mode="ftp")


class TestObjectStoreSettings:
    """Test ObjectStoreSettings configuration."""

    def test_prefix_is_normalised(self):
        assert ObjectStoreSettings(prefix="/videos/").prefix == "videos"
        assert ObjectStoreSettings(prefix="").prefix == ""

    def test_prefix_rejects_parent_segments(self):
        with pytest.raises(ValidationError):
            ObjectStoreSettings(prefix="videos/../secret")

    def test_load_from_env(self):
        keys = {
            "MEDIA_RANGE_S3_BUCKET": "media-bucket",
            "MEDIA_RANGE_S3_PREFIX": "clips",
            "MEDIA_RANGE_S3_ADDRESSING_STYLE": "virtual",
        }
        original = {key: os.environ.get(key) for key in keys}
        try:
            os.environ.update(keys)
            settings = load_object_store_settings_from_env()
            assert settings.bucket == "media-bucket"
            assert settings.prefix == "clips"
            assert settings.addressing_style == "virtual"
        finally:
            for key, value in original.items():
                if value is None:
                    os.environ.pop(key, None)
                else:
                    os.environ[key] = value


class TestBuildBackend:
    """Test backend selection by storage mode."""

    def test_filesystem_mode(self, media_root):
        settings = MediaSettings(storage_mode="filesystem", storage_path=str(media_root))
        backend = build_backend(settings)
        assert isinstance(backend, FilesystemBackend)

    def test_s3_mode_is_wrapped_in_breaker(self):
        settings = MediaSettings(storage_mode="s3", breaker_fail_max=7)
        object_store = ObjectStoreSettings(
            bucket="media",
            endpoint="http://127.0.0.1:9000",
            access_key="minio",
            secret_key="minio123",
        )
        backend = build_backend(settings, object_store)
        assert isinstance(backend, ResilientBackend)
        assert isinstance(backend.backend, ObjectStoreBackend)
        assert backend.describe() == "s3://media/videos"

    def test_s3_mode_requires_bucket(self):
        settings = MediaSettings(storage_mode="s3")
        with pytest.raises(ValueError, match="BUCKET"):
            build_backend(settings, ObjectStoreSettings(bucket=None))

    def test_streamer_from_env(self, media_env_vars):
        streamer = MediaStreamer.from_env()
        assert isinstance(streamer.backend, FilesystemBackend)
        assert streamer.chunk_size == 16
        assert streamer.catalog.interval == 3600.0
        token = streamer.issue_token("clip.mp4")
        assert streamer.key_from_token(token) == "clip.mp4"
