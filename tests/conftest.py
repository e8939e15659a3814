from __future__ import annotations

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from collections.abc import Generator
    from pathlib import Path

    from botocore.client import BaseClient
    from pytest_databases._service import DockerService


CLIP = bytes(range(100))
BIG = bytes(i % 251 for i in range(5000))


@pytest.fixture
def media_root(tmp_path: Path) -> Path:
    """Media directory with a few files, plus a file just outside of it."""
    root = tmp_path / "media"
    root.mkdir()
    (root / "clip.mp4").write_bytes(CLIP)
    (root / "big.bin").write_bytes(BIG)
    (root / "empty.webm").write_bytes(b"")
    nested = root / "nested"
    nested.mkdir()
    (nested / "inner.mp4").write_bytes(b"inner")
    (tmp_path / "secret.txt").write_bytes(b"do not serve")
    return root


def _set_env(env_vars: dict[str, str]) -> dict[str, str | None]:
    original_values = {}
    for key, value in env_vars.items():
        original_values[key] = os.environ.get(key)
        os.environ[key] = value
    return original_values


def _restore_env(original_values: dict[str, str | None]) -> None:
    for key, original_value in original_values.items():
        if original_value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = original_value


@pytest.fixture
def media_env_vars(media_root: Path) -> Generator[dict[str, str]]:
    """Set up environment variables for filesystem mode."""
    env_vars = {
        "MEDIA_RANGE_STORAGE_MODE": "filesystem",
        "MEDIA_RANGE_STORAGE_PATH": str(media_root),
        "MEDIA_RANGE_CHUNK_SIZE": "16",
        "MEDIA_RANGE_METADATA_TTL": "120",
        "MEDIA_RANGE_CATALOG_REFRESH": "3600",
        "MEDIA_RANGE_TOKEN_SECRET": "test-secret-with-at-least-32-bytes!!",
    }
    original_values = _set_env(env_vars)
    yield env_vars
    _restore_env(original_values)


# MinIO integration (opt-in, needs docker)


@dataclass
class MinioService:
    endpoint: str
    access_key: str
    secret_key: str
    secure: bool


@pytest.fixture(scope="session")
def minio_access_key() -> str:
    return os.getenv("MINIO_ACCESS_KEY", "minio")


@pytest.fixture(scope="session")
def minio_secret_key() -> str:
    return os.getenv("MINIO_SECRET_KEY", "minio123")


@pytest.fixture(scope="session")
def minio_service_name() -> str:
    return "minio-media-range"


@pytest.fixture(scope="session")
def minio_service(
    docker_service: DockerService,
    minio_access_key: str,
    minio_secret_key: str,
    minio_service_name: str,
) -> Generator[MinioService]:
    from urllib.error import URLError
    from urllib.request import Request, urlopen

    from pytest_databases.types import ServiceContainer

    def check(_service: ServiceContainer) -> bool:
        url = f"http://{_service.host}:{_service.port}/minio/health/ready"
        try:
            with urlopen(url=Request(url, method="GET"), timeout=10) as response:
                return response.status == 200
        except (URLError, ConnectionError):
            return False

    with docker_service.run(
        image="quay.io/minio/minio",
        name=minio_service_name,
        command="server /data",
        container_port=9000,
        timeout=20,
        pause=0.5,
        env={
            "MINIO_ROOT_USER": minio_access_key,
            "MINIO_ROOT_PASSWORD": minio_secret_key,
        },
        check=check,
    ) as service:
        yield MinioService(
            endpoint=f"http://{service.host}:{service.port}",
            access_key=minio_access_key,
            secret_key=minio_secret_key,
            secure=False,
        )


@pytest.fixture
def minio_client(minio_service: MinioService) -> BaseClient:
    import boto3
    from botocore.config import Config

    return boto3.client(
        "s3",
        endpoint_url=minio_service.endpoint,
        aws_access_key_id=minio_service.access_key,
        aws_secret_access_key=minio_service.secret_key,
        region_name="us-east-1",
        config=Config(s3={"addressing_style": "path"}),
    )
