from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, NoReturn, Protocol

from boto3.session import Session
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .errors import InvalidKeyError, KeyNotFoundError, StorageIOError

if TYPE_CHECKING:
    from collections.abc import Iterator

    from .settings import ObjectStoreSettings

LOG = logging.getLogger("media_range.storage")

DEFAULT_BLOCK_SIZE = 64 * 1024

_MISSING_CODES = frozenset({"404", "NoSuchKey", "NotFound"})


class ChunkStream:
    """Byte stream over one ranged read, delivering at most ``length`` bytes.

    The stream owns the underlying handle (an open file or a botocore
    ``StreamingBody``) and closes it once the budget is consumed, the
    source hits end-of-object, a read fails, or ``close()`` is called.
    """

    def __init__(
        self,
        raw: Any,
        length: int,
        *,
        key: str = "",
        errors: tuple[type[BaseException], ...] = (OSError,),
    ) -> None:
        self.key = key
        self.requested = max(length, 0)
        self.delivered = 0
        self._raw = raw
        self._remaining = self.requested
        self._errors = errors
        self._closed = raw is None

    @classmethod
    def empty(cls, key: str = "") -> ChunkStream:
        return cls(None, 0, key=key)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def exhausted(self) -> bool:
        return self._remaining <= 0

    def read(self, size: int = -1) -> bytes:
        if self._closed or self._remaining <= 0:
            self.close()
            return b""
        want = self._remaining if size is None or size < 0 else min(size, self._remaining)
        try:
            data = self._raw.read(want)
        except self._errors as err:
            self.close()
            msg = f"read failed for key={self.key}: {err}"
            raise StorageIOError(msg) from err
        if not data:
            self.close()
            return b""
        self._remaining -= len(data)
        self.delivered += len(data)
        if self._remaining <= 0:
            self.close()
        return data

    def iter_chunks(self, block_size: int = DEFAULT_BLOCK_SIZE) -> Iterator[bytes]:
        try:
            while True:
                chunk = self.read(block_size)
                if not chunk:
                    break
                yield chunk
        finally:
            self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._raw.close()
        except self._errors:
            LOG.debug("error closing stream for key=%s", self.key, exc_info=True)

    def __enter__(self) -> ChunkStream:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class StorageBackend(Protocol):
    """Capability set every media storage backend provides."""

    def read_chunk(self, key: str, offset: int, length: int) -> ChunkStream:
        """Return up to ``length`` bytes of ``key`` starting at ``offset``."""
        ...

    def size(self, key: str) -> int: ...

    def list_keys(self) -> list[str]: ...

    def describe(self) -> str: ...


class FilesystemBackend:
    """Serves media files from a single root directory.

    Keys are paths relative to ``root``; anything that would resolve
    outside of it is rejected with :class:`InvalidKeyError`. Calls block on
    local disk I/O and carry no timeout of their own.
    """

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self.root = Path(root)

    def describe(self) -> str:
        return f"filesystem:{self.root}"

    def _resolve(self, key: str) -> Path:
        if not key or "\x00" in key:
            raise InvalidKeyError(key, "empty key or NUL byte")
        candidate = Path(key)
        if candidate.is_absolute():
            raise InvalidKeyError(key, "absolute path")
        if ".." in candidate.parts:
            raise InvalidKeyError(key, "parent directory segment")
        root = self.root.resolve()
        path = (root / candidate).resolve()
        if not path.is_relative_to(root):
            raise InvalidKeyError(key, "resolves outside storage root")
        return path

    def _existing_file(self, key: str) -> Path:
        path = self._resolve(key)
        if not path.is_file():
            raise KeyNotFoundError(key)
        return path

    def read_chunk(self, key: str, offset: int, length: int) -> ChunkStream:
        path = self._existing_file(key)
        if length <= 0:
            return ChunkStream.empty(key)
        try:
            handle = path.open("rb")
        except FileNotFoundError as err:
            raise KeyNotFoundError(key) from err
        except OSError as err:
            msg = f"cannot open {key!r}: {err}"
            raise StorageIOError(msg) from err
        try:
            handle.seek(offset)
        except OSError as err:
            handle.close()
            msg = f"cannot seek {key!r} to {offset}: {err}"
            raise StorageIOError(msg) from err
        LOG.debug("read key=%s offset=%d length=%d", key, offset, length)
        return ChunkStream(handle, length, key=key, errors=(OSError,))

    def size(self, key: str) -> int:
        path = self._existing_file(key)
        try:
            return path.stat().st_size
        except FileNotFoundError as err:
            raise KeyNotFoundError(key) from err
        except OSError as err:
            msg = f"cannot stat {key!r}: {err}"
            raise StorageIOError(msg) from err

    def list_keys(self) -> list[str]:
        """Return the names of regular files directly under ``root``."""
        keys: list[str] = []
        try:
            with os.scandir(self.root) as entries:
                for entry in entries:
                    if not entry.is_file():
                        continue
                    try:
                        self._resolve(entry.name)
                    except InvalidKeyError:
                        LOG.debug("skipping %s: resolves outside root", entry.name)
                        continue
                    keys.append(entry.name)
        except OSError as err:
            msg = f"cannot list {self.root}: {err}"
            raise StorageIOError(msg) from err
        return sorted(keys)


class ObjectStoreBackend:
    """Serves media objects from an S3-compatible bucket.

    Logical keys are mapped to ``<prefix>/<key>``; :meth:`list_keys` strips
    the prefix again so every caller only ever sees logical keys. Calls are
    bounded by the botocore client's connect/read timeouts and retry
    configuration.
    """

    def __init__(self, client: Any, bucket: str, prefix: str = "") -> None:
        self._client = client
        self.bucket = bucket
        self._prefix = prefix.strip("/") if prefix else ""

    def describe(self) -> str:
        location = f"{self.bucket}/{self._prefix}" if self._prefix else self.bucket
        return f"s3://{location}"

    def _full_key(self, key: str) -> str:
        if not key:
            raise InvalidKeyError(key, "empty key")
        if self._prefix:
            return f"{self._prefix}/{key}"
        return key

    def _wrap_error(self, err: Exception, operation: str, key: str) -> NoReturn:
        """Translate botocore errors, logging the original at DEBUG."""
        LOG.debug("object store %s failed for key=%s: %s", operation, key, err)
        if isinstance(err, ClientError):
            code = err.response.get("Error", {}).get("Code", "Unknown")
            if code in _MISSING_CODES:
                raise KeyNotFoundError(key) from err
            msg = f"object store {operation} failed for key={key}: {code}"
        else:
            msg = f"object store {operation} failed for key={key}: {type(err).__name__}"
        raise StorageIOError(msg) from err

    def read_chunk(self, key: str, offset: int, length: int) -> ChunkStream:
        full_key = self._full_key(key)
        if length <= 0:
            return ChunkStream.empty(key)
        request_range = f"bytes={offset}-{offset + length - 1}"
        try:
            result = self._client.get_object(
                Bucket=self.bucket, Key=full_key, Range=request_range
            )
        except ClientError as err:
            code = err.response.get("Error", {}).get("Code")
            if code == "InvalidRange":
                # Offset at or beyond the end of the object.
                return ChunkStream.empty(key)
            self._wrap_error(err, "read", key)
        except BotoCoreError as err:
            self._wrap_error(err, "read", key)
        LOG.debug("read s3://%s/%s range=%s", self.bucket, full_key, request_range)
        return ChunkStream(
            result["Body"], length, key=key, errors=(BotoCoreError, OSError)
        )

    def size(self, key: str) -> int:
        full_key = self._full_key(key)
        try:
            result = self._client.head_object(Bucket=self.bucket, Key=full_key)
        except (ClientError, BotoCoreError) as err:
            self._wrap_error(err, "head", key)
        return int(result.get("ContentLength", 0))

    def list_keys(self) -> list[str]:
        list_prefix = f"{self._prefix}/" if self._prefix else ""
        strip = len(list_prefix)
        keys: list[str] = []
        paginator = self._client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=list_prefix):
                for obj in page.get("Contents", []):
                    key = obj["Key"][strip:]
                    # Skip the prefix itself and folder markers
                    if not key or key.endswith("/"):
                        continue
                    keys.append(key)
        except (ClientError, BotoCoreError) as err:
            self._wrap_error(err, "list", list_prefix)
        return keys


def build_object_store_client(settings: ObjectStoreSettings) -> Any:
    """Create a boto3 S3 client from object store settings."""
    session = Session(
        aws_access_key_id=settings.access_key,
        aws_secret_access_key=settings.secret_key,
        aws_session_token=settings.session_token,
        region_name=settings.region,
    )
    return session.client(
        "s3",
        endpoint_url=settings.endpoint,
        config=BotoConfig(
            signature_version="s3v4",
            connect_timeout=settings.connect_timeout,
            read_timeout=settings.read_timeout,
            retries={"max_attempts": settings.max_attempts, "mode": "standard"},
            max_pool_connections=settings.max_pool_connections,
            s3={"addressing_style": settings.addressing_style},
        ),
    )
