from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .caching import CatalogCache, MetadataCache
from .ranges import (
    DEFAULT_CHUNK_SIZE,
    ResolvedRequest,
    resolve_request,
    response_headers,
    status_code,
)
from .resilience import ResilientBackend
from .settings import (
    MediaSettings,
    ObjectStoreSettings,
    load_media_settings_from_env,
    load_object_store_settings_from_env,
)
from .storage import (
    DEFAULT_BLOCK_SIZE,
    FilesystemBackend,
    ObjectStoreBackend,
    build_object_store_client,
)
from .tokens import AccessTokenSigner

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from .ranges import ByteRange
    from .storage import ChunkStream, StorageBackend

LOG = logging.getLogger("media_range.streaming")

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def guess_content_type(key: str) -> str:
    content_type, _ = mimetypes.guess_type(key, strict=False)
    return content_type or DEFAULT_CONTENT_TYPE


@dataclass
class MediaSlice:
    """One resolved interval of one object, ready to be written out.

    ``Content-Length`` in :attr:`headers` always reflects the resolved
    range. If the backend delivers fewer bytes (the object shrank since
    its size was cached), :meth:`iter_body` logs the shortfall and drops the
    cached size so the next request sees the new one.
    """

    key: str
    request: ResolvedRequest
    stream: ChunkStream
    content_type: str
    _metadata: MetadataCache | None = field(default=None, repr=False)

    @property
    def byte_range(self) -> ByteRange:
        return self.request.byte_range

    @property
    def status_code(self) -> int:
        return status_code(self.byte_range)

    @property
    def headers(self) -> dict[str, str]:
        headers = response_headers(self.byte_range)
        headers["Content-Type"] = self.content_type
        return headers

    def read_block(self, block_size: int = DEFAULT_BLOCK_SIZE) -> bytes:
        block = self.stream.read(block_size)
        if not block:
            self._check_complete()
        return block

    def iter_body(self, block_size: int = DEFAULT_BLOCK_SIZE) -> Iterator[bytes]:
        try:
            while True:
                block = self.read_block(block_size)
                if not block:
                    break
                yield block
        finally:
            self.close()

    def close(self) -> None:
        self.stream.close()

    def _check_complete(self) -> None:
        expected = self.byte_range.length
        delivered = self.stream.delivered
        if delivered >= expected:
            return
        LOG.warning(
            "short read for key=%s: expected %d bytes (%s), got %d",
            self.key,
            expected,
            self.byte_range.content_range,
            delivered,
        )
        if self._metadata is not None:
            self._metadata.invalidate(self.key)


class MediaStreamer:
    """Wires key lookup, range resolution and storage access together."""

    def __init__(
        self,
        backend: StorageBackend,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        metadata_ttl: float = 600.0,
        catalog_interval: float = 30.0,
        signer: AccessTokenSigner | None = None,
    ) -> None:
        self.backend = backend
        self.chunk_size = chunk_size
        self.metadata = MetadataCache(backend, ttl=metadata_ttl)
        self.catalog = CatalogCache(backend, interval=catalog_interval)
        self.signer = signer or AccessTokenSigner()

    def startup(self) -> None:
        self.catalog.start()
        LOG.info(
            "media streamer ready (storage=%s, chunk_size=%d, metadata_ttl=%.0fs)",
            self.backend.describe(),
            self.chunk_size,
            self.metadata.ttl,
        )

    def shutdown(self) -> None:
        self.catalog.stop()

    def head(self, key: str) -> dict[str, str]:
        total = self.metadata.get_size(key)
        return {
            "Accept-Ranges": "bytes",
            "Content-Length": str(total),
            "Content-Type": guess_content_type(key),
        }

    def open(
        self,
        key: str,
        range_header: str | None,
        *,
        bound_unranged: bool = False,
    ) -> MediaSlice:
        """Resolve ``range_header`` for ``key`` and open a stream over it.

        Args:
            key: Storage key of the object.
            range_header: Literal Range header value, or None when absent.
            bound_unranged: Serve only the first chunk when no Range header
                was sent (signed-token route).

        Returns:
            A slice whose stream must be consumed or closed by the caller.
        """
        total = self.metadata.get_size(key)
        request = resolve_request(
            range_header,
            total,
            chunk_size=self.chunk_size,
            bound_unranged=bound_unranged,
        )
        byte_range = request.byte_range
        stream = self.backend.read_chunk(key, byte_range.start, byte_range.length)
        LOG.debug(
            "open key=%s range=%r resolved=%s status=%d",
            key,
            range_header,
            byte_range.content_range,
            status_code(byte_range),
        )
        return MediaSlice(
            key=key,
            request=request,
            stream=stream,
            content_type=guess_content_type(key),
            _metadata=self.metadata,
        )

    def catalog_keys(self) -> list[str]:
        return list(self.catalog.snapshot().keys)

    def issue_token(self, key: str) -> str:
        return self.signer.issue(key)

    def issue_tokens(self, keys: Iterable[str]) -> dict[str, str]:
        return self.signer.issue_many(keys)

    def key_from_token(self, token: str) -> str:
        return self.signer.validate(token)

    @classmethod
    def from_settings(
        cls,
        settings: MediaSettings,
        object_store: ObjectStoreSettings | None = None,
    ) -> MediaStreamer:
        backend = build_backend(settings, object_store)
        return cls(
            backend,
            chunk_size=settings.chunk_size,
            metadata_ttl=settings.metadata_ttl,
            catalog_interval=settings.catalog_refresh_interval,
            signer=AccessTokenSigner(settings.token_secret, ttl=settings.token_ttl),
        )

    @classmethod
    def from_env(cls) -> MediaStreamer:
        """Create a MediaStreamer instance from environment variables.

        Returns:
            MediaStreamer configured from environment variables.
        """
        settings = load_media_settings_from_env()
        object_store = (
            load_object_store_settings_from_env()
            if settings.storage_mode == "s3"
            else None
        )
        return cls.from_settings(settings, object_store)


def build_backend(
    settings: MediaSettings,
    object_store: ObjectStoreSettings | None = None,
) -> StorageBackend:
    """Build the storage backend for the configured mode.

    The object store backend is wrapped in a :class:`ResilientBackend`;
    the filesystem backend has no network dependency and is used as is.
    """
    if settings.storage_mode == "filesystem":
        return FilesystemBackend(settings.storage_path)

    if object_store is None:
        object_store = load_object_store_settings_from_env()
    if not object_store.bucket:
        msg = "MEDIA_RANGE_S3_BUCKET is required in s3 storage mode"
        raise ValueError(msg)
    backend = ObjectStoreBackend(
        build_object_store_client(object_store),
        object_store.bucket,
        object_store.prefix,
    )
    return ResilientBackend(
        backend,
        fail_max=settings.breaker_fail_max,
        reset_timeout=settings.breaker_reset_timeout,
        success_threshold=settings.breaker_success_threshold,
    )
