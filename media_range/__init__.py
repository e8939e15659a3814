"""Byte-range media streaming over pluggable storage backends."""

from .caching import CatalogCache, CatalogSnapshot, MetadataCache
from .ranges import ByteRange, resolve, resolve_request
from .resilience import CircuitState, ResilientBackend
from .storage import ChunkStream, FilesystemBackend, ObjectStoreBackend, StorageBackend
from .streaming import MediaStreamer
from .tokens import AccessTokenSigner

__all__ = [
    "AccessTokenSigner",
    "ByteRange",
    "CatalogCache",
    "CatalogSnapshot",
    "ChunkStream",
    "CircuitState",
    "FilesystemBackend",
    "MediaStreamer",
    "MetadataCache",
    "ObjectStoreBackend",
    "ResilientBackend",
    "StorageBackend",
    "resolve",
    "resolve_request",
]
