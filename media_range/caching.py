from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from .storage import StorageBackend

LOG = logging.getLogger("media_range.caching")


@dataclass(frozen=True)
class MetadataCacheEntry:
    key: str
    size: int
    expires_at: float


class MetadataCache:
    """Cache-aside store for object sizes with a fixed per-entry TTL.

    Expired entries are recomputed inline on the next lookup. Failures are
    never cached. Concurrent misses for the same key may each reach the
    backend; the backend call is made outside the lock.
    """

    def __init__(
        self,
        backend: StorageBackend,
        *,
        ttl: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl <= 0:
            msg = "ttl must be positive"
            raise ValueError(msg)
        self._backend = backend
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, MetadataCacheEntry] = {}
        self._lock = threading.Lock()

    @property
    def ttl(self) -> float:
        return self._ttl

    def get_size(self, key: str) -> int:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
        if entry is not None and now < entry.expires_at:
            return entry.size

        size = self._backend.size(key)
        fresh = MetadataCacheEntry(key=key, size=size, expires_at=self._clock() + self._ttl)
        with self._lock:
            self._entries[key] = fresh
        LOG.debug("cached size key=%s size=%d", key, size)
        return size

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


@dataclass(frozen=True)
class CatalogSnapshot:
    keys: tuple[str, ...] = ()
    captured_at: datetime | None = None


class CatalogCache:
    """Best-effort snapshot of all keys, refreshed on a background thread.

    Each successful refresh replaces the snapshot reference wholesale, so
    readers always see a complete list. A failed refresh keeps the previous
    snapshot and is only logged.
    """

    def __init__(self, backend: StorageBackend, *, interval: float = 30.0) -> None:
        if interval <= 0:
            msg = "interval must be positive"
            raise ValueError(msg)
        self._backend = backend
        self.interval = interval
        self._snapshot = CatalogSnapshot()
        self._stop = threading.Event()
        self._worker: threading.Thread | None = None
        self._lock = threading.Lock()

    def snapshot(self) -> CatalogSnapshot:
        return self._snapshot

    def refresh(self) -> bool:
        """Reload the key list; return whether the snapshot was replaced."""
        try:
            keys = self._backend.list_keys()
        except Exception:
            LOG.warning(
                "catalog refresh from %s failed, keeping %d cached keys",
                self._backend.describe(),
                len(self._snapshot.keys),
                exc_info=True,
            )
            return False
        self._snapshot = CatalogSnapshot(
            keys=tuple(keys), captured_at=datetime.now(UTC)
        )
        LOG.debug("catalog refreshed with %d keys", len(keys))
        return True

    def start(self) -> None:
        """Refresh once, then keep refreshing every ``interval`` seconds."""
        with self._lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._stop.clear()
            self.refresh()
            t = threading.Thread(
                target=self._run, name="media-range-catalog", daemon=True
            )
            self._worker = t
            t.start()
        LOG.info("catalog refresh every %.1fs started", self.interval)

    def stop(self, timeout: float | None = 10.0) -> None:
        with self._lock:
            t = self._worker
            self._worker = None
        self._stop.set()
        if t is not None:
            t.join(timeout=timeout)

    @property
    def running(self) -> bool:
        t = self._worker
        return t is not None and t.is_alive()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.refresh()
            except Exception:
                LOG.exception("unexpected error in catalog refresh")
