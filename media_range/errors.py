"""Error taxonomy shared by the storage, caching and HTTP layers."""

from __future__ import annotations


class MediaError(Exception):
    """Base class for all errors raised by media-range."""


class StorageError(MediaError):
    """A storage backend could not satisfy a request."""


class KeyNotFoundError(StorageError):
    """The requested key does not exist in the backend."""

    def __init__(self, key: str) -> None:
        super().__init__(f"key not found: {key!r}")
        self.key = key


class InvalidKeyError(StorageError):
    """The key cannot be addressed by the backend (e.g. escapes its root)."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"invalid key {key!r}: {reason}")
        self.key = key
        self.reason = reason


class StorageIOError(StorageError):
    """Disk or transport failure while accessing an existing key."""


class StorageUnavailableError(StorageError):
    """The backend is unreachable or its circuit is open.

    This is never a statement about the existence of a key; the
    original failure, if any, is available as ``__cause__``.
    """

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"storage unavailable during {operation}: {message}")
        self.operation = operation


class AuthFailureError(MediaError):
    """A signed access token is invalid, expired, or carries no key."""
