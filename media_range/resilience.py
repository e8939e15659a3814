"""Circuit-breaker decorator for storage backends.

:class:`ResilientBackend` exposes the same capability set as the backend it
wraps, routing each operation through its own ``pybreaker`` breaker so that
failure streaks of ``read_chunk``, ``size`` and ``list_keys`` are tracked
independently:

- **CLOSED**: calls pass through; ``fail_max`` consecutive failures open it.
- **OPEN**: calls short-circuit without touching the backend until
  ``reset_timeout`` seconds have elapsed.
- **HALF_OPEN**: exactly one trial call is let through at a time; success
  closes the breaker once ``success_threshold`` trials succeeded, failure
  re-opens it. Calls arriving while a trial is in flight short-circuit.

Failures surface as :class:`StorageUnavailableError` and are never retried
here. Missing or invalid keys are not failures of the backend and pass
through unchanged without moving the breaker.

Admission and outcome recording happen under a short per-operation lock;
the backend call itself runs outside of it, so calls for different keys
proceed concurrently. The body of a ``read_chunk`` is streamed after the
call returns and is therefore outside the breaker.
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

import pybreaker

from .errors import (
    InvalidKeyError,
    KeyNotFoundError,
    StorageIOError,
    StorageUnavailableError,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from .storage import ChunkStream, StorageBackend

LOG = logging.getLogger("media_range.resilience")

T = TypeVar("T")

OPERATIONS = ("read_chunk", "size", "list_keys")


class CircuitState(str, Enum):
    CLOSED = pybreaker.STATE_CLOSED
    OPEN = pybreaker.STATE_OPEN
    HALF_OPEN = pybreaker.STATE_HALF_OPEN


class _CircuitMonitor(pybreaker.CircuitBreakerListener):
    """Logs state changes and remembers when each breaker last opened."""

    def __init__(self) -> None:
        self.opened_at: dict[str, float] = {}

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state: Any, new_state: Any) -> None:
        old_name = getattr(old_state, "name", old_state)
        new_name = getattr(new_state, "name", new_state)
        if new_name == pybreaker.STATE_OPEN:
            self.opened_at[cb.name] = time.monotonic()
        if new_name == pybreaker.STATE_CLOSED:
            LOG.info("circuit %s %s -> %s", cb.name, old_name, new_name)
        else:
            LOG.warning("circuit %s %s -> %s", cb.name, old_name, new_name)


class _RecordedFailure(Exception):
    """Stands in for a backend failure when it is reported to pybreaker."""


def _succeed() -> None:
    return None


def _fail() -> None:
    raise _RecordedFailure


class ResilientBackend:
    """Wrap a :class:`StorageBackend` with one circuit breaker per operation."""

    def __init__(
        self,
        backend: StorageBackend,
        *,
        fail_max: int = 5,
        reset_timeout: float = 30.0,
        success_threshold: int = 1,
    ) -> None:
        self.backend = backend
        self._monitor = _CircuitMonitor()
        self._breakers = {
            operation: pybreaker.CircuitBreaker(
                fail_max=fail_max,
                reset_timeout=reset_timeout,
                success_threshold=success_threshold,
                exclude=[KeyNotFoundError, InvalidKeyError],
                listeners=[self._monitor],
                name=f"{backend.describe()}:{operation}",
            )
            for operation in OPERATIONS
        }
        self._gates = {operation: threading.Lock() for operation in OPERATIONS}
        self._trial_in_flight = dict.fromkeys(OPERATIONS, False)

    def describe(self) -> str:
        return self.backend.describe()

    def circuit_state(self, operation: str) -> CircuitState:
        return CircuitState(self._breakers[operation].current_state)

    def _admit(self, operation: str) -> bool:
        """Decide whether a call may reach the backend.

        Returns True when the admitted call is the half-open trial.
        """
        breaker = self._breakers[operation]
        with self._gates[operation]:
            state = breaker.current_state
            if state == pybreaker.STATE_OPEN:
                opened_at = self._monitor.opened_at.get(breaker.name, 0.0)
                if time.monotonic() - opened_at < breaker.reset_timeout:
                    raise StorageUnavailableError(operation, "circuit open")
                breaker.half_open()
                state = pybreaker.STATE_HALF_OPEN
            if state == pybreaker.STATE_HALF_OPEN:
                if self._trial_in_flight[operation]:
                    raise StorageUnavailableError(operation, "trial call in flight")
                self._trial_in_flight[operation] = True
                return True
            return False

    def _record(self, operation: str, trial: bool, error: BaseException | None) -> None:
        breaker = self._breakers[operation]
        with self._gates[operation]:
            if trial:
                self._trial_in_flight[operation] = False
            expected = pybreaker.STATE_HALF_OPEN if trial else pybreaker.STATE_CLOSED
            if breaker.current_state != expected:
                # Outcome of a call admitted before the last transition
                return
            if error is None or not breaker.is_system_error(error):
                breaker.call(_succeed)
                return
            try:
                breaker.call(_fail)
            except _RecordedFailure:
                pass
            except pybreaker.CircuitBreakerError:
                LOG.debug("circuit %s opened by %r", breaker.name, error)

    def _call(self, operation: str, func: Callable[..., T], *args: Any) -> T:
        trial = self._admit(operation)
        error: BaseException | None = None
        try:
            return func(*args)
        except StorageIOError as err:
            error = err
            raise StorageUnavailableError(operation, str(err)) from err
        except BaseException as err:
            error = err
            raise
        finally:
            self._record(operation, trial, error)

    def read_chunk(self, key: str, offset: int, length: int) -> ChunkStream:
        return self._call("read_chunk", self.backend.read_chunk, key, offset, length)

    def size(self, key: str) -> int:
        return self._call("size", self.backend.size, key)

    def list_keys(self) -> list[str]:
        return self._call("list_keys", self.backend.list_keys)
