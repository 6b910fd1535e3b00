"""Serialization of writes to shared rows.

Every mutating operation names the rows it touches (``unit:<id>``,
``order:<id>``) and runs its command while holding in-process locks on them,
acquired in sorted order against a single deadline so two operations can
never wait on each other in a cycle. Across processes the aggregates'
optimistic versions catch conflicting writes: ``ExpectedVersionError`` is
retried with exponential backoff like a lock timeout. When the attempts run
out the operation fails with ``ConcurrencyExhaustedError``.
"""

import threading
import time
from collections.abc import Callable, Iterable
from contextlib import contextmanager
from typing import Any

import structlog
from protean.exceptions import ExpectedVersionError
from protean.utils.globals import current_domain

from commerce.errors import ConcurrencyExhaustedError
from commerce.utils.settings import setting

logger = structlog.get_logger(__name__)


class LockTimeout(Exception):
    """A row lock could not be acquired before the deadline."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Timed out waiting for lock on {key}")


class LockRegistry:
    """Re-entrant named locks that exist only while held or awaited.

    Each entry counts the callers holding or waiting on it and is dropped on
    the last release, so the registry stays as small as the current
    contention however many rows the process has touched.
    """

    __slots__ = ("_guard", "_locks")

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}  # key -> [RLock, users]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _retain(self, key: str) -> threading.RLock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.RLock(), 0]
            entry[1] += 1
            return entry[0]

    def _discard(self, key: str) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, keys: Iterable[str], timeout: float):
        """Hold every lock in ``keys`` for the duration of the block."""
        deadline = time.monotonic() + timeout
        retained = []
        acquired = []
        try:
            for key in sorted(set(keys)):
                lock = self._retain(key)
                retained.append(key)
                if not lock.acquire(timeout=max(0.0, deadline - time.monotonic())):
                    raise LockTimeout(key)
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in reversed(retained):
                self._discard(key)


row_locks = LockRegistry()


def unit_key(unit_id) -> str:
    return f"unit:{unit_id}"


def order_key(order_id) -> str:
    return f"order:{order_id}"


def run_exclusive(operation: str, keys: Iterable[str] | Callable[[], Iterable[str]], command) -> Any:
    """Process ``command`` synchronously while holding locks on ``keys``.

    ``keys`` may be a callable when the rows depend on stored state (an
    order's reservation). It is evaluated again once the locks are held and
    the attempt restarts with the wider set if the rows changed meanwhile.

    Returns whatever the command handler returns. Domain errors raised by the
    handler propagate untouched; only contention is retried.
    """
    resolve = keys if callable(keys) else (lambda: keys)
    wanted = set(resolve())
    max_attempts = setting("max_retries")
    backoff = setting("retry_backoff_seconds")
    timeout = setting("lock_timeout_seconds")

    for attempt in range(1, max_attempts + 1):
        try:
            with row_locks.hold(wanted, timeout):
                needed = set(resolve())
                if needed <= wanted:
                    return current_domain.process(command, asynchronous=False)
            wanted |= needed
            logger.debug("Lock set changed, retrying", operation=operation, attempt=attempt)
        except (LockTimeout, ExpectedVersionError) as exc:
            logger.warning(
                "Contention on shared rows, retrying",
                operation=operation,
                attempt=attempt,
                max_attempts=max_attempts,
                error=str(exc),
            )
            if attempt < max_attempts:
                time.sleep(backoff * 2 ** (attempt - 1))

    logger.error("Concurrency retries exhausted", operation=operation, attempts=max_attempts)
    raise ConcurrencyExhaustedError(operation, max_attempts)
