"""Per-key reader/writer locking for in-process concurrency.

:class:`KeyLockTable` hands out one :class:`ReadWriteLock` per key so that
operations on unrelated keys never wait on each other, while operations on
the same key are serialised: any number of readers, or exactly one writer.
Writers are preferred so a steady stream of readers cannot starve a
``set``.

Locks are reference counted and dropped from the table once no thread holds
or waits on them.

These locks are in-process only. Processes sharing a cache directory
rely on the storage backend's atomic rename.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from compassone_cache.exceptions import LockTimeoutError


class ReadWriteLock:
    """A writer-preferring reader/writer lock with timeouts."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    def acquire_read(self, timeout: Optional[float] = None) -> bool:
        with self._cond:
            ok = self._cond.wait_for(
                lambda: not self._writer and self._waiting_writers == 0, timeout
            )
            if ok:
                self._readers += 1
            return ok

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self, timeout: Optional[float] = None) -> bool:
        with self._cond:
            self._waiting_writers += 1
            try:
                ok = self._cond.wait_for(
                    lambda: not self._writer and self._readers == 0, timeout
                )
                if ok:
                    self._writer = True
                return ok
            finally:
                self._waiting_writers -= 1
                if not self._writer:
                    # Readers blocked only by our wait may proceed now.
                    self._cond.notify_all()

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()


class KeyLockTable:
    """Table of per-key :class:`ReadWriteLock` objects.

    Args:
        timeout: Default maximum wait in seconds for any acquisition.
            ``None`` waits forever.

    Example::

        locks = KeyLockTable(timeout=5.0)
        with locks.write_lock(eid):
            backend.write(eid, blob)
    """

    def __init__(self, timeout: Optional[float] = None) -> None:
        self._timeout = timeout
        self._mutex = threading.Lock()
        self._locks: dict[str, tuple[ReadWriteLock, int]] = {}

    def __len__(self) -> int:
        with self._mutex:
            return len(self._locks)

    def _checkout(self, key: str) -> ReadWriteLock:
        with self._mutex:
            lock, refs = self._locks.get(key, (None, 0))
            if lock is None:
                lock = ReadWriteLock()
            self._locks[key] = (lock, refs + 1)
            return lock

    def _checkin(self, key: str) -> None:
        with self._mutex:
            lock, refs = self._locks[key]
            if refs <= 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, refs - 1)

    def _wait(self, timeout: Optional[float]) -> Optional[float]:
        return self._timeout if timeout is None else timeout

    @contextmanager
    def read_lock(self, key: str, timeout: Optional[float] = None) -> Iterator[None]:
        """Hold a shared lock on *key* for the duration of the ``with`` block.

        Raises:
            LockTimeoutError: If the lock is not acquired in time.
        """
        lock = self._checkout(key)
        try:
            if not lock.acquire_read(self._wait(timeout)):
                raise LockTimeoutError(f"Timed out waiting for read lock on {key}")
            try:
                yield
            finally:
                lock.release_read()
        finally:
            self._checkin(key)

    @contextmanager
    def write_lock(self, key: str, timeout: Optional[float] = None) -> Iterator[None]:
        """Hold an exclusive lock on *key* for the duration of the ``with`` block.

        Raises:
            LockTimeoutError: If the lock is not acquired in time.
        """
        lock = self._checkout(key)
        try:
            if not lock.acquire_write(self._wait(timeout)):
                raise LockTimeoutError(f"Timed out waiting for write lock on {key}")
            try:
                yield
            finally:
                lock.release_write()
        finally:
            self._checkin(key)
