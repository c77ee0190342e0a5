"""Durable key-to-blob storage for encoded cache entries.

The cache never addresses storage by the caller's key directly. Keys are
first mapped to an *entry id* with :func:`entry_id` (a SHA-256 hex digest),
which is filesystem-safe, fixed-length, and collision resistant regardless
of what characters the key contains. Every backend speaks entry ids only,
which is also what :meth:`StorageBackend.list_keys` yields back to the
eviction sweep.

Backends:

* :class:`FileSystemBackend` -- one file per entry in a directory. The
  directory listing is the index; there is no separate index file.
* :class:`MemoryBackend` -- a locked dict, for tests and throwaway caches.
* :class:`DiskcacheBackend` -- entries stored in a :mod:`diskcache`
  key-value store.

Backends raise :class:`~compassone_cache.exceptions.EntryNotFoundError`
for absent entries and :class:`OSError` for I/O failures; translating
those into cache semantics is the facade's job.
"""

from __future__ import annotations

import abc
import hashlib
import logging
import os
import re
import sqlite3
import threading
import time
from pathlib import Path
from typing import Iterator

import diskcache

from compassone_cache.config import atomic_write
from compassone_cache.exceptions import EntryNotFoundError

logger = logging.getLogger(__name__)

ENTRY_SUFFIX = ".entry"
TEMP_SUFFIX = ".tmp"
ENTRY_PERMISSIONS = 0o600

_ENTRY_ID_RE = re.compile(r"^[0-9a-f]{64}$")


def entry_id(key: str) -> str:
    """Map a caller-supplied cache key to its storage identifier.

    The result is 64 lowercase hex characters whatever the key contains.
    """
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


class StorageBackend(abc.ABC):
    """Abstract key-to-blob store addressed by entry id."""

    @abc.abstractmethod
    def write(self, entry_id: str, data: bytes) -> None:
        """Store *data* under *entry_id*, replacing any previous blob atomically."""

    @abc.abstractmethod
    def read(self, entry_id: str) -> bytes:
        """Return the blob for *entry_id*.

        Raises:
            EntryNotFoundError: If nothing is stored under *entry_id*.
        """

    def read_head(self, entry_id: str, size: int) -> bytes:
        """Return at most the first *size* bytes of the blob.

        Backends that can read a prefix cheaply override this; the eviction
        sweep only needs entry headers.
        """
        return self.read(entry_id)[:size]

    @abc.abstractmethod
    def delete(self, entry_id: str) -> bool:
        """Remove *entry_id*. Returns ``False`` if it was already absent."""

    @abc.abstractmethod
    def list_keys(self) -> Iterator[str]:
        """Lazily yield stored entry ids.

        The sequence is not a consistent snapshot: ids written or deleted
        concurrently may or may not appear, and a yielded id may be gone by
        the time the caller reads it.
        """

    def purge_temp_files(self, older_than: float) -> int:
        """Remove leftovers of interrupted writes older than *older_than* seconds."""
        return 0

    def clear(self) -> int:
        """Delete every entry and return how many were removed."""
        removed = 0
        for eid in list(self.list_keys()):
            if self.delete(eid):
                removed += 1
        return removed

    def close(self) -> None:
        """Release any resources held by the backend."""

    @property
    def location(self) -> str:
        """Human-readable description of where entries live."""
        return type(self).__name__


class FileSystemBackend(StorageBackend):
    """One file per entry under a single directory.

    Entries are stored as ``<entry_id>.entry``. Writes go through
    :func:`~compassone_cache.config.atomic_write`: the blob is written to a
    hidden ``.tmp`` file in the same directory with ``0o600`` permissions,
    fsynced, then renamed over the final name. Readers in any process
    therefore see either the previous blob or the new one, never a partial
    write. A crash mid-write leaves only a stray temp file, which
    :meth:`purge_temp_files` removes later.

    Args:
        path: Storage directory. It must already exist.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def location(self) -> str:
        return str(self._path)

    def _file_for(self, entry_id: str) -> Path:
        if not _ENTRY_ID_RE.match(entry_id):
            raise ValueError(f"Invalid entry id: {entry_id!r}")
        return self._path / f"{entry_id}{ENTRY_SUFFIX}"

    def write(self, entry_id: str, data: bytes) -> None:
        atomic_write(self._file_for(entry_id), data, permissions=ENTRY_PERMISSIONS)

    def read(self, entry_id: str) -> bytes:
        try:
            return self._file_for(entry_id).read_bytes()
        except FileNotFoundError:
            raise EntryNotFoundError(f"No entry {entry_id}") from None

    def read_head(self, entry_id: str, size: int) -> bytes:
        try:
            with open(self._file_for(entry_id), "rb") as f:
                return f.read(size)
        except FileNotFoundError:
            raise EntryNotFoundError(f"No entry {entry_id}") from None

    def delete(self, entry_id: str) -> bool:
        try:
            self._file_for(entry_id).unlink()
        except FileNotFoundError:
            return False
        return True

    def list_keys(self) -> Iterator[str]:
        try:
            it = os.scandir(self._path)
        except FileNotFoundError:
            return
        with it:
            for dirent in it:
                name = dirent.name
                if not name.endswith(ENTRY_SUFFIX):
                    continue
                eid = name[: -len(ENTRY_SUFFIX)]
                if _ENTRY_ID_RE.match(eid):
                    yield eid

    def purge_temp_files(self, older_than: float) -> int:
        cutoff = time.time() - older_than
        removed = 0
        try:
            it = os.scandir(self._path)
        except FileNotFoundError:
            return 0
        with it:
            for dirent in it:
                name = dirent.name
                if not (name.startswith(".") and name.endswith(TEMP_SUFFIX)):
                    continue
                try:
                    # An in-flight write from another process is younger than the cutoff.
                    if dirent.stat().st_mtime > cutoff:
                        continue
                    os.unlink(dirent.path)
                    removed += 1
                except FileNotFoundError:
                    continue
                except OSError as exc:
                    logger.warning("Could not remove temp file %s: %s", dirent.path, exc)
        return removed


class MemoryBackend(StorageBackend):
    """Thread-safe in-memory backend. Nothing survives the process."""

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}
        self._lock = threading.Lock()

    @property
    def location(self) -> str:
        return "memory"

    def write(self, entry_id: str, data: bytes) -> None:
        with self._lock:
            self._blobs[entry_id] = bytes(data)

    def read(self, entry_id: str) -> bytes:
        with self._lock:
            try:
                return self._blobs[entry_id]
            except KeyError:
                raise EntryNotFoundError(f"No entry {entry_id}") from None

    def delete(self, entry_id: str) -> bool:
        with self._lock:
            return self._blobs.pop(entry_id, None) is not None

    def list_keys(self) -> Iterator[str]:
        with self._lock:
            ids = list(self._blobs)
        yield from ids

    def __len__(self) -> int:
        with self._lock:
            return len(self._blobs)


class DiskcacheBackend(StorageBackend):
    """Entries stored in a :class:`diskcache.Cache` directory.

    :mod:`diskcache` provides its own cross-process transactions, so the
    atomic replacement guarantee holds here too. Expiry and size limits are
    left to the eviction sweep; the underlying store is used as a plain
    key-value map.

    Args:
        path: Directory for the diskcache database.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._cache = diskcache.Cache(str(self._path))

    @property
    def location(self) -> str:
        return str(self._path)

    def write(self, entry_id: str, data: bytes) -> None:
        try:
            self._cache.set(entry_id, bytes(data))
        except (diskcache.Timeout, sqlite3.Error) as exc:
            raise OSError(f"diskcache write failed: {exc}") from exc

    def read(self, entry_id: str) -> bytes:
        try:
            data = self._cache.get(entry_id, default=None)
        except (diskcache.Timeout, sqlite3.Error) as exc:
            raise OSError(f"diskcache read failed: {exc}") from exc
        if data is None:
            raise EntryNotFoundError(f"No entry {entry_id}")
        return data

    def delete(self, entry_id: str) -> bool:
        try:
            return bool(self._cache.delete(entry_id))
        except (diskcache.Timeout, sqlite3.Error) as exc:
            raise OSError(f"diskcache delete failed: {exc}") from exc

    def list_keys(self) -> Iterator[str]:
        try:
            yield from self._cache.iterkeys()
        except (diskcache.Timeout, sqlite3.Error) as exc:
            raise OSError(f"diskcache listing failed: {exc}") from exc

    def clear(self) -> int:
        try:
            return self._cache.clear()
        except (diskcache.Timeout, sqlite3.Error) as exc:
            raise OSError(f"diskcache clear failed: {exc}") from exc

    def close(self) -> None:
        self._cache.close()
