"""The cache facade: public get/set/delete API over codec, storage, locks and eviction.

Data flow for a lookup::

    Cache.lookup(key)
      -> KeyLockTable.read_lock(entry_id(key))
      -> StorageBackend.read()
      -> codec.decode_entry()
      -> expiry check (lazy expiry deletes the entry on the spot)

and for a write::

    Cache.set(key, value, ttl)
      -> codec.encode_entry()
      -> KeyLockTable.write_lock(entry_id(key))
      -> StorageBackend.write()   (atomic replace)
      -> eviction nudge when the estimated size exceeds the budget

A cache failure must never stop the caller from fetching live data, so the
read side never raises: corrupt entries are deleted and reported as misses,
and I/O failures come back as a miss carrying a
:class:`~compassone_cache.exceptions.CacheReadError`. Write failures do
raise :class:`~compassone_cache.exceptions.CacheWriteError` because they
usually point at a systemic problem such as a full disk.

There is no module-level cache instance. Build one with :func:`initialize`
and hand it to whatever needs it.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from datetime import timedelta
from pathlib import Path
from typing import Callable, NamedTuple, Optional, Union

from compassone_cache.cache.codec import decode_entry, encode_entry
from compassone_cache.cache.eviction import EvictionManager, SweepReport
from compassone_cache.cache.locks import KeyLockTable
from compassone_cache.cache.storage import (
    DiskcacheBackend,
    FileSystemBackend,
    MemoryBackend,
    StorageBackend,
    entry_id,
)
from compassone_cache.exceptions import (
    CacheError,
    CacheReadError,
    CacheWriteError,
    CorruptEntryError,
    EntryNotFoundError,
    InitializationError,
    LockTimeoutError,
)
from compassone_cache.models import CacheConfig, CacheStats

logger = logging.getLogger(__name__)

TTL = Union[int, float, timedelta]

DIRECTORY_PERMISSIONS = 0o700


class CacheLookup(NamedTuple):
    """Result of :meth:`Cache.lookup`.

    ``error`` is set when the lookup missed because of an I/O failure or a
    lock timeout rather than a plain absence. Callers should still fall
    through to a live fetch; the error is there for logging.
    """

    value: Optional[bytes]
    found: bool
    error: Optional[CacheReadError] = None


_MISS = CacheLookup(None, False)


class CleanupWorker(threading.Thread):
    """Daemon thread that runs a sweep every *interval* seconds or when nudged."""

    def __init__(self, sweep: Callable[[], SweepReport], interval: float) -> None:
        super().__init__(name="compassone-cache-cleanup", daemon=True)
        self._sweep = sweep
        self._interval = interval
        self._stop_event = threading.Event()
        self._wake = threading.Event()

    def run(self) -> None:
        while not self._stop_event.is_set():
            self._wake.wait(self._interval)
            if self._stop_event.is_set():
                break
            self._wake.clear()
            try:
                self._sweep()
            except Exception:
                logger.exception("Background cache cleanup failed")

    def nudge(self) -> None:
        """Run the next sweep now instead of waiting for the interval."""
        self._wake.set()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        self._wake.set()
        if self.is_alive() and threading.current_thread() is not self:
            self.join(timeout)


class Cache:
    """Disk-backed response cache with TTL expiry and a size budget.

    Usually created through :func:`initialize` rather than directly.

    Args:
        backend: Where encoded entries are stored.
        config: Cache configuration.
        clock: Returns the current time in epoch seconds. Wall-clock time is
            required because entries are shared between processes.

    Example::

        from compassone_cache.cache import initialize
        from compassone_cache.models import CacheConfig

        with initialize("/tmp/compassone", CacheConfig(default_ttl=300)) as cache:
            cache.set("assets?page=1", b'{"items": []}')
            hit = cache.lookup("assets?page=1")
            if hit.found:
                print(hit.value)
    """

    def __init__(
        self,
        backend: StorageBackend,
        config: CacheConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._backend = backend
        self._config = config
        self._clock = clock
        self._locks = KeyLockTable(timeout=config.lock_timeout)
        self._eviction = EvictionManager(
            backend,
            self._locks,
            config.max_size,
            clock=clock,
            temp_file_grace=config.temp_file_grace,
            lock_timeout=config.lock_timeout,
            low_water=config.eviction_low_water,
        )
        self._worker: Optional[CleanupWorker] = None
        self._worker_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._counters = {
            "hits": 0,
            "misses": 0,
            "writes": 0,
            "expired": 0,
            "evicted": 0,
            "read_errors": 0,
        }
        self._size_estimate = 0
        self._closed = False

    # ------------------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------------------ #

    @property
    def config(self) -> CacheConfig:
        return self._config

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    @property
    def eviction(self) -> EvictionManager:
        return self._eviction

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    @property
    def cleanup_running(self) -> bool:
        """Whether the background cleanup thread is alive."""
        return self._worker is not None and self._worker.is_alive()

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def lookup(self, key: str) -> CacheLookup:
        """Look up *key* without ever raising.

        Returns:
            A :class:`CacheLookup`. ``found`` is ``False`` when the key is
            absent, expired, corrupt, or unreadable; only the last case sets
            ``error``.
        """
        if not self._config.enabled:
            return _MISS
        eid = entry_id(key)
        try:
            with self._locks.read_lock(eid):
                data = self._backend.read(eid)
        except EntryNotFoundError:
            self._count("misses")
            return _MISS
        except LockTimeoutError as exc:
            return self._read_failed(key, exc)
        except OSError as exc:
            return self._read_failed(
                key, CacheReadError(f"Cannot read cache entry for {key!r}: {exc}")
            )

        try:
            entry = decode_entry(data)
        except CorruptEntryError as exc:
            logger.warning("Discarding corrupt cache entry for %r: %s", key, exc)
            self._discard_if_unchanged(eid, data)
            self._count("misses")
            return _MISS

        if entry.is_expired(self._clock()):
            logger.debug("Cache entry for %r expired", key)
            if self._discard_if_unchanged(eid, data):
                self._count("expired")
            self._count("misses")
            return _MISS

        self._count("hits")
        logger.debug("Cache hit: %r", key)
        return CacheLookup(entry.value, True)

    def get(self, key: str, default: Optional[bytes] = None) -> Optional[bytes]:
        """Return the cached value for *key*, or *default* on any kind of miss."""
        result = self.lookup(key)
        return result.value if result.found else default

    def contains(self, key: str) -> bool:
        """Whether a live entry exists for *key*."""
        return self.lookup(key).found

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.contains(key)

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    def set(self, key: str, value: bytes, ttl: Optional[TTL] = None) -> None:
        """Store *value* under *key*, replacing any existing entry atomically.

        Args:
            key: Caller-defined cache key.
            value: Serialised payload. ``bytearray`` and ``memoryview`` are
                accepted and copied.
            ttl: Lifetime in seconds or as a :class:`~datetime.timedelta`.
                ``None`` uses :attr:`CacheConfig.default_ttl`.

        Raises:
            TypeError: If *value* is not bytes-like.
            ValueError: If *ttl* is not positive.
            CacheWriteError: If the entry cannot be written.
        """
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise TypeError(f"Cache values must be bytes, not {type(value).__name__}")
        seconds = self._ttl_seconds(ttl)
        if not self._config.enabled:
            return

        now = self._clock()
        blob = encode_entry(
            bytes(value), now, now + seconds, self._config.compression_threshold
        )
        eid = entry_id(key)
        try:
            with self._locks.write_lock(eid):
                self._backend.write(eid, blob)
        except LockTimeoutError as exc:
            raise CacheWriteError(f"Cannot write cache entry for {key!r}: {exc}") from exc
        except OSError as exc:
            raise CacheWriteError(f"Cannot write cache entry for {key!r}: {exc}") from exc

        with self._stats_lock:
            self._counters["writes"] += 1
            self._size_estimate += len(blob)
            over_budget = self._size_estimate > self._config.max_size
        if over_budget and self._config.auto_evict:
            self._request_eviction()

    def delete(self, key: str) -> bool:
        """Remove *key*. Deleting an absent key is not an error.

        Returns:
            ``True`` if an entry was removed.

        Raises:
            CacheWriteError: If the entry exists but cannot be removed.
        """
        if not self._config.enabled:
            return False
        eid = entry_id(key)
        try:
            with self._locks.write_lock(eid):
                return self._backend.delete(eid)
        except (LockTimeoutError, OSError) as exc:
            raise CacheWriteError(f"Cannot delete cache entry for {key!r}: {exc}") from exc

    def clear(self) -> int:
        """Remove every entry and return how many were removed. A disabled cache removes nothing."""
        if not self._config.enabled:
            return 0
        try:
            removed = self._backend.clear()
        except OSError as exc:
            raise CacheWriteError(f"Cannot clear cache: {exc}") from exc
        with self._stats_lock:
            self._size_estimate = 0
        logger.debug("Cleared %d cache entries", removed)
        return removed

    # ------------------------------------------------------------------ #
    # Cleanup
    # ------------------------------------------------------------------ #

    def run_cleanup(self) -> SweepReport:
        """Run one eviction sweep synchronously. A disabled cache returns an empty report."""
        if not self._config.enabled:
            return SweepReport()
        report = self._eviction.sweep()
        with self._stats_lock:
            self._counters["expired"] += report.expired
            self._counters["evicted"] += report.evicted
            self._size_estimate = report.bytes_after
        return report

    def start_background_cleanup(self) -> None:
        """Start the periodic cleanup thread if it is not already running."""
        with self._worker_lock:
            if self._closed:
                raise CacheError("Cache is closed")
            if not self._config.enabled:
                return
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = CleanupWorker(self.run_cleanup, self._config.cleanup_interval)
            self._worker.start()
            logger.debug(
                "Background cleanup started (every %ss)", self._config.cleanup_interval
            )

    def stop_background_cleanup(self, timeout: Optional[float] = None) -> None:
        with self._worker_lock:
            worker, self._worker = self._worker, None
        if worker is not None:
            worker.stop(timeout)

    def _request_eviction(self) -> None:
        worker = self._worker
        if worker is not None and worker.is_alive():
            worker.nudge()
        else:
            self.run_cleanup()

    # ------------------------------------------------------------------ #
    # Introspection and lifecycle
    # ------------------------------------------------------------------ #

    def stats(self) -> CacheStats:
        """Return on-disk totals plus this process's activity counters."""
        if not self._config.enabled:
            return CacheStats(enabled=False)
        entries, total = self._eviction.measure()
        with self._stats_lock:
            counters = dict(self._counters)
        return CacheStats(
            enabled=True,
            directory=self._backend.location,
            entries=entries,
            total_bytes=total,
            max_size=self._config.max_size,
            default_ttl=self._config.default_ttl,
            **counters,
        )

    def close(self) -> None:
        """Stop background cleanup and release the backend. Safe to call twice."""
        self.stop_background_cleanup()
        with self._worker_lock:
            if self._closed:
                return
            self._closed = True
        self._backend.close()

    def __enter__(self) -> Cache:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _ttl_seconds(self, ttl: Optional[TTL]) -> float:
        if ttl is None:
            return float(self._config.default_ttl)
        seconds = ttl.total_seconds() if isinstance(ttl, timedelta) else float(ttl)
        if seconds <= 0:
            raise ValueError(f"TTL must be positive, got {ttl!r}")
        return seconds

    def _count(self, name: str) -> None:
        with self._stats_lock:
            self._counters[name] += 1

    def _read_failed(self, key: str, exc: CacheReadError) -> CacheLookup:
        logger.warning("Cache read failed for %r, treating as miss: %s", key, exc)
        with self._stats_lock:
            self._counters["misses"] += 1
            self._counters["read_errors"] += 1
        return CacheLookup(None, False, exc)

    def _discard_if_unchanged(self, eid: str, seen: bytes) -> bool:
        """Delete *eid* only if it still holds exactly the bytes we read."""
        try:
            with self._locks.write_lock(eid):
                try:
                    current = self._backend.read(eid)
                except EntryNotFoundError:
                    return False
                if current != seen:
                    return False
                return self._backend.delete(eid)
        except (LockTimeoutError, OSError) as exc:
            logger.warning("Could not remove stale cache entry %s: %s", eid, exc)
            return False


# ------------------------------------------------------------------ #
# Construction
# ------------------------------------------------------------------ #


def _prepare_directory(path: Path) -> None:
    """Create *path* with owner-only permissions and check it is usable."""
    try:
        path.mkdir(mode=DIRECTORY_PERMISSIONS, parents=True, exist_ok=True)
    except OSError as exc:
        raise InitializationError(f"Cannot create cache directory {path}: {exc}") from exc
    if not path.is_dir():
        raise InitializationError(f"Cache path {path} is not a directory")
    if not os.access(path, os.R_OK | os.W_OK | os.X_OK):
        raise InitializationError(f"Cache directory {path} is not readable and writable")


def _make_backend(path: Path, config: CacheConfig) -> StorageBackend:
    if config.backend == "memory":
        return MemoryBackend()
    _prepare_directory(path)
    if config.backend == "diskcache":
        try:
            return DiskcacheBackend(path)
        except Exception as exc:
            raise InitializationError(f"Cannot open diskcache at {path}: {exc}") from exc
    return FileSystemBackend(path)


def initialize(
    path: Union[str, Path, None] = None,
    config: Optional[CacheConfig] = None,
    *,
    backend: Optional[StorageBackend] = None,
    start_cleanup: bool = False,
    clock: Callable[[], float] = time.time,
) -> Cache:
    """Create a :class:`Cache` rooted at *path*.

    The directory is created if needed (``0o700`` where the platform
    supports it). Calling this concurrently for the same path from several
    threads or processes is safe and every call succeeds. An initial sweep
    measures the existing entries and removes temp files left behind by
    crashed writers.

    Args:
        path: Storage directory. Defaults to ``config.path``.
        config: Cache configuration. Defaults to :class:`CacheConfig`.
        backend: Explicit storage backend, bypassing ``config.backend``.
        start_cleanup: Start the background cleanup thread.
        clock: Time source, mainly for tests.

    Raises:
        InitializationError: If the directory cannot be created or accessed.
    """
    config = config or CacheConfig()
    if path is None:
        if config.path is None and backend is None and config.backend != "memory":
            raise InitializationError("No cache directory configured")
        path = config.path or ""
    resolved = Path(path).expanduser()
    if path:
        config = config.model_copy(update={"path": str(resolved)})

    if not config.enabled:
        return Cache(backend or MemoryBackend(), config, clock=clock)

    if backend is None:
        backend = _make_backend(resolved, config)
    cache = Cache(backend, config, clock=clock)
    cache.run_cleanup()
    if start_cleanup:
        cache.start_background_cleanup()
    logger.debug("Cache initialised at %s", backend.location)
    return cache
