"""Local response cache engine.

The package is layered leaf-first:

* :mod:`~compassone_cache.cache.codec` -- versioned entry header, optional
  zlib compression.
* :mod:`~compassone_cache.cache.storage` -- :class:`StorageBackend` and its
  file, memory and diskcache implementations.
* :mod:`~compassone_cache.cache.locks` -- per-key reader/writer locks.
* :mod:`~compassone_cache.cache.eviction` -- TTL and size-budget sweeps.
* :mod:`~compassone_cache.cache.cache` -- the :class:`Cache` facade and
  :func:`initialize`.
* :mod:`~compassone_cache.cache.response` -- :class:`ResponseCache`, the
  adapter used by the API client for GET responses.
"""

from compassone_cache.cache.cache import Cache, CacheLookup, CleanupWorker, initialize
from compassone_cache.cache.eviction import EvictionManager, SweepReport, SweepState
from compassone_cache.cache.response import ResponseCache
from compassone_cache.cache.storage import (
    DiskcacheBackend,
    FileSystemBackend,
    MemoryBackend,
    StorageBackend,
    entry_id,
)

__all__ = [
    "Cache",
    "CacheLookup",
    "CleanupWorker",
    "DiskcacheBackend",
    "EvictionManager",
    "FileSystemBackend",
    "MemoryBackend",
    "ResponseCache",
    "StorageBackend",
    "SweepReport",
    "SweepState",
    "entry_id",
    "initialize",
]
