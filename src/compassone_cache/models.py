"""Canonical Pydantic models shared across compassone_cache modules.

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`CacheConfig`, :class:`OutputConfig` and :class:`GlobalConfig`.

**Report models** -- produced by the cache at runtime:
    :class:`CacheStats`.

All durations are expressed in seconds and all sizes in bytes.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field


KIB = 1024
MIB = 1024 * KIB


class CacheConfig(BaseModel):
    """Process-wide cache settings, fixed when the cache is initialised.

    Several :class:`~compassone_cache.cache.Cache` instances (typically one
    per process) may point at the same ``path``; they cooperate through
    atomic file replacement and do not need identical limits to stay
    consistent, although equivalent configuration is expected.

    Example::

        CacheConfig(max_size=50 * MIB, default_ttl=600, compression_threshold=4096)
    """

    enabled: bool = Field(default=True, description="Enable response caching")
    path: Optional[str] = Field(
        default=None,
        description="Storage directory (defaults to the platform cache directory)",
    )
    backend: Literal["file", "diskcache", "memory"] = Field(
        default="file", description="Storage backend: file, diskcache, memory"
    )
    max_size: int = Field(
        default=100 * MIB, gt=0, description="Total byte budget for stored entries"
    )
    default_ttl: float = Field(
        default=3600, gt=0, description="TTL in seconds used when set() omits one"
    )
    cleanup_interval: float = Field(
        default=300, gt=0, description="Seconds between background sweeps"
    )
    compression_threshold: int = Field(
        default=8 * KIB,
        ge=0,
        description="Payloads at or above this size in bytes are compressed",
    )
    lock_timeout: float = Field(
        default=5.0, gt=0, description="Maximum seconds to wait for a per-key lock"
    )
    auto_evict: bool = Field(
        default=True,
        description="Trigger eviction when a write pushes the cache over budget",
    )
    eviction_low_water: float = Field(
        default=0.9,
        gt=0,
        le=1,
        description="Fraction of max_size that an over-budget sweep evicts down to",
    )
    temp_file_grace: float = Field(
        default=60,
        ge=0,
        description="Age in seconds after which stray temp files are removed",
    )


class OutputConfig(BaseModel):
    """Default output format preferences stored in :class:`GlobalConfig`."""

    format: str = Field(
        default="auto", description="Output format: auto, json, plain, rich"
    )


class GlobalConfig(BaseModel):
    """User-wide configuration persisted at ``~/.config/compassone/config.json``.

    Loaded and saved by :func:`~compassone_cache.config.load_global_config`
    and :func:`~compassone_cache.config.save_global_config`. Environment
    variables and CLI flags take precedence; see
    :func:`~compassone_cache.config.resolve_cache_config`.
    """

    cache: CacheConfig = Field(default_factory=CacheConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)


class CacheStats(BaseModel):
    """Point-in-time statistics for one cache directory.

    ``entries`` and ``total_bytes`` describe what is on disk (all processes);
    the counters describe activity of the current process only.
    """

    enabled: bool
    directory: Optional[str] = None
    entries: int = 0
    total_bytes: int = 0
    max_size: int = 0
    default_ttl: float = 0
    hits: int = 0
    misses: int = 0
    writes: int = 0
    expired: int = 0
    evicted: int = 0
    read_errors: int = 0

    @property
    def hit_ratio(self) -> float:
        """Fraction of lookups that were hits, ``0.0`` before any lookup."""
        lookups = self.hits + self.misses
        if lookups == 0:
            return 0.0
        return self.hits / lookups
