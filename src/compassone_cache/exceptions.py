"""Exception hierarchy for compassone_cache.

All exceptions inherit from :class:`CacheError`, which carries an
``exit_code`` attribute mapped to a constant from
:mod:`compassone_cache.exit_codes`. The admin CLI catches ``CacheError``
and exits with the appropriate code.

Only :class:`CacheWriteError` and :class:`InitializationError` ever reach
callers of :class:`~compassone_cache.cache.Cache` as raised exceptions.
The read-side errors collapse into a cache miss and are reported on the
returned :class:`~compassone_cache.cache.CacheLookup` instead.

Subclass hierarchy::

    CacheError (exit 1)
    +-- ConfigError          (exit 2)
    +-- EntryNotFoundError   (exit 4)
    +-- CorruptEntryError    (exit 5)
    +-- CacheReadError       (exit 6)
    |   +-- LockTimeoutError
    +-- CacheWriteError      (exit 7)
    +-- InitializationError  (exit 8)
"""

from compassone_cache.exit_codes import (
    EXIT_CORRUPT_ENTRY,
    EXIT_GENERIC_FAILURE,
    EXIT_INITIALIZATION_ERROR,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
    EXIT_READ_ERROR,
    EXIT_WRITE_ERROR,
)


class CacheError(Exception):
    """Base exception for all cache errors.

    Args:
        message: Human-readable error description.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(CacheError):
    """Raised for configuration problems (invalid JSON, bad values)."""

    exit_code = EXIT_INVALID_USAGE


class EntryNotFoundError(CacheError):
    """Raised by storage backends when a key is absent.

    This is a normal miss signal, never a failure.
    """

    exit_code = EXIT_NOT_FOUND


class CorruptEntryError(CacheError):
    """Raised when stored bytes cannot be decoded into an entry."""

    exit_code = EXIT_CORRUPT_ENTRY


class CacheReadError(CacheError):
    """Raised when an entry cannot be read because of an I/O failure."""

    exit_code = EXIT_READ_ERROR


class LockTimeoutError(CacheReadError):
    """Raised when a per-key lock cannot be acquired within the configured wait."""


class CacheWriteError(CacheError):
    """Raised when an entry cannot be written (permissions, disk full, lock timeout)."""

    exit_code = EXIT_WRITE_ERROR


class InitializationError(CacheError):
    """Raised when the cache directory cannot be created or accessed."""

    exit_code = EXIT_INITIALIZATION_ERROR
