"""Numeric process exit codes used by the ``compassone-cache`` admin CLI.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~compassone_cache.exceptions.CacheError` subclass.
Shell wrappers can inspect the exit code to determine the failure class
without parsing stderr.

Example::

    $ compassone-cache --path /read-only/dir cache stats
    $ echo $?
    8   # EXIT_INITIALIZATION_ERROR -- cache directory unusable
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or configuration."""

EXIT_NOT_FOUND = 4
"""The requested cache entry does not exist or has expired."""

EXIT_CORRUPT_ENTRY = 5
"""A stored entry could not be decoded."""

EXIT_READ_ERROR = 6
"""The cache could not be read (I/O failure or lock timeout)."""

EXIT_WRITE_ERROR = 7
"""The cache could not be written (permissions, disk full)."""

EXIT_INITIALIZATION_ERROR = 8
"""The cache directory could not be created or accessed."""
