"""compassone_cache -- local response cache for the CompassOne API client.

Repeated read operations against the CompassOne API are answered from a
disk cache instead of the network. Entries carry a TTL, the directory is
held to a byte budget by a background sweep, large payloads are compressed
transparently, and any number of threads and processes may share one cache
directory.

Typical use::

    from compassone_cache import initialize

    cache = initialize("~/.cache/compassone/responses", start_cleanup=True)
    cache.set("assets?page=1", payload, ttl=300)
    value = cache.get("assets?page=1")

Modules:
    cache: The cache engine (codec, storage, locks, eviction, facade).
    app: Typer admin CLI (``compassone-cache``).
    models: Pydantic configuration and statistics models.
    config: XDG-aware configuration loading and precedence resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes for the admin CLI.
    output: stdout/stderr formatting for the admin CLI.
"""

__version__ = "0.1.0"

from compassone_cache.cache import Cache, CacheLookup, ResponseCache, initialize  # noqa: E402
from compassone_cache.models import CacheConfig  # noqa: E402

__all__ = [
    "Cache",
    "CacheConfig",
    "CacheLookup",
    "ResponseCache",
    "initialize",
]
