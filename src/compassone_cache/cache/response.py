"""HTTP response adapter over :class:`~compassone_cache.cache.Cache`.

The cache engine only knows keys and bytes. :class:`ResponseCache` is the
thin layer the API client uses on top of it: responses are stored as JSON
documents (``status_code``, ``headers``, ``body``) and only successful
(2xx) GET responses are cached; all other methods and error responses pass
straight through.

Cache keys are ``METHOD|URL|sorted_params`` so that identical requests
always resolve to the same entry regardless of parameter ordering. The
engine hashes the key before it touches the filesystem.
"""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import Any, Optional, Union

from compassone_cache.cache.cache import Cache
from compassone_cache.exceptions import CacheError

logger = logging.getLogger(__name__)


class ResponseCache:
    """Cache for API client GET responses.

    Args:
        cache: The shared cache instance created by
            :func:`~compassone_cache.cache.initialize`.

    Example::

        responses = ResponseCache(cache)
        responses.set("GET", "https://api.example.com/v1/assets", None, {
            "status_code": 200, "headers": {}, "body": [{"id": 1}]
        })
        hit = responses.get("GET", "https://api.example.com/v1/assets")
    """

    def __init__(self, cache: Cache) -> None:
        self._cache = cache

    @property
    def cache(self) -> Cache:
        return self._cache

    def get(self, method: str, url: str, params: Optional[dict] = None) -> Optional[dict]:
        """Look up a cached response.

        Returns:
            A ``dict`` with ``status_code``, ``headers``, and ``body`` keys on
            a cache hit, or ``None`` on a miss, for non-GET methods, or when
            the cache cannot be read.
        """
        if method.upper() != "GET":
            return None

        key = self.make_key(method, url, params)
        result = self._cache.lookup(key)
        if not result.found or result.value is None:
            return None
        try:
            return json.loads(result.value)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.warning("Dropping undecodable cached response for %s: %s", url, exc)
            try:
                self._cache.delete(key)
            except CacheError as del_exc:
                logger.warning("Could not drop cached response for %s: %s", url, del_exc)
            return None

    def set(
        self,
        method: str,
        url: str,
        params: Optional[dict],
        response_data: dict,
        ttl: Union[float, timedelta, None] = None,
    ) -> None:
        """Store a response in the cache.

        Non-GET methods and non-2xx responses are silently ignored.

        Raises:
            CacheWriteError: If the cache cannot be written.
        """
        if method.upper() != "GET":
            return
        status = response_data.get("status_code", 0)
        if not (200 <= status < 300):
            return

        key = self.make_key(method, url, params)
        payload = json.dumps(response_data, default=str).encode("utf-8")
        self._cache.set(key, payload, ttl)

    def invalidate(self, method: str, url: str, params: Optional[dict] = None) -> bool:
        """Remove a specific cache entry by its key components."""
        return self._cache.delete(self.make_key(method, url, params))

    @staticmethod
    def make_key(method: str, url: str, params: Optional[dict] = None) -> str:
        """Build the cache key from method, URL, and sorted params."""
        parts = [method.upper(), url]
        if params:
            parts.append(json.dumps(params, sort_keys=True, default=str))
        return "|".join(parts)

    def stats(self) -> dict[str, Any]:
        return self._cache.stats().model_dump()
