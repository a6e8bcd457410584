"""
TTL cache for advisory replies.

Entries are JSON payloads keyed by a hash of the prompt, so two runs with the
same inputs get the same advisory reply without a second round trip.
"""

import copy
import hashlib
import logging
from typing import Any

from cachetools import TTLCache

from study_scheduler.config import settings

logger = logging.getLogger(__name__)

advisory_cache: TTLCache = TTLCache(
    maxsize=settings.advisory_cache_size,
    ttl=settings.advisory_cache_ttl_seconds,
)


def get_cache_key(prefix: str, *args: Any) -> str:
    """
    Generate a consistent cache key from prefix and arguments
    """
    key_parts = [prefix]
    for arg in args:
        if isinstance(arg, str | int | float | bool):
            key_parts.append(str(arg))
        else:
            # For complex objects, use hash (not for security)
            key_parts.append(
                hashlib.md5(str(arg).encode(), usedforsecurity=False).hexdigest()[:8]
            )
    return ":".join(key_parts)


def prompt_key(prefix: str, model: str, *prompts: str) -> str:
    digest = hashlib.md5("\n".join(prompts).encode(), usedforsecurity=False).hexdigest()
    return get_cache_key(prefix, model, digest)


def get_cached(cache: TTLCache | None, key: str) -> dict[str, Any] | None:
    if cache is None:
        return None
    value = cache.get(key)
    if value is not None:
        logger.debug(f"Cache hit for {key}")
        return copy.deepcopy(value)
    return None


def set_cached(cache: TTLCache | None, key: str, value: dict[str, Any]) -> None:
    if cache is None:
        return
    cache[key] = copy.deepcopy(value)


def clear_cache() -> None:
    advisory_cache.clear()
    logger.info("Cleared advisory cache")
