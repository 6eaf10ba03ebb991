"""
Redis access layer.

Shared by the progress registry (cross-process progress polling for Celery
runs) and any other short-lived JSON state. Degrades gracefully: when Redis
is unreachable every helper becomes a no-op and callers fall back to
in-process state.
"""
import json
import logging
from typing import Any, Optional

import redis
from redis.exceptions import ConnectionError, TimeoutError, RedisError

from core.config import settings

logger = logging.getLogger(__name__)

# Redis connection pool (singleton)
_redis_client: Optional[redis.Redis] = None

KEY_NAMESPACE = "assessment"


def get_redis_client() -> Optional[redis.Redis]:
    """Get Redis client with connection pooling. Returns None if Redis unavailable."""
    global _redis_client

    if _redis_client is not None:
        return _redis_client

    try:
        client = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
            retry_on_timeout=True,
            health_check_interval=30
        )
        client.ping()
        logger.info("Redis connection established")
        _redis_client = client
        return _redis_client
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Redis unavailable: {e}. Shared state disabled.")
        _redis_client = None
        return None


def cache_key(prefix: str, *parts: Any) -> str:
    """Build a namespaced key, skipping None parts."""
    key_parts = [KEY_NAMESPACE, prefix]
    key_parts.extend(str(p) for p in parts if p is not None)
    return ":".join(key_parts)


def get_cache(key: str, client: Optional[redis.Redis] = None) -> Optional[Any]:
    """Get a JSON value. Returns None if not found or Redis unavailable."""
    client = client or get_redis_client()
    if not client:
        return None

    try:
        value = client.get(key)
        if value:
            return json.loads(value)
        return None
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Cache get error for key {key}: {e}")
        return None
    except (json.JSONDecodeError, TypeError):
        logger.warning(f"Cache value for key {key} is not valid JSON")
        return None


def set_cache(key: str, value: Any, ttl: Optional[int] = None, client: Optional[redis.Redis] = None) -> bool:
    """Set a JSON value with expiry. Returns True if successful."""
    client = client or get_redis_client()
    if not client:
        return False

    try:
        if ttl is None:
            ttl = settings.CACHE_TTL_DEFAULT
        client.setex(key, ttl, json.dumps(value, default=str))
        return True
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Cache set error for key {key}: {e}")
        return False
