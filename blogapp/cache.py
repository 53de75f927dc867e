import json
import logging

import redis

from .config import settings

logger = logging.getLogger(__name__)

redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
CACHE_EXPIRE = settings.CACHE_EXPIRE


def published_list_key(page: int, page_size: int) -> str:
    return f"published_list_{page}_{page_size}"


def post_key(slug: str) -> str:
    return f"post_cache_{slug}"


def get_json(key: str):
    """Cached value for `key`, or None on a miss or when Redis is unavailable."""
    try:
        cached = redis_client.get(key)
    except redis.RedisError as e:
        logger.warning("Cache read failed for %s: %s", key, e)
        return None
    if not cached:
        return None
    try:
        return json.loads(cached)
    except ValueError:
        logger.warning("Discarding unreadable cache entry %s", key)
        return None


def set_json(key: str, value):
    try:
        redis_client.setex(key, CACHE_EXPIRE, json.dumps(value))
    except redis.RedisError as e:
        logger.warning("Cache write failed for %s: %s", key, e)


def clear_post_cache(slug: str = None):
    """Drop the detail entry for `slug` and every cached published list."""
    try:
        if slug:
            redis_client.delete(post_key(slug))
        list_keys = redis_client.keys("published_list_*")
        if list_keys:
            redis_client.delete(*list_keys)
    except redis.RedisError as e:
        logger.warning("Cache invalidation failed: %s", e)
