import json
from typing import List, Optional

import redis

from flagsvc.config import get_settings
from flagsvc.logging import get_logger
from flagsvc.metrics import CACHE_LOOKUPS

logger = get_logger(__name__)

_redis = redis.Redis.from_url(get_settings().redis_url, decode_responses=True)

CHANNEL = "flag_updates"


def _enabled() -> bool:
    return get_settings().cache_enabled


def _key(environment_id: str) -> str:
    return f"environment:{environment_id}:flags"


def get_environment_cache(environment_id: str) -> Optional[List[dict]]:
    if not _enabled():
        return None
    try:
        data = _redis.get(_key(environment_id))
    except redis.RedisError as exc:
        logger.warning("cache_read_failed", environment_id=environment_id, error=str(exc))
        CACHE_LOOKUPS.labels("error").inc()
        return None
    if data:
        try:
            snapshot = json.loads(data)
        except ValueError:
            logger.warning("cache_entry_corrupt", environment_id=environment_id)
            CACHE_LOOKUPS.labels("error").inc()
            return None
        CACHE_LOOKUPS.labels("hit").inc()
        return snapshot
    CACHE_LOOKUPS.labels("miss").inc()
    return None


def set_environment_cache(environment_id: str, snapshot: List[dict], ttl_seconds: int):
    if not _enabled() or ttl_seconds <= 0:
        return
    try:
        _redis.set(_key(environment_id), json.dumps(snapshot), ex=ttl_seconds)
    except redis.RedisError as exc:
        logger.warning("cache_write_failed", environment_id=environment_id, error=str(exc))


def delete_environment_cache(environment_id: str):
    if not _enabled():
        return
    try:
        _redis.delete(_key(environment_id))
    except redis.RedisError as exc:
        logger.warning("cache_delete_failed", environment_id=environment_id, error=str(exc))


def publish_update(environment_id: str, key: str):
    if not _enabled():
        return
    try:
        _redis.publish(CHANNEL, json.dumps({"environment_id": environment_id, "key": key}))
    except redis.RedisError as exc:
        logger.warning("cache_publish_failed", environment_id=environment_id, key=key, error=str(exc))
