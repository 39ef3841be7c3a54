from __future__ import annotations

import json
import logging
from typing import Any

import redis

from evalify.core.redis_client import get_redis


log = logging.getLogger(__name__)


def quiz_results_key(quiz_id) -> str:
    return f"cache:quiz_results:{quiz_id}"


def cache_get_json(key: str) -> Any | None:
    try:
        raw = get_redis().get(key)
    except redis.RedisError:
        log.warning("cache get failed key=%s", key)
        return None
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        log.warning("cache entry is not valid json key=%s", key)
        return None


def cache_set_json(key: str, value: Any, *, ttl_seconds: int) -> None:
    try:
        get_redis().set(key, json.dumps(value, ensure_ascii=False, default=str), ex=max(1, int(ttl_seconds)))
    except redis.RedisError:
        log.warning("cache set failed key=%s", key)


def cache_delete(key: str) -> None:
    try:
        get_redis().delete(key)
    except redis.RedisError:
        log.warning("cache delete failed key=%s", key)
