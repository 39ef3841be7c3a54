from __future__ import annotations

import logging
from dataclasses import dataclass

import redis
from fastapi import Depends, HTTPException, Request

from evalify.core import net
from evalify.core.redis_client import get_redis


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimit:
    key: str
    limit: int
    window_seconds: int
    current: int = 0


def rate_limit(*, key_prefix: str, limit: int, window_seconds: int):
    """Fixed-window limiter keyed by route and client address.

    Redis outages fail open.
    """

    async def _dep(request: Request) -> RateLimit:
        r = get_redis()
        ip = net.client_ip(request) or "unknown"
        key = f"rl:{key_prefix}:{request.method}:{request.url.path}:{ip}"

        try:
            current = int(r.incr(key))
            if current == 1:
                r.expire(key, int(window_seconds))
        except redis.RedisError:
            log.warning("rate limit backend unavailable key=%s", key)
            return RateLimit(key=key, limit=int(limit), window_seconds=int(window_seconds))

        if current > int(limit):
            ttl = r.ttl(key)
            retry_after = int(ttl) if ttl and ttl > 0 else int(window_seconds)
            raise HTTPException(
                status_code=429,
                detail="rate limit exceeded",
                headers={"Retry-After": str(retry_after)},
            )

        return RateLimit(key=key, limit=int(limit), window_seconds=int(window_seconds), current=current)

    return Depends(_dep)
