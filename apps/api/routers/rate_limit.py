"""Per-user write quotas for collection endpoints.

Counters live in redis so every API worker shares them. When redis is
unreachable each process falls back to its own fixed-window counters.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Callable, Dict, Tuple

from fastapi import HTTPException, Request
import redis.asyncio as redis

from config import settings
from services.session_token import decode_session_token

logger = logging.getLogger(__name__)

KEY_PREFIX = "media:rate"

# key -> (count, window reset timestamp)
_local_counters: Dict[str, Tuple[int, float]] = {}
_local_lock = asyncio.Lock()


def quota_subject(request: Request) -> str:
    """Signed-in callers share one quota across addresses; anonymous ones are keyed by address."""
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        try:
            return f"user:{decode_session_token(token.strip()).user_id}"
        except ValueError:
            pass
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"
    if request.client and request.client.host:
        return f"ip:{request.client.host}"
    return "ip:unknown"


async def _consume_redis_quota(key: str, window_seconds: int) -> Tuple[int, int]:
    """Increment the shared counter; returns (count, seconds until reset)."""
    client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        count = await client.incr(key)
        if count == 1:
            await client.expire(key, window_seconds)
        ttl = await client.ttl(key)
    finally:
        await client.aclose()
    return int(count), int(ttl) if ttl and ttl > 0 else window_seconds


async def _consume_local_quota(key: str, window_seconds: int) -> Tuple[int, int]:
    now = time.time()
    async with _local_lock:
        count, reset_at = _local_counters.get(key, (0, now + window_seconds))
        if now >= reset_at:
            count, reset_at = 0, now + window_seconds
        count += 1
        _local_counters[key] = (count, reset_at)
    return count, max(1, math.ceil(reset_at - now))


def rate_limit(scope: str, limit: int, window_seconds: int) -> Callable:
    """Return a FastAPI dependency allowing ``limit`` calls per ``window_seconds`` for each subject."""

    async def _dependency(request: Request) -> None:
        if getattr(request.app.state, "disable_rate_limits", False):
            return

        key = f"{KEY_PREFIX}:{scope}:{quota_subject(request)}"
        try:
            count, retry_after = await _consume_redis_quota(key, window_seconds)
        except (redis.RedisError, OSError) as exc:
            logger.debug("rate_limit_redis_unavailable scope=%s error=%s", scope, exc)
            count, retry_after = await _consume_local_quota(key, window_seconds)

        if count > limit:
            logger.info("rate_limit_exceeded scope=%s key=%s count=%s", scope, key, count)
            raise HTTPException(
                status_code=429,
                detail=f"Too many {scope.replace('_', ' ')} requests. Try again later.",
                headers={"Retry-After": str(retry_after)},
            )

    return _dependency
