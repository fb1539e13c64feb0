from __future__ import annotations

import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable

import redis
import structlog
from fastapi import HTTPException, Request, status

from promanage.config import settings

logger = structlog.get_logger(__name__)


@dataclass
class _Bucket:
  reset_at: float
  count: int


class RateLimiter:
  """
  Fixed-window rate limiter.

  Uses Redis when REDIS_URL is set so every worker shares the same counters;
  falls back to per-process buckets if Redis is absent or unreachable.
  """

  def __init__(self, redis_url: str | None = None) -> None:
    self._lock = Lock()
    self._buckets: dict[str, _Bucket] = {}
    self._redis: Any = None
    if redis_url:
      try:
        self._redis = redis.Redis.from_url(redis_url, decode_responses=True, socket_timeout=2)
      except Exception:
        logger.warning("rate_limit_redis_unavailable", redis_url=redis_url)
        self._redis = None

  def _hit_redis(self, key: str, *, limit: int, window_seconds: int) -> tuple[bool, int]:
    rk = f"rl:{key}"
    pipe = self._redis.pipeline()
    pipe.incr(rk, 1)
    pipe.ttl(rk)
    count, ttl = pipe.execute()
    if int(count) == 1:
      self._redis.expire(rk, int(window_seconds))
      ttl = int(window_seconds)
    retry = max(1, int(ttl)) if int(ttl) > 0 else int(window_seconds)
    if int(count) > int(limit):
      return False, retry
    return True, 0

  def hit(self, key: str, *, limit: int, window_seconds: int) -> tuple[bool, int]:
    """
    Returns (allowed, retry_after_seconds).
    """
    if self._redis is not None:
      try:
        return self._hit_redis(key, limit=limit, window_seconds=window_seconds)
      except redis.RedisError:
        logger.warning("rate_limit_redis_error", key=key)

    now = time.time()
    with self._lock:
      b = self._buckets.get(key)
      if b is None or now >= b.reset_at:
        self._buckets[key] = _Bucket(reset_at=now + window_seconds, count=1)
        return True, 0
      if b.count >= limit:
        return False, max(1, int(b.reset_at - now))
      b.count += 1
      return True, 0

  def reset_prefix(self, prefix: str) -> None:
    with self._lock:
      for k in list(self._buckets.keys()):
        if k.startswith(prefix):
          del self._buckets[k]


limiter = RateLimiter(settings.redis_url)


def rate_limited(bucket: str, limit: Callable[[], int], *, window_seconds: int = 60):
  async def _dep(request: Request) -> None:
    ip = request.client.host if request.client else "unknown"
    allowed, retry = limiter.hit(f"{bucket}:{ip}", limit=max(1, int(limit())), window_seconds=window_seconds)
    if not allowed:
      raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail="Too many requests",
        headers={"Retry-After": str(retry)},
      )

  return _dep
