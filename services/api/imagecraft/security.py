# services/api/imagecraft/security.py

import logging
import threading
import time
import uuid
from collections import deque
from typing import Callable, Deque, Dict

from fastapi import Depends, HTTPException, Request
from redis import Redis
from redis.exceptions import RedisError

from .config import settings

LOG = logging.getLogger("imagecraft.ratelimit")

RATE_LIMIT_MESSAGE = "Too many requests. Please try again later."

_LUA_SLIDING_WINDOW = """
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
redis.call("ZREMRANGEBYSCORE", KEYS[1], 0, now - window)
if redis.call("ZCARD", KEYS[1]) >= limit then
  return 0
end
redis.call("ZADD", KEYS[1], now, ARGV[4])
redis.call("PEXPIRE", KEYS[1], window)
return 1
"""

class RateLimiter:
    def allow(self, client_key: str) -> bool:
        raise NotImplementedError


class InMemoryRateLimiter(RateLimiter):
    """
    Sliding window per client key, kept in process memory.
    Used when REDIS_URL is not configured (dev, single worker).
    """

    def __init__(self, max_requests: int, window_sec: float, clock: Callable[[], float] = time.monotonic):
        self.max_requests = int(max_requests)
        self.window_sec = float(window_sec)
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        # sync dependencies run in the threadpool; check-then-append must be atomic
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_sec
        for key in list(self._hits.keys()):
            q = self._hits[key]
            while q and q[0] <= cutoff:
                q.popleft()
            if not q:
                del self._hits[key]

    def allow(self, client_key: str) -> bool:
        with self._lock:
            now = self._clock()
            if len(self._hits) > 1000:
                self._prune(now)

            q = self._hits.setdefault(client_key, deque())
            cutoff = now - self.window_sec
            while q and q[0] <= cutoff:
                q.popleft()

            if len(q) >= self.max_requests:
                return False
            q.append(now)
            return True


class RedisRateLimiter(RateLimiter):
    def __init__(self, redis: Redis, max_requests: int, window_sec: float):
        self.redis = redis
        self.max_requests = int(max_requests)
        self.window_ms = int(float(window_sec) * 1000)

    def allow(self, client_key: str) -> bool:
        now_ms = int(time.time() * 1000)
        key = f"rl:{client_key}"
        # unique member so two hits in the same millisecond both count
        member = f"{now_ms}:{uuid.uuid4().hex}"
        allowed = self.redis.eval(
            _LUA_SLIDING_WINDOW, 1, key, now_ms, self.window_ms, self.max_requests, member
        )
        return int(allowed) == 1


_redis: Redis | None = None
_limiter: RateLimiter | None = None

def redis_client() -> Redis | None:
    global _redis
    if not settings.REDIS_URL:
        return None
    if _redis is None:
        _redis = Redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis

def get_rate_limiter() -> RateLimiter:
    global _limiter
    if _limiter is not None:
        return _limiter

    r = redis_client()
    if r is not None:
        _limiter = RedisRateLimiter(r, settings.RATE_LIMIT_MAX_REQUESTS, settings.RATE_LIMIT_WINDOW_SEC)
    else:
        _limiter = InMemoryRateLimiter(settings.RATE_LIMIT_MAX_REQUESTS, settings.RATE_LIMIT_WINDOW_SEC)
    return _limiter

def client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client:
        return request.client.host
    return "127.0.0.1"

def rate_limit_or_429(key: str, limiter: RateLimiter | None = None) -> bool:
    limiter = limiter or get_rate_limiter()
    try:
        return limiter.allow(key)
    except RedisError:
        LOG.warning("rate limiter backend unavailable; fail_open=%s", settings.RATE_LIMIT_FAIL_OPEN)
        return bool(settings.RATE_LIMIT_FAIL_OPEN)
    except Exception:
        LOG.exception("rate limit check failed; fail_open=%s", settings.RATE_LIMIT_FAIL_OPEN)
        return bool(settings.RATE_LIMIT_FAIL_OPEN)

def enforce_rate_limit(request: Request, limiter: RateLimiter = Depends(get_rate_limiter)):
    """FastAPI dependency: 429 once the caller exceeds the sliding window."""
    if not rate_limit_or_429(client_key(request), limiter):
        raise HTTPException(429, RATE_LIMIT_MESSAGE)
    return True
