# copyflow/rate_limiter.py
"""
Plan-tier rate limiting for API keys.

Every backend exposes ``check(credential_id, tier) -> RateLimitDecision``, an
atomic try-consume over a rolling window: the (Q+1)-th request inside W
seconds is rejected, and a slot frees up W seconds after it was taken.

Rejected requests do not consume quota. The HTTP layer still writes them to
the usage ledger with status 429 so they show up in analytics.
"""

import datetime
import math
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional

import redis

from copyflow.monitoring import get_logger

log = get_logger("rate_limiter")


@dataclass(frozen=True)
class RateLimit:
    requests: int
    window_seconds: int


TIER_BASIC = "basic"
TIER_PREMIUM = "premium"
TIER_ENTERPRISE = "enterprise"

PLAN_LIMITS: Dict[str, RateLimit] = {
    TIER_BASIC: RateLimit(100, 3600),
    TIER_PREMIUM: RateLimit(1000, 3600),
    TIER_ENTERPRISE: RateLimit(10000, 3600),
}

# tenant plan -> rate-limit tier
PLAN_TIERS: Dict[str, str] = {
    "free": TIER_BASIC,
    "pro": TIER_BASIC,
    "business": TIER_PREMIUM,
    "enterprise": TIER_ENTERPRISE,
}


def tier_for_plan(plan: Optional[str]) -> str:
    return PLAN_TIERS.get(plan or "", TIER_BASIC)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # epoch seconds at which the oldest slot frees up

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(max(self.remaining, 0)),
            "X-RateLimit-Reset": str(int(math.ceil(self.reset_at))),
        }

    def retry_after(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        return max(1, int(math.ceil(self.reset_at - now)))


class _BaseLimiter:
    def __init__(self, limits: Optional[Dict[str, RateLimit]] = None,
                 clock: Callable[[], float] = time.time):
        self.limits = limits or PLAN_LIMITS
        self.clock = clock

    def limit_for(self, tier: str) -> RateLimit:
        return self.limits.get(tier) or self.limits[TIER_BASIC]

    def check(self, credential_id: str, tier: str) -> RateLimitDecision:
        raise NotImplementedError

    def admit(self, credential_id: str, tier: str) -> bool:
        return self.check(credential_id, tier).allowed


class InMemorySlidingWindowLimiter(_BaseLimiter):
    """Thread-safe in-memory sliding-log limiter (per-process)."""

    def __init__(self, limits: Optional[Dict[str, RateLimit]] = None,
                 clock: Callable[[], float] = time.time):
        super().__init__(limits, clock)
        self._store: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def check(self, credential_id: str, tier: str) -> RateLimitDecision:
        limit = self.limit_for(tier)
        now = self.clock()
        window_start = now - limit.window_seconds
        with self._lock:
            hits = self._store.setdefault(credential_id, deque())
            while hits and hits[0] <= window_start:
                hits.popleft()
            if len(hits) >= limit.requests:
                return RateLimitDecision(False, limit.requests, 0,
                                         hits[0] + limit.window_seconds)
            hits.append(now)
            return RateLimitDecision(True, limit.requests, limit.requests - len(hits),
                                     hits[0] + limit.window_seconds)

    def reset(self):
        """Reset all state (useful for tests)."""
        with self._lock:
            self._store.clear()


# KEYS[1] = log key; ARGV = now, window, limit, member
_SLIDING_WINDOW_LUA = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
local count = redis.call('ZCARD', key)
if count >= limit then
  local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
  return {0, count, oldest[2]}
end
redis.call('ZADD', key, now, ARGV[4])
redis.call('EXPIRE', key, math.ceil(window))
local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
return {1, count + 1, oldest[2]}
"""


class RedisSlidingWindowLimiter(_BaseLimiter):
    """Sliding log in a Redis sorted set; check-and-consume runs as one Lua script."""

    def __init__(self, redis_url: str, limits: Optional[Dict[str, RateLimit]] = None,
                 clock: Callable[[], float] = time.time, client=None):
        super().__init__(limits, clock)
        self._client = client or redis.from_url(redis_url, decode_responses=True)
        self._script = self._client.register_script(_SLIDING_WINDOW_LUA)

    def check(self, credential_id: str, tier: str) -> RateLimitDecision:
        limit = self.limit_for(tier)
        now = self.clock()
        member = f"{now:.6f}:{uuid.uuid4().hex}"
        try:
            allowed, count, oldest = self._script(
                keys=[f"ratelimit:{credential_id}"],
                args=[now, limit.window_seconds, limit.requests, member],
            )
        except redis.RedisError:
            # Fail open on Redis errors
            log.warning("Redis rate limiter unavailable; admitting request",
                        extra={"api_key_id": credential_id}, exc_info=True)
            return RateLimitDecision(True, limit.requests, limit.requests,
                                     now + limit.window_seconds)
        reset_at = float(oldest) + limit.window_seconds if oldest is not None else now + limit.window_seconds
        return RateLimitDecision(bool(int(allowed)), limit.requests,
                                 limit.requests - int(count), reset_at)


def _to_naive_utc(ts: float) -> datetime.datetime:
    return datetime.datetime.fromtimestamp(ts, tz=datetime.timezone.utc).replace(tzinfo=None)


def _to_epoch(dt: datetime.datetime) -> float:
    return dt.replace(tzinfo=datetime.timezone.utc).timestamp()


class LedgerWindowLimiter(_BaseLimiter):
    """
    Counts the credential's metered usage-ledger rows in the trailing window.
    A row is metered only when the limiter admitted the request, so status polls,
    analytics reads and scope or plan rejections never consume quota. The row
    for an admitted request is written after the response, so two concurrent
    requests at the quota boundary can both get through; use the memory or
    redis backend where that matters.
    """

    def __init__(self, ledger, limits: Optional[Dict[str, RateLimit]] = None,
                 clock: Callable[[], float] = time.time):
        super().__init__(limits, clock)
        self.ledger = ledger
        self._lock = threading.Lock()

    def check(self, credential_id: str, tier: str) -> RateLimitDecision:
        limit = self.limit_for(tier)
        now = self.clock()
        window_start = _to_naive_utc(now - limit.window_seconds)
        with self._lock:
            used = self.ledger.count_since(credential_id, window_start, metered_only=True)
            oldest = self.ledger.oldest_since(credential_id, window_start, metered_only=True)
        reset_at = (_to_epoch(oldest) if oldest else now) + limit.window_seconds
        if used >= limit.requests:
            return RateLimitDecision(False, limit.requests, 0, reset_at)
        return RateLimitDecision(True, limit.requests, limit.requests - used - 1, reset_at)


def build_limiter(settings, ledger=None) -> _BaseLimiter:
    backend = settings.rate_limit_backend
    if backend == "redis":
        if not settings.redis_url:
            raise ValueError("RATE_LIMIT_BACKEND=redis requires REDIS_URL")
        return RedisSlidingWindowLimiter(settings.redis_url)
    if backend == "ledger":
        if ledger is None:
            raise ValueError("RATE_LIMIT_BACKEND=ledger requires a usage ledger")
        return LedgerWindowLimiter(ledger)
    return InMemorySlidingWindowLimiter()
