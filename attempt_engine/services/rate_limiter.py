"""Redis-backed leaky-bucket limiter for Equivalence Oracle calls.

Algorithm
---------
The bucket is a Redis hash holding the number of *tokens* (remaining calls)
and the timestamp of the last refill. Tokens refill at ``RPM / 60`` per
second up to ``BURST``. A call is allowed only when one token is available.

A rejected call is not queued: the scoring engine treats it exactly like an
oracle outage and falls back to the deterministic check.
"""

import logging
import time
from typing import Callable

import redis

from attempt_engine.config import settings
from attempt_engine.services.redis_pool import get_redis

logger = logging.getLogger(__name__)

# KEYS[1] = bucket key
# ARGV[1] = max tokens (burst)
# ARGV[2] = refill rate (tokens per second)
# ARGV[3] = current timestamp (float seconds)
# Returns 1 if the call is allowed, 0 if rejected.
_LUA_SCRIPT = """
local key         = KEYS[1]
local max_tokens  = tonumber(ARGV[1])
local refill_rate = tonumber(ARGV[2])
local now         = tonumber(ARGV[3])

local bucket = redis.call('HMGET', key, 'tokens', 'last_refill')
local tokens      = tonumber(bucket[1])
local last_refill = tonumber(bucket[2])

if tokens == nil then
    tokens = max_tokens
    last_refill = now
end

local elapsed = math.max(0, now - last_refill)
tokens = math.min(max_tokens, tokens + elapsed * refill_rate)

local allowed = 0
if tokens >= 1 then
    tokens = tokens - 1
    allowed = 1
end

redis.call('HMSET', key, 'tokens', tokens, 'last_refill', now)
redis.call('EXPIRE', key, 120)
return allowed
"""


class LeakyBucketLimiter:
    def __init__(
        self,
        bucket_key: str = "rl:oracle",
        *,
        rpm: int | None = None,
        burst: int | None = None,
        redis_factory: Callable[[], redis.Redis] = get_redis,
    ) -> None:
        self.bucket_key = bucket_key
        self.rpm = settings.RATE_LIMIT_ORACLE_RPM if rpm is None else rpm
        self.burst = settings.RATE_LIMIT_ORACLE_BURST if burst is None else burst
        self._redis_factory = redis_factory

    def allow(self) -> bool:
        """Return True if one more call may go out now."""
        if self.rpm <= 0:
            return True  # rate limiting disabled

        refill_rate = self.rpm / 60.0
        try:
            r = self._redis_factory()
            allowed = r.eval(
                _LUA_SCRIPT, 1, self.bucket_key, self.burst, refill_rate, time.time()
            )
        except redis.RedisError as e:
            logger.warning("Rate-limiter Redis error (allowing call): %s", e)
            return True  # fail-open: a Redis outage must not disable grading
        if not allowed:
            logger.info("Rate-limited: %s", self.bucket_key)
        return bool(allowed)
