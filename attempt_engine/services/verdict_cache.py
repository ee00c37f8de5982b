"""Redis-backed cache of Equivalence Oracle verdicts.

The same (submitted, canonical, language) triple is judged once; later
finalizations and re-scorings of identical answers reuse the verdict. Keys
are content-addressed (SHA-256 of the serialised triple).
"""

import hashlib
import json
import logging
from typing import Callable

import redis

from attempt_engine.config import settings
from attempt_engine.services.redis_pool import get_redis

logger = logging.getLogger(__name__)


def _make_key(submitted: str, canonical: str, language: str) -> str:
    serialised = json.dumps([submitted, canonical, language], ensure_ascii=False)
    digest = hashlib.sha256(serialised.encode()).hexdigest()[:24]
    return f"oracle_verdict:{digest}"


class VerdictCache:
    def __init__(
        self,
        *,
        enabled: bool | None = None,
        ttl: int | None = None,
        redis_factory: Callable[[], redis.Redis] = get_redis,
    ) -> None:
        self.enabled = settings.ORACLE_CACHE_ENABLED if enabled is None else enabled
        self.ttl = ttl or settings.ORACLE_CACHE_TTL_SECONDS
        self._redis_factory = redis_factory

    def get(self, submitted: str, canonical: str, language: str) -> bool | None:
        """Cached verdict, or None on miss / disabled / Redis error."""
        if not self.enabled:
            return None
        key = _make_key(submitted, canonical, language)
        try:
            raw = self._redis_factory().get(key)
        except redis.RedisError as e:
            logger.warning("Verdict cache read failed (non-fatal): %s", e)
            return None
        if raw is None:
            logger.debug("Verdict cache MISS: %s", key)
            return None
        logger.debug("Verdict cache HIT: %s", key)
        return raw == "1"

    def set(self, submitted: str, canonical: str, language: str, verdict: bool) -> None:
        if not self.enabled:
            return
        key = _make_key(submitted, canonical, language)
        try:
            self._redis_factory().setex(key, self.ttl, "1" if verdict else "0")
        except redis.RedisError as e:
            logger.warning("Verdict cache write failed (non-fatal): %s", e)
