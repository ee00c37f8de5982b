"""Answer-Equivalence Oracle: external judge for free-text answers.

Contract: ``judge_equivalence(submitted, canonical, language) -> bool``.
Implementations raise ``UpstreamUnavailable`` when they cannot produce a
verdict (timeouts, retries exhausted, rate-limited, unparseable output). The
scoring engine treats the verdict as advisory and falls back to its own
normalised comparison on that error, so whatever shape the generative
service answers in never reaches the scoring path as anything but a bool.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from attempt_engine.config import settings
from attempt_engine.core.errors import UpstreamUnavailable
from attempt_engine.services.rate_limiter import LeakyBucketLimiter
from attempt_engine.services.retry import RetryPolicy, call_with_backoff
from attempt_engine.services.verdict_cache import VerdictCache

logger = logging.getLogger(__name__)

LANGUAGE_NAMES = {
    "en": "English",
    "ur": "Urdu",
    "ar": "Arabic",
    "fa": "Persian",
}


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, "English")


class EquivalenceOracle:
    """Interface every oracle implementation provides."""

    def judge_equivalence(self, submitted: str, canonical: str, language: str) -> bool:
        raise NotImplementedError


# ── Verdict parsing ───────────────────────────────────────────────────────────


def parse_verdict(answer_text: str) -> bool:
    """Read a boolean verdict out of the service's text answer.

    Accepts ``{"correct": true}`` (optionally inside a markdown fence) or a
    bare ``true`` / ``false``. Anything else is a ``ValueError`` so the retry
    helper treats it like a transport failure.
    """
    text = answer_text.strip()
    if "```" in text:
        for part in text.split("```"):
            stripped = part.strip()
            if stripped.startswith("json"):
                stripped = stripped[4:].strip()
            if stripped.startswith("{"):
                text = stripped
                break

    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end != -1:
        parsed = json.loads(text[start : end + 1])
        verdict = parsed.get("correct", parsed.get("equivalent"))
        if isinstance(verdict, bool):
            return verdict
        raise ValueError(f"Verdict is not a boolean: {verdict!r}")

    word = text.strip(" .\"'").lower()
    if word in ("true", "yes"):
        return True
    if word in ("false", "no"):
        return False
    raise ValueError(f"Unparseable oracle answer: {answer_text[:120]!r}")


# ── HTTP implementation ───────────────────────────────────────────────────────

_SYSTEM_PROMPT = (
    "You judge whether a student's short answer is equivalent to the expected "
    'answer. Respond ONLY with a JSON object: {"correct": true/false}'
)


class HTTPEquivalenceOracle(EquivalenceOracle):
    """Asks the generative-text service for a verdict via its direct-query API."""

    def __init__(
        self,
        base_url: str = settings.ORACLE_URL,
        *,
        timeout: float = settings.UPSTREAM_TIMEOUT_SECONDS,
        policy: RetryPolicy | None = None,
        limiter: LeakyBucketLimiter | None = None,
        cache: VerdictCache | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base = base_url.rstrip("/")
        self._http = httpx.Client(base_url=self._base, timeout=timeout, transport=transport)
        self._policy = policy
        self._limiter = limiter or LeakyBucketLimiter()
        self._cache = cache or VerdictCache()

    def _request(self, submitted: str, canonical: str, language: str) -> bool:
        payload: dict[str, Any] = {
            "question": (
                f"In {language_name(language)}, is the student's answer "
                f"{submitted!r} equivalent to the expected answer {canonical!r}?"
            ),
            "system_prompt": _SYSTEM_PROMPT,
        }
        r = self._http.post("/query/direct", json=payload)
        r.raise_for_status()
        body = r.json()
        if not isinstance(body, dict):
            raise ValueError("Oracle response is not an object")
        return parse_verdict(str(body.get("answer", "")))

    def judge_equivalence(self, submitted: str, canonical: str, language: str) -> bool:
        cached = self._cache.get(submitted, canonical, language)
        if cached is not None:
            return cached

        if not self._limiter.allow():
            raise UpstreamUnavailable("Equivalence oracle rate limit reached", operation="oracle")

        verdict = call_with_backoff(
            lambda: self._request(submitted, canonical, language),
            operation="oracle",
            policy=self._policy,
        )
        logger.info(
            "Oracle verdict: submitted=%r canonical=%r → %s",
            submitted[:50], canonical[:50], verdict,
        )
        self._cache.set(submitted, canonical, language, verdict)
        return verdict

    def close(self) -> None:
        self._http.close()


# ── singleton accessor ────────────────────────────────────────────────────────

_instance: HTTPEquivalenceOracle | None = None


def get_oracle() -> EquivalenceOracle | None:
    """Configured oracle, or None when free-text grading is deterministic only."""
    global _instance
    if not settings.ORACLE_ENABLED:
        return None
    if _instance is None:
        _instance = HTTPEquivalenceOracle()
        logger.info("Equivalence oracle initialised → %s", _instance._base)
    return _instance
