"""Question Source: provider of question records for one block spec.

The engine treats the provider as opaque: questions may be AI-generated or
instructor-authored. ``generate_questions`` either returns a (possibly short,
possibly empty) list, or raises ``UpstreamUnavailable`` once the retry budget
is spent. "Gave up" and "returned zero items" are never conflated.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import httpx

from attempt_engine.config import settings
from attempt_engine.db.models import QuestionBlock, QuestionTypeEnum
from attempt_engine.services.retry import RetryPolicy, call_with_backoff

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlockSpec:
    """Read-only view of a ``QuestionBlock`` handed to the source."""

    position: int
    question_type: QuestionTypeEnum
    question_count: int
    duration_per_question: int
    positive_marks: Decimal
    negative_marks: Decimal
    num_options: int | None = None
    num_first_side: int | None = None
    num_second_side: int | None = None
    topic: str | None = None

    @classmethod
    def from_model(cls, block: QuestionBlock) -> "BlockSpec":
        return cls(
            position=block.position,
            question_type=QuestionTypeEnum(block.question_type),
            question_count=block.question_count,
            duration_per_question=(
                block.duration_per_question or settings.DEFAULT_DURATION_PER_QUESTION
            ),
            positive_marks=Decimal(block.positive_marks or 0),
            negative_marks=Decimal(block.negative_marks or 0),
            num_options=block.num_options,
            num_first_side=block.num_first_side,
            num_second_side=block.num_second_side,
            topic=block.topic,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "question_type": self.question_type.value,
            "question_count": self.question_count,
            "num_options": self.num_options,
            "num_first_side": self.num_first_side,
            "num_second_side": self.num_second_side,
            "topic": self.topic,
        }


@dataclass(frozen=True)
class GeneratedQuestion:
    prompt: str
    options: list[Any]
    canonical_answer: Any


class QuestionSource:
    """Interface every question provider implements."""

    def generate_questions(
        self, block: BlockSpec, language: str
    ) -> list[GeneratedQuestion]:
        raise NotImplementedError


# ── Response parsing ──────────────────────────────────────────────────────────


def _parse_questions_json(raw: str) -> list[dict]:
    """Extract a JSON array from a generator response, even if wrapped in markdown."""
    text = raw.strip()
    if "```" in text:
        parts = text.split("```")
        for part in parts:
            stripped = part.strip()
            if stripped.startswith("json"):
                stripped = stripped[4:].strip()
            if stripped.startswith("["):
                text = stripped
                break
    start = text.find("[")
    end = text.rfind("]")
    if start == -1 or end == -1:
        raise ValueError(f"No JSON array in generator response: {raw[:120]!r}")
    parsed = json.loads(text[start : end + 1])
    if not isinstance(parsed, list):
        raise ValueError("Generator response is not a list")
    return parsed


def _to_generated(item: dict, block: BlockSpec) -> GeneratedQuestion | None:
    prompt = item.get("question_text") or item.get("text") or item.get("prompt")
    if not isinstance(prompt, str) or not prompt.strip():
        return None
    options = item.get("options")
    if block.question_type is QuestionTypeEnum.TRUE_FALSE and not options:
        options = ["True", "False"]
    return GeneratedQuestion(
        prompt=prompt.strip(),
        options=list(options or []),
        canonical_answer=item.get("correct_answer"),
    )


# ── HTTP implementation ───────────────────────────────────────────────────────


class HTTPQuestionSource(QuestionSource):
    """Calls the question generator service over HTTP."""

    def __init__(
        self,
        base_url: str = settings.QUESTION_SOURCE_URL,
        *,
        timeout: float = settings.UPSTREAM_TIMEOUT_SECONDS,
        policy: RetryPolicy | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base = base_url.rstrip("/")
        self._http = httpx.Client(base_url=self._base, timeout=timeout, transport=transport)
        self._policy = policy

    def _request(self, block: BlockSpec, language: str) -> list[dict]:
        r = self._http.post(
            "/questions/generate",
            json={**block.to_payload(), "language": language},
        )
        r.raise_for_status()
        body = r.json()
        if isinstance(body, list):
            return body
        if isinstance(body, dict) and isinstance(body.get("questions"), list):
            return body["questions"]
        if isinstance(body, dict) and isinstance(body.get("answer"), str):
            return _parse_questions_json(body["answer"])
        raise ValueError("Unrecognised generator response shape")

    def generate_questions(
        self, block: BlockSpec, language: str
    ) -> list[GeneratedQuestion]:
        raw_items = call_with_backoff(
            lambda: self._request(block, language),
            operation="question_source",
            policy=self._policy,
        )
        questions = []
        for item in raw_items:
            if not isinstance(item, dict):
                continue
            generated = _to_generated(item, block)
            if generated is not None:
                questions.append(generated)
        logger.info(
            "Question source returned %d/%d %s question(s) for block %d",
            len(questions), block.question_count, block.question_type.value, block.position,
        )
        return questions

    def close(self) -> None:
        self._http.close()


# ── singleton accessor ────────────────────────────────────────────────────────

_instance: HTTPQuestionSource | None = None


def get_question_source() -> QuestionSource:
    global _instance
    if _instance is None:
        _instance = HTTPQuestionSource()
        logger.info("Question source initialised → %s", _instance._base)
    return _instance
