"""Scoring engine: per-question correctness and mark aggregation.

Correctness by question type:
  - single_choice / true_false: exact, case-sensitive match of option keys
    (no trimming; booleans map to "True" / "False")
  - matching: all-or-nothing, every pair's right side must match in order
  - short_answer: normalised text match, then (optionally) the Equivalence
    Oracle; if the oracle is unavailable the configured fallback verdict
    (``ORACLE_FALLBACK_VERDICT``, false by default) stands

Marks per question: ``+positive`` if correct, ``-negative`` if answered and
wrong (or unanswered with ``penalize_unanswered``), otherwise 0. The total is
clamped at zero only when the assessment asks for it. All arithmetic is done
in ``Decimal`` and quantized to the storage scale so a stored result reads
back identical to the freshly computed one.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Sequence

from attempt_engine.config import settings
from attempt_engine.core.errors import UpstreamUnavailable
from attempt_engine.db.models import Assessment, QuestionTypeEnum, SnapshotQuestion
from attempt_engine.services.oracle import EquivalenceOracle

logger = logging.getLogger(__name__)

MARK_QUANTUM = Decimal("0.0001")
PERCENT_QUANTUM = Decimal("0.01")
ZERO = Decimal("0")

_QUOTES = "\"'`‘’“”«»"


def quantize(value: Decimal) -> Decimal:
    return (Decimal(value) + ZERO).quantize(MARK_QUANTUM)


def percentage(score: Decimal, maximum: Decimal) -> Decimal:
    if not maximum:
        return ZERO.quantize(PERCENT_QUANTUM)
    return (Decimal(score) * 100 / Decimal(maximum)).quantize(PERCENT_QUANTUM)


@dataclass(frozen=True)
class ScoringPolicy:
    clamp_negative_total: bool = True
    penalize_unanswered: bool = False

    @classmethod
    def from_assessment(cls, assessment: Assessment) -> "ScoringPolicy":
        return cls(
            clamp_negative_total=bool(assessment.clamp_negative_total),
            penalize_unanswered=bool(assessment.penalize_unanswered),
        )


@dataclass(frozen=True)
class QuestionScore:
    question_id: uuid.UUID
    position: int
    question_type: QuestionTypeEnum
    answered: bool
    is_correct: bool
    score: Decimal
    submitted: Any = None
    canonical_answer: Any = None


@dataclass(frozen=True)
class ScoreResult:
    total: Decimal
    raw_total: Decimal
    max_total: Decimal
    breakdown: list[QuestionScore]

    @property
    def answered_count(self) -> int:
        return sum(1 for q in self.breakdown if q.answered)

    @property
    def total_count(self) -> int:
        return len(self.breakdown)


# question_id -> (submitted value, verdict)
Verdicts = dict[uuid.UUID, tuple[Any, bool]]


# ── Normalisation helpers ─────────────────────────────────────────────────────


def is_answered(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict)):
        return bool(value)
    return True


def option_key(value: Any) -> str:
    """Comparable form of a single-choice / true-false answer."""
    if isinstance(value, bool):
        return "True" if value else "False"
    return str(value)


def normalise_free_text(value: Any) -> str:
    """Trim, case-fold and strip surrounding quote characters."""
    text = str(value).strip()
    while len(text) >= 2 and text[0] in _QUOTES and text[-1] in _QUOTES:
        text = text[1:-1].strip()
    return text.casefold()


# ── Per-type checks ───────────────────────────────────────────────────────────


def check_choice(submitted: Any, canonical: Any) -> bool:
    return option_key(submitted) == option_key(canonical)


def check_matching(submitted: Any, canonical: Any) -> bool:
    if not isinstance(submitted, (list, tuple)) or not isinstance(canonical, (list, tuple)):
        return False
    if len(submitted) != len(canonical):
        return False
    for given, expected in zip(submitted, canonical):
        if not isinstance(given, (list, tuple)) or len(given) != 2:
            return False
        if given[1] != expected[1]:
            return False
    return True


class ScoringEngine:
    def __init__(
        self,
        oracle: EquivalenceOracle | None = None,
        fallback_verdict: bool | None = None,
    ) -> None:
        self._oracle = oracle
        self._fallback = (
            settings.ORACLE_FALLBACK_VERDICT if fallback_verdict is None else fallback_verdict
        )

    def _check_short_answer(self, submitted: Any, canonical: Any, language: str) -> bool:
        exact = normalise_free_text(submitted) == normalise_free_text(canonical)
        if exact or self._oracle is None:
            return exact
        try:
            return bool(
                self._oracle.judge_equivalence(str(submitted), str(canonical), language)
            )
        except UpstreamUnavailable as e:
            logger.warning("Oracle unavailable, using fallback verdict %s: %s", self._fallback, e)
            return self._fallback

    def is_correct(self, question: SnapshotQuestion, submitted: Any, language: str) -> bool:
        if not is_answered(submitted):
            return False
        qtype = QuestionTypeEnum(question.question_type)
        if qtype in (QuestionTypeEnum.SINGLE_CHOICE, QuestionTypeEnum.TRUE_FALSE):
            return check_choice(submitted, question.canonical_answer)
        if qtype is QuestionTypeEnum.MATCHING:
            return check_matching(submitted, question.canonical_answer)
        return self._check_short_answer(submitted, question.canonical_answer, language)

    def resolve_verdicts(
        self,
        questions: Sequence[SnapshotQuestion],
        answers: Mapping[uuid.UUID, Any],
        language: str = "en",
    ) -> Verdicts:
        """Judge every answered short-answer question up front.

        Returns ``{question_id: (submitted, verdict)}``. ``score`` reuses a
        verdict only while the submitted value is unchanged, so the oracle can
        be consulted before the attempt row is locked.
        """
        verdicts: Verdicts = {}
        for question in questions:
            if QuestionTypeEnum(question.question_type) is not QuestionTypeEnum.SHORT_ANSWER:
                continue
            submitted = answers.get(question.id)
            if is_answered(submitted):
                verdicts[question.id] = (
                    submitted,
                    self._check_short_answer(submitted, question.canonical_answer, language),
                )
        return verdicts

    def score(
        self,
        questions: Sequence[SnapshotQuestion],
        answers: Mapping[uuid.UUID, Any],
        policy: ScoringPolicy,
        language: str = "en",
        verdicts: Verdicts | None = None,
    ) -> ScoreResult:
        breakdown: list[QuestionScore] = []
        raw_total = ZERO
        max_total = ZERO
        verdicts = verdicts or {}

        for question in sorted(questions, key=lambda q: q.position):
            submitted = answers.get(question.id)
            answered = is_answered(submitted)
            judged = verdicts.get(question.id)
            if answered and judged is not None and judged[0] == submitted:
                correct = judged[1]
            else:
                correct = answered and self.is_correct(question, submitted, language)

            if correct:
                points = Decimal(question.positive_marks)
            elif answered or policy.penalize_unanswered:
                points = ZERO - Decimal(question.negative_marks)
            else:
                points = ZERO
            points = quantize(points)
            raw_total += points
            max_total += Decimal(question.positive_marks)

            breakdown.append(
                QuestionScore(
                    question_id=question.id,
                    position=question.position,
                    question_type=QuestionTypeEnum(question.question_type),
                    answered=answered,
                    is_correct=correct,
                    score=points,
                    submitted=submitted,
                    canonical_answer=question.canonical_answer,
                )
            )

        total = max(ZERO, raw_total) if policy.clamp_negative_total else raw_total
        return ScoreResult(
            total=quantize(total),
            raw_total=quantize(raw_total),
            max_total=quantize(max_total),
            breakdown=breakdown,
        )
