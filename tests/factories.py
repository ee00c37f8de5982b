"""Fakes and builders shared by the test modules."""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from attempt_engine.core.errors import UpstreamUnavailable
from attempt_engine.db.models import (
    Assessment,
    Enrollment,
    QuestionBlock,
    QuestionTypeEnum,
)
from attempt_engine.services.oracle import EquivalenceOracle
from attempt_engine.services.question_source import GeneratedQuestion, QuestionSource
from attempt_engine.services.snapshot import option_keys

T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)

# ── Fakes ──────────────────────────────────────────────────────────────────────


class FakeClock:
    """Server clock the tests move by hand."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def make_question(qtype: QuestionTypeEnum, i: int, block=None) -> GeneratedQuestion:
    """A well-formed question of the given type; canonical answers are predictable."""
    if qtype is QuestionTypeEnum.SINGLE_CHOICE:
        count = (block.num_options if block else None) or 4
        return GeneratedQuestion(
            prompt=f"Single choice question {i}",
            options=[f"Option {k}" for k in option_keys(count)],
            canonical_answer="A",
        )
    if qtype is QuestionTypeEnum.TRUE_FALSE:
        return GeneratedQuestion(
            prompt=f"True or false statement {i}",
            options=["True", "False"],
            canonical_answer="True",
        )
    if qtype is QuestionTypeEnum.MATCHING:
        sides = (block.num_first_side if block else None) or 3
        pairs = [[f"L{k}", f"R{k}"] for k in range(sides)]
        return GeneratedQuestion(
            prompt=f"Match the items {i}",
            options=[[p[0] for p in pairs], [p[1] for p in pairs]],
            canonical_answer=pairs,
        )
    return GeneratedQuestion(
        prompt=f"Short answer question {i}",
        options=[],
        canonical_answer="Paris",
    )


class FakeQuestionSource(QuestionSource):
    """Returns well-formed questions; per-block overrides allow short or bad output."""

    def __init__(self):
        self.calls = []
        self.returned_count: dict[int, int] = {}
        self.responses: dict[int, list[GeneratedQuestion]] = {}
        self.fail = False
        self.before_return = None

    def generate_questions(self, block, language):
        self.calls.append((block, language))
        if self.fail:
            raise UpstreamUnavailable("question_source is unavailable", operation="question_source")
        if block.position in self.responses:
            questions = list(self.responses[block.position])
        else:
            count = self.returned_count.get(block.position, block.question_count)
            questions = [make_question(block.question_type, i, block) for i in range(count)]
        if self.before_return is not None:
            self.before_return()
        return questions


class FakeOracle(EquivalenceOracle):
    def __init__(self, verdict: bool = True, fail: bool = False):
        self.verdict = verdict
        self.fail = fail
        self.calls = []

    def judge_equivalence(self, submitted, canonical, language):
        self.calls.append((submitted, canonical, language))
        if self.fail:
            raise UpstreamUnavailable("oracle is unavailable", operation="oracle")
        return self.verdict


# ── Builders ───────────────────────────────────────────────────────────────────


def make_block(
    position: int = 0,
    question_type: QuestionTypeEnum = QuestionTypeEnum.SINGLE_CHOICE,
    question_count: int = 3,
    duration_per_question: int = 60,
    positive: str = "1",
    negative: str = "0",
    **kwargs,
) -> QuestionBlock:
    if question_type is QuestionTypeEnum.SINGLE_CHOICE:
        kwargs.setdefault("num_options", 4)
    return QuestionBlock(
        position=position,
        question_type=question_type,
        question_count=question_count,
        duration_per_question=duration_per_question,
        positive_marks=Decimal(positive),
        negative_marks=Decimal(negative),
        **kwargs,
    )


def make_assessment(
    db: Session,
    blocks: list[QuestionBlock] | None = None,
    *,
    students: tuple[uuid.UUID, ...] = (),
    published: bool = True,
    **kwargs,
) -> Assessment:
    assessment = Assessment(
        title=kwargs.pop("title", "Test assessment"),
        is_published=published,
        **kwargs,
    )
    assessment.blocks = blocks if blocks is not None else [make_block()]
    for student_id in students:
        assessment.enrollments.append(Enrollment(student_id=student_id))
    db.add(assessment)
    db.commit()
    db.refresh(assessment)
    return assessment


