"""Attempt schemas."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from attempt_engine.db.models import (
    AttemptStatusEnum,
    CompletionReasonEnum,
    QuestionTypeEnum,
)


class StartAttemptRequest(BaseModel):
    """POST /api/assessments/{id}/attempts: optional language hint."""

    language: str | None = Field(None, max_length=10)


class QuestionRead(BaseModel):
    """A snapshot question as shown to the student (no canonical answer)."""

    id: uuid.UUID
    position: int
    block_position: int
    question_type: QuestionTypeEnum
    prompt: str
    options: list[Any] = []
    positive_marks: Decimal
    negative_marks: Decimal
    duration_seconds: int

    model_config = {"from_attributes": True}


class SavedAnswerRead(BaseModel):
    question_id: uuid.UUID
    value: Any
    client_seq: int
    time_spent_seconds: int
    saved_at: datetime

    model_config = {"from_attributes": True}


class AttemptStateRead(BaseModel):
    """Start / resume response."""

    id: uuid.UUID
    assessment_id: uuid.UUID
    attempt_number: int
    status: AttemptStatusEnum
    resumed: bool
    language: str
    started_at: datetime
    duration_seconds: int
    remaining_seconds: int
    questions: list[QuestionRead] = []
    fidelity_warnings: list[str] = []


class SaveAnswerRequest(BaseModel):
    """PUT /api/attempts/{id}/answers/{question_id}."""

    value: Any = None
    client_seq: int | None = Field(None, ge=0)
    time_spent: int = Field(0, ge=0)


class SaveAnswerResult(BaseModel):
    accepted: bool
    client_seq: int
    remaining_seconds: int


class ProgressRead(BaseModel):
    attempt_id: uuid.UUID
    status: AttemptStatusEnum
    answered_count: int
    total_count: int
    remaining_seconds: int
    answers: list[SavedAnswerRead] = []


class QuestionScoreRead(BaseModel):
    question_id: uuid.UUID
    position: int
    question_type: QuestionTypeEnum
    answered: bool
    is_correct: bool
    score: Decimal
    submitted: Any = None
    canonical_answer: Any = None

    model_config = {"from_attributes": True}


class AttemptResultRead(BaseModel):
    """Final result of a completed or expired attempt.

    Only served once the attempt is terminal, so each breakdown entry carries
    the student's answer next to the canonical one for review.
    """

    attempt_id: uuid.UUID
    status: AttemptStatusEnum
    completion_reason: CompletionReasonEnum | None = None
    total_score: Decimal
    max_score: Decimal
    percentage: Decimal
    duration_taken_seconds: int
    answered_count: int
    total_count: int
    breakdown: list[QuestionScoreRead] = []

    model_config = {"from_attributes": True}


class SubmissionRead(BaseModel):
    """GET /api/assessments/{id}/submissions item."""

    attempt_id: uuid.UUID
    student_id: uuid.UUID
    attempt_number: int
    status: AttemptStatusEnum
    completion_reason: CompletionReasonEnum | None = None
    total_score: Decimal
    max_score: Decimal
    percentage: Decimal
    started_at: datetime
    completed_at: datetime | None = None
    duration_taken_seconds: int

    model_config = {"from_attributes": True}
