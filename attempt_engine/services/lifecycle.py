"""Attempt lifecycle: start/resume, finalization and lazy expiry.

State machine::

    in_progress ──submit──▶ completed
         │
         └──deadline passed (seen on next contact)──▶ expired

``expired`` is the terminal variant of ``completed`` reached without an
explicit submit. Both terminal states are final: ``finalize`` on a terminal
attempt returns the stored result and never re-scores.

Single active attempt
---------------------
"One in-progress attempt per (student, assessment)" is a partial unique
index in the store. ``start_or_resume`` builds the snapshot first, then
inserts attempt + snapshot in a single commit. When two starts race, the
loser's insert violates the index; it rolls back and resumes the winner.

Finalization asks the oracle about short answers before taking the attempt
row lock; under the lock only answers changed since then are judged again.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attempt_engine.config import settings
from attempt_engine.core.errors import (
    AlreadyCompleted,
    AssessmentNotFound,
    AttemptNotFound,
    NotEnrolled,
    NotPublished,
    OutsideWindow,
)
from attempt_engine.db.models import (
    AnswerRecord,
    Assessment,
    Attempt,
    AttemptStatusEnum,
    CompletionReasonEnum,
    Enrollment,
    SnapshotQuestion,
)
from attempt_engine.services import timer
from attempt_engine.services.question_source import BlockSpec
from attempt_engine.services.scoring import (
    QuestionScore,
    ScoringEngine,
    ScoringPolicy,
    Verdicts,
    is_answered,
    percentage,
    quantize,
)
from attempt_engine.services.snapshot import SnapshotBuilder

logger = logging.getLogger(__name__)

# Finalization retries when a late autosave inserts a row concurrently.
_FINALIZE_ATTEMPTS = 3


@dataclass
class AttemptState:
    attempt: Attempt
    resumed: bool
    remaining_seconds: int


@dataclass
class AttemptResult:
    attempt_id: uuid.UUID
    status: AttemptStatusEnum
    completion_reason: CompletionReasonEnum | None
    total_score: Decimal
    max_score: Decimal
    duration_taken_seconds: int
    breakdown: list[QuestionScore]

    @property
    def percentage(self) -> Decimal:
        return percentage(self.total_score, self.max_score)

    @property
    def answered_count(self) -> int:
        return sum(1 for q in self.breakdown if q.answered)

    @property
    def total_count(self) -> int:
        return len(self.breakdown)


@dataclass
class Submission:
    """One finalized attempt as listed for its assessment."""

    attempt_id: uuid.UUID
    student_id: uuid.UUID
    attempt_number: int
    status: AttemptStatusEnum
    completion_reason: CompletionReasonEnum | None
    total_score: Decimal
    max_score: Decimal
    started_at: datetime
    completed_at: datetime | None
    duration_taken_seconds: int

    @property
    def percentage(self) -> Decimal:
        return percentage(self.total_score, self.max_score)


def duration_taken(attempt: Attempt, completed_at: datetime | None) -> int:
    """Whole seconds from start to completion, capped at the allotted duration."""
    if completed_at is None:
        return 0
    return max(0, min(timer.elapsed_seconds(attempt, completed_at), attempt.duration_seconds))


class AttemptLifecycle:
    def __init__(
        self,
        db: Session,
        builder: SnapshotBuilder,
        scoring: ScoringEngine,
        clock: timer.Clock = timer.utcnow,
    ) -> None:
        self.db = db
        self._builder = builder
        self._scoring = scoring
        self._clock = clock

    # ── Lookups ──────────────────────────────────────────────────────────

    def now(self):
        return self._clock()

    def get_attempt(self, attempt_id: uuid.UUID) -> Attempt:
        attempt = self.db.execute(
            select(Attempt)
            .where(Attempt.id == attempt_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if attempt is None:
            raise AttemptNotFound(attempt_id=str(attempt_id))
        return attempt

    def lock_attempt(self, attempt_id: uuid.UUID) -> Attempt:
        """Load the attempt row with ``FOR UPDATE`` (a no-op on SQLite)."""
        attempt = self.db.execute(
            select(Attempt)
            .where(Attempt.id == attempt_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if attempt is None:
            raise AttemptNotFound(attempt_id=str(attempt_id))
        return attempt

    def _latest_attempt(
        self, student_id: uuid.UUID, assessment_id: uuid.UUID
    ) -> Attempt | None:
        return self.db.execute(
            select(Attempt)
            .where(
                Attempt.student_id == student_id,
                Attempt.assessment_id == assessment_id,
            )
            .order_by(Attempt.attempt_number.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _is_enrolled(self, student_id: uuid.UUID, assessment_id: uuid.UUID) -> bool:
        count = self.db.scalar(
            select(func.count())
            .select_from(Enrollment)
            .where(
                Enrollment.student_id == student_id,
                Enrollment.assessment_id == assessment_id,
            )
        )
        return bool(count)

    # ── Start / resume ───────────────────────────────────────────────────

    def start_or_resume(
        self,
        student_id: uuid.UUID,
        assessment_id: uuid.UUID,
        language: str | None = None,
    ) -> AttemptState:
        assessment = self.db.get(Assessment, assessment_id)
        if assessment is None:
            raise AssessmentNotFound(assessment_id=str(assessment_id))
        if not assessment.is_published:
            raise NotPublished(assessment_id=str(assessment_id))
        if not self._is_enrolled(student_id, assessment_id):
            raise NotEnrolled(assessment_id=str(assessment_id))

        existing = self._latest_attempt(student_id, assessment_id)
        if existing is not None:
            if existing.status is AttemptStatusEnum.IN_PROGRESS:
                logger.info("Resuming attempt %s for student %s", existing.id, student_id)
                return self.resume(existing.id)
            raise AlreadyCompleted(attempt_id=str(existing.id))

        now = self.now()
        if not timer.within_window(assessment.start_date, assessment.end_date, now):
            raise OutsideWindow(assessment_id=str(assessment_id))

        language = language or assessment.language or settings.DEFAULT_LANGUAGE
        blocks = [BlockSpec.from_model(b) for b in assessment.blocks]
        snapshot = self._builder.build(
            blocks, language, shuffle=bool(assessment.shuffle_within_blocks)
        )

        attempt = Attempt(
            student_id=student_id,
            assessment_id=assessment_id,
            attempt_number=1,
            status=AttemptStatusEnum.IN_PROGRESS,
            language=language,
            duration_seconds=assessment.duration_seconds or snapshot.total_duration,
            started_at=now,
            fidelity_warnings=list(snapshot.warnings),
        )
        attempt.questions = [
            SnapshotQuestion(
                position=item.position,
                block_position=item.block_position,
                question_type=item.question_type,
                prompt=item.prompt,
                options=item.options,
                canonical_answer=item.canonical_answer,
                positive_marks=item.positive_marks,
                negative_marks=item.negative_marks,
                duration_seconds=item.duration_seconds,
            )
            for item in snapshot.items
        ]
        self.db.add(attempt)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(
                "Concurrent start for student %s / assessment %s; resuming winner",
                student_id, assessment_id,
            )
            winner = self._latest_attempt(student_id, assessment_id)
            if winner is None:
                raise
            if winner.status is not AttemptStatusEnum.IN_PROGRESS:
                raise AlreadyCompleted(attempt_id=str(winner.id))
            return self.resume(winner.id)

        logger.info(
            "Started attempt %s (%d questions, %ds) for student %s",
            attempt.id, len(snapshot.items), attempt.duration_seconds, student_id,
        )
        return AttemptState(
            attempt=attempt,
            resumed=False,
            remaining_seconds=timer.remaining_seconds(attempt, now),
        )

    def resume(self, attempt_id: uuid.UUID) -> AttemptState:
        """Current state of an attempt; finalizes it first if its time is up."""
        attempt = self.expire_if_due(attempt_id)
        return AttemptState(
            attempt=attempt,
            resumed=True,
            remaining_seconds=timer.remaining_seconds(attempt, self.now()),
        )

    def expire_if_due(self, attempt_id: uuid.UUID) -> Attempt:
        attempt = self.get_attempt(attempt_id)
        if timer.is_past_deadline(attempt, self.now()):
            logger.info("Attempt %s passed its deadline; finalizing", attempt_id)
            self.finalize(attempt_id, CompletionReasonEnum.TIMEOUT)
            attempt = self.get_attempt(attempt_id)
        return attempt

    # ── Finalization ─────────────────────────────────────────────────────

    def submit(self, attempt_id: uuid.UUID) -> AttemptResult:
        """Explicit submit; a submit that arrives after the deadline counts as a timeout."""
        attempt = self.get_attempt(attempt_id)
        reason = CompletionReasonEnum.STUDENT_SUBMIT
        if timer.is_past_deadline(attempt, self.now()):
            reason = CompletionReasonEnum.TIMEOUT
        return self.finalize(attempt_id, reason)

    def finalize(
        self, attempt_id: uuid.UUID, reason: CompletionReasonEnum
    ) -> AttemptResult:
        for tries in range(_FINALIZE_ATTEMPTS):
            try:
                return self._finalize_once(attempt_id, reason)
            except IntegrityError:
                self.db.rollback()
                if tries == _FINALIZE_ATTEMPTS - 1:
                    raise
                logger.info("Finalize of %s raced an autosave; retrying", attempt_id)
        raise AssertionError("unreachable")

    def _answer_records(self, attempt_id: uuid.UUID) -> dict[uuid.UUID, AnswerRecord]:
        return {
            r.question_id: r
            for r in self.db.execute(
                select(AnswerRecord)
                .where(AnswerRecord.attempt_id == attempt_id)
                .execution_options(populate_existing=True)
            ).scalars()
        }

    def _questions(self, attempt_id: uuid.UUID) -> list[SnapshotQuestion]:
        return list(
            self.db.execute(
                select(SnapshotQuestion).where(SnapshotQuestion.attempt_id == attempt_id)
            ).scalars()
        )

    def _prejudge(self, attempt_id: uuid.UUID) -> Verdicts:
        """Oracle verdicts gathered without holding the attempt lock."""
        attempt = self.get_attempt(attempt_id)
        if attempt.status.is_terminal:
            return {}
        answers = {qid: r.value for qid, r in self._answer_records(attempt_id).items()}
        return self._scoring.resolve_verdicts(
            self._questions(attempt_id), answers, attempt.language
        )

    def _finalize_once(
        self, attempt_id: uuid.UUID, reason: CompletionReasonEnum
    ) -> AttemptResult:
        verdicts = self._prejudge(attempt_id)

        attempt = self.lock_attempt(attempt_id)
        if attempt.status.is_terminal:
            self.db.rollback()
            return self.stored_result(attempt_id)

        questions = self._questions(attempt.id)
        # One read of every answer; scoring never interleaves with further writes.
        # Answers changed since prejudging are judged again here.
        records = self._answer_records(attempt.id)
        result = self._scoring.score(
            questions,
            {qid: r.value for qid, r in records.items()},
            ScoringPolicy.from_assessment(attempt.assessment),
            attempt.language,
            verdicts=verdicts,
        )

        now = self.now()
        for entry in result.breakdown:
            record = records.get(entry.question_id)
            if record is None:
                record = AnswerRecord(
                    attempt_id=attempt.id,
                    question_id=entry.question_id,
                    value=None,
                    client_seq=0,
                    time_spent_seconds=0,
                    saved_at=now,
                )
                self.db.add(record)
            record.is_correct = entry.is_correct
            record.score = entry.score
            record.finalized = True

        status = (
            AttemptStatusEnum.COMPLETED
            if reason is CompletionReasonEnum.STUDENT_SUBMIT
            else AttemptStatusEnum.EXPIRED
        )
        self.db.flush()
        updated = self.db.execute(
            update(Attempt)
            .where(
                Attempt.id == attempt.id,
                Attempt.status == AttemptStatusEnum.IN_PROGRESS,
            )
            .values(
                status=status,
                completed_at=now,
                completion_reason=reason,
                score=result.total,
            )
            .execution_options(synchronize_session=False)
        ).rowcount
        if updated == 0:
            # Someone else finalized between our read and write.
            self.db.rollback()
            return self.stored_result(attempt_id)
        self.db.commit()

        logger.info(
            "Attempt %s finalized (%s): score=%s/%s answered=%d/%d",
            attempt_id, reason.value, result.total, result.max_total,
            result.answered_count, result.total_count,
        )
        return AttemptResult(
            attempt_id=attempt_id,
            status=status,
            completion_reason=reason,
            total_score=result.total,
            max_score=result.max_total,
            duration_taken_seconds=duration_taken(attempt, now),
            breakdown=result.breakdown,
        )

    def stored_result(self, attempt_id: uuid.UUID) -> AttemptResult:
        """Result of a terminal attempt, read back from the store."""
        attempt = self.get_attempt(attempt_id)
        if not attempt.status.is_terminal:
            raise AttemptNotFound("Attempt has not been finalized", attempt_id=str(attempt_id))

        records = self._answer_records(attempt.id)
        breakdown = []
        max_score = Decimal(0)
        for question in sorted(attempt.questions, key=lambda q: q.position):
            record = records.get(question.id)
            value = record.value if record is not None else None
            max_score += Decimal(question.positive_marks)
            breakdown.append(
                QuestionScore(
                    question_id=question.id,
                    position=question.position,
                    question_type=question.question_type,
                    answered=is_answered(value),
                    is_correct=bool(record is not None and record.is_correct),
                    score=quantize(
                        record.score if record is not None and record.score is not None else 0
                    ),
                    submitted=value,
                    canonical_answer=question.canonical_answer,
                )
            )
        return AttemptResult(
            attempt_id=attempt.id,
            status=attempt.status,
            completion_reason=attempt.completion_reason,
            total_score=quantize(attempt.score if attempt.score is not None else 0),
            max_score=quantize(max_score),
            duration_taken_seconds=duration_taken(attempt, attempt.completed_at),
            breakdown=breakdown,
        )

    # ── Listings ─────────────────────────────────────────────────────────

    def list_submissions(self, assessment_id: uuid.UUID) -> list[Submission]:
        """Every finalized attempt of an assessment, oldest completion first."""
        if self.db.get(Assessment, assessment_id) is None:
            raise AssessmentNotFound(assessment_id=str(assessment_id))

        max_marks = (
            select(
                SnapshotQuestion.attempt_id,
                func.sum(SnapshotQuestion.positive_marks).label("max_score"),
            )
            .group_by(SnapshotQuestion.attempt_id)
            .subquery()
        )
        rows = self.db.execute(
            select(Attempt, max_marks.c.max_score)
            .outerjoin(max_marks, max_marks.c.attempt_id == Attempt.id)
            .where(
                Attempt.assessment_id == assessment_id,
                Attempt.status != AttemptStatusEnum.IN_PROGRESS,
            )
            .order_by(Attempt.completed_at, Attempt.attempt_number)
        ).all()

        return [
            Submission(
                attempt_id=attempt.id,
                student_id=attempt.student_id,
                attempt_number=attempt.attempt_number,
                status=attempt.status,
                completion_reason=attempt.completion_reason,
                total_score=quantize(attempt.score if attempt.score is not None else 0),
                max_score=quantize(max_score if max_score is not None else 0),
                started_at=timer.as_utc(attempt.started_at),
                completed_at=(
                    timer.as_utc(attempt.completed_at) if attempt.completed_at else None
                ),
                duration_taken_seconds=duration_taken(attempt, attempt.completed_at),
            )
            for attempt, max_score in rows
        ]
