"""AttemptService: the façade the HTTP layer talks to.

Wires the lifecycle manager, answer ledger, snapshot builder and scoring
engine around one DB session, and enforces that a student only ever sees
their own attempts.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy.orm import Session

from attempt_engine.core.errors import AttemptNotFound
from attempt_engine.db.models import Attempt
from attempt_engine.services import timer
from attempt_engine.services.ledger import AnswerLedger, Progress, SaveResult
from attempt_engine.services.lifecycle import (
    AttemptLifecycle,
    AttemptResult,
    AttemptState,
    Submission,
)
from attempt_engine.services.oracle import EquivalenceOracle
from attempt_engine.services.question_source import QuestionSource
from attempt_engine.services.scoring import ScoringEngine
from attempt_engine.services.snapshot import SnapshotBuilder


class AttemptService:
    def __init__(
        self,
        db: Session,
        source: QuestionSource,
        oracle: EquivalenceOracle | None = None,
        clock: timer.Clock = timer.utcnow,
    ) -> None:
        self.lifecycle = AttemptLifecycle(
            db, SnapshotBuilder(source), ScoringEngine(oracle), clock=clock
        )
        self.ledger = AnswerLedger(db, self.lifecycle)

    def _owned(self, student_id: uuid.UUID, attempt_id: uuid.UUID) -> Attempt:
        attempt = self.lifecycle.get_attempt(attempt_id)
        if attempt.student_id != student_id:
            raise AttemptNotFound(attempt_id=str(attempt_id))
        return attempt

    def start_or_resume(
        self, student_id: uuid.UUID, assessment_id: uuid.UUID, language: str | None = None
    ) -> AttemptState:
        return self.lifecycle.start_or_resume(student_id, assessment_id, language)

    def save_answer(
        self,
        student_id: uuid.UUID,
        attempt_id: uuid.UUID,
        question_id: uuid.UUID,
        value: Any,
        client_seq: int | None = None,
        time_spent: int = 0,
    ) -> SaveResult:
        self._owned(student_id, attempt_id)
        return self.ledger.save_answer(attempt_id, question_id, value, client_seq, time_spent)

    def submit(self, student_id: uuid.UUID, attempt_id: uuid.UUID) -> AttemptResult:
        self._owned(student_id, attempt_id)
        return self.lifecycle.submit(attempt_id)

    def get_progress(self, student_id: uuid.UUID, attempt_id: uuid.UUID) -> Progress:
        self._owned(student_id, attempt_id)
        return self.ledger.get_progress(attempt_id)

    def get_result(self, student_id: uuid.UUID, attempt_id: uuid.UUID) -> AttemptResult:
        """Stored result; an attempt whose time ran out is finalized first."""
        self._owned(student_id, attempt_id)
        attempt = self.lifecycle.expire_if_due(attempt_id)
        if not attempt.status.is_terminal:
            raise AttemptNotFound(
                "Attempt is still in progress", attempt_id=str(attempt_id)
            )
        return self.lifecycle.stored_result(attempt_id)

    def list_submissions(self, assessment_id: uuid.UUID) -> list[Submission]:
        return self.lifecycle.list_submissions(assessment_id)
