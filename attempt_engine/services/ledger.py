"""Answer ledger: autosave and progress for in-progress attempts.

Each save is an upsert keyed on (attempt, question) that only wins when its
``client_seq`` is strictly newer than the stored one, so a delayed or
retried request can never overwrite a newer answer. Saves sent without a
sequence get one from the server clock. Client and server sequences are
never compared with each other; between the two kinds the later arrival
(``saved_at``) wins.

Saves and finalization both lock the attempt row, which serializes them per
attempt: a save committed before finalization is always scored, a save
arriving after it is rejected.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from attempt_engine.core.errors import (
    AttemptExpired,
    InvalidQuestionForAttempt,
)
from attempt_engine.db.models import (
    AnswerRecord,
    AttemptStatusEnum,
    CompletionReasonEnum,
    SnapshotQuestion,
)
from attempt_engine.services import timer
from attempt_engine.services.lifecycle import AttemptLifecycle
from attempt_engine.services.scoring import is_answered

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


@dataclass
class SaveResult:
    accepted: bool
    remaining_seconds: int
    client_seq: int


@dataclass
class SavedAnswer:
    question_id: uuid.UUID
    value: Any
    client_seq: int
    time_spent_seconds: int
    saved_at: datetime


@dataclass
class Progress:
    attempt_id: uuid.UUID
    status: AttemptStatusEnum
    answered_count: int
    total_count: int
    remaining_seconds: int
    answers: list[SavedAnswer] = field(default_factory=list)


def server_sequence(now: datetime) -> int:
    """Sequence number for saves that arrive without one: µs since epoch."""
    return int(timer.as_utc(now).timestamp() * 1_000_000)


class AnswerLedger:
    def __init__(self, db: Session, lifecycle: AttemptLifecycle) -> None:
        self.db = db
        self._lifecycle = lifecycle

    def save_answer(
        self,
        attempt_id: uuid.UUID,
        question_id: uuid.UUID,
        value: Any,
        client_seq: int | None = None,
        time_spent: int = 0,
    ) -> SaveResult:
        attempt = self._lifecycle.lock_attempt(attempt_id)
        now = self._lifecycle.now()

        if attempt.status is AttemptStatusEnum.EXPIRED:
            self.db.rollback()
            raise AttemptExpired(attempt_id=str(attempt_id))
        if attempt.status.is_terminal:
            self.db.rollback()
            raise InvalidQuestionForAttempt(
                "Attempt is no longer accepting answers",
                attempt_id=str(attempt_id),
                question_id=str(question_id),
                status=attempt.status.value,
            )
        if timer.is_past_deadline(attempt, now):
            logger.info("Save on attempt %s after its deadline; finalizing", attempt_id)
            self._lifecycle.finalize(attempt_id, CompletionReasonEnum.TIMEOUT)
            raise AttemptExpired(attempt_id=str(attempt_id))

        belongs = self.db.scalar(
            select(func.count())
            .select_from(SnapshotQuestion)
            .where(
                SnapshotQuestion.id == question_id,
                SnapshotQuestion.attempt_id == attempt_id,
            )
        )
        if not belongs:
            self.db.rollback()
            raise InvalidQuestionForAttempt(
                attempt_id=str(attempt_id), question_id=str(question_id)
            )

        server_seq = client_seq is None
        seq = server_sequence(now) if server_seq else client_seq
        try:
            accepted = self._upsert(
                attempt_id, question_id, value, seq, server_seq, max(0, time_spent), now
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(
                "Answer save failed: attempt=%s question=%s seq=%d",
                attempt_id, question_id, seq, exc_info=True,
            )
            raise

        if not accepted:
            logger.info(
                "Stale save ignored: attempt=%s question=%s seq=%d",
                attempt_id, question_id, seq,
            )
        return SaveResult(
            accepted=accepted,
            remaining_seconds=timer.remaining_seconds(attempt, now),
            client_seq=seq,
        )

    def _upsert(
        self,
        attempt_id: uuid.UUID,
        question_id: uuid.UUID,
        value: Any,
        seq: int,
        server_seq: bool,
        time_spent: int,
        now: datetime,
    ) -> bool:
        """Insert-or-newer-wins. Returns False when the stored answer is not older."""
        dialect = self.db.get_bind().dialect.name
        try:
            insert = _UPSERT_DIALECTS[dialect]
        except KeyError:
            raise NotImplementedError(f"Answer upsert is not supported on {dialect}") from None

        table = AnswerRecord.__table__
        stmt = insert(table).values(
            id=uuid.uuid4(),
            attempt_id=attempt_id,
            question_id=question_id,
            value=value,
            client_seq=seq,
            server_seq=server_seq,
            time_spent_seconds=time_spent,
            saved_at=now,
            finalized=False,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.attempt_id, table.c.question_id],
            set_={
                "value": stmt.excluded.value,
                "client_seq": stmt.excluded.client_seq,
                "server_seq": stmt.excluded.server_seq,
                "saved_at": stmt.excluded.saved_at,
                "time_spent_seconds": table.c.time_spent_seconds
                + stmt.excluded.time_spent_seconds,
            },
            where=table.c.finalized.is_(False)
            & or_(
                (table.c.server_seq == stmt.excluded.server_seq)
                & (table.c.client_seq < stmt.excluded.client_seq),
                (table.c.server_seq != stmt.excluded.server_seq)
                & (table.c.saved_at <= stmt.excluded.saved_at),
            ),
        ).returning(table.c.id)
        return self.db.execute(stmt).first() is not None

    def get_progress(self, attempt_id: uuid.UUID) -> Progress:
        """Answered count, remaining time and saved answers; finalizes on timeout."""
        attempt = self._lifecycle.expire_if_due(attempt_id)
        total = self.db.scalar(
            select(func.count())
            .select_from(SnapshotQuestion)
            .where(SnapshotQuestion.attempt_id == attempt_id)
        )
        records = self.db.execute(
            select(AnswerRecord)
            .join(SnapshotQuestion, AnswerRecord.question_id == SnapshotQuestion.id)
            .where(AnswerRecord.attempt_id == attempt_id)
            .order_by(SnapshotQuestion.position)
            .execution_options(populate_existing=True)
        ).scalars().all()

        answers = [
            SavedAnswer(
                question_id=r.question_id,
                value=r.value,
                client_seq=r.client_seq,
                time_spent_seconds=r.time_spent_seconds,
                saved_at=timer.as_utc(r.saved_at),
            )
            for r in records
            if is_answered(r.value)
        ]
        return Progress(
            attempt_id=attempt_id,
            status=attempt.status,
            answered_count=len(answers),
            total_count=total or 0,
            remaining_seconds=timer.remaining_seconds(attempt, self._lifecycle.now()),
            answers=answers,
        )
