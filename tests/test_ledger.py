"""Tests for the answer ledger: autosave, recency guard and progress."""

import uuid

import pytest
from sqlalchemy.exc import OperationalError

from attempt_engine.core.errors import (
    AttemptExpired,
    AttemptNotFound,
    InvalidQuestionForAttempt,
)
from attempt_engine.db.models import (
    AttemptStatusEnum,
    CompletionReasonEnum,
    QuestionTypeEnum,
)
from attempt_engine.services.ledger import AnswerLedger, server_sequence
from attempt_engine.services.lifecycle import AttemptLifecycle
from attempt_engine.services.scoring import ScoringEngine
from attempt_engine.services.snapshot import SnapshotBuilder

from factories import T0, make_assessment, make_block


@pytest.fixture
def lifecycle(db, source, clock):
    return AttemptLifecycle(db, SnapshotBuilder(source), ScoringEngine(), clock=clock)


@pytest.fixture
def ledger(db, lifecycle):
    return AnswerLedger(db, lifecycle)


@pytest.fixture
def attempt(db, lifecycle, student_id):
    assessment = make_assessment(
        db,
        [make_block(0, question_count=2),
         make_block(1, QuestionTypeEnum.MATCHING, question_count=1, num_first_side=3)],
        students=(student_id,),
        duration_seconds=600,
    )
    return lifecycle.start_or_resume(student_id, assessment.id).attempt


def _answers(ledger, attempt_id):
    return {a.question_id: a for a in ledger.get_progress(attempt_id).answers}


def test_save_then_read_back(ledger, attempt):
    choice, _, matching = attempt.questions
    pairs = [["L0", "R0"], ["L1", "R1"], ["L2", "R2"]]

    assert ledger.save_answer(attempt.id, choice.id, "B", client_seq=1).accepted
    assert ledger.save_answer(attempt.id, matching.id, pairs, client_seq=1).accepted

    answers = _answers(ledger, attempt.id)
    assert answers[choice.id].value == "B"
    assert answers[matching.id].value == pairs


def test_newer_sequence_overwrites(ledger, attempt):
    question = attempt.questions[0]
    ledger.save_answer(attempt.id, question.id, "A", client_seq=1)
    result = ledger.save_answer(attempt.id, question.id, "C", client_seq=2)

    assert result.accepted is True
    assert _answers(ledger, attempt.id)[question.id].value == "C"


@pytest.mark.parametrize("stale_seq", [5, 3])
def test_stale_or_duplicate_sequence_is_ignored(ledger, attempt, stale_seq):
    question = attempt.questions[0]
    ledger.save_answer(attempt.id, question.id, "A", client_seq=5)
    result = ledger.save_answer(attempt.id, question.id, "D", client_seq=stale_seq)

    assert result.accepted is False
    saved = _answers(ledger, attempt.id)[question.id]
    assert saved.value == "A"
    assert saved.client_seq == 5


def test_server_assigns_sequence_when_missing(ledger, attempt, clock):
    question = attempt.questions[0]
    first = ledger.save_answer(attempt.id, question.id, "A")
    clock.advance(1)
    second = ledger.save_answer(attempt.id, question.id, "B")

    assert first.client_seq == server_sequence(T0)
    assert second.client_seq > first.client_seq
    assert _answers(ledger, attempt.id)[question.id].value == "B"


def test_client_sequence_after_server_assigned_save(ledger, attempt, clock):
    question = attempt.questions[0]
    ledger.save_answer(attempt.id, question.id, "A")

    clock.advance(5)
    result = ledger.save_answer(attempt.id, question.id, "B", client_seq=2)

    assert result.accepted is True
    saved = _answers(ledger, attempt.id)[question.id]
    assert saved.value == "B"
    assert saved.client_seq == 2


def test_server_assigned_save_after_client_sequence(ledger, attempt, clock):
    question = attempt.questions[0]
    ledger.save_answer(attempt.id, question.id, "A", client_seq=7)

    clock.advance(1)
    assert ledger.save_answer(attempt.id, question.id, "B").accepted is True

    clock.advance(1)
    assert ledger.save_answer(attempt.id, question.id, "C", client_seq=8).accepted is True
    assert _answers(ledger, attempt.id)[question.id].value == "C"


def test_client_sequences_still_ordered_after_mixed_saves(ledger, attempt, clock):
    question = attempt.questions[0]
    ledger.save_answer(attempt.id, question.id, "A")
    clock.advance(1)
    ledger.save_answer(attempt.id, question.id, "B", client_seq=4)

    clock.advance(1)
    assert ledger.save_answer(attempt.id, question.id, "C", client_seq=3).accepted is False
    assert _answers(ledger, attempt.id)[question.id].value == "B"


def test_time_spent_accumulates(ledger, attempt):
    question = attempt.questions[0]
    ledger.save_answer(attempt.id, question.id, "A", client_seq=1, time_spent=12)
    ledger.save_answer(attempt.id, question.id, "B", client_seq=2, time_spent=8)
    assert _answers(ledger, attempt.id)[question.id].time_spent_seconds == 20


def test_remaining_seconds_reported(ledger, attempt, clock):
    clock.advance(45)
    result = ledger.save_answer(attempt.id, attempt.questions[0].id, "A")
    assert result.remaining_seconds == 555


def test_question_from_another_attempt_rejected(ledger, attempt):
    with pytest.raises(InvalidQuestionForAttempt):
        ledger.save_answer(attempt.id, uuid.uuid4(), "A")


def test_unknown_attempt(ledger):
    with pytest.raises(AttemptNotFound):
        ledger.save_answer(uuid.uuid4(), uuid.uuid4(), "A")


def test_save_after_submit_rejected(ledger, lifecycle, attempt):
    lifecycle.submit(attempt.id)
    with pytest.raises(InvalidQuestionForAttempt) as exc_info:
        ledger.save_answer(attempt.id, attempt.questions[0].id, "A", client_seq=9)
    assert exc_info.value.details["status"] == "completed"


def test_save_past_deadline_expires_attempt(ledger, lifecycle, attempt, clock):
    question = attempt.questions[0]
    ledger.save_answer(attempt.id, question.id, "A", client_seq=1)

    clock.advance(601)
    with pytest.raises(AttemptExpired):
        ledger.save_answer(attempt.id, question.id, "B", client_seq=2)

    progress = ledger.get_progress(attempt.id)
    assert progress.status is AttemptStatusEnum.EXPIRED
    assert progress.remaining_seconds == 0

    result = lifecycle.stored_result(attempt.id)
    assert result.completion_reason is CompletionReasonEnum.TIMEOUT
    assert result.breakdown[0].is_correct is True

    with pytest.raises(AttemptExpired):
        ledger.save_answer(attempt.id, question.id, "C", client_seq=3)


def test_progress_counts_only_answered(ledger, attempt):
    choice, other, _ = attempt.questions
    ledger.save_answer(attempt.id, choice.id, "A", client_seq=1)
    ledger.save_answer(attempt.id, other.id, "   ", client_seq=1)

    progress = ledger.get_progress(attempt.id)
    assert progress.answered_count == 1
    assert progress.total_count == 3
    assert progress.status is AttemptStatusEnum.IN_PROGRESS
    assert progress.remaining_seconds == 600


def test_progress_drives_expiry(ledger, attempt, clock):
    clock.advance(700)
    progress = ledger.get_progress(attempt.id)
    assert progress.status is AttemptStatusEnum.EXPIRED


def test_store_failure_propagates(ledger, attempt, monkeypatch):
    def failing_upsert(*args, **kwargs):
        raise OperationalError("INSERT INTO answer_records", {}, Exception("disk I/O error"))

    monkeypatch.setattr(AnswerLedger, "_upsert", failing_upsert)
    with pytest.raises(OperationalError):
        ledger.save_answer(attempt.id, attempt.questions[0].id, "A", client_seq=1)

    monkeypatch.undo()
    assert _answers(ledger, attempt.id) == {}
    assert ledger.save_answer(attempt.id, attempt.questions[0].id, "A", client_seq=1).accepted
