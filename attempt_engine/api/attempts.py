"""Attempt routes: start/resume, autosave, submit, progress, result and submissions."""

import logging
import uuid

from fastapi import APIRouter, Depends, Response, status

from attempt_engine.api.deps import get_attempt_service, get_student_id
from attempt_engine.schemas.attempt import (
    AttemptResultRead,
    AttemptStateRead,
    ProgressRead,
    QuestionRead,
    SaveAnswerRequest,
    SaveAnswerResult,
    StartAttemptRequest,
    SubmissionRead,
)
from attempt_engine.services.attempts import AttemptService
from attempt_engine.services.lifecycle import AttemptResult, AttemptState

logger = logging.getLogger(__name__)
router = APIRouter()


def _state_read(state: AttemptState) -> AttemptStateRead:
    attempt = state.attempt
    return AttemptStateRead(
        id=attempt.id,
        assessment_id=attempt.assessment_id,
        attempt_number=attempt.attempt_number,
        status=attempt.status,
        resumed=state.resumed,
        language=attempt.language,
        started_at=attempt.started_at,
        duration_seconds=attempt.duration_seconds,
        remaining_seconds=state.remaining_seconds,
        questions=[QuestionRead.model_validate(q) for q in attempt.questions],
        fidelity_warnings=list(attempt.fidelity_warnings or []),
    )


def _result_read(result: AttemptResult) -> AttemptResultRead:
    return AttemptResultRead.model_validate(result)


@router.post(
    "/assessments/{assessment_id}/attempts",
    response_model=AttemptStateRead,
    status_code=status.HTTP_201_CREATED,
)
def start_attempt(
    assessment_id: uuid.UUID,
    response: Response,
    body: StartAttemptRequest | None = None,
    student_id: uuid.UUID = Depends(get_student_id),
    service: AttemptService = Depends(get_attempt_service),
):
    """Start an attempt, or resume the student's in-progress one.

    Returns 201 for a new attempt and 200 when an existing attempt is resumed.
    Questions never include their canonical answers.
    """
    language = body.language if body else None
    state = service.start_or_resume(student_id, assessment_id, language)
    if state.resumed:
        response.status_code = status.HTTP_200_OK
    return _state_read(state)


@router.put(
    "/attempts/{attempt_id}/answers/{question_id}",
    response_model=SaveAnswerResult,
)
def save_answer(
    attempt_id: uuid.UUID,
    question_id: uuid.UUID,
    body: SaveAnswerRequest,
    student_id: uuid.UUID = Depends(get_student_id),
    service: AttemptService = Depends(get_attempt_service),
):
    """Autosave one answer. A stale ``client_seq`` is acknowledged but not applied."""
    result = service.save_answer(
        student_id,
        attempt_id,
        question_id,
        body.value,
        client_seq=body.client_seq,
        time_spent=body.time_spent,
    )
    return SaveAnswerResult(
        accepted=result.accepted,
        client_seq=result.client_seq,
        remaining_seconds=result.remaining_seconds,
    )


@router.post("/attempts/{attempt_id}/submit", response_model=AttemptResultRead)
def submit_attempt(
    attempt_id: uuid.UUID,
    student_id: uuid.UUID = Depends(get_student_id),
    service: AttemptService = Depends(get_attempt_service),
):
    """Finalize the attempt. Submitting again returns the same stored result."""
    return _result_read(service.submit(student_id, attempt_id))


@router.get("/attempts/{attempt_id}/progress", response_model=ProgressRead)
def get_progress(
    attempt_id: uuid.UUID,
    student_id: uuid.UUID = Depends(get_student_id),
    service: AttemptService = Depends(get_attempt_service),
):
    progress = service.get_progress(student_id, attempt_id)
    return ProgressRead.model_validate(progress, from_attributes=True)


@router.get("/attempts/{attempt_id}", response_model=AttemptResultRead)
def get_result(
    attempt_id: uuid.UUID,
    student_id: uuid.UUID = Depends(get_student_id),
    service: AttemptService = Depends(get_attempt_service),
):
    """Score breakdown of a completed or expired attempt."""
    return _result_read(service.get_result(student_id, attempt_id))


@router.get(
    "/assessments/{assessment_id}/submissions",
    response_model=list[SubmissionRead],
)
def list_submissions(
    assessment_id: uuid.UUID,
    service: AttemptService = Depends(get_attempt_service),
):
    """Finalized attempts of an assessment with their scores. Read-only."""
    return [
        SubmissionRead.model_validate(s) for s in service.list_submissions(assessment_id)
    ]
