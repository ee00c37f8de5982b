"""Pydantic schemas — re‑exported for convenience."""

from attempt_engine.schemas.common import ErrorResponse  # noqa: F401
from attempt_engine.schemas.attempt import (  # noqa: F401
    StartAttemptRequest,
    QuestionRead,
    AttemptStateRead,
    SaveAnswerRequest,
    SaveAnswerResult,
    SavedAnswerRead,
    ProgressRead,
    QuestionScoreRead,
    AttemptResultRead,
    SubmissionRead,
)
