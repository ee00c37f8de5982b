"""Domain errors raised by the attempt engine.

Services raise these; the API layer renders them through a single exception
handler (see ``attempt_engine.main``) as an ``ErrorResponse`` envelope.
"""

from typing import Any


class AttemptError(Exception):
    """Base class for every error the engine surfaces to callers."""

    error_code = "attempt_error"
    status_code = 400

    def __init__(self, message: str | None = None, **details: Any) -> None:
        self.message = message or self.__class__.__doc__ or self.error_code
        self.details = details or None
        super().__init__(self.message)


# ── Lookups ───────────────────────────────────────────────────────────────────


class AssessmentNotFound(AttemptError):
    """Assessment not found."""

    error_code = "assessment_not_found"
    status_code = 404


class AttemptNotFound(AttemptError):
    """Attempt not found."""

    error_code = "attempt_not_found"
    status_code = 404


# ── Start preconditions ───────────────────────────────────────────────────────


class NotEnrolled(AttemptError):
    """Student is not enrolled in this assessment."""

    error_code = "not_enrolled"
    status_code = 403


class NotPublished(AttemptError):
    """Assessment is not published yet."""

    error_code = "not_published"
    status_code = 409


class OutsideWindow(AttemptError):
    """Assessment is not open at this time."""

    error_code = "outside_window"
    status_code = 403


class AlreadyCompleted(AttemptError):
    """Assessment has already been completed."""

    error_code = "already_completed"
    status_code = 409


# ── In-progress failures ──────────────────────────────────────────────────────


class AttemptExpired(AttemptError):
    """Attempt deadline has passed."""

    error_code = "attempt_expired"
    status_code = 410


class InvalidQuestionForAttempt(AttemptError):
    """Question does not belong to this attempt."""

    error_code = "invalid_question_for_attempt"
    status_code = 422


class NoQuestionsAvailable(AttemptError):
    """No questions could be materialized for this assessment."""

    error_code = "no_questions_available"
    status_code = 422


class UpstreamUnavailable(AttemptError):
    """An upstream service failed after exhausting its retries."""

    error_code = "upstream_unavailable"
    status_code = 503
