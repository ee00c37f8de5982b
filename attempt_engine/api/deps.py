"""FastAPI dependencies shared across routes."""

import uuid

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from attempt_engine.db.session import get_db
from attempt_engine.services import timer
from attempt_engine.services.attempts import AttemptService
from attempt_engine.services.oracle import EquivalenceOracle, get_oracle
from attempt_engine.services.question_source import QuestionSource, get_question_source


def get_student_id(x_student_id: str | None = Header(None)) -> uuid.UUID:
    """Student identity from the ``X-Student-Id`` header, or 401."""
    if not x_student_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Student-Id header",
        )
    try:
        return uuid.UUID(x_student_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-Student-Id header",
        ) from None


def get_clock() -> timer.Clock:
    return timer.utcnow


def get_attempt_service(
    db: Session = Depends(get_db),
    source: QuestionSource = Depends(get_question_source),
    oracle: EquivalenceOracle | None = Depends(get_oracle),
    clock: timer.Clock = Depends(get_clock),
) -> AttemptService:
    return AttemptService(db, source, oracle, clock=clock)
