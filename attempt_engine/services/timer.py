"""Timer / expiry enforcement.

Remaining time is always derived from the attempt's stored ``started_at`` and
``duration_seconds`` using the server clock. Nothing runs in the background:
an expired attempt is finalized on the next contact (resume, progress or
save), so auto-submission happens "at or before the next client interaction".
"""

from datetime import datetime, timezone
from typing import Callable

from attempt_engine.db.models import Attempt

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def elapsed_seconds(attempt: Attempt, now: datetime) -> int:
    return int((as_utc(now) - as_utc(attempt.started_at)).total_seconds())


def remaining_seconds(attempt: Attempt, now: datetime) -> int:
    """``max(0, duration - elapsed)``; always 0 once the attempt is terminal."""
    if attempt.status.is_terminal:
        return 0
    return max(0, attempt.duration_seconds - elapsed_seconds(attempt, now))


def is_past_deadline(attempt: Attempt, now: datetime) -> bool:
    return not attempt.status.is_terminal and remaining_seconds(attempt, now) == 0


def within_window(
    start_date: datetime | None, end_date: datetime | None, now: datetime
) -> bool:
    now = as_utc(now)
    if start_date is not None and as_utc(start_date) > now:
        return False
    if end_date is not None and as_utc(end_date) < now:
        return False
    return True
