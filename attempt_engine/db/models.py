"""SQLAlchemy ORM models for the assessment attempt engine.

Tables
------
- assessments        – published assessment definitions (read-only to the engine)
- question_blocks    – per-assessment block specs (type, count, timing, marks)
- enrollments        – student ↔ assessment eligibility
- attempts           – one student's timed instance of an assessment
- snapshot_questions – immutable question set materialized for an attempt
- answer_records     – latest submitted answer per (attempt, question)
"""

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from attempt_engine.db.session import Base


# ── helpers ───────────────────────────────────────────────────────────────────


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> uuid.UUID:
    return uuid.uuid4()


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


# Marks are small fractions (0.25, 0.5 …) summed over many questions.
Marks = Numeric(10, 4)


# ── Enums (stored as their values) ────────────────────────────────────────────


class QuestionTypeEnum(str, enum.Enum):
    SINGLE_CHOICE = "single_choice"
    TRUE_FALSE = "true_false"
    MATCHING = "matching"
    SHORT_ANSWER = "short_answer"


class AttemptStatusEnum(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not AttemptStatusEnum.IN_PROGRESS


class CompletionReasonEnum(str, enum.Enum):
    STUDENT_SUBMIT = "student_submit"
    TIMEOUT = "timeout"


# ── Assessments ───────────────────────────────────────────────────────────────


class Assessment(Base):
    __tablename__ = "assessments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    title: Mapped[str] = mapped_column(String(255))
    is_published: Mapped[bool] = mapped_column(Boolean, default=False)
    start_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    end_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # When set, overrides the sum of per-question durations.
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    language: Mapped[str] = mapped_column(String(10), default="en")

    # Marking policy
    clamp_negative_total: Mapped[bool] = mapped_column(Boolean, default=True)
    penalize_unanswered: Mapped[bool] = mapped_column(Boolean, default=False)
    shuffle_within_blocks: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )

    blocks: Mapped[list["QuestionBlock"]] = relationship(
        back_populates="assessment",
        cascade="all, delete-orphan",
        order_by="QuestionBlock.position",
    )
    enrollments: Mapped[list["Enrollment"]] = relationship(
        back_populates="assessment", cascade="all, delete-orphan"
    )


class QuestionBlock(Base):
    """Instructor-configured group of questions sharing a type and marking scheme."""

    __tablename__ = "question_blocks"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    assessment_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("assessments.id", ondelete="CASCADE")
    )
    position: Mapped[int] = mapped_column(Integer, default=0)
    question_type: Mapped[QuestionTypeEnum] = mapped_column(
        Enum(QuestionTypeEnum, name="question_type_enum", values_callable=_enum_values)
    )
    question_count: Mapped[int] = mapped_column(Integer)
    duration_per_question: Mapped[int] = mapped_column(Integer, default=120)
    num_options: Mapped[int | None] = mapped_column(Integer, nullable=True)
    num_first_side: Mapped[int | None] = mapped_column(Integer, nullable=True)
    num_second_side: Mapped[int | None] = mapped_column(Integer, nullable=True)
    positive_marks: Mapped[Decimal] = mapped_column(Marks, default=Decimal("1"))
    negative_marks: Mapped[Decimal] = mapped_column(Marks, default=Decimal("0"))
    topic: Mapped[str | None] = mapped_column(Text, nullable=True)

    assessment: Mapped["Assessment"] = relationship(back_populates="blocks")

    __table_args__ = (
        CheckConstraint("positive_marks >= 0", name="ck_block_positive_marks"),
        CheckConstraint("negative_marks >= 0", name="ck_block_negative_marks"),
    )


class Enrollment(Base):
    __tablename__ = "enrollments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    student_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True)
    assessment_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("assessments.id", ondelete="CASCADE")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )

    assessment: Mapped["Assessment"] = relationship(back_populates="enrollments")

    __table_args__ = (
        UniqueConstraint("student_id", "assessment_id", name="uq_enrollment_student_assessment"),
    )


# ── Attempts ──────────────────────────────────────────────────────────────────


class Attempt(Base):
    __tablename__ = "attempts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    student_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True)
    assessment_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("assessments.id")
    )
    attempt_number: Mapped[int] = mapped_column(Integer, default=1)
    status: Mapped[AttemptStatusEnum] = mapped_column(
        Enum(AttemptStatusEnum, name="attempt_status_enum", values_callable=_enum_values),
        default=AttemptStatusEnum.IN_PROGRESS,
    )
    language: Mapped[str] = mapped_column(String(10), default="en")
    duration_seconds: Mapped[int] = mapped_column(Integer)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completion_reason: Mapped[CompletionReasonEnum | None] = mapped_column(
        Enum(
            CompletionReasonEnum,
            name="completion_reason_enum",
            values_callable=_enum_values,
        ),
        nullable=True,
    )
    score: Mapped[Decimal | None] = mapped_column(Marks, nullable=True)
    fidelity_warnings: Mapped[list] = mapped_column(JSON, default=list)

    assessment: Mapped["Assessment"] = relationship("Assessment")
    questions: Mapped[list["SnapshotQuestion"]] = relationship(
        back_populates="attempt",
        cascade="all, delete-orphan",
        order_by="SnapshotQuestion.position",
    )
    answers: Mapped[list["AnswerRecord"]] = relationship(
        back_populates="attempt", cascade="all, delete-orphan"
    )

    __table_args__ = (
        # At most one in-progress attempt per (student, assessment), enforced
        # by the store so concurrent starts cannot both insert.
        Index(
            "uq_attempt_one_in_progress",
            "student_id",
            "assessment_id",
            unique=True,
            postgresql_where=text("status = 'in_progress'"),
            sqlite_where=text("status = 'in_progress'"),
        ),
        UniqueConstraint(
            "student_id", "assessment_id", "attempt_number", name="uq_attempt_number"
        ),
    )


class SnapshotQuestion(Base):
    """One materialized question of an attempt. Never updated after insert."""

    __tablename__ = "snapshot_questions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    attempt_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("attempts.id", ondelete="CASCADE"), index=True
    )
    position: Mapped[int] = mapped_column(Integer)
    block_position: Mapped[int] = mapped_column(Integer, default=0)
    question_type: Mapped[QuestionTypeEnum] = mapped_column(
        Enum(
            QuestionTypeEnum,
            name="question_type_enum",
            values_callable=_enum_values,
            create_constraint=False,
        )
    )
    prompt: Mapped[str] = mapped_column(Text)
    options: Mapped[list] = mapped_column(JSON, default=list)
    canonical_answer: Mapped[object] = mapped_column(JSON)
    positive_marks: Mapped[Decimal] = mapped_column(Marks)
    negative_marks: Mapped[Decimal] = mapped_column(Marks)
    duration_seconds: Mapped[int] = mapped_column(Integer)

    attempt: Mapped["Attempt"] = relationship(back_populates="questions")

    __table_args__ = (
        UniqueConstraint("attempt_id", "position", name="uq_snapshot_position"),
        CheckConstraint("positive_marks >= 0", name="ck_snapshot_positive_marks"),
        CheckConstraint("negative_marks >= 0", name="ck_snapshot_negative_marks"),
    )


class AnswerRecord(Base):
    """Latest submitted answer for one (attempt, question) pair."""

    __tablename__ = "answer_records"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    attempt_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("attempts.id", ondelete="CASCADE")
    )
    question_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("snapshot_questions.id", ondelete="CASCADE")
    )
    value: Mapped[object | None] = mapped_column(JSON, nullable=True)
    client_seq: Mapped[int] = mapped_column(BigInteger, default=0)
    # client_seq came from the server clock rather than the client
    server_seq: Mapped[bool] = mapped_column(Boolean, default=False)
    time_spent_seconds: Mapped[int] = mapped_column(Integer, default=0)
    saved_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )

    # Derived at finalization
    is_correct: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    score: Mapped[Decimal | None] = mapped_column(Marks, nullable=True)
    finalized: Mapped[bool] = mapped_column(Boolean, default=False)

    attempt: Mapped["Attempt"] = relationship(back_populates="answers")
    question: Mapped["SnapshotQuestion"] = relationship("SnapshotQuestion")

    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_answer_attempt_question"),
    )
