"""Initial migration - create assessment and attempt tables

Revision ID: 0_initial
Revises: 
Create Date: 2026-10-19 00:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


QUESTION_TYPES = ('single_choice', 'true_false', 'matching', 'short_answer')
ATTEMPT_STATUSES = ('in_progress', 'completed', 'expired')
COMPLETION_REASONS = ('student_submit', 'timeout')


def upgrade() -> None:
    # ── Create enums ──────────────────────────────────────────────────
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE question_type_enum AS ENUM ('single_choice', 'true_false', 'matching', 'short_answer');
        EXCEPTION WHEN duplicate_object THEN null;
        END $$;
    """)
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE attempt_status_enum AS ENUM ('in_progress', 'completed', 'expired');
        EXCEPTION WHEN duplicate_object THEN null;
        END $$;
    """)
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE completion_reason_enum AS ENUM ('student_submit', 'timeout');
        EXCEPTION WHEN duplicate_object THEN null;
        END $$;
    """)

    question_type = postgresql.ENUM(*QUESTION_TYPES, name='question_type_enum', create_type=False)

    # ── assessments table ─────────────────────────────────────────────
    op.create_table(
        'assessments',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('is_published', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_seconds', sa.Integer(), nullable=True),
        sa.Column('language', sa.String(10), nullable=False, server_default='en'),
        sa.Column('clamp_negative_total', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('penalize_unanswered', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('shuffle_within_blocks', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    # ── question_blocks table ─────────────────────────────────────────
    op.create_table(
        'question_blocks',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('assessment_id', sa.UUID(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('question_type', question_type, nullable=False),
        sa.Column('question_count', sa.Integer(), nullable=False),
        sa.Column('duration_per_question', sa.Integer(), nullable=False, server_default='120'),
        sa.Column('num_options', sa.Integer(), nullable=True),
        sa.Column('num_first_side', sa.Integer(), nullable=True),
        sa.Column('num_second_side', sa.Integer(), nullable=True),
        sa.Column('positive_marks', sa.Numeric(10, 4), nullable=False, server_default='1'),
        sa.Column('negative_marks', sa.Numeric(10, 4), nullable=False, server_default='0'),
        sa.Column('topic', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['assessment_id'], ['assessments.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('positive_marks >= 0', name='ck_block_positive_marks'),
        sa.CheckConstraint('negative_marks >= 0', name='ck_block_negative_marks'),
    )

    # ── enrollments table ─────────────────────────────────────────────
    op.create_table(
        'enrollments',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('student_id', sa.UUID(), nullable=False),
        sa.Column('assessment_id', sa.UUID(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['assessment_id'], ['assessments.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('student_id', 'assessment_id', name='uq_enrollment_student_assessment'),
    )
    op.create_index('ix_enrollments_student_id', 'enrollments', ['student_id'])

    # ── attempts table ────────────────────────────────────────────────
    op.create_table(
        'attempts',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('student_id', sa.UUID(), nullable=False),
        sa.Column('assessment_id', sa.UUID(), nullable=False),
        sa.Column('attempt_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('status', postgresql.ENUM(*ATTEMPT_STATUSES, name='attempt_status_enum', create_type=False), nullable=False, server_default='in_progress'),
        sa.Column('language', sa.String(10), nullable=False, server_default='en'),
        sa.Column('duration_seconds', sa.Integer(), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completion_reason', postgresql.ENUM(*COMPLETION_REASONS, name='completion_reason_enum', create_type=False), nullable=True),
        sa.Column('score', sa.Numeric(10, 4), nullable=True),
        sa.Column('fidelity_warnings', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['assessment_id'], ['assessments.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('student_id', 'assessment_id', 'attempt_number', name='uq_attempt_number'),
    )
    op.create_index('ix_attempts_student_id', 'attempts', ['student_id'])
    # At most one in-progress attempt per (student, assessment)
    op.create_index(
        'uq_attempt_one_in_progress',
        'attempts',
        ['student_id', 'assessment_id'],
        unique=True,
        postgresql_where=sa.text("status = 'in_progress'"),
    )

    # ── snapshot_questions table ──────────────────────────────────────
    op.create_table(
        'snapshot_questions',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('attempt_id', sa.UUID(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('block_position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('question_type', question_type, nullable=False),
        sa.Column('prompt', sa.Text(), nullable=False),
        sa.Column('options', sa.JSON(), nullable=True),
        sa.Column('canonical_answer', sa.JSON(), nullable=True),
        sa.Column('positive_marks', sa.Numeric(10, 4), nullable=False),
        sa.Column('negative_marks', sa.Numeric(10, 4), nullable=False),
        sa.Column('duration_seconds', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['attempt_id'], ['attempts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('attempt_id', 'position', name='uq_snapshot_position'),
        sa.CheckConstraint('positive_marks >= 0', name='ck_snapshot_positive_marks'),
        sa.CheckConstraint('negative_marks >= 0', name='ck_snapshot_negative_marks'),
    )
    op.create_index('ix_snapshot_questions_attempt_id', 'snapshot_questions', ['attempt_id'])

    # ── answer_records table ──────────────────────────────────────────
    op.create_table(
        'answer_records',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('attempt_id', sa.UUID(), nullable=False),
        sa.Column('question_id', sa.UUID(), nullable=False),
        sa.Column('value', sa.JSON(), nullable=True),
        sa.Column('client_seq', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('server_seq', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('time_spent_seconds', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('saved_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_correct', sa.Boolean(), nullable=True),
        sa.Column('score', sa.Numeric(10, 4), nullable=True),
        sa.Column('finalized', sa.Boolean(), nullable=False, server_default='false'),
        sa.ForeignKeyConstraint(['attempt_id'], ['attempts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['question_id'], ['snapshot_questions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('attempt_id', 'question_id', name='uq_answer_attempt_question'),
    )


def downgrade() -> None:
    op.drop_table('answer_records')
    op.drop_index('ix_snapshot_questions_attempt_id', table_name='snapshot_questions')
    op.drop_table('snapshot_questions')
    op.drop_index('uq_attempt_one_in_progress', table_name='attempts')
    op.drop_index('ix_attempts_student_id', table_name='attempts')
    op.drop_table('attempts')
    op.drop_index('ix_enrollments_student_id', table_name='enrollments')
    op.drop_table('enrollments')
    op.drop_table('question_blocks')
    op.drop_table('assessments')
    op.execute("DROP TYPE IF EXISTS completion_reason_enum")
    op.execute("DROP TYPE IF EXISTS attempt_status_enum")
    op.execute("DROP TYPE IF EXISTS question_type_enum")
