"""One-time DB setup: create tables and seed a demo assessment."""
import uuid
from decimal import Decimal

from attempt_engine.db.session import Base, get_engine, get_session_factory
from attempt_engine.db.models import (
    Assessment,
    Enrollment,
    QuestionBlock,
    QuestionTypeEnum,
)

DEMO_TITLE = "Demo assessment"
# Fixed id so the demo student can be used straight from the X-Student-Id header
DEMO_STUDENT_ID = uuid.UUID("00000000-0000-4000-8000-000000000001")

# 1. Create all tables
engine = get_engine()
Base.metadata.create_all(bind=engine)
print("✅ All tables created")

session_factory = get_session_factory()
with session_factory() as db:
    # 2. Demo assessment with one block per question type
    assessment = db.query(Assessment).filter(Assessment.title == DEMO_TITLE).first()
    if not assessment:
        assessment = Assessment(title=DEMO_TITLE, is_published=True, language="en")
        assessment.blocks = [
            QuestionBlock(
                position=0,
                question_type=QuestionTypeEnum.SINGLE_CHOICE,
                question_count=5,
                duration_per_question=90,
                num_options=4,
                positive_marks=Decimal("1"),
                negative_marks=Decimal("0.25"),
                topic="General knowledge",
            ),
            QuestionBlock(
                position=1,
                question_type=QuestionTypeEnum.TRUE_FALSE,
                question_count=5,
                duration_per_question=45,
                positive_marks=Decimal("1"),
                negative_marks=Decimal("0.5"),
                topic="General knowledge",
            ),
            QuestionBlock(
                position=2,
                question_type=QuestionTypeEnum.MATCHING,
                question_count=2,
                duration_per_question=180,
                num_first_side=4,
                num_second_side=4,
                positive_marks=Decimal("2"),
                topic="Capitals",
            ),
            QuestionBlock(
                position=3,
                question_type=QuestionTypeEnum.SHORT_ANSWER,
                question_count=3,
                duration_per_question=120,
                positive_marks=Decimal("2"),
                topic="Science",
            ),
        ]
        db.add(assessment)
        db.commit()
        db.refresh(assessment)
        print(f"✅ Created demo assessment (id={assessment.id})")
    else:
        print("  Demo assessment already exists")

    # 3. Enroll the demo student
    enrolled = (
        db.query(Enrollment)
        .filter(
            Enrollment.student_id == DEMO_STUDENT_ID,
            Enrollment.assessment_id == assessment.id,
        )
        .first()
    )
    if not enrolled:
        db.add(Enrollment(student_id=DEMO_STUDENT_ID, assessment_id=assessment.id))
        db.commit()
        print(f"✅ Enrolled demo student {DEMO_STUDENT_ID}")
    else:
        print("  Demo student already enrolled")

print("\n🎉 Seed complete.")
