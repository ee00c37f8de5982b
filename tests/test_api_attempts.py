"""Integration tests for the attempt endpoints.

Covers:
  POST /api/assessments/{id}/attempts
  PUT  /api/attempts/{id}/answers/{question_id}
  POST /api/attempts/{id}/submit
  GET  /api/attempts/{id}/progress
  GET  /api/attempts/{id}
  GET  /api/assessments/{id}/submissions

The question source, oracle and clock are fakes; tests focus on routing,
DB state, error envelopes and response shapes.
"""

import uuid

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from attempt_engine.db.models import QuestionTypeEnum
from attempt_engine.main import app
from attempt_engine.services.ledger import AnswerLedger

from factories import make_assessment, make_block


# ── Helpers ────────────────────────────────────────────────────────────────────


def _headers(student_id) -> dict:
    return {"X-Student-Id": str(student_id)}


def _start(client: TestClient, assessment_id, student_id, **body):
    return client.post(
        f"/api/assessments/{assessment_id}/attempts",
        json=body or None,
        headers=_headers(student_id),
    )


def _tf_assessment(db: Session, student_id, clamp: bool):
    return make_assessment(
        db,
        [make_block(0, QuestionTypeEnum.TRUE_FALSE, question_count=1,
                    duration_per_question=60, positive="1", negative="0.5")],
        students=(student_id,),
        clamp_negative_total=clamp,
    )


# ── Start / resume ─────────────────────────────────────────────────────────────


def test_start_returns_questions_without_answers(client, db, student_id):
    assessment = make_assessment(db, [make_block(0, question_count=2)], students=(student_id,))
    resp = _start(client, assessment.id, student_id)

    assert resp.status_code == 201, resp.text
    data = resp.json()
    assert data["status"] == "in_progress"
    assert data["resumed"] is False
    assert data["remaining_seconds"] == 120
    assert len(data["questions"]) == 2
    for question in data["questions"]:
        assert "canonical_answer" not in question
        assert question["options"]


def test_start_twice_resumes(client, db, student_id):
    assessment = make_assessment(db, students=(student_id,))
    first = _start(client, assessment.id, student_id)
    second = _start(client, assessment.id, student_id)

    assert second.status_code == 200
    assert second.json()["resumed"] is True
    assert second.json()["id"] == first.json()["id"]


def test_start_passes_language_hint(client, db, source, student_id):
    assessment = make_assessment(db, students=(student_id,))
    resp = _start(client, assessment.id, student_id, language="fa")
    assert resp.json()["language"] == "fa"
    assert source.calls[0][1] == "fa"


def test_missing_student_header(client, db):
    assessment = make_assessment(db)
    resp = client.post(f"/api/assessments/{assessment.id}/attempts")
    assert resp.status_code == 401


def test_not_enrolled_error_envelope(client, db, student_id):
    assessment = make_assessment(db)
    resp = _start(client, assessment.id, student_id)

    assert resp.status_code == 403
    body = resp.json()
    assert body["success"] is False
    assert body["error_code"] == "not_enrolled"


def test_unknown_assessment(client, student_id):
    resp = _start(client, uuid.uuid4(), student_id)
    assert resp.status_code == 404
    assert resp.json()["error_code"] == "assessment_not_found"


def test_source_outage_is_503(client, db, source, student_id):
    assessment = make_assessment(db, students=(student_id,))
    source.fail = True
    resp = _start(client, assessment.id, student_id)
    assert resp.status_code == 503
    assert resp.json()["error_code"] == "upstream_unavailable"


def test_no_questions_is_422(client, db, source, student_id):
    assessment = make_assessment(db, students=(student_id,))
    source.returned_count[0] = 0
    resp = _start(client, assessment.id, student_id)
    assert resp.status_code == 422
    assert resp.json()["error_code"] == "no_questions_available"


# ── Autosave / progress ────────────────────────────────────────────────────────


def test_autosave_and_progress(client, db, student_id):
    assessment = make_assessment(db, [make_block(0, question_count=3)], students=(student_id,))
    attempt = _start(client, assessment.id, student_id).json()
    attempt_id = attempt["id"]
    q0 = attempt["questions"][0]["id"]

    resp = client.put(
        f"/api/attempts/{attempt_id}/answers/{q0}",
        json={"value": "B", "client_seq": 2, "time_spent": 15},
        headers=_headers(student_id),
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["accepted"] is True

    stale = client.put(
        f"/api/attempts/{attempt_id}/answers/{q0}",
        json={"value": "C", "client_seq": 1},
        headers=_headers(student_id),
    )
    assert stale.status_code == 200
    assert stale.json()["accepted"] is False

    progress = client.get(f"/api/attempts/{attempt_id}/progress", headers=_headers(student_id))
    assert progress.status_code == 200
    data = progress.json()
    assert data["answered_count"] == 1
    assert data["total_count"] == 3
    assert data["answers"][0]["value"] == "B"
    assert data["answers"][0]["time_spent_seconds"] == 15


def test_save_invalid_question(client, db, student_id):
    assessment = make_assessment(db, students=(student_id,))
    attempt_id = _start(client, assessment.id, student_id).json()["id"]
    resp = client.put(
        f"/api/attempts/{attempt_id}/answers/{uuid.uuid4()}",
        json={"value": "A"},
        headers=_headers(student_id),
    )
    assert resp.status_code == 422
    assert resp.json()["error_code"] == "invalid_question_for_attempt"


def test_store_failure_on_save_is_500(client, db, student_id, monkeypatch):
    assessment = make_assessment(db, students=(student_id,))
    attempt = _start(client, assessment.id, student_id).json()

    def failing_upsert(*args, **kwargs):
        raise OperationalError("INSERT INTO answer_records", {}, Exception("database is locked"))

    monkeypatch.setattr(AnswerLedger, "_upsert", failing_upsert)
    with TestClient(app, raise_server_exceptions=False) as failing_client:
        resp = failing_client.put(
            f"/api/attempts/{attempt['id']}/answers/{attempt['questions'][0]['id']}",
            json={"value": "A", "client_seq": 1},
            headers=_headers(student_id),
        )
    assert resp.status_code == 500

    monkeypatch.undo()
    progress = client.get(f"/api/attempts/{attempt['id']}/progress", headers=_headers(student_id))
    assert progress.json()["answered_count"] == 0


def test_other_students_cannot_touch_attempt(client, db, student_id):
    assessment = make_assessment(db, students=(student_id,))
    attempt_id = _start(client, assessment.id, student_id).json()["id"]

    resp = client.get(f"/api/attempts/{attempt_id}/progress", headers=_headers(uuid.uuid4()))
    assert resp.status_code == 404


# ── Submit / result ────────────────────────────────────────────────────────────


def test_true_false_scores_with_and_without_clamp(client, db):
    for clamp, expected in ((False, "-0.5"), (True, "0")):
        student_id = uuid.uuid4()
        assessment = _tf_assessment(db, student_id, clamp)
        attempt = _start(client, assessment.id, student_id).json()
        question_id = attempt["questions"][0]["id"]

        client.put(
            f"/api/attempts/{attempt['id']}/answers/{question_id}",
            json={"value": "False"},
            headers=_headers(student_id),
        )
        resp = client.post(f"/api/attempts/{attempt['id']}/submit", headers=_headers(student_id))
        assert resp.status_code == 200, resp.text
        assert float(resp.json()["total_score"]) == float(expected)


def test_submit_is_idempotent_and_result_readable(client, db, student_id):
    assessment = _tf_assessment(db, student_id, clamp=True)
    attempt = _start(client, assessment.id, student_id).json()
    question_id = attempt["questions"][0]["id"]
    client.put(
        f"/api/attempts/{attempt['id']}/answers/{question_id}",
        json={"value": True},
        headers=_headers(student_id),
    )

    first = client.post(f"/api/attempts/{attempt['id']}/submit", headers=_headers(student_id))
    second = client.post(f"/api/attempts/{attempt['id']}/submit", headers=_headers(student_id))
    result = client.get(f"/api/attempts/{attempt['id']}", headers=_headers(student_id))

    assert first.json() == second.json() == result.json()
    data = first.json()
    assert data["status"] == "completed"
    assert data["completion_reason"] == "student_submit"
    assert float(data["total_score"]) == 1.0
    assert data["breakdown"][0]["is_correct"] is True
    assert float(data["max_score"]) == 1.0
    assert float(data["percentage"]) == 100.0
    assert data["duration_taken_seconds"] == 0
    assert data["breakdown"][0]["submitted"] is True
    assert data["breakdown"][0]["canonical_answer"] == "True"

    again = _start(client, assessment.id, student_id)
    assert again.status_code == 409
    assert again.json()["error_code"] == "already_completed"


def test_save_after_submit_rejected(client, db, student_id):
    assessment = make_assessment(db, students=(student_id,))
    attempt = _start(client, assessment.id, student_id).json()
    client.post(f"/api/attempts/{attempt['id']}/submit", headers=_headers(student_id))

    resp = client.put(
        f"/api/attempts/{attempt['id']}/answers/{attempt['questions'][0]['id']}",
        json={"value": "A"},
        headers=_headers(student_id),
    )
    assert resp.status_code == 422
    assert resp.json()["error_code"] == "invalid_question_for_attempt"


def test_result_of_in_progress_attempt_is_404(client, db, student_id):
    assessment = make_assessment(db, students=(student_id,))
    attempt_id = _start(client, assessment.id, student_id).json()["id"]
    resp = client.get(f"/api/attempts/{attempt_id}", headers=_headers(student_id))
    assert resp.status_code == 404


# ── Submissions ────────────────────────────────────────────────────────────────


def test_submissions_listing(client, db, clock):
    first, second = uuid.uuid4(), uuid.uuid4()
    assessment = make_assessment(
        db, [make_block(0, question_count=2)], students=(first, second), duration_seconds=600
    )
    for student_id, value in ((first, "A"), (second, "B")):
        attempt = _start(client, assessment.id, student_id).json()
        client.put(
            f"/api/attempts/{attempt['id']}/answers/{attempt['questions'][0]['id']}",
            json={"value": value},
            headers=_headers(student_id),
        )
        clock.advance(30)
        client.post(f"/api/attempts/{attempt['id']}/submit", headers=_headers(student_id))

    resp = client.get(f"/api/assessments/{assessment.id}/submissions")
    assert resp.status_code == 200, resp.text
    rows = resp.json()
    assert [r["student_id"] for r in rows] == [str(first), str(second)]
    assert [float(r["percentage"]) for r in rows] == [50.0, 0.0]
    assert all(r["status"] == "completed" for r in rows)
    assert [r["duration_taken_seconds"] for r in rows] == [30, 30]


def test_submissions_unknown_assessment(client):
    resp = client.get(f"/api/assessments/{uuid.uuid4()}/submissions")
    assert resp.status_code == 404
    assert resp.json()["error_code"] == "assessment_not_found"


# ── Expiry ─────────────────────────────────────────────────────────────────────


def test_save_after_deadline_expires_attempt(client, db, clock, student_id):
    assessment = make_assessment(db, students=(student_id,), duration_seconds=600)
    attempt = _start(client, assessment.id, student_id).json()
    question_id = attempt["questions"][0]["id"]

    clock.advance(601)
    resp = client.put(
        f"/api/attempts/{attempt['id']}/answers/{question_id}",
        json={"value": "A"},
        headers=_headers(student_id),
    )
    assert resp.status_code == 410
    assert resp.json()["error_code"] == "attempt_expired"

    result = client.get(f"/api/attempts/{attempt['id']}", headers=_headers(student_id)).json()
    assert result["status"] == "expired"
    assert result["completion_reason"] == "timeout"
    assert result["answered_count"] == 0


# ── Misc ───────────────────────────────────────────────────────────────────────


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_root(client):
    assert client.get("/").json()["health"] == "/health"
