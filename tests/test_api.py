import asyncio
import time
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from app.core.exceptions import RequestTimeoutError
from app.models import GradeStatus
from app.schemas.grade import GradeStatistics
from app.services import grade as grade_service
from app.services.grade_submission import BulkGradeSubmissionService
from tests.conftest import EXAM, TERM, auth_headers, make_grade

API = "/api/v1"


def bulk_payload(seed, scores):
    return {
        "class_id": seed.school_class.id,
        "term": TERM,
        "exam_type": EXAM,
        "grades": {
            str(student.id): {str(seed.math.id): {"score": score}}
            for student, score in scores.items()
        },
    }


# ==========================================
# Auth
# ==========================================

def test_login_refresh_and_me(client, seed):
    response = client.post(f"{API}/auth/login", json={"username": "teacher", "password": "password123"})
    assert response.status_code == 200
    tokens = response.json()
    assert tokens["token_type"] == "bearer"

    me = client.get(f"{API}/auth/me", headers={"Authorization": f"Bearer {tokens['access_token']}"})
    assert me.status_code == 200
    assert me.json()["role"] == "teacher"
    assert me.json()["school_id"] == seed.school.id

    refreshed = client.post(f"{API}/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert refreshed.status_code == 200


def test_login_with_wrong_password(client, seed):
    response = client.post(f"{API}/auth/login", json={"username": "teacher", "password": "wrong-password"})
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_FAILED"


def test_missing_token_is_rejected(client, seed):
    response = client.get(f"{API}/grades")
    # Anonymous callers have no role to check and no user to load
    assert response.status_code in (401, 422)
    assert response.json()["success"] is False


# ==========================================
# Bulk submission
# ==========================================

def test_bulk_submission_and_background_positions(client, seed):
    response = client.post(
        f"{API}/grades/bulk",
        json=bulk_payload(seed, {seed.alice: 80, seed.brian: 65, seed.carol: ""}),
        headers=auth_headers(seed.teacher),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["grades_written"] == 2
    assert body["message"] == "2 grades submitted"
    assert body["status"] == "submitted"

    sheet = client.get(
        f"{API}/grades/sheet",
        params={"class_id": seed.school_class.id, "subject_id": seed.math.id, "term": TERM, "exam_type": EXAM},
        headers=auth_headers(seed.teacher),
    )
    assert sheet.status_code == 200
    positions = {row["student_name"]: row["position"] for row in sheet.json()}
    assert positions == {"Alice Wanjiru": 1, "Brian Otieno": 2}


def test_bulk_submission_twice_keeps_one_row(client, seed):
    headers = auth_headers(seed.teacher)
    for _ in range(2):
        response = client.post(f"{API}/grades/bulk", json=bulk_payload(seed, {seed.alice: 70}), headers=headers)
        assert response.status_code == 200

    listing = client.get(f"{API}/grades", headers=headers)
    assert listing.json()["total"] == 1


def test_bulk_submission_missing_selection(client, seed):
    payload = bulk_payload(seed, {seed.alice: 70})
    payload["term"] = ""
    response = client.post(f"{API}/grades/bulk", json=payload, headers=auth_headers(seed.teacher))

    assert response.status_code == 422
    assert response.json()["error"]["details"]["code"] == "MISSING_SELECTION"


def test_bulk_submission_malformed_score(client, seed):
    response = client.post(
        f"{API}/grades/bulk",
        json=bulk_payload(seed, {seed.alice: "eighty"}),
        headers=auth_headers(seed.teacher),
    )
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_bulk_submission_write_failure(monkeypatch, client, seed):
    def failing_upsert(self, rows, target):
        raise OperationalError("INSERT INTO grades", {}, Exception("disk full"))

    monkeypatch.setattr(BulkGradeSubmissionService, "_upsert", failing_upsert)

    response = client.post(
        f"{API}/grades/bulk", json=bulk_payload(seed, {seed.alice: 80}), headers=auth_headers(seed.teacher)
    )
    assert response.status_code == 500
    assert response.json()["error"]["code"] == "WRITE_FAILED"
    assert response.json()["error"]["message"] == "disk full"
    assert client.get(f"{API}/grades", headers=auth_headers(seed.teacher)).json()["total"] == 0


def test_grade_under_review_blocks_resubmission(client, db, seed):
    grade = make_grade(db, seed, seed.alice, seed.math, score="60", status=GradeStatus.UNDER_REVIEW)
    response = client.post(
        f"{API}/grades/bulk", json=bulk_payload(seed, {seed.alice: 99}), headers=auth_headers(seed.teacher)
    )
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "INVALID_TRANSITION"
    assert response.json()["error"]["details"]["grade_ids"] == [grade.id]


def test_parent_cannot_submit_grades(client, seed):
    response = client.post(
        f"{API}/grades/bulk", json=bulk_payload(seed, {seed.alice: 70}), headers=auth_headers(seed.parent)
    )
    assert response.status_code == 403


# ==========================================
# Workflow and immutability
# ==========================================

def test_approval_flow_and_locking(client, db, seed):
    grade = make_grade(db, seed, seed.alice, seed.math, score="60", status=GradeStatus.SUBMITTED)
    principal = auth_headers(seed.principal)

    response = client.post(f"{API}/grades/approve", json={"grade_ids": [grade.id]}, headers=principal)
    assert response.status_code == 200
    assert response.json()["status"] == "approved"

    edit = client.patch(f"{API}/grades/{grade.id}", json={"score": 99}, headers=principal)
    assert edit.status_code == 409
    assert edit.json()["error"]["code"] == "GRADE_LOCKED"

    resubmit = client.post(
        f"{API}/grades/bulk", json=bulk_payload(seed, {seed.alice: 99}), headers=auth_headers(seed.teacher)
    )
    assert resubmit.status_code == 409

    release = client.post(f"{API}/grades/release", json={"grade_ids": [grade.id]}, headers=principal)
    assert release.status_code == 200
    assert release.json()["status"] == "released"

    db.expire_all()
    db.refresh(grade)
    assert grade.score == Decimal("60")


def test_teacher_cannot_approve_through_api(client, db, seed):
    grade = make_grade(db, seed, seed.alice, seed.math, status=GradeStatus.SUBMITTED)
    response = client.post(
        f"{API}/grades/approve", json={"grade_ids": [grade.id]}, headers=auth_headers(seed.teacher)
    )
    assert response.status_code == 403


def test_reject_without_reason(client, db, seed):
    grade = make_grade(db, seed, seed.alice, seed.math, status=GradeStatus.SUBMITTED)
    response = client.post(
        f"{API}/grades/reject", json={"grade_ids": [grade.id]}, headers=auth_headers(seed.principal)
    )
    assert response.status_code == 422

    db.expire_all()
    db.refresh(grade)
    assert grade.status == GradeStatus.SUBMITTED


def test_invalid_transition_is_a_conflict(client, db, seed):
    grade = make_grade(db, seed, seed.alice, seed.math, status=GradeStatus.DRAFT)
    response = client.post(
        f"{API}/grades/release", json={"grade_ids": [grade.id]}, headers=auth_headers(seed.principal)
    )
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "INVALID_TRANSITION"


def test_override_flow_through_api(client, db, seed):
    grade = make_grade(db, seed, seed.alice, seed.math, score="60", status=GradeStatus.RELEASED)

    requested = client.post(
        f"{API}/grade-overrides",
        json={"grade_id": grade.id, "new_score": 72, "reason": "Marks omitted"},
        headers=auth_headers(seed.teacher),
    )
    assert requested.status_code == 200
    override_id = requested.json()["id"]

    pending = client.get(f"{API}/grade-overrides", params={"status": "pending"}, headers=auth_headers(seed.principal))
    assert pending.json()["total"] == 1

    approved = client.post(
        f"{API}/grade-overrides/{override_id}/approve", json={"notes": "OK"}, headers=auth_headers(seed.principal)
    )
    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"

    db.expire_all()
    db.refresh(grade)
    assert grade.score == Decimal("72")
    assert grade.status == GradeStatus.RELEASED
    assert grade.position == 1


def test_override_with_same_score_is_rejected(client, db, seed):
    grade = make_grade(db, seed, seed.alice, seed.math, score="60", status=GradeStatus.APPROVED)
    response = client.post(
        f"{API}/grade-overrides",
        json={"grade_id": grade.id, "new_score": 60, "reason": "No change"},
        headers=auth_headers(seed.teacher),
    )
    assert response.status_code == 422


def test_history_endpoint(client, db, seed):
    grade = make_grade(db, seed, seed.alice, seed.math, status=GradeStatus.SUBMITTED)
    client.post(f"{API}/grades/approve", json={"grade_ids": [grade.id]}, headers=auth_headers(seed.principal))

    response = client.get(f"{API}/grades/{grade.id}/history", headers=auth_headers(seed.principal))
    assert response.status_code == 200
    assert response.json()[0]["action"] == "GRADE_APPROVED"

    assert client.get(f"{API}/grades/{grade.id}/history", headers=auth_headers(seed.teacher)).status_code == 403


def test_positions_endpoint(client, db, seed):
    make_grade(db, seed, seed.alice, seed.math, score="50")
    make_grade(db, seed, seed.brian, seed.math, score="50")
    make_grade(db, seed, seed.carol, seed.math, score="40")

    response = client.post(
        f"{API}/grades/positions",
        json={"class_id": seed.school_class.id, "term": TERM, "exam_type": EXAM},
        headers=auth_headers(seed.principal),
    )
    assert response.status_code == 200
    positions = response.json()["positions"]
    assert positions == {str(seed.alice.id): 1, str(seed.brian.id): 1, str(seed.carol.id): 3}


# ==========================================
# Tenancy
# ==========================================

def test_school_user_cannot_switch_school(client, seed):
    response = client.get(f"{API}/grades", headers=auth_headers(seed.teacher, school_id=seed.other_school.id))
    assert response.status_code == 403


def test_platform_admin_needs_school_header(client, seed):
    assert client.get(f"{API}/grades", headers=auth_headers(seed.admin)).status_code == 404
    assert client.get(f"{API}/grades", headers=auth_headers(seed.admin, school_id=seed.school.id)).status_code == 200


def test_other_school_cannot_see_grades(client, db, seed):
    grade = make_grade(db, seed, seed.alice, seed.math, status=GradeStatus.SUBMITTED)
    response = client.get(f"{API}/grades", headers=auth_headers(seed.other_principal))
    assert response.status_code == 200
    assert response.json()["total"] == 0

    assert client.get(f"{API}/grades/{grade.id}", headers=auth_headers(seed.principal)).status_code == 200
    assert client.get(f"{API}/grades/{grade.id}", headers=auth_headers(seed.other_principal)).status_code == 404


# ==========================================
# Statistics
# ==========================================

def test_statistics(client, db, seed):
    make_grade(db, seed, seed.alice, seed.math, score="80", status=GradeStatus.SUBMITTED)
    make_grade(db, seed, seed.brian, seed.math, score="60", status=GradeStatus.APPROVED)

    response = client.get(f"{API}/grades/statistics", headers=auth_headers(seed.principal))
    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 2
    assert body["by_status"]["submitted"] == 1
    assert body["by_status"]["approved"] == 1
    assert Decimal(str(body["average_score"])) == Decimal("70.00")
    assert body["curriculum_distribution"] == {"standard": 2}


def test_statistics_timeout_is_retryable(monkeypatch, seed):
    def slow_statistics(school_id, filters=None):
        time.sleep(0.3)
        return GradeStatistics(total=0, by_status={}, average_score=Decimal("0"), curriculum_distribution={})

    monkeypatch.setattr(grade_service, "compute_grade_statistics", slow_statistics)

    with pytest.raises(RequestTimeoutError) as exc_info:
        asyncio.run(grade_service.grade_statistics_with_timeout(seed.school.id, timeout=0.05))

    assert exc_info.value.status_code == 504
    assert exc_info.value.details == {"retryable": True}


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
