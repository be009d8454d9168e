from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.core.config import settings
from app.core.exceptions import GradeLockedError, GradeWriteError, InvalidTransitionError, ValidationError
from app.models import AuditAction, AuditLog, Grade, GradeStatus
from app.schemas.grade import BulkGradeSubmission, GradeCellInput
from app.services.grade_submission import BulkGradeSubmissionService
from app.services.grade_workflow import GradeWorkflowService
from tests.conftest import EXAM, TERM, context_for, make_grade


class RecordingRecalculator:
    def __init__(self, fail: bool = False):
        self.calls = []
        self.fail = fail

    def trigger_recalculation(self, class_id, term, exam_type):
        self.calls.append((class_id, term, exam_type))
        if self.fail:
            raise RuntimeError("queue unavailable")


def sheet(seed, scores, **overrides):
    """Build a one-subject (mathematics) sheet from {student: score}."""
    payload = {
        "class_id": seed.school_class.id,
        "term": TERM,
        "exam_type": EXAM,
        "grades": {student.id: {seed.math.id: {"score": score}} for student, score in scores.items()},
    }
    payload.update(overrides)
    return BulkGradeSubmission.model_validate(payload)


def all_grades(db):
    db.expire_all()
    return db.execute(select(Grade).order_by(Grade.student_id)).scalars().all()


def test_teacher_submission_skips_blank_cells(db, seed):
    recalculator = RecordingRecalculator()
    request = sheet(seed, {seed.alice: "80", seed.brian: "65", seed.carol: ""})

    result = BulkGradeSubmissionService(db).submit(context_for(seed.teacher, seed.school), request, recalculator)
    db.commit()

    grades = all_grades(db)
    assert len(grades) == 2
    assert {g.status for g in grades} == {GradeStatus.SUBMITTED}
    assert all(g.submitted_by == seed.teacher.id and g.submitted_at is not None for g in grades)
    assert result.grades_written == 2
    assert result.submitted is True
    assert result.message == "2 grades submitted"
    assert recalculator.calls == [(seed.school_class.id, TERM, EXAM)]


def test_principal_saves_drafts(db, seed):
    result = BulkGradeSubmissionService(db).submit(
        context_for(seed.principal, seed.school), sheet(seed, {seed.alice: "40"})
    )

    grade = all_grades(db)[0]
    assert grade.status == GradeStatus.DRAFT
    assert grade.submitted_at is None
    assert result.message == "1 grade saved as draft"


def test_derived_fields_are_filled_in(db, seed):
    BulkGradeSubmissionService(db).submit(
        context_for(seed.teacher, seed.school),
        BulkGradeSubmission.model_validate({
            "class_id": seed.school_class.id,
            "term": TERM,
            "exam_type": EXAM,
            "grades": {seed.alice.id: {seed.math.id: {"score": "36", "max_score": "40"}}},
        }),
    )

    grade = all_grades(db)[0]
    assert grade.percentage == Decimal("90.00")
    assert grade.letter_grade == "A+"


def test_resubmitting_the_same_key_updates_in_place(db, seed):
    service = BulkGradeSubmissionService(db)
    context = context_for(seed.teacher, seed.school)

    service.submit(context, sheet(seed, {seed.alice: "70"}))
    service.submit(context, sheet(seed, {seed.alice: "70"}))
    assert len(all_grades(db)) == 1

    service.submit(context, sheet(seed, {seed.alice: "85"}))
    grades = all_grades(db)
    assert len(grades) == 1
    assert grades[0].score == Decimal("85")


def test_rejected_grade_resubmits_and_clears_reason(db, seed):
    service = BulkGradeSubmissionService(db)
    context = context_for(seed.teacher, seed.school)
    service.submit(context, sheet(seed, {seed.alice: "70"}))
    grade = all_grades(db)[0]

    GradeWorkflowService(db).reject_grades(context_for(seed.principal, seed.school), [grade.id], "Recount")
    db.commit()

    service.submit(context, sheet(seed, {seed.alice: "72"}))
    grade = all_grades(db)[0]
    assert grade.status == GradeStatus.SUBMITTED
    assert grade.rejected_reason is None


@pytest.mark.parametrize("missing", ["class_id", "term", "exam_type"])
def test_missing_selection_writes_nothing(db, seed, missing):
    request = sheet(seed, {seed.alice: "80"}, **{missing: None})

    with pytest.raises(ValidationError) as exc_info:
        BulkGradeSubmissionService(db).submit(context_for(seed.teacher, seed.school), request)

    assert exc_info.value.details["code"] == "MISSING_SELECTION"
    assert missing in exc_info.value.details["missing"]
    assert all_grades(db) == []


def test_empty_sheet_does_not_touch_the_database(db, seed):
    recalculator = RecordingRecalculator()
    result = BulkGradeSubmissionService(db).submit(
        context_for(seed.teacher, seed.school), sheet(seed, {seed.alice: "", seed.brian: None}), recalculator
    )

    assert result.grades_written == 0
    assert result.message == "No grades to submit"
    assert recalculator.calls == []
    assert db.execute(select(AuditLog)).scalars().all() == []


def test_score_above_max_is_rejected(db, seed):
    with pytest.raises(ValidationError):
        BulkGradeSubmissionService(db).submit(context_for(seed.teacher, seed.school), sheet(seed, {seed.alice: "101"}))
    assert all_grades(db) == []


def test_students_must_belong_to_the_class(db, seed):
    seed.carol.class_id = None
    db.commit()

    with pytest.raises(ValidationError) as exc_info:
        BulkGradeSubmissionService(db).submit(
            context_for(seed.teacher, seed.school), sheet(seed, {seed.alice: "50", seed.carol: "60"})
        )
    assert exc_info.value.details["student_ids"] == [seed.carol.id]


def test_class_from_another_school_is_rejected(db, seed):
    request = sheet(seed, {seed.alice: "50"}, class_id=seed.other_class.id)
    with pytest.raises(ValidationError):
        BulkGradeSubmissionService(db).submit(context_for(seed.teacher, seed.school), request)


def test_locked_grades_block_the_whole_sheet(db, seed):
    service = BulkGradeSubmissionService(db)
    context = context_for(seed.teacher, seed.school)
    service.submit(context, sheet(seed, {seed.alice: "70"}))
    grade = all_grades(db)[0]
    GradeWorkflowService(db).approve_grades(context_for(seed.principal, seed.school), [grade.id])
    db.commit()

    with pytest.raises(GradeLockedError) as exc_info:
        service.submit(context, sheet(seed, {seed.alice: "20", seed.brian: "55"}))

    assert exc_info.value.details["grade_ids"] == [grade.id]
    grades = all_grades(db)
    assert len(grades) == 1
    assert grades[0].score == Decimal("70")
    assert grades[0].status == GradeStatus.APPROVED


def test_recalculation_failure_does_not_fail_submission(db, seed):
    recalculator = RecordingRecalculator(fail=True)
    result = BulkGradeSubmissionService(db).submit(
        context_for(seed.teacher, seed.school), sheet(seed, {seed.alice: "80"}), recalculator
    )

    assert result.grades_written == 1
    assert len(recalculator.calls) == 1


def test_submission_is_audited(db, seed):
    BulkGradeSubmissionService(db).submit(context_for(seed.teacher, seed.school), sheet(seed, {seed.alice: "80"}))

    entry = db.execute(select(AuditLog)).scalar_one()
    assert entry.action == AuditAction.GRADE_SUBMITTED
    assert entry.resource_id == f"{seed.school_class.id}:{TERM}:{EXAM}"
    assert entry.extra_data["grades_written"] == 1


def test_grade_under_review_cannot_be_resubmitted(db, seed):
    service = BulkGradeSubmissionService(db)
    context = context_for(seed.teacher, seed.school)
    service.submit(context, sheet(seed, {seed.alice: "70"}))
    grade = all_grades(db)[0]
    GradeWorkflowService(db).start_review(context_for(seed.principal, seed.school), [grade.id])
    db.commit()

    with pytest.raises(InvalidTransitionError) as exc_info:
        service.submit(context, sheet(seed, {seed.alice: "99", seed.brian: "55"}))

    assert exc_info.value.details["grade_ids"] == [grade.id]
    grades = all_grades(db)
    assert len(grades) == 1
    assert grades[0].status == GradeStatus.UNDER_REVIEW
    assert grades[0].score == Decimal("70")
    assert grades[0].reviewed_by == seed.principal.id


def test_draft_save_does_not_pull_back_submitted_grades(db, seed):
    BulkGradeSubmissionService(db).submit(context_for(seed.teacher, seed.school), sheet(seed, {seed.alice: "70"}))
    db.commit()

    with pytest.raises(InvalidTransitionError):
        BulkGradeSubmissionService(db).submit(
            context_for(seed.principal, seed.school), sheet(seed, {seed.alice: "50"})
        )

    grade = all_grades(db)[0]
    assert grade.status == GradeStatus.SUBMITTED
    assert grade.score == Decimal("70")
    assert grade.submitted_at is not None


def test_draft_save_updates_existing_draft(db, seed):
    service = BulkGradeSubmissionService(db)
    context = context_for(seed.principal, seed.school)
    service.submit(context, sheet(seed, {seed.alice: "40"}))
    result = service.submit(context, sheet(seed, {seed.alice: "45"}))

    grades = all_grades(db)
    assert len(grades) == 1
    assert grades[0].score == Decimal("45")
    assert grades[0].status == GradeStatus.DRAFT
    assert result.grades_written == 1


def test_rows_that_change_status_mid_write_are_not_counted(monkeypatch, db, seed):
    approved = make_grade(db, seed, seed.alice, seed.math, score="70", status=GradeStatus.APPROVED)
    # Simulate an approval landing between the status check and the write
    monkeypatch.setattr(BulkGradeSubmissionService, "_ensure_writable", lambda self, *args: None)

    result = BulkGradeSubmissionService(db).submit(
        context_for(seed.teacher, seed.school), sheet(seed, {seed.alice: "20", seed.brian: "55"})
    )

    assert result.grades_written == 1
    assert result.message == "1 grade submitted"
    db.expire_all()
    db.refresh(approved)
    assert approved.score == Decimal("70")
    assert approved.status == GradeStatus.APPROVED


def test_write_failure_rolls_back_and_reports_the_error(monkeypatch, db, seed):
    def failing_upsert(self, rows, target):
        raise OperationalError("INSERT INTO grades", {}, Exception("disk full"))

    monkeypatch.setattr(BulkGradeSubmissionService, "_upsert", failing_upsert)
    recalculator = RecordingRecalculator()

    with pytest.raises(GradeWriteError) as exc_info:
        BulkGradeSubmissionService(db).submit(
            context_for(seed.teacher, seed.school), sheet(seed, {seed.alice: "80", seed.brian: "65"}), recalculator
        )

    assert exc_info.value.status_code == 500
    assert exc_info.value.code == "WRITE_FAILED"
    assert exc_info.value.message == "disk full"
    assert all_grades(db) == []
    assert db.execute(select(AuditLog)).scalars().all() == []
    assert recalculator.calls == []


def test_cell_max_score_defaults_to_setting(monkeypatch):
    monkeypatch.setattr(settings, "DEFAULT_MAX_SCORE", 50)

    assert GradeCellInput(score="40").max_score == Decimal("50")
