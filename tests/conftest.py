"""Shared fixtures: in-memory SQLite database, seeded school and API client."""

import os
from decimal import Decimal
from types import SimpleNamespace

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["BCRYPT_ROUNDS"] = "4"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.core.database import Base, SessionLocal, engine  # noqa: E402
from app.core.dependencies import CurrentUserContext  # noqa: E402
from app.core.security import create_access_token, hash_password  # noqa: E402
from app.main import app  # noqa: E402
from app.models import (  # noqa: E402
    CurriculumType,
    Grade,
    GradeStatus,
    ParentStudent,
    School,
    SchoolClass,
    Student,
    Subject,
    User,
    UserRole,
)
from app.services.maintenance import maintenance_gate  # noqa: E402

PASSWORD = "password123"
TERM = "Term 1"
EXAM = "Midterm"


@pytest.fixture(autouse=True)
def database():
    Base.metadata.create_all(bind=engine)
    maintenance_gate.invalidate()
    yield
    maintenance_gate.invalidate()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seed(db):
    """One school with staff, a class of three students and a linked parent,
    plus a second school used for tenant isolation checks."""
    password_hash = hash_password(PASSWORD)

    school = School(name="Greenfield Academy", code="GFA", curriculum_type=CurriculumType.STANDARD)
    other_school = School(name="Hillside School", code="HSS", curriculum_type=CurriculumType.CBC)
    db.add_all([school, other_school])
    db.flush()

    def user(username, role, school_id):
        return User(
            name=username.replace("_", " ").title(),
            username=username,
            password_hash=password_hash,
            role=role,
            school_id=school_id,
        )

    admin = user("edufam_admin", UserRole.EDUFAM_ADMIN, None)
    owner = user("school_owner", UserRole.SCHOOL_OWNER, school.id)
    principal = user("principal", UserRole.PRINCIPAL, school.id)
    teacher = user("teacher", UserRole.TEACHER, school.id)
    other_teacher = user("teacher_two", UserRole.TEACHER, school.id)
    parent = user("parent", UserRole.PARENT, school.id)
    other_parent = user("parent_two", UserRole.PARENT, school.id)
    other_principal = user("hillside_principal", UserRole.PRINCIPAL, other_school.id)
    db.add_all([admin, owner, principal, teacher, other_teacher, parent, other_parent, other_principal])
    db.flush()

    school_class = SchoolClass(school_id=school.id, name="Grade 6 East", level="Grade 6", stream="East")
    other_class = SchoolClass(school_id=other_school.id, name="Grade 6 West")
    db.add_all([school_class, other_class])
    db.flush()

    math = Subject(school_id=school.id, name="Mathematics", code="MATH")
    english = Subject(school_id=school.id, name="English", code="ENG")
    db.add_all([math, english])
    db.flush()

    alice = Student(school_id=school.id, name="Alice Wanjiru", admission_number="A001", class_id=school_class.id)
    brian = Student(school_id=school.id, name="Brian Otieno", admission_number="A002", class_id=school_class.id)
    carol = Student(school_id=school.id, name="Carol Njeri", admission_number="A003", class_id=school_class.id)
    db.add_all([alice, brian, carol])
    db.flush()

    db.add(ParentStudent(parent_id=parent.id, student_id=alice.id, relationship_type="mother"))
    db.add(ParentStudent(parent_id=other_parent.id, student_id=brian.id, relationship_type="father"))
    db.commit()

    return SimpleNamespace(
        school=school,
        other_school=other_school,
        admin=admin,
        owner=owner,
        principal=principal,
        teacher=teacher,
        other_teacher=other_teacher,
        parent=parent,
        other_parent=other_parent,
        other_principal=other_principal,
        school_class=school_class,
        other_class=other_class,
        math=math,
        english=english,
        alice=alice,
        brian=brian,
        carol=carol,
    )


@pytest.fixture
def client():
    # No context manager: the lifespan (and scheduler) is not started
    return TestClient(app)


def context_for(user: User, school: School) -> CurrentUserContext:
    return CurrentUserContext(user=user, school=school)


def auth_headers(user: User, school_id: int | None = None) -> dict[str, str]:
    token = create_access_token(user.id, user.username, role=user.role.value, school_id=user.school_id)
    headers = {"Authorization": f"Bearer {token}"}
    if school_id is not None:
        headers["X-School-Id"] = str(school_id)
    return headers


def make_grade(
    db,
    seed,
    student: Student,
    subject: Subject,
    score: str | None = "75",
    status: GradeStatus = GradeStatus.DRAFT,
    submitted_by: int | None = None,
    term: str = TERM,
    exam_type: str = EXAM,
) -> Grade:
    grade = Grade(
        school_id=seed.school.id,
        student_id=student.id,
        subject_id=subject.id,
        class_id=seed.school_class.id,
        term=term,
        exam_type=exam_type,
        score=Decimal(score) if score is not None else None,
        max_score=Decimal("100"),
        curriculum_type=CurriculumType.STANDARD,
        status=status,
        submitted_by=submitted_by,
    )
    db.add(grade)
    db.commit()
    return grade
