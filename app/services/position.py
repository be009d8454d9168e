"""Class position (rank) calculation."""

import logging
from decimal import Decimal
from typing import Protocol

from fastapi import BackgroundTasks
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.database import SessionLocal
from app.models.grade import Grade, GradeStatus

logger = logging.getLogger(__name__)


class PositionRecalculator(Protocol):
    """Best-effort trigger for rank recomputation.

    Implementations must not block the caller and must not raise for
    recalculation failures.
    """

    def trigger_recalculation(self, class_id: int, term: str, exam_type: str) -> None: ...


def competition_rank(totals: dict[int, Decimal]) -> dict[int, int]:
    """Rank totals highest first; ties share a rank and the next rank skips (1, 2, 2, 4)."""
    ordered = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    positions: dict[int, int] = {}
    previous_total: Decimal | None = None
    rank = 0
    for index, (student_id, total) in enumerate(ordered, start=1):
        if total != previous_total:
            rank = index
            previous_total = total
        positions[student_id] = rank
    return positions


class PositionService:
    """Computes and stores class positions for a class/term/exam tuple."""

    def __init__(self, db: Session):
        self.db = db

    def calculate_class_positions(self, class_id: int, term: str, exam_type: str) -> dict[int, int]:
        """Recompute positions for every student in the tuple.

        One submission can shift everyone's relative rank, so the whole class
        is recomputed, not only the rows that just changed.
        """
        result = self.db.execute(
            select(Grade).where(
                Grade.class_id == class_id,
                Grade.term == term,
                Grade.exam_type == exam_type,
            )
        )
        grades = list(result.scalars().all())

        totals: dict[int, Decimal] = {}
        for grade in grades:
            if grade.score is None or grade.status == GradeStatus.REJECTED:
                continue
            totals[grade.student_id] = totals.get(grade.student_id, Decimal("0")) + Decimal(grade.score)

        positions = competition_rank(totals)
        for grade in grades:
            grade.position = positions.get(grade.student_id)

        self.db.flush()
        logger.info(
            f"[POSITIONS] class={class_id} term={term} exam={exam_type}: ranked {len(positions)} students"
        )
        return positions


def recalculate_positions_job(class_id: int, term: str, exam_type: str) -> None:
    """Background job: recompute positions in a session of its own.

    Failures are logged and swallowed; grades already committed stay as they are.
    """
    db = SessionLocal()
    try:
        PositionService(db).calculate_class_positions(class_id, term, exam_type)
        db.commit()
    except Exception as e:
        logger.exception(
            f"Position recalculation failed for class={class_id} term={term} exam={exam_type}: {e}"
        )
        db.rollback()
    finally:
        db.close()


class BackgroundPositionRecalculator:
    """Queues recalculation to run after the HTTP response is sent."""

    def __init__(self, background_tasks: BackgroundTasks):
        self.background_tasks = background_tasks

    def trigger_recalculation(self, class_id: int, term: str, exam_type: str) -> None:
        self.background_tasks.add_task(recalculate_positions_job, class_id, term, exam_type)
