"""Percentage, letter grade and CBC level calculation."""

from decimal import ROUND_HALF_UP, Decimal

from app.models.school import CurriculumType

STANDARD_GRADE_BOUNDARIES: list[tuple[str, int]] = [
    ("A+", 90),
    ("A", 80),
    ("B+", 70),
    ("B", 60),
    ("C+", 50),
    ("C", 40),
    ("D+", 30),
    ("D", 20),
    ("E", 0),
]

IGCSE_GRADE_BOUNDARIES: list[tuple[str, int]] = [
    ("A*", 90),
    ("A", 80),
    ("B", 70),
    ("C", 60),
    ("D", 50),
    ("E", 40),
    ("F", 30),
    ("G", 20),
    ("U", 0),
]

# Competency Based Curriculum performance levels
CBC_PERFORMANCE_LEVELS: list[tuple[str, int, str]] = [
    ("EE", 80, "Exceeding Expectations"),
    ("ME", 60, "Meeting Expectations"),
    ("AE", 40, "Approaching Expectations"),
    ("BE", 0, "Below Expectations"),
]

TWO_PLACES = Decimal("0.01")


def calculate_percentage(score: Decimal | None, max_score: Decimal) -> Decimal | None:
    """Percentage rounded to 2 places; None when the score is missing or out of range."""
    if score is None or max_score <= 0:
        return None
    if score < 0 or score > max_score:
        return None
    return (Decimal(score) / Decimal(max_score) * 100).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def calculate_letter_grade(
    percentage: Decimal | None,
    curriculum: CurriculumType = CurriculumType.STANDARD,
) -> str | None:
    """Map a percentage onto the curriculum's letter boundaries."""
    if percentage is None or percentage < 0 or percentage > 100:
        return None

    boundaries = IGCSE_GRADE_BOUNDARIES if curriculum == CurriculumType.IGCSE else STANDARD_GRADE_BOUNDARIES
    for letter, minimum in boundaries:
        if percentage >= minimum:
            return letter
    return boundaries[-1][0]


def calculate_cbc_performance_level(percentage: Decimal | None) -> str | None:
    if percentage is None or percentage < 0 or percentage > 100:
        return None
    for level, minimum, _ in CBC_PERFORMANCE_LEVELS:
        if percentage >= minimum:
            return level
    return "BE"


def calculate_igcse_weighted(
    coursework_score: Decimal,
    exam_score: Decimal,
    coursework_weight: int = 30,
    exam_weight: int = 70,
) -> Decimal:
    """Weighted IGCSE total out of 100.

    Raises ValueError for scores outside 0-100 or weights not summing to 100.
    """
    if coursework_weight + exam_weight != 100:
        raise ValueError("Coursework and exam weights must sum to 100")
    for value in (coursework_score, exam_score):
        if value < 0 or value > 100:
            raise ValueError("Scores must be between 0 and 100")

    total = Decimal(coursework_score) * coursework_weight / 100 + Decimal(exam_score) * exam_weight / 100
    return total.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def derive_grade_fields(
    score: Decimal,
    max_score: Decimal,
    curriculum: CurriculumType,
    percentage: Decimal | None = None,
    letter_grade: str | None = None,
    performance_level: str | None = None,
) -> dict:
    """Fill in whichever of percentage/letter/level the caller did not supply."""
    if percentage is None:
        percentage = calculate_percentage(score, max_score)
    if letter_grade is None and curriculum != CurriculumType.CBC:
        letter_grade = calculate_letter_grade(percentage, curriculum)
    if performance_level is None and curriculum == CurriculumType.CBC:
        performance_level = calculate_cbc_performance_level(percentage)

    return {
        "percentage": percentage,
        "letter_grade": letter_grade,
        "cbc_performance_level": performance_level,
    }
