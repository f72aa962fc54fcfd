"""Grade derivation: percentage -> letter grade -> grade points -> quality points.

The scale is a monotonic table of lower bounds; the first row whose bound is
met wins, anything below the last row is an F. ``apply_grade`` is the only
place that writes the derived fields so the three values always move together.
"""

import math
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from ..errors import ValidationFailed
from ..models import GradedRecord, utcnow


GRADE_SCALE: Tuple[Tuple[float, str, float], ...] = (
    (97.0, "A+", 4.0),
    (93.0, "A", 4.0),
    (90.0, "A-", 3.7),
    (87.0, "B+", 3.3),
    (83.0, "B", 3.0),
    (80.0, "B-", 2.7),
    (77.0, "C+", 2.3),
    (73.0, "C", 2.0),
    (70.0, "C-", 1.7),
    (67.0, "D+", 1.3),
    (60.0, "D", 1.0),
)
FAILING_LETTER = "F"
FAILING_POINTS = 0.0


@dataclass(frozen=True)
class DerivedGrade:
    letter_grade: str
    grade_points: float
    quality_points: float


def validate_percentage(percentage) -> float:
    if isinstance(percentage, bool) or not isinstance(percentage, (int, float)):
        raise ValidationFailed("Grade must be a number", details={"percentage_grade": percentage})
    value = float(percentage)
    if not math.isfinite(value) or value < 0 or value > 100:
        raise ValidationFailed(
            "Grade must be between 0 and 100", details={"percentage_grade": percentage}
        )
    return value


def letter_for(percentage: float) -> Tuple[str, float]:
    for lower_bound, letter, points in GRADE_SCALE:
        if percentage >= lower_bound:
            return letter, points
    return FAILING_LETTER, FAILING_POINTS


def derive_grade(percentage, credits: int) -> DerivedGrade:
    value = validate_percentage(percentage)
    if isinstance(credits, bool) or not isinstance(credits, int) or credits <= 0:
        raise ValidationFailed("Course credits must be a positive integer", details={"credits": credits})
    letter, points = letter_for(value)
    return DerivedGrade(
        letter_grade=letter,
        grade_points=points,
        quality_points=round(points * credits, 2),
    )


def apply_grade(record: GradedRecord, percentage, credits: int, graded_by: Optional[int]) -> DerivedGrade:
    """Validate, derive and write every grade field of *record* in one step.

    Nothing is touched when validation fails.
    """
    derived = derive_grade(percentage, credits)
    record.percentage_grade = float(percentage)
    record.letter_grade = derived.letter_grade
    record.grade_points = derived.grade_points
    record.quality_points = derived.quality_points
    record.graded_by = graded_by
    record.graded_at = utcnow()
    return derived


def clear_grade(record: GradedRecord) -> None:
    record.percentage_grade = None
    record.letter_grade = None
    record.grade_points = None
    record.quality_points = None
    record.graded_by = None
    record.graded_at = None


def compute_gpa(records: Iterable[Tuple[GradedRecord, int]]) -> Optional[float]:
    """GPA over ``(record, credits)`` pairs; ``None`` when nothing is gradable."""
    total_quality = 0.0
    total_credits = 0
    for record, credits in records:
        if not record.counts_for_gpa or record.is_auditing:
            continue
        if record.grade_points is None or record.quality_points is None:
            continue
        total_quality += record.quality_points
        total_credits += credits
    if total_credits == 0:
        return None
    return round(total_quality / total_credits, 2)
