import math

import pytest

from registrar.errors import ValidationFailed
from registrar.models import ClassEnrollment
from registrar.services.grading import apply_grade, clear_grade, compute_gpa, derive_grade


@pytest.mark.parametrize(
    "percentage, letter, points",
    [
        (100, "A+", 4.0),
        (97, "A+", 4.0),
        (96.99, "A", 4.0),
        (93, "A", 4.0),
        (90, "A-", 3.7),
        (89.5, "B+", 3.3),
        (83, "B", 3.0),
        (80, "B-", 2.7),
        (77, "C+", 2.3),
        (73, "C", 2.0),
        (70, "C-", 1.7),
        (67, "D+", 1.3),
        (60, "D", 1.0),
        (59.99, "F", 0.0),
        (0, "F", 0.0),
    ],
)
def test_scale_boundaries(percentage, letter, points):
    derived = derive_grade(percentage, 3)
    assert derived.letter_grade == letter
    assert derived.grade_points == points


def test_quality_points_are_points_times_credits():
    assert derive_grade(95, 3).quality_points == 12.0
    assert derive_grade(91, 4).quality_points == 14.8
    assert derive_grade(45, 5).quality_points == 0.0


@pytest.mark.parametrize("bad", [-0.1, 100.01, math.nan, math.inf, "95", None, True])
def test_rejects_invalid_percentages(bad):
    with pytest.raises(ValidationFailed):
        derive_grade(bad, 3)


@pytest.mark.parametrize("credits", [0, -1, 2.5])
def test_rejects_non_positive_credits(credits):
    with pytest.raises(ValidationFailed):
        derive_grade(90, credits)


def test_apply_grade_writes_all_fields_together():
    record = ClassEnrollment(class_id=1, student_id=1, course_id=1, period_id=1, professor_id=1)
    apply_grade(record, 88, 3, graded_by=7)
    assert (record.letter_grade, record.grade_points, record.quality_points) == ("B+", 3.3, 9.9)
    assert record.percentage_grade == 88.0
    assert record.graded_by == 7
    assert record.graded_at is not None

    with pytest.raises(ValidationFailed):
        apply_grade(record, 101, 3, graded_by=8)
    # Un error de validación no toca el registro
    assert record.letter_grade == "B+"
    assert record.graded_by == 7

    clear_grade(record)
    assert record.letter_grade is None and record.quality_points is None


def test_compute_gpa_skips_ungraded_and_excluded_records():
    graded = ClassEnrollment(class_id=1, student_id=1, course_id=1, period_id=1, professor_id=1)
    apply_grade(graded, 95, 3, None)  # 12.0
    other = ClassEnrollment(class_id=2, student_id=1, course_id=2, period_id=1, professor_id=1)
    apply_grade(other, 78, 2, None)  # C+ 2.3 x 2 = 4.6
    ungraded = ClassEnrollment(class_id=3, student_id=1, course_id=3, period_id=1, professor_id=1)
    excluded = ClassEnrollment(class_id=4, student_id=1, course_id=4, period_id=1, professor_id=1, counts_for_gpa=False)
    apply_grade(excluded, 10, 4, None)

    gpa = compute_gpa([(graded, 3), (other, 2), (ungraded, 4), (excluded, 4)])
    assert gpa == 3.32
    assert compute_gpa([(ungraded, 3)]) is None
