"""Eligibility evaluation over the student roster."""
from __future__ import annotations

from typing import AbstractSet, Iterable, List

from .contracts import EligibilityRule, QualifyingStudent, Student, StudentId, id_sort_key


def evaluate(
    students: Iterable[Student],
    rule: EligibilityRule,
    pending: AbstractSet[StudentId] = frozenset(),
) -> List[QualifyingStudent]:
    """Return the students due a detention, highest accrued points first.

    Students listed in ``pending`` already hold a seat in an open session and are
    left out so nobody is booked twice.
    """

    qualifying: List[QualifyingStudent] = []
    seen: set[StudentId] = set()
    for student in students:
        if student.id in pending or student.id in seen:
            continue
        points = student.accrued_points()
        if points >= rule.min_points_since_last_detention:
            qualifying.append(QualifyingStudent(student_id=student.id, points=points))
            seen.add(student.id)
    qualifying.sort(key=lambda item: (-item.points, id_sort_key(item.student_id)))
    return qualifying


__all__ = ["evaluate"]
