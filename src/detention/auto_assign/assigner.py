"""Capacity-bounded split of qualifying students."""
from __future__ import annotations

from datetime import datetime
from typing import List, Sequence, Tuple

from .contracts import AssignmentSource, DetentionSession, PlannedAssignment, QualifyingStudent


def assign(
    session: DetentionSession,
    ordered_qualifying: Sequence[QualifyingStudent],
    *,
    now: datetime,
    source: AssignmentSource = "fresh",
) -> Tuple[List[PlannedAssignment], List[QualifyingStudent]]:
    """Seat students from the front of ``ordered_qualifying`` until the session is full."""

    remaining_capacity = session.remaining_capacity
    if remaining_capacity <= 0:
        return [], list(ordered_qualifying)
    seated = ordered_qualifying[:remaining_capacity]
    planned = [
        PlannedAssignment(
            session_id=session.id,
            student_id=student.student_id,
            points=student.points,
            assigned_at=now,
            source=source,
        )
        for student in seated
    ]
    return planned, list(ordered_qualifying[remaining_capacity:])


__all__ = ["assign"]
