"""Core contracts and literals for detention auto-assignment."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Hashable, Literal

SessionStatus = Literal["scheduled", "in_progress", "completed", "cancelled"]
AssignmentSource = Literal["queue", "fresh", "manual"]
StudentId = Hashable

DEFAULT_MIN_POINTS = 10


def id_sort_key(student_id: StudentId) -> tuple[int, int | str]:
    """Sort integer ids numerically and everything else lexically after them."""

    if isinstance(student_id, int) and not isinstance(student_id, bool):
        return (0, student_id)
    return (1, str(student_id))


@dataclass(frozen=True, slots=True)
class EligibilityRule:
    """Threshold a student must reach to qualify for detention."""

    min_points_since_last_detention: int = DEFAULT_MIN_POINTS

    def __post_init__(self) -> None:
        if self.min_points_since_last_detention <= 0:
            raise ValueError("RULE_THRESHOLD_INVALID|min_points_since_last_detention must be positive")


@dataclass(frozen=True, slots=True)
class Student:
    """Student standing as reported by the records ledger.

    ``points_since_last_detention`` is computed upstream. When it is missing the
    total is used for students who never attended a detention.
    """

    id: StudentId
    total_demerit_points: int
    last_completed_detention_at: datetime | None = None
    points_since_last_detention: int | None = None

    def accrued_points(self) -> int:
        if self.points_since_last_detention is not None:
            return self.points_since_last_detention
        if self.last_completed_detention_at is None:
            return self.total_demerit_points
        raise ValueError(
            f"POINTS_UNKNOWN|points since last detention missing for student {self.id!r}"
        )


@dataclass(frozen=True, slots=True)
class QualifyingStudent:
    student_id: StudentId
    points: int


@dataclass(frozen=True, slots=True)
class DetentionSession:
    """A scheduled detention sitting."""

    id: int
    date: date | None
    status: SessionStatus
    capacity: int
    assigned_count: int = 0

    def __post_init__(self) -> None:
        if self.capacity <= 0:
            raise ValueError("SESSION_CAPACITY_INVALID|capacity must be positive")
        if not 0 <= self.assigned_count <= self.capacity:
            raise ValueError("SESSION_COUNT_INVALID|assigned_count must be within [0, capacity]")

    @property
    def remaining_capacity(self) -> int:
        return self.capacity - self.assigned_count


@dataclass(frozen=True, slots=True)
class QueueEntry:
    student_id: StudentId
    points_at_queue_time: int
    queued_at: datetime

    def order_key(self) -> tuple[datetime, int, tuple[int, int | str]]:
        return (self.queued_at, -self.points_at_queue_time, id_sort_key(self.student_id))


@dataclass(frozen=True, slots=True)
class PlannedAssignment:
    """Seat computed by the assigner, not yet persisted."""

    session_id: int
    student_id: StudentId
    points: int
    assigned_at: datetime
    source: AssignmentSource = "fresh"


@dataclass(frozen=True, slots=True)
class Assignment:
    """Persisted assignment record returned by the store."""

    id: int
    session_id: int
    student_id: StudentId
    status: str
    assigned_at: datetime


@dataclass(frozen=True, slots=True)
class AssignmentResult:
    assigned_count: int
    queued_count: int
    qualifying_students: int
    total_count: int
    capacity: int
    error_code: str | None = None

    @property
    def complete(self) -> bool:
        return self.error_code is None

    def as_dict(self) -> dict[str, object]:
        return {
            "assigned_count": self.assigned_count,
            "queued_count": self.queued_count,
            "qualifying_students": self.qualifying_students,
            "total_count": self.total_count,
            "capacity": self.capacity,
            "error_code": self.error_code,
        }


__all__ = [
    "Assignment",
    "AssignmentResult",
    "AssignmentSource",
    "DEFAULT_MIN_POINTS",
    "DetentionSession",
    "EligibilityRule",
    "PlannedAssignment",
    "QualifyingStudent",
    "QueueEntry",
    "SessionStatus",
    "Student",
    "StudentId",
    "id_sort_key",
]
