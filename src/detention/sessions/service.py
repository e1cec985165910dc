"""Detention session lifecycle and attendance recording."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Dict, FrozenSet, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from detention.auto_assign.config import DEFAULT_DURATION_MINUTES, DEFAULT_SESSION_CAPACITY
from detention.auto_assign.errors import (
    AssignmentNotFoundError,
    InvalidTransitionError,
    PersistenceError,
    SessionNotFoundError,
    SessionNotScheduledError,
)
from detention.auto_assign.locks import SessionLockRegistry
from detention.auto_assign.outbox import attendance_flagged
from detention.auto_assign.types import LoggerLike
from detention.core.clock import Clock, coerce_aware
from detention.infrastructure.persistence.models import (
    SESSION_STATUSES,
    DetentionAssignmentModel,
    DetentionSessionModel,
    StudentModel,
)
from detention.infrastructure.persistence.session import session_scope

ATTENDANCE_STATUSES: Tuple[str, ...] = ("attended", "late", "absent", "excused")
PRESENT_STATUSES: FrozenSet[str] = frozenset({"attended", "late"})
FLAGGED_STATUSES: FrozenSet[str] = frozenset({"late", "absent"})
ATTENDANCE_SESSION_STATUSES: FrozenSet[str] = frozenset({"in_progress", "completed"})
EDITABLE_FIELDS: FrozenSet[str] = frozenset(
    {"detention_date", "detention_time", "duration", "location", "teacher_on_duty_id", "capacity", "notes"}
)
_REQUIRED_FIELDS = ("detention_date", "duration", "capacity")

TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "scheduled": frozenset({"in_progress", "cancelled"}),
    "in_progress": frozenset({"completed"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}


@dataclass(frozen=True, slots=True)
class AssignmentRecord:
    id: int
    session_id: int
    student_id: int
    reason: Optional[str]
    points_at_assignment: Optional[int]
    status: str
    assigned_at: datetime
    attendance_time: Optional[datetime]
    notes: Optional[str]


@dataclass(frozen=True, slots=True)
class SessionRecord:
    id: int
    detention_date: date
    detention_time: Optional[time]
    duration: int
    location: Optional[str]
    teacher_on_duty_id: Optional[int]
    capacity: int
    assigned_count: int
    status: str
    notes: Optional[str]
    completed_at: Optional[datetime]
    assignments: List[AssignmentRecord] = field(default_factory=list)


def _assignment_record(row: DetentionAssignmentModel) -> AssignmentRecord:
    return AssignmentRecord(
        id=row.id,
        session_id=row.session_id,
        student_id=row.student_id,
        reason=row.reason,
        points_at_assignment=row.points_at_assignment,
        status=row.status,
        assigned_at=coerce_aware(row.assigned_at),
        attendance_time=coerce_aware(row.attendance_time) if row.attendance_time else None,
        notes=row.notes,
    )


def _session_record(row: DetentionSessionModel, *, with_assignments: bool = False) -> SessionRecord:
    assignments: List[AssignmentRecord] = []
    if with_assignments:
        assignments = [
            _assignment_record(item) for item in sorted(row.assignments, key=lambda item: item.id)
        ]
    return SessionRecord(
        id=row.id,
        detention_date=row.detention_date,
        detention_time=row.detention_time,
        duration=int(row.duration),
        location=row.location,
        teacher_on_duty_id=row.teacher_on_duty_id,
        capacity=int(row.capacity),
        assigned_count=int(row.assigned_count),
        status=row.status,
        notes=row.notes,
        completed_at=coerce_aware(row.completed_at) if row.completed_at else None,
        assignments=assignments,
    )


class DetentionSessionService:
    """Creates sessions, moves them through their lifecycle and records attendance.

    Seat-changing operations share the orchestrator's lock registry so a
    cancellation never interleaves with an auto-assign run on the same session.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        clock: Clock,
        logger: LoggerLike,
        locks: SessionLockRegistry | None = None,
        default_capacity: int = DEFAULT_SESSION_CAPACITY,
        default_duration_minutes: int = DEFAULT_DURATION_MINUTES,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._logger = logger
        self._locks = locks or SessionLockRegistry()
        self._default_capacity = default_capacity
        self._default_duration = default_duration_minutes

    def create_session(
        self,
        *,
        detention_date: date,
        detention_time: time | None = None,
        duration: int | None = None,
        location: str | None = None,
        teacher_on_duty_id: int | None = None,
        capacity: int | None = None,
        notes: str | None = None,
    ) -> SessionRecord:
        capacity = self._default_capacity if capacity is None else capacity
        duration = self._default_duration if duration is None else duration
        if capacity <= 0:
            raise ValueError("SESSION_CAPACITY_INVALID|capacity must be positive")
        if duration <= 0:
            raise ValueError("SESSION_DURATION_INVALID|duration must be positive")
        try:
            with session_scope(self._session_factory) as session:
                row = DetentionSessionModel(
                    detention_date=detention_date,
                    detention_time=detention_time,
                    duration=duration,
                    location=location,
                    teacher_on_duty_id=teacher_on_duty_id,
                    capacity=capacity,
                    assigned_count=0,
                    status="scheduled",
                    notes=notes,
                )
                session.add(row)
                session.flush()
                record = _session_record(row)
        except SQLAlchemyError as exc:
            raise PersistenceError("create_session", str(exc), cause=exc) from exc
        self._logger.info(
            "session_created",
            extra={"session_id": record.id, "date": record.detention_date, "capacity": record.capacity},
        )
        return record

    def list_sessions(self, *, status: str | None = None, on_date: date | None = None) -> List[SessionRecord]:
        if status is not None and status not in SESSION_STATUSES:
            raise ValueError(f"SESSION_STATUS_INVALID|unknown session status {status!r}")
        stmt = select(DetentionSessionModel)
        if status is not None:
            stmt = stmt.where(DetentionSessionModel.status == status)
        if on_date is not None:
            stmt = stmt.where(DetentionSessionModel.detention_date == on_date)
        stmt = stmt.order_by(
            DetentionSessionModel.detention_date.desc(),
            DetentionSessionModel.detention_time.desc(),
            DetentionSessionModel.id.desc(),
        )
        try:
            with self._session_factory() as session:
                return [_session_record(row) for row in session.execute(stmt).scalars()]
        except SQLAlchemyError as exc:
            raise PersistenceError("list_sessions", str(exc), cause=exc) from exc

    def get_session(self, session_id: int) -> SessionRecord:
        """Return the session together with its assignments."""

        try:
            with self._session_factory() as session:
                row = session.get(DetentionSessionModel, session_id)
                if row is None:
                    raise SessionNotFoundError(session_id)
                return _session_record(row, with_assignments=True)
        except SQLAlchemyError as exc:
            raise PersistenceError("get_session", str(exc), cause=exc) from exc

    def get_assignment(self, assignment_id: int) -> AssignmentRecord:
        try:
            with self._session_factory() as session:
                row = session.get(DetentionAssignmentModel, assignment_id)
                if row is None:
                    raise AssignmentNotFoundError(assignment_id)
                return _assignment_record(row)
        except SQLAlchemyError as exc:
            raise PersistenceError("get_assignment", str(exc), cause=exc) from exc

    def transition(self, session_id: int, target: str) -> SessionRecord:
        if target not in SESSION_STATUSES:
            raise ValueError(f"SESSION_STATUS_INVALID|unknown session status {target!r}")
        with self._locks.hold(session_id):
            try:
                with session_scope(self._session_factory) as session:
                    row = session.get(DetentionSessionModel, session_id)
                    if row is None:
                        raise SessionNotFoundError(session_id)
                    current = row.status
                    if target not in TRANSITIONS.get(current, frozenset()):
                        raise InvalidTransitionError("session", current, target)
                    row.status = target
                    if target == "cancelled":
                        self._cancel_assignments(session, row)
                    elif target == "completed":
                        row.completed_at = self._clock.utcnow()
                        self._stamp_present_students(session, row)
                    session.flush()
                    record = _session_record(row, with_assignments=True)
            except SQLAlchemyError as exc:
                raise PersistenceError("transition_session", str(exc), cause=exc) from exc
        self._logger.info(
            "session_transitioned",
            extra={"session_id": session_id, "from": current, "to": target},
        )
        return record

    def update_session(self, session_id: int, **changes: object) -> SessionRecord:
        """Edit the schedule details of a session that has not started yet.

        Only the keys in ``EDITABLE_FIELDS`` are accepted. Capacity may not drop
        below the seats already assigned.
        """

        unknown = sorted(set(changes) - EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"SESSION_FIELD_INVALID|cannot edit {', '.join(unknown)}")
        if not changes:
            raise ValueError("SESSION_UPDATE_EMPTY|no fields to update")
        for name in _REQUIRED_FIELDS:
            if name in changes and changes[name] is None:
                raise ValueError(f"SESSION_FIELD_INVALID|{name} cannot be cleared")
        if "duration" in changes and changes["duration"] <= 0:
            raise ValueError("SESSION_DURATION_INVALID|duration must be positive")
        capacity = changes.get("capacity")
        if capacity is not None and capacity <= 0:
            raise ValueError("SESSION_CAPACITY_INVALID|capacity must be positive")
        with self._locks.hold(session_id):
            try:
                with session_scope(self._session_factory) as session:
                    row = session.get(DetentionSessionModel, session_id)
                    if row is None:
                        raise SessionNotFoundError(session_id)
                    if row.status != "scheduled":
                        raise SessionNotScheduledError(session_id, row.status)
                    if capacity is not None and capacity < row.assigned_count:
                        raise ValueError(
                            f"SESSION_CAPACITY_INVALID|capacity {capacity} is below the "
                            f"{row.assigned_count} seats already assigned"
                        )
                    for name, value in changes.items():
                        setattr(row, name, value)
                    session.flush()
                    record = _session_record(row, with_assignments=True)
            except SQLAlchemyError as exc:
                raise PersistenceError("update_session", str(exc), cause=exc) from exc
        self._logger.info("session_updated", extra={"session_id": session_id, "fields": sorted(changes)})
        return record

    def record_attendance(self, assignment_id: int, status: str, *, notes: str | None = None) -> AssignmentRecord:
        if status not in ATTENDANCE_STATUSES:
            raise ValueError(f"ATTENDANCE_STATUS_INVALID|unknown attendance status {status!r}")
        session_id = self._session_of(assignment_id)
        with self._locks.hold(session_id):
            try:
                with session_scope(self._session_factory) as session:
                    row = session.get(DetentionAssignmentModel, assignment_id)
                    if row is None:
                        raise AssignmentNotFoundError(assignment_id)
                    if row.status == "cancelled":
                        raise InvalidTransitionError("assignment", row.status, status)
                    parent = row.session
                    if parent.status not in ATTENDANCE_SESSION_STATUSES:
                        raise InvalidTransitionError("attendance", f"session {parent.status}", status)
                    previous = row.status
                    now = self._clock.utcnow()
                    row.status = status
                    row.attendance_time = now if status in PRESENT_STATUSES else None
                    if notes is not None:
                        row.notes = notes
                    if status in FLAGGED_STATUSES and status != previous:
                        student = session.get(StudentModel, row.student_id)
                        event = attendance_flagged(
                            assignment_id=row.id,
                            session_id=row.session_id,
                            student_id=row.student_id,
                            parent_id=student.parent_id if student is not None else None,
                            status=status,
                            occurred_at=now,
                        )
                        session.add(event.to_model())
                    if parent.status == "completed" and status in PRESENT_STATUSES:
                        _advance_last_completed(session, row.student_id, coerce_aware(parent.completed_at))
                    session.flush()
                    record = _assignment_record(row)
            except SQLAlchemyError as exc:
                raise PersistenceError("record_attendance", str(exc), cause=exc) from exc
        self._logger.info(
            "attendance_recorded",
            extra={"assignment_id": assignment_id, "session_id": session_id, "from": previous, "to": status},
        )
        return record

    # Internal helpers ----------------------------------------------------
    def _session_of(self, assignment_id: int) -> int:
        try:
            with self._session_factory() as session:
                session_id = session.execute(
                    select(DetentionAssignmentModel.session_id).where(DetentionAssignmentModel.id == assignment_id)
                ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise PersistenceError("record_attendance", str(exc), cause=exc) from exc
        if session_id is None:
            raise AssignmentNotFoundError(assignment_id)
        return session_id

    def _cancel_assignments(self, session: Session, row: DetentionSessionModel) -> None:
        result = session.execute(
            update(DetentionAssignmentModel)
            .where(
                DetentionAssignmentModel.session_id == row.id,
                DetentionAssignmentModel.status != "cancelled",
            )
            .values(status="cancelled")
            .execution_options(synchronize_session="fetch")
        )
        row.assigned_count = 0
        self._logger.info("session_assignments_cancelled", extra={"session_id": row.id, "count": result.rowcount})

    def _stamp_present_students(self, session: Session, row: DetentionSessionModel) -> None:
        present = session.execute(
            select(DetentionAssignmentModel.student_id).where(
                DetentionAssignmentModel.session_id == row.id,
                DetentionAssignmentModel.status.in_(PRESENT_STATUSES),
            )
        ).scalars().all()
        for student_id in present:
            _advance_last_completed(session, student_id, row.completed_at)


def _advance_last_completed(session: Session, student_id: int, completed_at: datetime) -> None:
    """Move the student's accrual window forward; it never moves back."""

    student = session.get(StudentModel, student_id)
    if student is None:
        return
    current = student.last_completed_detention_at
    if current is None or coerce_aware(current) < completed_at:
        student.last_completed_detention_at = completed_at


__all__ = [
    "ATTENDANCE_STATUSES",
    "EDITABLE_FIELDS",
    "AssignmentRecord",
    "DetentionSessionService",
    "SessionRecord",
    "TRANSITIONS",
]
