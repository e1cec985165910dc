# -*- coding: utf-8 -*-
"""SQLAlchemy implementation of the detention records store."""
from __future__ import annotations

from datetime import datetime
from typing import AbstractSet, Iterable, List, Optional, Sequence

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from detention.core.clock import coerce_aware
from detention.infrastructure.persistence.models import (
    BehaviourIncidentModel,
    DetentionAssignmentModel,
    DetentionQueueModel,
    DetentionSessionModel,
    StudentModel,
)
from detention.infrastructure.persistence.session import session_scope

from .contracts import Assignment, DetentionSession, EligibilityRule, QueueEntry, Student, StudentId
from .errors import (
    AssignmentNotFoundError,
    CapacityExceededError,
    PersistenceError,
    SessionNotFoundError,
    SessionNotScheduledError,
    StudentAlreadyAssignedError,
)
from .outbox import detention_assigned

OPEN_SESSION_STATUSES = ("scheduled", "in_progress")


def to_domain_session(row: DetentionSessionModel) -> DetentionSession:
    return DetentionSession(
        id=row.id,
        date=row.detention_date,
        status=row.status,
        capacity=int(row.capacity),
        assigned_count=int(row.assigned_count),
    )


def _utc(value: datetime | None) -> datetime | None:
    return coerce_aware(value) if value is not None else None


def points_since_last_detention_column():
    """Correlated aggregate of approved demerit points accrued after the last completed detention."""

    return (
        select(func.coalesce(func.sum(BehaviourIncidentModel.points), 0))
        .where(
            BehaviourIncidentModel.student_id == StudentModel.id,
            BehaviourIncidentModel.status == "approved",
            or_(
                StudentModel.last_completed_detention_at.is_(None),
                BehaviourIncidentModel.occurred_at > StudentModel.last_completed_detention_at,
            ),
        )
        .correlate(StudentModel)
        .scalar_subquery()
    )


def _pending_query(student_ids: Sequence[StudentId]):
    return (
        select(DetentionAssignmentModel.student_id)
        .join(DetentionSessionModel, DetentionSessionModel.id == DetentionAssignmentModel.session_id)
        .where(
            DetentionAssignmentModel.student_id.in_(list(student_ids)),
            DetentionAssignmentModel.status != "cancelled",
            DetentionSessionModel.status.in_(OPEN_SESSION_STATUSES),
        )
    )


class SqlAlchemyDetentionStore:
    """Concrete store backed by SQLAlchemy sessions; every write commits on its own."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    # Reads ---------------------------------------------------------------
    def get_session(self, session_id: int) -> Optional[DetentionSession]:
        try:
            with self._session_factory() as session:
                row = session.get(DetentionSessionModel, session_id)
                return to_domain_session(row) if row is not None else None
        except SQLAlchemyError as exc:
            raise PersistenceError("get_session", str(exc), cause=exc) from exc

    def get_qualifying_students(self, rule: EligibilityRule) -> List[Student]:
        accrued_expr = points_since_last_detention_column()
        accrued = accrued_expr.label("accrued")
        stmt = (
            select(
                StudentModel.id,
                StudentModel.total_demerit_points,
                StudentModel.last_completed_detention_at,
                accrued,
            )
            .where(accrued_expr >= rule.min_points_since_last_detention)
            .order_by(StudentModel.id)
        )
        try:
            with self._session_factory() as session:
                rows = session.execute(stmt).all()
        except SQLAlchemyError as exc:
            raise PersistenceError("get_qualifying_students", str(exc), cause=exc) from exc
        return [
            Student(
                id=row.id,
                total_demerit_points=int(row.total_demerit_points or 0),
                last_completed_detention_at=_utc(row.last_completed_detention_at),
                points_since_last_detention=int(row.accrued),
            )
            for row in rows
        ]

    def get_pending_assignments(self, student_ids: Iterable[StudentId]) -> AbstractSet[StudentId]:
        ids = list(student_ids)
        if not ids:
            return frozenset()
        stmt = _pending_query(ids)
        try:
            with self._session_factory() as session:
                return frozenset(session.execute(stmt).scalars().all())
        except SQLAlchemyError as exc:
            raise PersistenceError("get_pending_assignments", str(exc), cause=exc) from exc

    def get_queue(self) -> List[QueueEntry]:
        stmt = select(DetentionQueueModel).order_by(
            DetentionQueueModel.queued_at,
            DetentionQueueModel.points_at_queue_time.desc(),
            DetentionQueueModel.student_id,
        )
        try:
            with self._session_factory() as session:
                rows = session.execute(stmt).scalars().all()
        except SQLAlchemyError as exc:
            raise PersistenceError("get_queue", str(exc), cause=exc) from exc
        return [
            QueueEntry(
                student_id=row.student_id,
                points_at_queue_time=int(row.points_at_queue_time),
                queued_at=coerce_aware(row.queued_at),
            )
            for row in rows
        ]

    # Writes --------------------------------------------------------------
    def create_assignment(
        self,
        session_id: int,
        student_id: StudentId,
        *,
        points: Optional[int],
        reason: str,
        assigned_at: datetime,
    ) -> Assignment:
        stamp = coerce_aware(assigned_at)
        try:
            with session_scope(self._session_factory) as session:
                self._require_scheduled(session, session_id)
                if self._has_pending(session, student_id):
                    raise StudentAlreadyAssignedError(student_id)
                record = session.execute(
                    select(DetentionAssignmentModel).where(
                        DetentionAssignmentModel.session_id == session_id,
                        DetentionAssignmentModel.student_id == student_id,
                    )
                ).scalar_one_or_none()
                if record is None:
                    record = DetentionAssignmentModel(session_id=session_id, student_id=student_id)
                    session.add(record)
                # A cancelled seat in the same session is reused; the pair is unique.
                record.reason = reason
                record.points_at_assignment = points
                record.status = "assigned"
                record.assigned_at = stamp
                record.attendance_time = None
                session.flush()
                parent_id = session.execute(
                    select(StudentModel.parent_id).where(StudentModel.id == student_id)
                ).scalar_one_or_none()
                event = detention_assigned(
                    assignment_id=record.id,
                    session_id=session_id,
                    student_id=student_id,
                    parent_id=parent_id,
                    reason=reason,
                    occurred_at=stamp,
                )
                session.add(event.to_model())
                return Assignment(
                    id=record.id,
                    session_id=session_id,
                    student_id=student_id,
                    status="assigned",
                    assigned_at=stamp,
                )
        except IntegrityError as exc:
            raise PersistenceError("create_assignment", f"constraint violated: {exc.orig}", cause=exc) from exc
        except SQLAlchemyError as exc:
            raise PersistenceError("create_assignment", str(exc), cause=exc) from exc

    def increment_session_count(self, session_id: int) -> None:
        stmt = (
            update(DetentionSessionModel)
            .where(
                DetentionSessionModel.id == session_id,
                DetentionSessionModel.status == "scheduled",
                DetentionSessionModel.assigned_count < DetentionSessionModel.capacity,
            )
            .values(assigned_count=DetentionSessionModel.assigned_count + 1)
            .execution_options(synchronize_session=False)
        )
        try:
            with session_scope(self._session_factory) as session:
                result = session.execute(stmt)
                if result.rowcount == 1:
                    return
                current = session.execute(
                    select(DetentionSessionModel.status, DetentionSessionModel.capacity).where(
                        DetentionSessionModel.id == session_id
                    )
                ).first()
        except SQLAlchemyError as exc:
            raise PersistenceError("increment_session_count", str(exc), cause=exc) from exc
        if current is None:
            raise PersistenceError("increment_session_count", f"session {session_id} vanished")
        if current.status != "scheduled":
            raise SessionNotScheduledError(session_id, current.status)
        raise CapacityExceededError(session_id, current.capacity)

    def cancel_assignment(self, assignment_id: int, *, release_seat: bool = True) -> None:
        try:
            with session_scope(self._session_factory) as session:
                record = session.get(DetentionAssignmentModel, assignment_id)
                if record is None:
                    raise AssignmentNotFoundError(assignment_id)
                if record.status == "cancelled":
                    return
                record.status = "cancelled"
                if not release_seat:
                    return
                session.execute(
                    update(DetentionSessionModel)
                    .where(
                        and_(
                            DetentionSessionModel.id == record.session_id,
                            DetentionSessionModel.assigned_count > 0,
                        )
                    )
                    .values(assigned_count=DetentionSessionModel.assigned_count - 1)
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as exc:
            raise PersistenceError("cancel_assignment", str(exc), cause=exc) from exc

    def upsert_queue_entry(self, entry: QueueEntry) -> None:
        try:
            with session_scope(self._session_factory) as session:
                session.merge(
                    DetentionQueueModel(
                        student_id=entry.student_id,
                        points_at_queue_time=entry.points_at_queue_time,
                        queued_at=coerce_aware(entry.queued_at),
                    )
                )
        except SQLAlchemyError as exc:
            raise PersistenceError("upsert_queue_entry", str(exc), cause=exc) from exc

    def remove_queue_entries(self, student_ids: Sequence[StudentId]) -> None:
        if not student_ids:
            return
        try:
            with session_scope(self._session_factory) as session:
                session.execute(
                    delete(DetentionQueueModel).where(DetentionQueueModel.student_id.in_(list(student_ids)))
                )
        except SQLAlchemyError as exc:
            raise PersistenceError("remove_queue_entries", str(exc), cause=exc) from exc

    @staticmethod
    def _require_scheduled(session, session_id: int) -> None:
        status = session.execute(
            select(DetentionSessionModel.status).where(DetentionSessionModel.id == session_id)
        ).scalar_one_or_none()
        if status is None:
            raise SessionNotFoundError(session_id)
        if status != "scheduled":
            raise SessionNotScheduledError(session_id, status)

    @staticmethod
    def _has_pending(session, student_id: StudentId) -> bool:
        return session.execute(_pending_query([student_id]).limit(1)).first() is not None


__all__ = [
    "OPEN_SESSION_STATUSES",
    "SqlAlchemyDetentionStore",
    "points_since_last_detention_column",
    "to_domain_session",
]
