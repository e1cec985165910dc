"""Auto-assign orchestration: queue drain, fresh assignment, overflow."""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from detention.core.clock import Clock

from .assigner import assign
from .contracts import (
    Assignment,
    AssignmentResult,
    DetentionSession,
    EligibilityRule,
    PlannedAssignment,
    QualifyingStudent,
    QueueEntry,
    StudentId,
)
from .eligibility import evaluate
from .errors import (
    CapacityExceededError,
    DetentionError,
    PersistenceError,
    SessionNotFoundError,
    SessionNotScheduledError,
    StudentAlreadyAssignedError,
)
from .locks import SessionLockRegistry
from .overflow import drain, enqueue
from .rules import RuleProvider
from .store import DetentionStore
from .types import LoggerLike, MeterLike

# Raised mid-write; the run stops and reports what was committed.
_HALTING_ERRORS = (CapacityExceededError, PersistenceError, SessionNotFoundError, SessionNotScheduledError)


@dataclass(slots=True)
class _RunState:
    """Committed progress of one auto-assign call."""

    session: DetentionSession
    assigned: int = 0
    queued: int = 0
    error_code: Optional[str] = None

    def seat(self) -> None:
        self.session = replace(self.session, assigned_count=self.session.assigned_count + 1)
        self.assigned += 1


class AutoAssignOrchestrator:
    """Fill one scheduled session from the overflow queue, then from newly qualifying students.

    Writes are sequential and individually committed. A failed write halts the
    run; the returned result reports what was actually committed.
    """

    def __init__(
        self,
        store: DetentionStore,
        *,
        rule_provider: RuleProvider,
        clock: Clock,
        meters: MeterLike,
        logger: LoggerLike,
        locks: SessionLockRegistry | None = None,
    ) -> None:
        self._store = store
        self._rule_provider = rule_provider
        self._clock = clock
        self._meters = meters
        self._logger = logger
        self._locks = locks or SessionLockRegistry()

    @property
    def locks(self) -> SessionLockRegistry:
        return self._locks

    def auto_assign(self, session_id: int, *, rule: EligibilityRule | None = None) -> AssignmentResult:
        with self._locks.hold(session_id):
            try:
                session = self._load_open_session(session_id)
            except (SessionNotFoundError, SessionNotScheduledError) as err:
                self._meters.record_run("rejected")
                self._logger.warning("auto_assign_rejected", extra={"code": err.detail.code, "session_id": session_id})
                raise
            except PersistenceError:
                self._meters.record_run("failed")
                raise
            active_rule = rule or self._rule_provider.current_rule()
            with self._locks.hold_roster():
                return self._auto_assign_locked(session, active_rule)

    def assign_student(self, session_id: int, student_id: StudentId, *, reason: str | None = None) -> Assignment:
        """Seat one student chosen by an administrator."""

        with self._locks.hold(session_id):
            session = self._load_open_session(session_id)
            with self._locks.hold_roster():
                if student_id in self._store.get_pending_assignments([student_id]):
                    raise StudentAlreadyAssignedError(student_id)
                if session.remaining_capacity <= 0:
                    self._meters.record_capacity_conflict()
                    raise CapacityExceededError(session_id, session.capacity)
                queued = {entry.student_id: entry for entry in self._store.get_queue()}
                entry = queued.get(student_id)
                assignment = self._persist_seat(
                    session_id,
                    student_id,
                    points=entry.points_at_queue_time if entry else None,
                    reason=reason or "Assigned by administrator",
                    assigned_at=self._clock.utcnow(),
                )
                self._meters.record_assigned("manual")
                if entry is not None:
                    self._store.remove_queue_entries([student_id])
                    self._meters.record_dequeued("manual", 1)
            self._logger.info(
                "manual_assignment_committed",
                extra={"session_id": session_id, "student_id": student_id, "assignment_id": assignment.id},
            )
            return assignment

    # Internal helpers ----------------------------------------------------
    def _load_open_session(self, session_id: int) -> DetentionSession:
        session = self._store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        if session.status != "scheduled":
            raise SessionNotScheduledError(session_id, session.status)
        return session

    def _auto_assign_locked(self, session: DetentionSession, rule: EligibilityRule) -> AssignmentResult:
        try:
            roster = self._store.get_qualifying_students(rule)
            pending = self._store.get_pending_assignments([student.id for student in roster])
            queue = self._store.get_queue()
        except PersistenceError:
            self._meters.record_run("failed")
            raise
        qualifying = evaluate(roster, rule, pending)
        self._logger.info(
            "auto_assign_started",
            extra={
                "session_id": session.id,
                "threshold": rule.min_points_since_last_detention,
                "qualifying": len(qualifying),
                "queued": len(queue),
                "remaining_capacity": session.remaining_capacity,
            },
        )

        state = _RunState(session=session)
        try:
            self._run(state, qualifying, queue)
        except _HALTING_ERRORS as err:
            state.error_code = err.detail.code
            self._meters.record_run("halted")
            if isinstance(err, CapacityExceededError):
                self._meters.record_capacity_conflict()
            self._logger.error(
                "auto_assign_halted",
                extra={
                    "code": err.detail.code,
                    "details": err.detail.details,
                    "session_id": session.id,
                    "assigned": state.assigned,
                    "queued": state.queued,
                },
            )
        else:
            self._meters.record_run("completed")
            self._logger.info(
                "auto_assign_completed",
                extra={
                    "session_id": session.id,
                    "assigned": state.assigned,
                    "queued": state.queued,
                    "total": state.session.assigned_count,
                    "capacity": state.session.capacity,
                },
            )

        return AssignmentResult(
            assigned_count=state.assigned,
            queued_count=state.queued,
            qualifying_students=len(qualifying),
            total_count=state.session.assigned_count,
            capacity=state.session.capacity,
            error_code=state.error_code,
        )

    def _run(self, state: _RunState, qualifying: Sequence[QualifyingStudent], queue: Sequence[QueueEntry]) -> None:
        now = self._clock.utcnow()
        points_by_id: Dict[StudentId, int] = {student.student_id: student.points for student in qualifying}

        stale = [entry.student_id for entry in queue if entry.student_id not in points_by_id]
        if stale:
            self._store.remove_queue_entries(stale)
            self._meters.record_dequeued("ineligible", len(stale))
            self._logger.info("queue_reconciled", extra={"removed": len(stale)})
        live_queue = [entry for entry in queue if entry.student_id in points_by_id]

        waiting = live_queue
        while True:
            to_drain, waiting = drain(waiting, state.session)
            drained = [
                PlannedAssignment(
                    session_id=state.session.id,
                    student_id=entry.student_id,
                    points=points_by_id[entry.student_id],
                    assigned_at=now,
                    source="queue",
                )
                for entry in to_drain
            ]
            if not self._commit(state, drained) or not waiting:
                break

        queued_ids = {entry.student_id for entry in live_queue}
        remaining = [student for student in qualifying if student.student_id not in queued_ids]
        while True:
            planned, remaining = assign(state.session, remaining, now=now)
            if not self._commit(state, planned) or not remaining:
                break

        still_waiting = [
            QualifyingStudent(student_id=entry.student_id, points=points_by_id[entry.student_id])
            for entry in waiting
        ]
        self._persist_queue([*still_waiting, *remaining], waiting, state, now=now)

    def _persist_queue(
        self,
        students: Sequence[QualifyingStudent],
        waiting: Sequence[QueueEntry],
        state: _RunState,
        *,
        now: datetime,
    ) -> None:
        previous = {entry.student_id: entry for entry in waiting}
        updated = enqueue(students, waiting, now=now)
        for entry in updated:
            before = previous.get(entry.student_id)
            if before == entry:
                continue
            self._store.upsert_queue_entry(entry)
            if before is None:
                state.queued += 1
                self._meters.record_enqueued(1)
        self._meters.queue_depth(len(updated))

    def _commit(self, state: _RunState, planned: Sequence[PlannedAssignment]) -> int:
        """Persist ``planned`` in order and return how many were skipped as already booked."""

        skipped = 0
        for plan in planned:
            if state.session.remaining_capacity <= 0:
                raise CapacityExceededError(state.session.id, state.session.capacity)
            try:
                self._persist_seat(
                    plan.session_id,
                    plan.student_id,
                    points=plan.points,
                    reason=_auto_reason(plan),
                    assigned_at=plan.assigned_at,
                )
            except StudentAlreadyAssignedError:
                skipped += 1
                self._logger.warning(
                    "assignment_skipped",
                    extra={"session_id": plan.session_id, "student_id": plan.student_id, "code": "STUDENT_ALREADY_ASSIGNED"},
                )
                if plan.source == "queue":
                    self._store.remove_queue_entries([plan.student_id])
                    self._meters.record_dequeued("ineligible", 1)
                continue
            state.seat()
            self._meters.record_assigned(plan.source)
            if plan.source == "queue":
                self._store.remove_queue_entries([plan.student_id])
                self._meters.record_dequeued("drained", 1)
        return skipped

    def _persist_seat(
        self,
        session_id: int,
        student_id: StudentId,
        *,
        points: int | None,
        reason: str,
        assigned_at: datetime,
    ) -> Assignment:
        try:
            assignment = self._store.create_assignment(
                session_id,
                student_id,
                points=points,
                reason=reason,
                assigned_at=assigned_at,
            )
        except PersistenceError as err:
            self._meters.record_persistence_failure(err.operation)
            raise
        try:
            self._store.increment_session_count(session_id)
        except DetentionError as err:
            if isinstance(err, PersistenceError):
                self._meters.record_persistence_failure(err.operation)
            self._withdraw(assignment)
            raise
        return assignment

    def _withdraw(self, assignment: Assignment) -> None:
        """Cancel an assignment whose seat could not be reserved."""

        try:
            self._store.cancel_assignment(assignment.id, release_seat=False)
        except DetentionError as err:
            self._meters.record_persistence_failure("cancel_assignment")
            self._logger.error(
                "assignment_withdraw_failed",
                extra={"code": err.detail.code, "assignment_id": assignment.id, "session_id": assignment.session_id},
            )


def _auto_reason(plan: PlannedAssignment) -> str:
    origin = "from queue" if plan.source == "queue" else "by rule"
    return f"Auto-assigned {origin}: {plan.points} points since last detention"


__all__ = ["AutoAssignOrchestrator"]
