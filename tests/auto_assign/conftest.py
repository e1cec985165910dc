# -*- coding: utf-8 -*-
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import AbstractSet, Dict, Iterable, List, Optional, Sequence

import pytest

from detention.auto_assign.contracts import (
    Assignment,
    DetentionSession,
    EligibilityRule,
    QueueEntry,
    Student,
    StudentId,
)
from detention.auto_assign.errors import (
    AssignmentNotFoundError,
    CapacityExceededError,
    PersistenceError,
    SessionNotScheduledError,
    StudentAlreadyAssignedError,
)
from detention.auto_assign.logging_utils import build_logger
from detention.auto_assign.orchestrator import AutoAssignOrchestrator
from detention.auto_assign.overflow import ordered
from detention.auto_assign.rules import StaticRuleProvider


@dataclass
class StoreFaults:
    """Countdown of successful calls before an operation fails once."""

    fail_after: Dict[str, int] = field(default_factory=dict)

    def raise_if(self, operation: str) -> None:
        remaining = self.fail_after.get(operation)
        if remaining is None:
            return
        if remaining == 0:
            del self.fail_after[operation]
            raise PersistenceError(operation, f"fault:{operation}")
        self.fail_after[operation] = remaining - 1


class InMemoryDetentionStore:
    """Dictionary-backed store mirroring the SQL store's semantics."""

    def __init__(self, *, faults: StoreFaults | None = None) -> None:
        self.sessions: Dict[int, DetentionSession] = {}
        self.students: Dict[StudentId, Student] = {}
        self.assignments: Dict[int, Assignment] = {}
        self.queue: Dict[StudentId, QueueEntry] = {}
        self.faults = faults or StoreFaults()
        self.calls: List[str] = []
        self._next_id = 1

    # Seeding -------------------------------------------------------------
    def add_session(self, session: DetentionSession) -> None:
        self.sessions[session.id] = session

    def add_students(self, *students: Student) -> None:
        for student in students:
            self.students[student.id] = student

    def add_queue(self, *entries: QueueEntry) -> None:
        for entry in entries:
            self.queue[entry.student_id] = entry

    def live_assignments(self, session_id: int) -> List[Assignment]:
        return [item for item in self.assignments.values() if item.session_id == session_id and item.status != "cancelled"]

    # DetentionStore ------------------------------------------------------
    def get_session(self, session_id: int) -> Optional[DetentionSession]:
        self.calls.append("get_session")
        self.faults.raise_if("get_session")
        return self.sessions.get(session_id)

    def get_qualifying_students(self, rule: EligibilityRule) -> List[Student]:
        self.calls.append("get_qualifying_students")
        self.faults.raise_if("get_qualifying_students")
        return list(self.students.values())

    def get_pending_assignments(self, student_ids: Iterable[StudentId]) -> AbstractSet[StudentId]:
        wanted = set(student_ids)
        return frozenset(
            item.student_id
            for item in self.assignments.values()
            if item.student_id in wanted
            and item.status != "cancelled"
            and self.sessions[item.session_id].status in ("scheduled", "in_progress")
        )

    def create_assignment(
        self,
        session_id: int,
        student_id: StudentId,
        *,
        points: Optional[int],
        reason: str,
        assigned_at: datetime,
    ) -> Assignment:
        self.calls.append("create_assignment")
        self.faults.raise_if("create_assignment")
        self._require_scheduled(session_id)
        if self.get_pending_assignments([student_id]):
            raise StudentAlreadyAssignedError(student_id)
        assignment = Assignment(
            id=self._next_id,
            session_id=session_id,
            student_id=student_id,
            status="assigned",
            assigned_at=assigned_at,
        )
        self.assignments[assignment.id] = assignment
        self._next_id += 1
        return assignment

    def increment_session_count(self, session_id: int) -> None:
        self.calls.append("increment_session_count")
        self.faults.raise_if("increment_session_count")
        session = self.sessions[session_id]
        if session.status != "scheduled":
            raise SessionNotScheduledError(session_id, session.status)
        if session.assigned_count >= session.capacity:
            raise CapacityExceededError(session_id, session.capacity)
        self.sessions[session_id] = replace(session, assigned_count=session.assigned_count + 1)

    def cancel_assignment(self, assignment_id: int, *, release_seat: bool = True) -> None:
        self.calls.append("cancel_assignment")
        assignment = self.assignments.get(assignment_id)
        if assignment is None:
            raise AssignmentNotFoundError(assignment_id)
        if assignment.status == "cancelled":
            return
        self.assignments[assignment_id] = replace(assignment, status="cancelled")
        if release_seat:
            session = self.sessions[assignment.session_id]
            self.sessions[session.id] = replace(session, assigned_count=max(session.assigned_count - 1, 0))

    def _require_scheduled(self, session_id: int) -> None:
        session = self.sessions[session_id]
        if session.status != "scheduled":
            raise SessionNotScheduledError(session_id, session.status)

    def get_queue(self) -> List[QueueEntry]:
        return ordered(self.queue.values())

    def upsert_queue_entry(self, entry: QueueEntry) -> None:
        self.calls.append("upsert_queue_entry")
        self.faults.raise_if("upsert_queue_entry")
        self.queue[entry.student_id] = entry

    def remove_queue_entries(self, student_ids: Sequence[StudentId]) -> None:
        self.calls.append("remove_queue_entries")
        self.faults.raise_if("remove_queue_entries")
        for student_id in student_ids:
            self.queue.pop(student_id, None)


@pytest.fixture()
def memory_store() -> InMemoryDetentionStore:
    return InMemoryDetentionStore()


@pytest.fixture()
def orchestrator(memory_store, clock, meters) -> AutoAssignOrchestrator:
    return AutoAssignOrchestrator(
        memory_store,
        rule_provider=StaticRuleProvider(EligibilityRule(10)),
        clock=clock,
        meters=meters,
        logger=build_logger("test-auto-assign"),
    )
