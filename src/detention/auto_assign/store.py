"""Records-store contract consumed by the auto-assign orchestrator."""
from __future__ import annotations

from datetime import datetime
from typing import AbstractSet, Iterable, List, Optional, Protocol, Sequence

from .contracts import Assignment, DetentionSession, EligibilityRule, QueueEntry, Student, StudentId


class DetentionStore(Protocol):
    """Persistence boundary. Write methods commit on return and raise ``PersistenceError`` on failure."""

    def get_session(self, session_id: int) -> Optional[DetentionSession]:
        """Return the session or ``None`` when it does not exist."""

    def get_qualifying_students(self, rule: EligibilityRule) -> List[Student]:
        """Return students with ``points_since_last_detention`` filled in."""

    def get_pending_assignments(self, student_ids: Iterable[StudentId]) -> AbstractSet[StudentId]:
        """Return the subset of ``student_ids`` holding a seat in an open session."""

    def create_assignment(
        self,
        session_id: int,
        student_id: StudentId,
        *,
        points: Optional[int],
        reason: str,
        assigned_at: datetime,
    ) -> Assignment:
        """Persist one assignment record.

        Raises ``SessionNotScheduledError`` when the session has left
        ``scheduled`` and ``StudentAlreadyAssignedError`` when the student
        already holds a seat in an open session.
        """

    def increment_session_count(self, session_id: int) -> None:
        """Add one to ``assigned_count`` of a scheduled session.

        Raises ``SessionNotScheduledError`` when the session has left
        ``scheduled`` and ``CapacityExceededError`` when it is full.
        """

    def cancel_assignment(self, assignment_id: int, *, release_seat: bool = True) -> None:
        """Cancel an assignment; ``release_seat`` also decrements ``assigned_count``."""

    def get_queue(self) -> List[QueueEntry]:
        """Return all queue entries."""

    def upsert_queue_entry(self, entry: QueueEntry) -> None:
        """Insert or replace the entry for ``entry.student_id``."""

    def remove_queue_entries(self, student_ids: Sequence[StudentId]) -> None:
        """Delete the entries of ``student_ids``; unknown ids are ignored."""


__all__ = ["DetentionStore"]
