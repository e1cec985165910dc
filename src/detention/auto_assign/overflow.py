"""Overflow queue for students who qualify but found no free seat."""
from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Sequence, Tuple

from .contracts import DetentionSession, QualifyingStudent, QueueEntry


def ordered(queue: Iterable[QueueEntry]) -> List[QueueEntry]:
    """Return ``queue`` in drain order: oldest first, higher points on ties."""

    return sorted(queue, key=QueueEntry.order_key)


def enqueue(
    remaining: Iterable[QualifyingStudent],
    existing_queue: Sequence[QueueEntry],
    *,
    now: datetime,
) -> List[QueueEntry]:
    """Add ``remaining`` students to the queue.

    Students already waiting keep their ``queued_at`` and only have their point
    snapshot refreshed.
    """

    entries = {entry.student_id: entry for entry in existing_queue}
    for student in remaining:
        current = entries.get(student.student_id)
        if current is None:
            entries[student.student_id] = QueueEntry(
                student_id=student.student_id,
                points_at_queue_time=student.points,
                queued_at=now,
            )
        elif current.points_at_queue_time != student.points:
            entries[student.student_id] = QueueEntry(
                student_id=current.student_id,
                points_at_queue_time=student.points,
                queued_at=current.queued_at,
            )
    return ordered(entries.values())


def drain(
    queue: Sequence[QueueEntry],
    session: DetentionSession,
) -> Tuple[List[QueueEntry], List[QueueEntry]]:
    """Pop entries in queue order up to the session's free capacity."""

    line = ordered(queue)
    available = max(session.remaining_capacity, 0)
    return line[:available], line[available:]


__all__ = ["drain", "enqueue", "ordered"]
