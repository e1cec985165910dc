# -*- coding: utf-8 -*-
"""Error hierarchy with human messages and machine-readable codes."""
from __future__ import annotations

from typing import Optional

from .types import ErrorDetail


class DetentionError(Exception):
    """Base class for domain errors exposed to callers."""

    retryable = False

    def __init__(self, detail: ErrorDetail, cause: Optional[Exception] = None) -> None:
        super().__init__(detail.code, detail.message)
        self.detail = detail
        self.cause = cause

    def __str__(self) -> str:  # pragma: no cover - human readable path
        return f"{self.detail.code}: {self.detail.message} ({self.detail.details})"


class SessionNotFoundError(DetentionError):
    def __init__(self, session_id: object) -> None:
        super().__init__(
            ErrorDetail("SESSION_NOT_FOUND", "Detention session not found.", f"session_id={session_id}")
        )
        self.session_id = session_id


class SessionNotScheduledError(DetentionError):
    def __init__(self, session_id: object, status: str) -> None:
        super().__init__(
            ErrorDetail(
                "SESSION_NOT_SCHEDULED",
                "Detention session is not open for assignment.",
                f"session_id={session_id} status={status}",
            )
        )
        self.session_id = session_id
        self.status = status


class CapacityExceededError(DetentionError):
    def __init__(self, session_id: object, capacity: int | None = None) -> None:
        super().__init__(
            ErrorDetail(
                "CAPACITY_EXCEEDED",
                "Detention session has no remaining capacity.",
                f"session_id={session_id} capacity={capacity}",
            )
        )
        self.session_id = session_id


class StudentAlreadyAssignedError(DetentionError):
    def __init__(self, student_id: object) -> None:
        super().__init__(
            ErrorDetail(
                "STUDENT_ALREADY_ASSIGNED",
                "Student already holds a pending detention assignment.",
                f"student_id={student_id}",
            )
        )
        self.student_id = student_id


class AssignmentNotFoundError(DetentionError):
    def __init__(self, assignment_id: object) -> None:
        super().__init__(
            ErrorDetail("ASSIGNMENT_NOT_FOUND", "Detention assignment not found.", f"assignment_id={assignment_id}")
        )
        self.assignment_id = assignment_id


class InvalidTransitionError(DetentionError):
    def __init__(self, subject: str, current: str, target: str) -> None:
        super().__init__(
            ErrorDetail(
                "TRANSITION_INVALID",
                f"Cannot move {subject} from {current} to {target}.",
                f"current={current} target={target}",
            )
        )
        self.current = current
        self.target = target


class PersistenceError(DetentionError):
    """Wraps a failure of the external records store."""

    retryable = True

    def __init__(self, operation: str, message: str, *, cause: Optional[Exception] = None) -> None:
        super().__init__(
            ErrorDetail("PERSISTENCE_FAILED", "Records store operation failed.", f"operation={operation} {message}"),
            cause,
        )
        self.operation = operation


__all__ = [
    "AssignmentNotFoundError",
    "CapacityExceededError",
    "DetentionError",
    "InvalidTransitionError",
    "PersistenceError",
    "SessionNotFoundError",
    "SessionNotScheduledError",
    "StudentAlreadyAssignedError",
]
