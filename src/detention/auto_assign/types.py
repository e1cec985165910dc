# -*- coding: utf-8 -*-
"""Type definitions for the detention auto-assign service."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from .contracts import AssignmentSource


@dataclass(frozen=True, slots=True)
class ErrorDetail:
    """Structured error payload returned to callers.

    Attributes
    ----------
    code:
        Machine-readable error code.
    message:
        Human-facing message.
    details:
        Additional diagnostic details for operators.
    """

    code: str
    message: str
    details: str


class LoggerLike(Protocol):
    """Protocol representing the structured logger adapter used by the service."""

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None: ...


class MeterLike(Protocol):
    """Protocol capturing the observability hooks consumed by the service."""

    def record_run(self, result: str) -> None: ...

    def record_assigned(self, source: AssignmentSource, count: int = 1) -> None: ...

    def record_enqueued(self, count: int) -> None: ...

    def record_dequeued(self, reason: str, count: int) -> None: ...

    def record_persistence_failure(self, operation: str) -> None: ...

    def record_capacity_conflict(self) -> None: ...

    def queue_depth(self, value: int) -> None: ...
