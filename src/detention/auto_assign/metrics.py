# -*- coding: utf-8 -*-
"""Prometheus metrics for detention auto-assignment."""
from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, REGISTRY

from .contracts import AssignmentSource
from .types import MeterLike


class AutoAssignMeters(MeterLike):
    """Wraps Prometheus primitives behind a friendly interface."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry or REGISTRY
        self._runs = Counter(
            "detention_auto_assign_runs_total",
            "Auto-assign invocations by outcome",
            ("result",),
            registry=self._registry,
        )
        self._assigned = Counter(
            "detention_assigned_students_total",
            "Students seated in a detention session",
            ("source",),
            registry=self._registry,
        )
        self._enqueued = Counter(
            "detention_queue_enqueued_total",
            "Students newly placed in the overflow queue",
            registry=self._registry,
        )
        self._dequeued = Counter(
            "detention_queue_dequeued_total",
            "Students removed from the overflow queue",
            ("reason",),
            registry=self._registry,
        )
        self._persistence_failures = Counter(
            "detention_persistence_failures_total",
            "Failed writes against the records store",
            ("operation",),
            registry=self._registry,
        )
        self._capacity_conflicts = Counter(
            "detention_capacity_conflicts_total",
            "Seat reservations rejected because the session was full",
            registry=self._registry,
        )
        self._queue_depth = Gauge(
            "detention_queue_depth",
            "Students waiting in the overflow queue after the last run",
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        """Return the registry backing the meters."""

        return self._registry

    def record_run(self, result: str) -> None:
        self._runs.labels(result=result).inc()

    def record_assigned(self, source: AssignmentSource, count: int = 1) -> None:
        if count:
            self._assigned.labels(source=source).inc(count)

    def record_enqueued(self, count: int) -> None:
        if count:
            self._enqueued.inc(count)

    def record_dequeued(self, reason: str, count: int) -> None:
        if count:
            self._dequeued.labels(reason=reason).inc(count)

    def record_persistence_failure(self, operation: str) -> None:
        self._persistence_failures.labels(operation=operation).inc()

    def record_capacity_conflict(self) -> None:
        self._capacity_conflicts.inc()

    def queue_depth(self, value: int) -> None:
        self._queue_depth.set(value)


_DEFAULT_METERS: AutoAssignMeters | None = None


def default_meters() -> AutoAssignMeters:
    """Return the process-wide meters bound to the global registry."""

    global _DEFAULT_METERS
    if _DEFAULT_METERS is None:
        _DEFAULT_METERS = AutoAssignMeters()
    return _DEFAULT_METERS
