"""Outbox events written atomically with assignment changes."""
from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Literal
from uuid import UUID, uuid5

from detention.infrastructure.persistence.models import OutboxMessageModel

OutboxStatus = Literal["PENDING", "SENT", "FAILED"]
EVENT_NAMESPACE = UUID("5d0c7e52-5a8f-4c63-9a41-2f7b0d6c1e3a")
_MAX_PAYLOAD_BYTES = 32768


def derive_event_id(event_type: str, aggregate_id: object, discriminator: object = "") -> str:
    """Derive a deterministic event id so replays of the same change collide."""

    return str(uuid5(EVENT_NAMESPACE, f"{event_type}:{aggregate_id}:{discriminator}"))


@dataclass(slots=True)
class OutboxEvent:
    """Notification event persisted in the same transaction as the change it reports."""

    event_id: str
    aggregate_type: str
    aggregate_id: str
    event_type: str
    payload: dict
    occurred_at: datetime
    status: OutboxStatus = "PENDING"

    def to_model(self) -> OutboxMessageModel:
        """Convert the event into a SQLAlchemy persistence model."""

        payload_json = json.dumps(self.payload, ensure_ascii=False, default=str)
        if len(payload_json.encode("utf-8")) > _MAX_PAYLOAD_BYTES:
            raise ValueError("PAYLOAD_TOO_LARGE|event payload exceeds the allowed size")
        return OutboxMessageModel(
            event_id=self.event_id,
            aggregate_type=self.aggregate_type,
            aggregate_id=self.aggregate_id,
            event_type=self.event_type,
            payload_json=payload_json,
            occurred_at=self.occurred_at,
            status=self.status,
        )


def detention_assigned(
    *,
    assignment_id: int,
    session_id: int,
    student_id: object,
    parent_id: int | None,
    reason: str,
    occurred_at: datetime,
) -> OutboxEvent:
    return OutboxEvent(
        event_id=derive_event_id("DetentionAssigned", assignment_id, occurred_at.isoformat()),
        aggregate_type="DetentionAssignment",
        aggregate_id=str(assignment_id),
        event_type="DetentionAssigned",
        payload={
            "assignment_id": assignment_id,
            "session_id": session_id,
            "student_id": student_id,
            "parent_id": parent_id,
            "reason": reason,
            "occurred_at": occurred_at.isoformat(),
        },
        occurred_at=occurred_at,
    )


def attendance_flagged(
    *,
    assignment_id: int,
    session_id: int,
    student_id: object,
    parent_id: int | None,
    status: str,
    occurred_at: datetime,
) -> OutboxEvent:
    return OutboxEvent(
        event_id=derive_event_id("DetentionAttendanceFlagged", assignment_id, f"{status}:{occurred_at.isoformat()}"),
        aggregate_type="DetentionAssignment",
        aggregate_id=str(assignment_id),
        event_type="DetentionAttendanceFlagged",
        payload={
            "assignment_id": assignment_id,
            "session_id": session_id,
            "student_id": student_id,
            "parent_id": parent_id,
            "status": status,
            "occurred_at": occurred_at.isoformat(),
        },
        occurred_at=occurred_at,
    )


__all__ = ["OutboxEvent", "attendance_flagged", "derive_event_id", "detention_assigned"]
