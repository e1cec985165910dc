# -*- coding: utf-8 -*-
from __future__ import annotations

import json
from datetime import timedelta

import pytest
from sqlalchemy import select

from detention.auto_assign.contracts import EligibilityRule, QueueEntry
from detention.auto_assign.errors import (
    AssignmentNotFoundError,
    CapacityExceededError,
    PersistenceError,
    SessionNotFoundError,
    SessionNotScheduledError,
    StudentAlreadyAssignedError,
)
from detention.infrastructure.persistence.models import (
    DetentionAssignmentModel,
    DetentionSessionModel,
    OutboxMessageModel,
)

from tests.factories import T0, add_incident, seed_queue, seed_session, seed_student


def test_get_session_maps_row(store, db):
    session_id = seed_session(db, capacity=4, assigned_count=1)
    session = store.get_session(session_id)
    assert session.capacity == 4
    assert session.assigned_count == 1
    assert session.status == "scheduled"
    assert store.get_session(session_id + 100) is None


def test_points_only_count_approved_incidents_after_last_detention(store, db):
    last = T0 - timedelta(days=10)
    seed_student(db, 1, 8, occurred_at=T0 - timedelta(days=20), last_completed=last)
    add_incident(db, 1, 6, occurred_at=T0 - timedelta(days=2))
    add_incident(db, 1, 5, occurred_at=T0 - timedelta(days=1))
    add_incident(db, 1, 50, occurred_at=T0 - timedelta(days=1), status="pending")
    seed_student(db, 2, 12)
    seed_student(db, 3, 4)

    students = {student.id: student for student in store.get_qualifying_students(EligibilityRule(10))}

    assert set(students) == {1, 2}
    assert students[1].points_since_last_detention == 11
    assert students[1].last_completed_detention_at == last
    assert students[2].points_since_last_detention == 12


def test_pending_assignments_ignore_closed_sessions(store, db):
    open_id = seed_session(db, capacity=2)
    done_id = seed_session(db, capacity=2, status="completed")
    for student_id in (1, 2, 3):
        seed_student(db, student_id, 15)
    store.create_assignment(open_id, 1, points=15, reason="r", assigned_at=T0)
    db.add(DetentionAssignmentModel(session_id=done_id, student_id=2, status="attended", assigned_at=T0))
    db.commit()

    assert store.get_pending_assignments([1, 2, 3]) == frozenset({1})
    assert store.get_pending_assignments([]) == frozenset()


def test_create_assignment_writes_outbox_event(store, db):
    session_id = seed_session(db, capacity=2)
    seed_student(db, 1, 15, parent_id=77)

    assignment = store.create_assignment(session_id, 1, points=15, reason="Auto-assigned", assigned_at=T0)

    row = db.get(DetentionAssignmentModel, assignment.id)
    assert row.status == "assigned"
    assert row.points_at_assignment == 15
    message = db.execute(select(OutboxMessageModel)).scalar_one()
    assert message.event_type == "DetentionAssigned"
    payload = json.loads(message.payload_json)
    assert payload["parent_id"] == 77
    assert payload["session_id"] == session_id


def test_create_assignment_rejects_double_booking(store, db):
    first = seed_session(db, capacity=2)
    second = seed_session(db, capacity=2)
    seed_student(db, 1, 15)
    store.create_assignment(first, 1, points=15, reason="r", assigned_at=T0)

    with pytest.raises(StudentAlreadyAssignedError):
        store.create_assignment(second, 1, points=15, reason="r", assigned_at=T0)


def test_unknown_student_is_a_persistence_failure(store, db):
    session_id = seed_session(db, capacity=2)
    with pytest.raises(PersistenceError) as excinfo:
        store.create_assignment(session_id, 404, points=None, reason="r", assigned_at=T0)
    assert excinfo.value.retryable is True


def test_increment_is_guarded_by_capacity(store, db):
    session_id = seed_session(db, capacity=1)
    store.increment_session_count(session_id)
    with pytest.raises(CapacityExceededError):
        store.increment_session_count(session_id)
    row = db.get(DetentionSessionModel, session_id)
    db.refresh(row)
    assert row.assigned_count == 1


def test_increment_missing_session(store):
    with pytest.raises(PersistenceError):
        store.increment_session_count(12345)


def test_cancel_assignment_releases_seat_once(store, db):
    session_id = seed_session(db, capacity=2)
    seed_student(db, 1, 15)
    assignment = store.create_assignment(session_id, 1, points=15, reason="r", assigned_at=T0)
    store.increment_session_count(session_id)

    store.cancel_assignment(assignment.id)
    store.cancel_assignment(assignment.id)

    row = db.get(DetentionSessionModel, session_id)
    db.refresh(row)
    assert row.assigned_count == 0
    assert store.get_pending_assignments([1]) == frozenset()


def test_withdraw_keeps_count(store, db):
    session_id = seed_session(db, capacity=2, assigned_count=1)
    seed_student(db, 1, 15)
    assignment = store.create_assignment(session_id, 1, points=15, reason="r", assigned_at=T0)

    store.cancel_assignment(assignment.id, release_seat=False)

    row = db.get(DetentionSessionModel, session_id)
    db.refresh(row)
    assert row.assigned_count == 1


def test_cancelled_seat_can_be_reassigned(store, db):
    session_id = seed_session(db, capacity=2)
    seed_student(db, 1, 15)
    first = store.create_assignment(session_id, 1, points=15, reason="r", assigned_at=T0)
    store.cancel_assignment(first.id, release_seat=False)

    second = store.create_assignment(session_id, 1, points=16, reason="again", assigned_at=T0 + timedelta(hours=1))

    assert second.id == first.id
    assert store.get_pending_assignments([1]) == frozenset({1})
    assert len(db.execute(select(OutboxMessageModel)).scalars().all()) == 2


def test_cancel_unknown_assignment(store):
    with pytest.raises(AssignmentNotFoundError):
        store.cancel_assignment(999)


def test_queue_roundtrip_and_order(store, db):
    for student_id in (1, 2, 3):
        seed_student(db, student_id, 12)
    seed_queue(db, 3, 11, queued_at=T0 + timedelta(minutes=1))
    store.upsert_queue_entry(QueueEntry(student_id=1, points_at_queue_time=12, queued_at=T0))
    store.upsert_queue_entry(QueueEntry(student_id=2, points_at_queue_time=20, queued_at=T0))
    store.upsert_queue_entry(QueueEntry(student_id=1, points_at_queue_time=13, queued_at=T0))

    queue = store.get_queue()

    assert [(entry.student_id, entry.points_at_queue_time) for entry in queue] == [(2, 20), (1, 13), (3, 11)]
    assert queue[0].queued_at == T0

    store.remove_queue_entries([1, 3, 99])
    assert [entry.student_id for entry in store.get_queue()] == [2]


def test_writes_refused_once_session_left_scheduled(store, db):
    session_id = seed_session(db, capacity=3, assigned_count=1, status="cancelled")
    seed_student(db, 1, 15)

    with pytest.raises(SessionNotScheduledError):
        store.create_assignment(session_id, 1, points=15, reason="r", assigned_at=T0)
    with pytest.raises(SessionNotScheduledError) as excinfo:
        store.increment_session_count(session_id)

    assert excinfo.value.status == "cancelled"
    row = db.get(DetentionSessionModel, session_id)
    db.refresh(row)
    assert row.assigned_count == 1
    assert db.execute(select(DetentionAssignmentModel)).scalars().all() == []
    assert db.execute(select(OutboxMessageModel)).scalars().all() == []


def test_create_assignment_for_missing_session(store, db):
    seed_student(db, 1, 15)
    with pytest.raises(SessionNotFoundError):
        store.create_assignment(999, 1, points=15, reason="r", assigned_at=T0)
