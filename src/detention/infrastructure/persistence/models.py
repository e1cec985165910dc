# -*- coding: utf-8 -*-
from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func


Base = declarative_base()

SESSION_STATUSES = ("scheduled", "in_progress", "completed", "cancelled")
ASSIGNMENT_STATUSES = ("assigned", "attended", "late", "absent", "excused", "cancelled")
INCIDENT_STATUSES = ("pending", "approved", "rejected")


class StudentModel(Base):
    __tablename__ = "students"

    id = Column(Integer, primary_key=True)
    student_number = Column(String(32), nullable=True, unique=True)
    first_name = Column(String(128), nullable=True)
    last_name = Column(String(128), nullable=True)
    parent_id = Column(Integer, nullable=True)
    # Maintained by the records service from incident and merit deltas.
    total_demerit_points = Column(Integer, nullable=False, default=0)
    last_completed_detention_at = Column(DateTime(timezone=True), nullable=True)

    incidents = relationship("BehaviourIncidentModel", back_populates="student")
    assignments = relationship("DetentionAssignmentModel", back_populates="student")

    __table_args__ = (CheckConstraint("total_demerit_points >= 0", name="ck_students_points"),)


class BehaviourIncidentModel(Base):
    __tablename__ = "behaviour_incidents"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    incident_type = Column(String(128), nullable=True)
    severity = Column(String(16), nullable=True)
    points = Column(Integer, nullable=False, default=0)
    status = Column(
        Enum(*INCIDENT_STATUSES, name="incident_status", native_enum=False),
        nullable=False,
        default="pending",
    )
    occurred_at = Column(DateTime(timezone=True), nullable=False)

    student = relationship("StudentModel", back_populates="incidents")

    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_incident_points"),
        Index("ix_incidents_student_time", "student_id", "status", "occurred_at"),
    )


class DetentionRuleModel(Base):
    __tablename__ = "detention_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    action_type = Column(String(32), nullable=False, default="detention")
    min_points = Column(Integer, nullable=False, default=0)
    max_points = Column(Integer, nullable=True)
    severity = Column(String(16), nullable=True)
    detention_duration = Column(Integer, nullable=False, default=60)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class DetentionSessionModel(Base):
    __tablename__ = "detention_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    detention_date = Column(Date, nullable=False)
    detention_time = Column(Time, nullable=True)
    duration = Column(Integer, nullable=False, default=60)
    location = Column(String(128), nullable=True)
    teacher_on_duty_id = Column(Integer, nullable=True)
    capacity = Column(Integer, nullable=False, default=20)
    assigned_count = Column(Integer, nullable=False, default=0)
    status = Column(
        Enum(*SESSION_STATUSES, name="detention_session_status", native_enum=False),
        nullable=False,
        default="scheduled",
    )
    notes = Column(Text, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    assignments = relationship("DetentionAssignmentModel", back_populates="session")

    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_session_capacity"),
        CheckConstraint("assigned_count >= 0 AND assigned_count <= capacity", name="ck_session_count"),
        Index("ix_sessions_status_date", "status", "detention_date"),
    )


class DetentionAssignmentModel(Base):
    __tablename__ = "detention_assignments"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("detention_sessions.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    reason = Column(Text, nullable=True)
    points_at_assignment = Column(Integer, nullable=True)
    status = Column(
        Enum(*ASSIGNMENT_STATUSES, name="detention_assignment_status", native_enum=False),
        nullable=False,
        default="assigned",
    )
    assigned_at = Column(DateTime(timezone=True), nullable=False)
    attendance_time = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    session = relationship("DetentionSessionModel", back_populates="assignments")
    student = relationship("StudentModel", back_populates="assignments")

    __table_args__ = (
        UniqueConstraint("session_id", "student_id", name="uq_assignment_session_student"),
        Index("ix_assignments_student_status", "student_id", "status"),
    )


class DetentionQueueModel(Base):
    __tablename__ = "detention_queue"

    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), primary_key=True)
    points_at_queue_time = Column(Integer, nullable=False)
    queued_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_queue_order", "queued_at", "points_at_queue_time"),)


class OutboxMessageModel(Base):
    __tablename__ = "outbox_messages"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    event_id = Column(String(64), nullable=False, unique=True)
    aggregate_type = Column(String(64), nullable=False)
    aggregate_id = Column(String(64), nullable=False)
    event_type = Column(String(64), nullable=False)
    payload_json = Column(Text, nullable=False)
    occurred_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(
        Enum("PENDING", "SENT", "FAILED", name="outbox_status", native_enum=False),
        nullable=False,
        default="PENDING",
    )

    __table_args__ = (Index("ix_outbox_status_time", "status", "occurred_at"),)


__all__ = [
    "ASSIGNMENT_STATUSES",
    "Base",
    "BehaviourIncidentModel",
    "DetentionAssignmentModel",
    "DetentionQueueModel",
    "DetentionRuleModel",
    "DetentionSessionModel",
    "INCIDENT_STATUSES",
    "OutboxMessageModel",
    "SESSION_STATUSES",
    "StudentModel",
]
