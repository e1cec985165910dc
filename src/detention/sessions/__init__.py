"""Detention session lifecycle and attendance."""
from .service import ATTENDANCE_STATUSES, AssignmentRecord, DetentionSessionService, SessionRecord, TRANSITIONS

__all__ = ["ATTENDANCE_STATUSES", "AssignmentRecord", "DetentionSessionService", "SessionRecord", "TRANSITIONS"]
