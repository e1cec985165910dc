# -*- coding: utf-8 -*-
"""HTTP surface for detention sessions, rules and auto-assignment."""
from __future__ import annotations

from datetime import date, datetime, time
from typing import Any, List, Literal, Optional

from fastapi import APIRouter, FastAPI, Query, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, ConfigDict, Field, model_validator

from detention.auto_assign import Components, get_components
from detention.auto_assign.errors import DetentionError
from detention.auto_assign.logging_utils import build_logger
from detention.auto_assign.rules import DetentionRule
from detention.sessions.service import DetentionSessionService

ERROR_STATUS = {
    "SESSION_NOT_FOUND": 404,
    "ASSIGNMENT_NOT_FOUND": 404,
    "SESSION_NOT_SCHEDULED": 409,
    "CAPACITY_EXCEEDED": 409,
    "STUDENT_ALREADY_ASSIGNED": 409,
    "TRANSITION_INVALID": 409,
    "PERSISTENCE_FAILED": 503,
}


class ErrorEnvelope(BaseModel):
    code: str
    message: str
    details: Any | None = None


def _error_response(*, status_code: int, code: str, message: str, details: Any | None = None) -> JSONResponse:
    body = {"error": ErrorEnvelope(code=code, message=message, details=details).model_dump()}
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


class RuleIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[int] = None
    action_type: str = "detention"
    min_points: int = Field(ge=0)
    max_points: Optional[int] = Field(default=None, ge=0)
    severity: Optional[str] = None
    detention_duration: int = Field(default=60, gt=0)
    is_active: bool = True

    @model_validator(mode="after")
    def _check_range(self) -> "RuleIn":
        if self.max_points is not None and self.max_points < self.min_points:
            raise ValueError("max_points must be >= min_points")
        return self


class RuleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    action_type: str
    min_points: int
    max_points: Optional[int]
    severity: Optional[str]
    detention_duration: int
    is_active: bool


class RulesOut(BaseModel):
    rules: List[RuleOut]
    threshold: int


class SessionIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    detention_date: date
    detention_time: Optional[time] = None
    duration: Optional[int] = Field(default=None, gt=0)
    location: Optional[str] = Field(default=None, max_length=128)
    teacher_on_duty_id: Optional[int] = None
    capacity: Optional[int] = Field(default=None, gt=0)
    notes: Optional[str] = None


class SessionUpdateIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    detention_date: Optional[date] = None
    detention_time: Optional[time] = None
    duration: Optional[int] = Field(default=None, gt=0)
    location: Optional[str] = Field(default=None, max_length=128)
    teacher_on_duty_id: Optional[int] = None
    capacity: Optional[int] = Field(default=None, gt=0)
    notes: Optional[str] = None


class AssignmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    session_id: int
    student_id: int
    reason: Optional[str]
    points_at_assignment: Optional[int]
    status: str
    assigned_at: datetime
    attendance_time: Optional[datetime]
    notes: Optional[str]


class SessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    detention_date: date
    detention_time: Optional[time]
    duration: int
    location: Optional[str]
    teacher_on_duty_id: Optional[int]
    capacity: int
    assigned_count: int
    status: str
    notes: Optional[str]
    completed_at: Optional[datetime]
    assignments: List[AssignmentOut] = Field(default_factory=list)


class StatusIn(BaseModel):
    status: Literal["scheduled", "in_progress", "completed", "cancelled"]


class ManualAssignIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    student_id: int
    reason: Optional[str] = None


class AttendanceIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    status: Literal["attended", "late", "absent", "excused"]
    notes: Optional[str] = None


class QueueEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    student_id: int
    points_at_queue_time: int
    queued_at: datetime


class QueueOut(BaseModel):
    depth: int
    entries: List[QueueEntryOut]


class AutoAssignOut(BaseModel):
    assigned_count: int
    queued_count: int
    qualifying_students: int
    total_count: int
    capacity: int
    error_code: Optional[str] = None


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DetentionError)
    async def detention_error_handler(request: Request, exc: DetentionError):
        detail = exc.detail
        return _error_response(
            status_code=ERROR_STATUS.get(detail.code, 500),
            code=detail.code,
            message=detail.message,
            details=detail.details,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return _error_response(
            status_code=422,
            code="VALIDATION_ERROR",
            message="Request payload is invalid.",
            details=exc.errors(),
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        code, _, message = str(exc).partition("|")
        if not message:
            code, message = "VALIDATION_ERROR", str(exc)
        return _error_response(status_code=422, code=code, message=message)


def build_router(components: Components, sessions: DetentionSessionService) -> APIRouter:
    router = APIRouter(prefix="/detentions", tags=["detentions"])
    orchestrator = components.orchestrator
    rules = components.rules

    @router.get("/rules", response_model=RulesOut)
    def list_rules() -> RulesOut:
        return RulesOut(
            rules=[RuleOut.model_validate(rule) for rule in rules.list_rules()],
            threshold=rules.current_rule().min_points_since_last_detention,
        )

    @router.post("/rules", response_model=RuleOut, status_code=201)
    def save_rule(payload: RuleIn) -> RuleOut:
        saved = rules.save_rule(DetentionRule(**payload.model_dump()))
        return RuleOut.model_validate(saved)

    @router.get("/queue", response_model=QueueOut)
    def queue() -> QueueOut:
        entries = components.store.get_queue()
        return QueueOut(depth=len(entries), entries=[QueueEntryOut.model_validate(entry) for entry in entries])

    @router.put("/assignments/{assignment_id}", response_model=AssignmentOut)
    def record_attendance(assignment_id: int, payload: AttendanceIn) -> AssignmentOut:
        record = sessions.record_attendance(assignment_id, payload.status, notes=payload.notes)
        return AssignmentOut.model_validate(record)

    @router.post("", response_model=SessionOut, status_code=201)
    def create_session(payload: SessionIn) -> SessionOut:
        record = sessions.create_session(**payload.model_dump())
        return SessionOut.model_validate(record)

    @router.get("", response_model=List[SessionOut])
    def list_sessions(
        status: Optional[str] = Query(default=None),
        on_date: Optional[date] = Query(default=None, alias="date"),
    ) -> List[SessionOut]:
        return [SessionOut.model_validate(record) for record in sessions.list_sessions(status=status, on_date=on_date)]

    @router.get("/{session_id}", response_model=SessionOut)
    def get_session(session_id: int) -> SessionOut:
        return SessionOut.model_validate(sessions.get_session(session_id))

    @router.put("/{session_id}", response_model=SessionOut)
    def update_session(session_id: int, payload: SessionUpdateIn) -> SessionOut:
        record = sessions.update_session(session_id, **payload.model_dump(exclude_unset=True))
        return SessionOut.model_validate(record)

    @router.post("/{session_id}/status", response_model=SessionOut)
    def change_status(session_id: int, payload: StatusIn) -> SessionOut:
        return SessionOut.model_validate(sessions.transition(session_id, payload.status))

    @router.post("/{session_id}/assign", response_model=AssignmentOut, status_code=201)
    def assign_student(session_id: int, payload: ManualAssignIn) -> AssignmentOut:
        assignment = orchestrator.assign_student(session_id, payload.student_id, reason=payload.reason)
        return AssignmentOut.model_validate(sessions.get_assignment(assignment.id))

    @router.post("/{session_id}/auto-assign", response_model=AutoAssignOut)
    def run_auto_assign(session_id: int) -> AutoAssignOut:
        result = orchestrator.auto_assign(session_id)
        return AutoAssignOut(**result.as_dict())

    return router


def create_app(components: Components | None = None) -> FastAPI:
    active = components or get_components()
    sessions = DetentionSessionService(
        active.session_factory,
        clock=active.clock,
        logger=build_logger("detention.sessions"),
        locks=active.locks,
        default_capacity=active.config.default_capacity,
        default_duration_minutes=active.config.default_duration_minutes,
    )
    app = FastAPI(title="Detention Assignment API", version="1.0")
    app.state.components = active
    app.state.sessions = sessions
    app.include_router(build_router(active, sessions))
    install_error_handlers(app)

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(generate_latest(active.meters.registry), media_type=CONTENT_TYPE_LATEST)

    @app.get("/readyz")
    def readyz() -> dict[str, str]:
        return {"status": "ok"}

    return app


__all__ = ["ERROR_STATUS", "create_app", "install_error_handlers"]
