# -*- coding: utf-8 -*-
"""Public entry-points for detention auto-assignment."""
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from sqlalchemy.orm import sessionmaker

from detention.core.clock import Clock, SystemClock, validate_timezone
from detention.infrastructure.persistence.models import Base
from detention.infrastructure.persistence.session import make_engine, make_session_factory

from .config import ServiceConfig, load_from_env
from .contracts import AssignmentResult, DetentionSession, EligibilityRule, QueueEntry, Student
from .errors import (
    CapacityExceededError,
    DetentionError,
    PersistenceError,
    SessionNotFoundError,
    SessionNotScheduledError,
    StudentAlreadyAssignedError,
)
from .locks import SessionLockRegistry
from .logging_utils import build_logger
from .metrics import AutoAssignMeters, default_meters
from .orchestrator import AutoAssignOrchestrator
from .repository import SqlAlchemyDetentionStore
from .rules import SqlAlchemyRuleRepository


@dataclass(frozen=True)
class Components:
    """Wired runtime objects shared by the CLI and the HTTP app."""

    config: ServiceConfig
    session_factory: sessionmaker
    clock: Clock
    locks: SessionLockRegistry
    store: SqlAlchemyDetentionStore
    rules: SqlAlchemyRuleRepository
    meters: AutoAssignMeters
    orchestrator: AutoAssignOrchestrator


def build_components(
    config: ServiceConfig,
    *,
    meters: AutoAssignMeters | None = None,
    clock: Clock | None = None,
) -> Components:
    engine = make_engine(config.db_url)
    Base.metadata.create_all(engine)
    session_factory = make_session_factory(engine)
    active_clock = clock or SystemClock(timezone=validate_timezone(config.timezone))
    active_meters = meters or default_meters()
    locks = SessionLockRegistry()
    store = SqlAlchemyDetentionStore(session_factory)
    rules = SqlAlchemyRuleRepository(session_factory, default_min_points=config.min_points)
    orchestrator = AutoAssignOrchestrator(
        store,
        rule_provider=rules,
        clock=active_clock,
        meters=active_meters,
        logger=build_logger(),
        locks=locks,
    )
    return Components(
        config=config,
        session_factory=session_factory,
        clock=active_clock,
        locks=locks,
        store=store,
        rules=rules,
        meters=active_meters,
        orchestrator=orchestrator,
    )


@lru_cache(maxsize=1)
def _bootstrap() -> Components:
    return build_components(load_from_env())


def get_components() -> Components:
    return _bootstrap()


def get_orchestrator() -> AutoAssignOrchestrator:
    return _bootstrap().orchestrator


def auto_assign(session_id: int) -> AssignmentResult:
    return get_orchestrator().auto_assign(session_id)


__all__ = [
    "AssignmentResult",
    "AutoAssignMeters",
    "AutoAssignOrchestrator",
    "CapacityExceededError",
    "Components",
    "DetentionError",
    "DetentionSession",
    "EligibilityRule",
    "PersistenceError",
    "QueueEntry",
    "ServiceConfig",
    "SessionNotFoundError",
    "SessionNotScheduledError",
    "Student",
    "StudentAlreadyAssignedError",
    "auto_assign",
    "build_components",
    "get_components",
    "get_orchestrator",
]
