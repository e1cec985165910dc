# -*- coding: utf-8 -*-
from __future__ import annotations

from collections.abc import Iterator

import pytest
from prometheus_client import CollectorRegistry
from sqlalchemy.orm import Session, sessionmaker

from detention.auto_assign.locks import SessionLockRegistry
from detention.auto_assign.logging_utils import build_logger
from detention.auto_assign.metrics import AutoAssignMeters
from detention.auto_assign.orchestrator import AutoAssignOrchestrator
from detention.auto_assign.repository import SqlAlchemyDetentionStore
from detention.auto_assign.rules import SqlAlchemyRuleRepository
from detention.core.clock import FrozenClock, frozen_clock
from detention.infrastructure.persistence.models import Base
from detention.infrastructure.persistence.session import make_engine, make_session_factory
from detention.sessions.service import DetentionSessionService

from tests.factories import T0


@pytest.fixture()
def clock() -> FrozenClock:
    return frozen_clock(T0)


@pytest.fixture()
def registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture()
def meters(registry: CollectorRegistry) -> AutoAssignMeters:
    return AutoAssignMeters(registry)


@pytest.fixture()
def engine(tmp_path) -> Iterator:
    db_path = tmp_path / "detention.sqlite"
    engine = make_engine(f"sqlite+pysqlite:///{db_path}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine) -> sessionmaker:
    return make_session_factory(engine)


@pytest.fixture()
def db(session_factory: sessionmaker) -> Iterator[Session]:
    with session_factory() as sess:
        yield sess


@pytest.fixture()
def locks() -> SessionLockRegistry:
    return SessionLockRegistry()


@pytest.fixture()
def store(session_factory: sessionmaker) -> SqlAlchemyDetentionStore:
    return SqlAlchemyDetentionStore(session_factory)


@pytest.fixture()
def rule_repository(session_factory: sessionmaker) -> SqlAlchemyRuleRepository:
    return SqlAlchemyRuleRepository(session_factory, default_min_points=10)


@pytest.fixture()
def sql_orchestrator(store, rule_repository, clock, meters, locks) -> AutoAssignOrchestrator:
    return AutoAssignOrchestrator(
        store,
        rule_provider=rule_repository,
        clock=clock,
        meters=meters,
        logger=build_logger("test-detention"),
        locks=locks,
    )


@pytest.fixture()
def session_service(session_factory, clock, locks) -> DetentionSessionService:
    return DetentionSessionService(
        session_factory,
        clock=clock,
        logger=build_logger("test-detention-sessions"),
        locks=locks,
    )
