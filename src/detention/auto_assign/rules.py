"""Detention rule configuration and its reduction to an ``EligibilityRule``."""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Iterable, List, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from detention.infrastructure.persistence.models import DetentionRuleModel
from detention.infrastructure.persistence.session import session_scope

from .contracts import DEFAULT_MIN_POINTS, EligibilityRule
from .errors import PersistenceError

SessionFactory = Callable[[], Session]


@dataclass(frozen=True, slots=True)
class DetentionRule:
    """One row of the configurable detention rule table."""

    id: Optional[int]
    action_type: str = "detention"
    min_points: int = DEFAULT_MIN_POINTS
    max_points: Optional[int] = None
    severity: Optional[str] = None
    detention_duration: int = 60
    is_active: bool = True


class RuleProvider(Protocol):
    """Supplies the threshold in force for an auto-assign run."""

    def current_rule(self) -> EligibilityRule:
        """Return the eligibility rule to apply now."""


def resolve_eligibility_rule(
    rules: Iterable[DetentionRule],
    *,
    default_min_points: int = DEFAULT_MIN_POINTS,
) -> EligibilityRule:
    """Reduce the rule table to one points threshold.

    The lowest ``min_points`` of the active ``detention`` rules without a
    severity filter wins; severity-triggered rules do not affect the points
    threshold.
    """

    thresholds = [
        rule.min_points
        for rule in rules
        if rule.is_active
        and rule.action_type == "detention"
        and not rule.severity
        and rule.min_points > 0
    ]
    if not thresholds:
        return EligibilityRule(default_min_points)
    return EligibilityRule(min(thresholds))


@dataclass(frozen=True, slots=True)
class StaticRuleProvider:
    rule: EligibilityRule = EligibilityRule()

    def current_rule(self) -> EligibilityRule:
        return self.rule


class SqlAlchemyRuleRepository(RuleProvider):
    """Rule table access backed by SQLAlchemy sessions."""

    def __init__(self, session_factory: SessionFactory, *, default_min_points: int = DEFAULT_MIN_POINTS) -> None:
        self._session_factory = session_factory
        self._default_min_points = default_min_points

    def current_rule(self) -> EligibilityRule:
        return resolve_eligibility_rule(self.list_rules(), default_min_points=self._default_min_points)

    def list_rules(self) -> List[DetentionRule]:
        try:
            with self._session_factory() as session:
                rows = session.execute(select(DetentionRuleModel).order_by(DetentionRuleModel.min_points)).scalars()
                return [_to_rule(row) for row in rows]
        except SQLAlchemyError as exc:
            raise PersistenceError("list_rules", str(exc), cause=exc) from exc

    def save_rule(self, rule: DetentionRule) -> DetentionRule:
        """Insert ``rule`` or update the row with the same id."""

        if rule.min_points < 0:
            raise ValueError("RULE_MIN_POINTS_INVALID|min_points must not be negative")
        if rule.max_points is not None and rule.max_points < rule.min_points:
            raise ValueError("RULE_MAX_POINTS_INVALID|max_points must be >= min_points")
        try:
            with session_scope(self._session_factory) as session:
                row = session.get(DetentionRuleModel, rule.id) if rule.id is not None else None
                if row is None:
                    row = DetentionRuleModel()
                    session.add(row)
                row.action_type = rule.action_type
                row.min_points = rule.min_points
                row.max_points = rule.max_points
                row.severity = rule.severity
                row.detention_duration = rule.detention_duration
                row.is_active = rule.is_active
                session.flush()
                return replace(rule, id=row.id)
        except SQLAlchemyError as exc:
            raise PersistenceError("save_rule", str(exc), cause=exc) from exc


def _to_rule(row: DetentionRuleModel) -> DetentionRule:
    return DetentionRule(
        id=row.id,
        action_type=row.action_type,
        min_points=int(row.min_points),
        max_points=row.max_points,
        severity=row.severity,
        detention_duration=int(row.detention_duration),
        is_active=bool(row.is_active),
    )


__all__ = [
    "DetentionRule",
    "RuleProvider",
    "SqlAlchemyRuleRepository",
    "StaticRuleProvider",
    "resolve_eligibility_rule",
]
