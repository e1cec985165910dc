"""Deterministic clock abstractions.

This module is the single entry-point for interacting with wall clock time.
All runtime code must depend on :class:`Clock` (or one of its implementations)
instead of calling ``datetime.now`` directly. Tests should use
:class:`FrozenClock` for deterministic behaviour.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_TIMEZONE = "UTC"
_MAX_TZ_LENGTH = 255


def _system_now() -> datetime:
    """Return an aware UTC datetime using the system wall clock."""

    return datetime.now(UTC)


def coerce_aware(value: datetime, *, timezone: ZoneInfo | None = None) -> datetime:
    """Ensure *value* is timezone-aware and normalised to *timezone* (UTC by default).

    Naive values are interpreted as UTC, which is how timestamps are persisted.
    """

    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(timezone or UTC)


def validate_timezone(tz_name: str | None) -> ZoneInfo:
    """Validate *tz_name* and return an instantiated :class:`ZoneInfo`."""

    if tz_name is None:
        raise ValueError("CONFIG_TZ_INVALID: timezone is empty")
    candidate = str(tz_name).strip()
    if not candidate:
        raise ValueError("CONFIG_TZ_INVALID: timezone is empty")
    if len(candidate) > _MAX_TZ_LENGTH:
        raise ValueError("CONFIG_TZ_INVALID: timezone name too long")
    try:
        return ZoneInfo(candidate)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"CONFIG_TZ_INVALID: unknown timezone {candidate!r}") from exc


class Clock(ABC):
    """Abstract deterministic clock interface."""

    timezone: ZoneInfo

    @abstractmethod
    def now(self) -> datetime:
        """Return the current datetime in :attr:`timezone`."""

    def utcnow(self) -> datetime:
        """Return :meth:`now` converted to UTC, the storage timezone."""

        return self.now().astimezone(UTC)


@dataclass(slots=True)
class SystemClock(Clock):
    """Clock backed by the process wall clock."""

    timezone: ZoneInfo
    now_factory: Callable[[], datetime] = field(default=_system_now, repr=False)

    def now(self) -> datetime:  # pragma: no branch - simple call
        return coerce_aware(self.now_factory(), timezone=self.timezone)


@dataclass(slots=True)
class FrozenClock(Clock):
    """Clock returning a pre-defined deterministic instant."""

    timezone: ZoneInfo
    _current: datetime | None = field(default=None, repr=False)

    def now(self) -> datetime:
        if self._current is None:  # pragma: no cover - defensive guard
            raise RuntimeError("Frozen clock not initialised; call set() first")
        return coerce_aware(self._current, timezone=self.timezone)

    def set(self, value: datetime) -> None:
        if value.tzinfo is None:
            raise ValueError("CONFIG_CLOCK_FROZEN: value must be timezone-aware")
        self._current = value

    def tick(self, seconds: float) -> None:
        if self._current is None:
            raise RuntimeError("Frozen clock not initialised; call set() first")
        self._current = self._current + timedelta(seconds=seconds)


def frozen_clock(instant: datetime, *, timezone: str = DEFAULT_TIMEZONE) -> FrozenClock:
    """Return a :class:`FrozenClock` pinned to *instant*."""

    clock = FrozenClock(timezone=validate_timezone(timezone))
    clock.set(instant)
    return clock


__all__ = [
    "Clock",
    "DEFAULT_TIMEZONE",
    "FrozenClock",
    "SystemClock",
    "coerce_aware",
    "frozen_clock",
    "validate_timezone",
]
