# -*- coding: utf-8 -*-
"""Configuration loader for the detention service."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Literal, cast

from detention.core.clock import DEFAULT_TIMEZONE, validate_timezone

from .contracts import DEFAULT_MIN_POINTS

DEFAULT_DB_URL = "sqlite+pysqlite:///detention.db"
DEFAULT_SESSION_CAPACITY = 20
DEFAULT_DURATION_MINUTES = 60
SUPPORTED_ENVS = {"dev", "stage", "prod"}


@dataclass(frozen=True, slots=True)
class ServiceConfig:
    """Typed configuration block for the detention service."""

    db_url: str
    min_points: int
    default_capacity: int
    default_duration_minutes: int
    timezone: str
    log_level: str
    log_file: str | None
    env: Literal["dev", "stage", "prod"]


def _read_positive_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive")
    return value


def load_from_env() -> ServiceConfig:
    """Read configuration from environment variables with validation."""

    db_url = os.getenv("DB_URL", DEFAULT_DB_URL)
    min_points = _read_positive_int("DETENTION_MIN_POINTS", DEFAULT_MIN_POINTS)
    default_capacity = _read_positive_int("DETENTION_DEFAULT_CAPACITY", DEFAULT_SESSION_CAPACITY)
    default_duration = _read_positive_int("DETENTION_DEFAULT_DURATION_MINUTES", DEFAULT_DURATION_MINUTES)
    timezone = os.getenv("TIMEZONE", DEFAULT_TIMEZONE)
    validate_timezone(timezone)
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ValueError(f"LOG_LEVEL {log_level!r} is not a logging level")
    log_file = os.getenv("LOG_FILE") or None
    env = os.getenv("ENV", "dev")

    if env not in SUPPORTED_ENVS:
        raise ValueError(f"ENV must be one of {sorted(SUPPORTED_ENVS)}")

    typed_env = cast(Literal["dev", "stage", "prod"], env)

    return ServiceConfig(
        db_url=db_url,
        min_points=min_points,
        default_capacity=default_capacity,
        default_duration_minutes=default_duration,
        timezone=timezone,
        log_level=log_level,
        log_file=log_file,
        env=typed_env,
    )
