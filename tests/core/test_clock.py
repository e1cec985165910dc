# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta, timezone

import pytest

from detention.core import clock as clock_module
from detention.core.clock import (
    FrozenClock,
    SystemClock,
    coerce_aware,
    frozen_clock,
    validate_timezone,
)
from detention.core.logging_config import setup_logging


def test_frozen_clock_ticks():
    clock = frozen_clock(datetime(2024, 1, 1, 12, tzinfo=UTC), timezone="Europe/London")
    assert clock.now().utcoffset() == timedelta(0)
    clock.tick(90)
    assert clock.utcnow() == datetime(2024, 1, 1, 12, 1, 30, tzinfo=UTC)


def test_frozen_clock_requires_aware_value():
    clock = FrozenClock(timezone=validate_timezone("UTC"))
    with pytest.raises(ValueError, match="CONFIG_CLOCK_FROZEN"):
        clock.set(datetime(2024, 1, 1))


def test_coerce_aware_treats_naive_as_utc():
    naive = datetime(2024, 5, 1, 9, 0)
    assert coerce_aware(naive) == datetime(2024, 5, 1, 9, 0, tzinfo=UTC)
    shifted = datetime(2024, 5, 1, 9, 0, tzinfo=timezone(timedelta(hours=2)))
    assert coerce_aware(shifted).hour == 7


def test_system_clock_uses_factory():
    fixed = datetime(2024, 2, 2, 2, tzinfo=UTC)
    clock = SystemClock(timezone=validate_timezone("UTC"), now_factory=lambda: fixed)
    assert clock.now() == fixed


@pytest.mark.parametrize("name", ["", "   ", "Nowhere/Special"])
def test_validate_timezone_rejects(name):
    with pytest.raises(ValueError, match="CONFIG_TZ_INVALID"):
        validate_timezone(name)


def test_clock_module_exports_only_runtime_clocks():
    assert sorted(clock_module.__all__) == [
        "Clock",
        "DEFAULT_TIMEZONE",
        "FrozenClock",
        "SystemClock",
        "coerce_aware",
        "frozen_clock",
        "validate_timezone",
    ]
    assert not hasattr(clock_module, "ensure_clock")


def test_setup_logging_writes_file(tmp_path):
    root = logging.getLogger()
    saved = list(root.handlers), root.level
    log_file = tmp_path / "logs" / "detention.log"
    try:
        setup_logging("INFO", log_file)
        logging.getLogger("detention.test").info("hello")
        for handler in root.handlers:
            handler.flush()
        assert "hello" in log_file.read_text(encoding="utf-8")
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        for handler in saved[0]:
            root.addHandler(handler)
        root.setLevel(saved[1])
