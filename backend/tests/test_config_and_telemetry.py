from __future__ import annotations

import logging
from datetime import date
from typing import List

import pytest

from studyhall.config import get_settings
from studyhall.logging_config import TELEMETRY_LOG_FORMAT, TELEMETRY_LOGGER, configure_logging
from studyhall.models import Role
from studyhall.telemetry import TelemetryEvent, emit_event, register_listener


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STUDYHALL_STREAK_REWARD_THRESHOLDS", "[7, 30]")
    monkeypatch.setenv("STUDYHALL_LESSON_BONUS_POINTS", "25")
    settings = get_settings()
    assert settings.streak_reward_thresholds == [7, 30]
    assert settings.lesson_bonus_points == 25
    assert settings.streak_reward_points == 50


def test_non_positive_threshold_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STUDYHALL_STREAK_REWARD_THRESHOLDS", "[0]")
    with pytest.raises(RuntimeError):
        get_settings()


def test_invalid_timeout_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STUDYHALL_PROFILE_FETCH_TIMEOUT", "-1")
    with pytest.raises(RuntimeError, match="Invalid studyhall configuration"):
        get_settings()


def test_listeners_receive_sanitized_events() -> None:
    received: List[TelemetryEvent] = []

    def broken(_: TelemetryEvent) -> None:
        raise RuntimeError("listener bug")

    register_listener(broken)
    remove = register_listener(received.append)
    emit_event("lesson_viewed", role=Role.ADMIN, day=date(2026, 10, 19))
    remove()
    emit_event("ignored")

    assert [event.name for event in received] == ["lesson_viewed"]
    assert received[0].payload == {"role": "admin", "day": "2026-10-19"}


def test_configure_logging_routes_telemetry_to_its_own_handler(monkeypatch: pytest.MonkeyPatch) -> None:
    telemetry = logging.getLogger(TELEMETRY_LOGGER)
    root = logging.getLogger()
    saved = (telemetry.handlers[:], telemetry.propagate, telemetry.level, root.handlers[:], root.level)
    monkeypatch.setenv("STUDYHALL_TELEMETRY_LOG", "0")
    try:
        configure_logging()
        assert telemetry.propagate is False
        assert telemetry.level == logging.WARNING
        assert [handler.formatter._fmt for handler in telemetry.handlers] == [TELEMETRY_LOG_FORMAT]
    finally:
        telemetry.handlers[:] = saved[0]
        telemetry.propagate = saved[1]
        telemetry.setLevel(saved[2])
        root.handlers[:] = saved[3]
        root.setLevel(saved[4])
        logging.getLogger("studyhall").setLevel(logging.NOTSET)
