# pylint: disable=missing-module-docstring,missing-function-docstring

import json
from typing import Any

import pytest

from observability import logger, metrics


@pytest.fixture
def captured(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    lines: list[str] = []

    # Patch the explicit output sink used by logger
    monkeypatch.setattr(logger, "_print", lines.append)
    monkeypatch.setattr(logger, "_min_level", logger._LEVELS["INFO"])  # pylint: disable=protected-access
    monkeypatch.setattr(logger, "_enabled", True)
    return lines


def test_log_event_emits_valid_jsonl(captured: list[str]) -> None:
    """
    Contract:
    - log_event emits exactly one JSONL line
    - payload is serialized as-is
    - output sink is patchable
    """
    payload: dict[str, Any] = {
        "event_type": "TEST",
        "value": 123,
    }

    logger.log_event(payload)

    assert len(captured) == 1
    assert json.loads(captured[0]) == payload


def test_events_below_configured_level_are_dropped(captured: list[str]) -> None:
    logger.configure(level="WARNING")

    logger.log_event({"event_type": "NOISE", "level": "DEBUG"})
    logger.log_event({"event_type": "PLAIN"})
    logger.log_event({"event_type": "LOUD", "level": "ERROR"})

    assert [json.loads(line)["event_type"] for line in captured] == ["LOUD"]


def test_disabled_logger_writes_nothing(captured: list[str]) -> None:
    logger.configure(enabled=False)

    logger.log_event({"event_type": "TEST"})

    assert captured == []


def test_unserializable_payload_falls_back(captured: list[str]) -> None:
    logger.log_event({"event_type": "BAD", "ts_ms": 5, "value": object()})

    decoded = json.loads(captured[0])
    assert decoded["event_type"] == "LOGGER_SERIALIZATION_ERROR"
    assert decoded["ts_ms"] == 5


def test_timed_emits_metric_even_on_error(captured: list[str]) -> None:
    with pytest.raises(ValueError):
        with metrics.timed("reply_latency", session_id="s", generation=2):
            raise ValueError("boom")

    decoded = json.loads(captured[0])
    assert decoded["event_type"] == "METRIC_TIMER"
    assert decoded["metric"] == "reply_latency"
    assert decoded["generation"] == 2
    assert decoded["value_ms"] >= 0
