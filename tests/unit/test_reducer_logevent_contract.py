# pylint: disable=missing-module-docstring,missing-function-docstring

from controller.commands import LogEvent
from controller.enums.capability import Capability
from controller.enums.state import State
from controller.events import (
    AdapterData,
    Cancel,
    EventType,
    StartSpeaking,
)
from controller.reducer import reduce
from controller.state_dataclass import SessionState


def test_reducer_emits_logevent_with_required_fields():
    state = SessionState(state=State.IDLE)

    event = StartSpeaking(
        event_type=EventType.START_SPEAKING,
        ts_ms=123,
    )

    _, commands = reduce(state, event)

    log_events = [c for c in commands if isinstance(c, LogEvent)]
    assert log_events, "Reducer must emit at least one LogEvent"

    payload = log_events[0].event

    assert payload["ts_ms"] == 123
    assert payload["event_type"] == "START_SPEAKING"
    assert "state" in payload
    assert "decision" in payload
    assert "generation" in payload
    assert "held" in payload
    assert "details" in payload


def test_logs_are_ordered_after_effects_and_state_change_is_last():
    state, _ = reduce(SessionState(), StartSpeaking(event_type=EventType.START_SPEAKING, ts_ms=0))

    _, commands = reduce(state, Cancel(event_type=EventType.CANCEL, ts_ms=1))

    first_log = next(i for i, c in enumerate(commands) if isinstance(c, LogEvent))
    assert all(isinstance(c, LogEvent) for c in commands[first_log:])

    last = commands[-1]
    assert isinstance(last, LogEvent)
    assert last.event["decision"] == "state_changed"
    assert last.event["details"]["from_state"] == "LISTENING"
    assert last.event["details"]["to_state"] == "IDLE"


def test_capability_event_logs_carry_event_generation():
    state = SessionState(state=State.IDLE, generation=3)

    _, commands = reduce(
        state,
        AdapterData(
            event_type=EventType.ADAPTER_DATA,
            ts_ms=0,
            capability=Capability.RECOGNITION,
            generation=2,
            data="stale",
            final=True,
        ),
    )

    payload = commands[0].event  # type: ignore[union-attr]
    assert payload["capability"] == "RECOGNITION"
    assert payload["event_generation"] == 2
    assert payload["generation"] == 3
    assert payload["level"] == "DEBUG"
