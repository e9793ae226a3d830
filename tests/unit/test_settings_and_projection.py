# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from controller.enums.capability import Capability
from controller.enums.error_kind import ErrorKind
from controller.enums.state import State
from controller.projection import project
from controller.settings import InvalidSettings, SessionSettings
from controller.state_dataclass import SessionError, SessionState


BASE = SessionSettings(
    recognition_language="en-SG",
    synthesis_language="en-US",
    voice=None,
    avatar_variant="chinese",
)


# ---------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------

def test_language_override_sets_both_directions():
    s = BASE.with_overrides({"language": "ms-MY"})

    assert s.recognition_language == "ms-MY"
    assert s.synthesis_language == "ms-MY"


def test_specific_language_keys_win_over_language():
    s = BASE.with_overrides({"language": "ms-MY", "synthesis_language": "en-GB"})

    assert s.recognition_language == "ms-MY"
    assert s.synthesis_language == "en-GB"


def test_voice_and_avatar_overrides():
    s = BASE.with_overrides({"voice": " zira ", "avatar": "malay"})

    assert s.voice == "zira"
    assert s.avatar_variant == "malay"
    assert s.with_overrides({"voice": None}).voice is None


def test_no_overrides_returns_same_object():
    assert BASE.with_overrides({"unknown": 1}) is BASE


@pytest.mark.parametrize("overrides", [{"avatar": "martian"}, {"language": "  "}])
def test_invalid_overrides_raise(overrides):
    with pytest.raises(InvalidSettings):
        BASE.with_overrides(overrides)


def test_settings_message():
    assert BASE.to_message() == {
        "recognition_language": "en-SG",
        "synthesis_language": "en-US",
        "voice": None,
        "avatar": "chinese",
    }


# ---------------------------------------------------------------------
# Projection
# ---------------------------------------------------------------------

@pytest.mark.parametrize(
    ("state", "listening", "loading", "speaking"),
    [
        (State.IDLE, False, False, False),
        (State.LISTENING, True, False, False),
        (State.RECOGNIZED, False, True, False),
        (State.AWAITING_REPLY, False, True, False),
        (State.REPLYING, False, True, False),
        (State.SPEAKING, False, False, True),
        (State.ERRORED, False, False, False),
    ],
)
def test_flags_derive_from_single_state(state, listening, loading, speaking):
    snap = project(SessionState(state=state))

    assert snap.is_listening is listening
    assert snap.is_loading is loading
    assert snap.is_speaking is speaking


def test_snapshot_message_includes_error_and_content():
    state = SessionState(
        state=State.ERRORED,
        generation=2,
        held=frozenset({Capability.REPLY}),
        transcript="hello",
        recorded_audio=b"\x00\x00",
        error=SessionError(kind=ErrorKind.NO_CONTENT, reason="empty", stage=State.AWAITING_REPLY),
    )

    msg = project(state).to_message()

    assert msg["state"] == "ERRORED"
    assert msg["transcript"] == "hello"
    assert msg["has_recording"] is True
    assert msg["has_reply_audio"] is False
    assert msg["error"] == {"kind": "NO_CONTENT", "reason": "empty", "stage": "AWAITING_REPLY"}


def test_snapshots_compare_by_value():
    assert project(SessionState()) == project(SessionState())
    assert project(SessionState()) != project(SessionState(generation=1))
