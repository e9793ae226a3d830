"""
Capability enumeration for generation-tagged external resources.

Rules:
- This enum identifies handle categories only.
- It must NOT encode behavior or lifecycle rules.
- Reducer logic decides when handles are acquired and released.
"""

from __future__ import annotations

from enum import Enum


class Capability(str, Enum):
    """
    External capabilities whose handles the controller owns.

    Each capability:
    - Has at most one held handle at a time
    - Tags every emitted event with the generation it was started under
    """

    CAPTURE = "CAPTURE"
    RECOGNITION = "RECOGNITION"
    REPLY = "REPLY"
    SYNTHESIS = "SYNTHESIS"
    PLAYBACK = "PLAYBACK"


# Capabilities that drive the avatar's talking flag
SPEECH_OUTPUTS: frozenset[Capability] = frozenset(
    {Capability.SYNTHESIS, Capability.PLAYBACK}
)
