"""
Authoritative session state enumeration.

Rules:
- This enum defines ONLY the control-plane states of one spoken exchange.
- No behavior, no helper methods, no side effects.
- Transitions are defined exclusively in the reducer.
"""

from __future__ import annotations

from enum import Enum


class State(str, Enum):
    """
    Deterministic control states for a single spoken exchange.

    These states represent controller intent, NOT adapter lifecycles.
    UI flags (listening / loading / talking) are projections of this value.
    """

    IDLE = "IDLE"
    LISTENING = "LISTENING"
    RECOGNIZED = "RECOGNIZED"
    AWAITING_REPLY = "AWAITING_REPLY"
    REPLYING = "REPLYING"
    SPEAKING = "SPEAKING"
    ERRORED = "ERRORED"
