"""
Error kinds surfaced to the user.

Every adapter and the reply client translate their native failures into one
of these before anything reaches the reducer.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Terminal failure categories for one exchange."""

    PERMISSION_DENIED = "PERMISSION_DENIED"
    RECOGNITION_FAILURE = "RECOGNITION_FAILURE"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
    SYNTHESIS_FAILURE = "SYNTHESIS_FAILURE"
    NO_CONTENT = "NO_CONTENT"
