"""
Typed failures raised inside adapters and the reply client.

Each class maps one-to-one onto an ErrorKind. Adapters raise (or construct)
these from their native failure signals; the runtime converts them into
AdapterError / ReplyFailed events. The reducer never sees an exception.
"""

from __future__ import annotations

from controller.enums.error_kind import ErrorKind


class CapabilityError(Exception):
    """Base class; `kind` is the ErrorKind surfaced to the user."""

    kind: ErrorKind = ErrorKind.RECOGNITION_FAILURE

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class PermissionDenied(CapabilityError):
    """Microphone or recognition access refused."""
    kind = ErrorKind.PERMISSION_DENIED


class RecognitionFailure(CapabilityError):
    """No speech detected, or the recognition engine failed."""
    kind = ErrorKind.RECOGNITION_FAILURE


class TransportError(CapabilityError):
    """Reply endpoint unreachable, timed out, or answered non-2xx."""
    kind = ErrorKind.TRANSPORT_ERROR

    def __init__(self, reason: str, *, status_code: int | None = None) -> None:
        super().__init__(reason)
        self.status_code = status_code


class MalformedResponseError(CapabilityError):
    """Reply body could not be parsed into the expected shape."""
    kind = ErrorKind.MALFORMED_RESPONSE


class SynthesisFailure(CapabilityError):
    """Speech synthesis or audio playback engine failed."""
    kind = ErrorKind.SYNTHESIS_FAILURE


class NoContentError(CapabilityError):
    """Reply had neither usable text nor audio."""
    kind = ErrorKind.NO_CONTENT


def describe(exc: BaseException) -> str:
    """Uniform reason string for an arbitrary exception."""
    if isinstance(exc, CapabilityError):
        return exc.reason
    return f"{type(exc).__name__}: {exc}"
