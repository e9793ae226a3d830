"""
Metrics and timing helpers for observability.

Responsibilities:
- Measure durations using monotonic time (immune to clock changes)
- Emit metrics as JSONL events via observability.logger
- Never aggregate: one metric = one log event

Durations use monotonic time; event timestamps (ts_ms) use wall-clock time
for human readability.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event


def emit_duration(
    name: str,
    duration_ms: int,
    *,
    session_id: str | None = None,
    generation: int | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Emit one METRIC_TIMER event."""
    log_event({
        "ts_ms": int(time.time() * 1000),
        "event_type": "METRIC_TIMER",
        "metric": name,
        "value_ms": duration_ms,
        "session_id": session_id,
        "generation": generation,
        "details": details or {},
    })


@contextmanager
def timed(
    name: str,
    *,
    session_id: str | None = None,
    generation: int | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[None]:
    """
    Context manager for measuring durations safely.

    Guarantees:
    - Metric is emitted exactly once
    - Exceptions inside the block do NOT suppress timing

    Usage:
        with timed("reply_latency", session_id=..., generation=...):
            await client.send(transcript)
    """
    start_ns = time.monotonic_ns()
    try:
        yield
    finally:
        emit_duration(
            name,
            (time.monotonic_ns() - start_ns) // 1_000_000,
            session_id=session_id,
            generation=generation,
            details=details,
        )
