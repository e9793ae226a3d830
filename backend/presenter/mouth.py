"""
Mouth animation for the talking avatar.

While the controller reports is_speaking, the mouth toggles between open
and half-open every MOUTH_TOGGLE_INTERVAL_MS. When speaking stops the mouth
snaps back to closed. The animator owns one asyncio task at most; the view
cancels it on teardown.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from constants import MOUTH_TOGGLE_INTERVAL_MS
from observability.logger import log_event


@dataclass(frozen=True)
class MouthFrame:
    talking: bool
    mouth_open: bool


FrameSink = Callable[[MouthFrame], Awaitable[None]]


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class MouthAnimator:
    def __init__(
        self,
        *,
        on_frame: FrameSink,
        session_id: str | None = None,
        interval_ms: int = MOUTH_TOGGLE_INTERVAL_MS,
    ) -> None:
        self._on_frame = on_frame
        self._session_id = session_id
        self._interval_s = interval_ms / 1000.0

        self._talking = False
        self._mouth_open = False
        self._task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def frame(self) -> MouthFrame:
        return MouthFrame(talking=self._talking, mouth_open=self._mouth_open)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def set_speaking(self, speaking: bool) -> None:
        """Follow the controller's is_speaking flag. Repeated values are no-ops."""
        if self._closed or speaking == self._talking:
            return

        self._talking = speaking
        self._mouth_open = False

        if speaking:
            self._task = asyncio.create_task(self._toggle_loop())
        else:
            await self._stop_task()

        await self._publish()

    async def close(self) -> None:
        """Cancel the toggle task and leave the mouth closed. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._talking = False
        self._mouth_open = False
        await self._stop_task()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _toggle_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval_s)
            self._mouth_open = not self._mouth_open
            await self._publish()

    async def _stop_task(self) -> None:
        task = self._task
        self._task = None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _publish(self) -> None:
        try:
            await self._on_frame(self.frame)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": _now_ms(),
                "level": "ERROR",
                "event_type": "AVATAR_FRAME_SINK_FAILED",
                "session_id": self._session_id,
                "error": f"{type(exc).__name__}: {exc}",
            })
