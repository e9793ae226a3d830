"""
Handle release supervision.

Responsibilities:
- Run adapter stop()/cancel() for released handles as background tasks
- Enforce RELEASE_TIMEOUT_MS; hard-reset an adapter that does not return
- Log release failures
- Drain outstanding releases on teardown

Non-responsibilities:
- NO state machine decisions
- NO generation bookkeeping (the controller already moved on)
- NO Start* execution

The reducer treats releases as fire-and-forget; this module is where the
"forget" part is made safe.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable

from adapters.base import Handle
from adapters.errors import describe
from constants import RELEASE_TIMEOUT_MS
from controller.enums.capability import Capability
from controller.runtime_context import CapabilityAdapterProtocol
from observability.logger import log_event


# ---------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------

# True when the controller holds no newer handle for the capability, so a
# hard reset cannot take out a live exchange
IsVacantFn = Callable[[Capability], bool]


def _now_ms() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------
# Release Manager
# ---------------------------------------------------------------------

class ReleaseManager:
    """
    Background executor for ReleaseHandle commands.

    Lifecycle:
    1. Reducer emits ReleaseHandle(capability, generation)
    2. Controller detaches the handle and calls release(...)
    3. Manager runs stop()/cancel() with a timeout
    4a. Adapter returns -> done
    4b. Timeout -> force_reset() if the category is vacant, log

    This class never decides what happens next.
    """

    def __init__(
        self,
        *,
        session_id: str,
        is_vacant: IsVacantFn,
        timeout_ms: int = RELEASE_TIMEOUT_MS,
    ) -> None:
        self._session_id = session_id
        self._is_vacant = is_vacant
        self._timeout_s = timeout_ms / 1000.0
        self._tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def release(
        self,
        adapter: CapabilityAdapterProtocol,
        handle: Handle,
        *,
        graceful: bool,
        reason: str,
    ) -> None:
        """Schedule the release and return immediately."""
        task = asyncio.create_task(
            self._release_task(adapter, handle, graceful=graceful, reason=reason)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """
        Wait for every outstanding release.

        Each release is individually bounded by the timeout, so this
        returns in bounded time.
        """
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _release_task(
        self,
        adapter: CapabilityAdapterProtocol,
        handle: Handle,
        *,
        graceful: bool,
        reason: str,
    ) -> None:
        operation = adapter.stop if graceful else adapter.cancel
        try:
            await asyncio.wait_for(operation(handle), timeout=self._timeout_s)
        except asyncio.TimeoutError:
            vacant = self._is_vacant(handle.capability)
            if vacant:
                adapter.force_reset()
            log_event({
                "ts_ms": _now_ms(),
                "level": "WARNING",
                "event_type": "RELEASE_TIMEOUT",
                "session_id": self._session_id,
                "capability": handle.capability.value,
                "generation": handle.generation,
                "graceful": graceful,
                "reason": reason,
                "hard_reset": vacant,
            })
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": _now_ms(),
                "level": "ERROR",
                "event_type": "RELEASE_FAILED",
                "session_id": self._session_id,
                "capability": handle.capability.value,
                "generation": handle.generation,
                "graceful": graceful,
                "reason": reason,
                "error": describe(exc),
            })
