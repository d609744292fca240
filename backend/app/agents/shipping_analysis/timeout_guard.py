"""Per-user analysis watchdog.

Fires a callback once if an analysis is not stopped before its deadline.
Cleanup/alerting hook only: in-flight work is never cancelled by it.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

TimeoutCallback = Callable[[], Union[None, Awaitable[Any]]]


@dataclass
class _Timer:
    task: "asyncio.Task[None]"
    started_at: float
    deadline: float


class AnalysisTimeoutGuard:
    """Cancellable per-key timers. Keys are user ids, not sessions."""

    def __init__(self, deadline: float = 10 * 60.0):
        self.deadline = deadline
        self._timers: Dict[str, _Timer] = {}

    def start(self, key: str, on_timeout: TimeoutCallback, deadline: Optional[float] = None) -> None:
        """Start (or restart) the timer for *key*. Requires a running loop."""
        self.stop(key)
        delay = self.deadline if deadline is None else deadline
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._expire(key, on_timeout, delay))
        self._timers[key] = _Timer(task=task, started_at=time.monotonic(), deadline=delay)
        print(f"⏱️ [TIMEOUT] Started {delay:.0f}s timeout for {key}")

    def stop(self, key: str) -> bool:
        """Cancel and forget *key*'s timer. Idempotent."""
        timer = self._timers.pop(key, None)
        if timer is None:
            return False
        if not timer.task.done():
            timer.task.cancel()
        print(f"⏱️ [TIMEOUT] Stopped timeout for {key}")
        return True

    def active_count(self) -> int:
        return len(self._timers)

    def active_keys(self) -> List[str]:
        return list(self._timers)

    def elapsed(self, key: str) -> Optional[float]:
        timer = self._timers.get(key)
        return time.monotonic() - timer.started_at if timer else None

    async def _expire(self, key: str, on_timeout: TimeoutCallback, delay: float) -> None:
        await asyncio.sleep(delay)

        timer = self._timers.get(key)
        if timer is not None and timer.task is asyncio.current_task():
            del self._timers[key]

        print(f"⏰ [TIMEOUT] Analysis for {key} exceeded {delay:.0f}s")
        try:
            pending = on_timeout()
            if inspect.isawaitable(pending):
                await pending
        except Exception:
            logger.exception("Timeout callback failed for %s", key)
