"""Progress Channel.

Session-keyed, at-most-one-subscriber broadcast of pipeline progress.

- ``open`` registers a sink and immediately sends ``connected``.
- ``publish`` is best-effort and fire-and-forget: no buffering, no replay,
  no back-pressure. A failed write tears the session down.
- ``close`` sends the terminal ``complete`` event and removes the session.

Opening a second subscription for the same session silently replaces the
first. Single node, in memory; there is no cross-process fan-out.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Protocol, Sequence

from ...constants import PROGRESS_COMPLETE, STAGE_COMPLETE, STAGE_FAILED, STAGE_LABELS
from ...schemas.analysis_schema import AnalysisSession, ProgressEvent

logger = logging.getLogger(__name__)


class ProgressSink(Protocol):
    """Writable endpoint for one subscriber."""

    def write(self, event: ProgressEvent) -> bool:
        """Deliver *event*; return False if the endpoint is dead."""
        ...

    def close(self) -> None: ...


class QueueSink:
    """In-process sink drained by the SSE route via ``stream()``."""

    def __init__(self):
        self._queue: "asyncio.Queue[Optional[ProgressEvent]]" = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, event: ProgressEvent) -> bool:
        if self._closed:
            return False
        self._queue.put_nowait(event)
        return True

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    async def stream(self) -> AsyncIterator[ProgressEvent]:
        """Yield events until the sink is closed or ``complete`` is seen."""
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event
            if event.type == "complete":
                return


@dataclass
class _Subscription:
    sink: ProgressSink
    session: AnalysisSession


def _merge_stages(previous: Sequence[str], incoming: Sequence[str]) -> List[str]:
    merged = list(previous)
    for stage in incoming:
        if stage not in merged:
            merged.append(stage)
    return merged


class ProgressChannel:
    """Owns the session -> subscriber map. Safe across tasks and threads."""

    def __init__(self, sink_factory: Callable[[], ProgressSink] = QueueSink):
        self._sink_factory = sink_factory
        self._lock = threading.Lock()
        self._subscriptions: Dict[str, _Subscription] = {}

    # ------------------------------------------------------------------ #
    #  Subscriber side                                                    #
    # ------------------------------------------------------------------ #

    def open(self, session_id: str, sink: Optional[ProgressSink] = None) -> ProgressSink:
        """Register a subscriber for *session_id* and send ``connected``."""
        sink = sink if sink is not None else self._sink_factory()
        subscription = _Subscription(sink=sink, session=AnalysisSession(session_id=session_id))
        with self._lock:
            replaced = self._subscriptions.get(session_id)
            self._subscriptions[session_id] = subscription

        if replaced is not None:
            logger.info("Replacing progress subscriber for session %s", session_id)
            _safe_close(replaced.sink)

        if not _safe_write(sink, ProgressEvent(type="connected")):
            self._remove(session_id, subscription)
        return sink

    def disconnect(self, session_id: str, sink: Optional[ProgressSink] = None) -> None:
        """Subscriber went away. Only removes *sink*'s own registration."""
        with self._lock:
            current = self._subscriptions.get(session_id)
            if current is None or (sink is not None and current.sink is not sink):
                return
            del self._subscriptions[session_id]
        print(f"🔌 [PROGRESS] Subscriber disconnected: {session_id}")

    # ------------------------------------------------------------------ #
    #  Producer side                                                      #
    # ------------------------------------------------------------------ #

    def publish(self, session_id: Optional[str], event: ProgressEvent) -> bool:
        """Best-effort delivery of a ``progress`` event.

        ``progress`` is clamped to never go backwards and ``completed_stages``
        only ever grows for a session. Returns whether the event was written.
        """
        if not session_id:
            return False
        with self._lock:
            subscription = self._subscriptions.get(session_id)
            if subscription is None:
                return False
            session = subscription.session
            progress = max(session.progress_percent, event.progress)
            stages = _merge_stages(session.completed_stages, event.completed_stages)
            session.stage = event.stage
            session.progress_percent = progress
            session.completed_stages = stages
            outgoing = event.model_copy(update={"progress": progress, "completed_stages": list(stages)})

        if _safe_write(subscription.sink, outgoing):
            return True
        self._remove(session_id, subscription)
        return False

    def close(
        self,
        session_id: Optional[str],
        result: Optional[Dict[str, Any]] = None,
        *,
        error: Optional[str] = None,
    ) -> bool:
        """Send the terminal ``complete`` event and drop the session."""
        if not session_id:
            return False
        with self._lock:
            subscription = self._subscriptions.pop(session_id, None)
        if subscription is None:
            return False

        session = subscription.session
        stage = STAGE_FAILED if error else STAGE_COMPLETE
        event = ProgressEvent(
            type="complete",
            stage=STAGE_LABELS[stage],
            message=error or "Analysis complete! Your competitive report is ready.",
            progress=session.progress_percent if error else PROGRESS_COMPLETE,
            completed_stages=list(session.completed_stages),
            result=result,
            error=error,
        )
        delivered = _safe_write(subscription.sink, event)
        _safe_close(subscription.sink)
        return delivered

    # ------------------------------------------------------------------ #
    #  Introspection                                                      #
    # ------------------------------------------------------------------ #

    def session(self, session_id: str) -> Optional[AnalysisSession]:
        with self._lock:
            subscription = self._subscriptions.get(session_id)
            return subscription.session.model_copy(deep=True) if subscription else None

    def active_sessions(self) -> List[str]:
        with self._lock:
            return list(self._subscriptions)

    def _remove(self, session_id: str, subscription: _Subscription) -> None:
        with self._lock:
            if self._subscriptions.get(session_id) is subscription:
                del self._subscriptions[session_id]
        print(f"⚠️ [PROGRESS] Dropped dead subscriber for session {session_id}")


def _safe_write(sink: ProgressSink, event: ProgressEvent) -> bool:
    try:
        return bool(sink.write(event))
    except Exception as exc:
        logger.warning("Progress write failed: %s", exc)
        return False


def _safe_close(sink: ProgressSink) -> None:
    try:
        sink.close()
    except Exception as exc:
        logger.debug("Progress sink close failed: %s", exc)
